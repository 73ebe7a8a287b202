import os

import pytest

from provider_e2e.cluster import ProviderCluster
from provider_e2e.config import load_config


def pytest_collection_modifyitems(config, items):
    if os.getenv("E2E_LIVE") == "1":
        return
    skip = pytest.mark.skip(reason="set E2E_LIVE=1 to run against a live provider")
    for item in items:
        if "e2e" in item.keywords:
            item.add_marker(skip)


@pytest.fixture(scope="session")
def live_cluster():
    cfg = load_config(os.getenv("E2E_CONFIG"))
    with ProviderCluster(cfg) as cluster:
        cluster.wait_until_node_ready()
        yield cluster
