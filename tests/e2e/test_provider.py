"""Runs the scenarios against a real cluster and provider.

    E2E_LIVE=1 E2E_NODE_NAME=vkubelet-mock-0 pytest tests/e2e
"""
import time

import pytest

from provider_e2e import workloads
from provider_e2e.errors import NotFoundError
from provider_e2e.scenarios import SCENARIOS, run_scenario
from provider_e2e.stats import find_workload

pytestmark = pytest.mark.e2e


@pytest.mark.parametrize("name", list(SCENARIOS))
def test_scenario(live_cluster, name):
    result = run_scenario(live_cluster, name)
    assert result.passed, f"{result.failed_step}: {result.error}"


def test_recreated_name_is_a_different_pod(live_cluster):
    cfg = live_cluster.config
    spec = workloads.build_basic("nginx-re-", "foo", namespace=cfg.namespace, node_name=cfg.node_name)
    first = live_cluster.create_workload(spec)
    try:
        live_cluster.wait_until_ready(first.namespace, first.name)
        live_cluster.delete_and_wait(first.namespace, first.name, graceful=False)
        # a force delete can still leave the object around briefly
        deadline = time.monotonic() + cfg.delete_timeout
        while live_cluster.get_workload(first.namespace, first.name) is not None:
            assert time.monotonic() < deadline, f"{first} still present"
            time.sleep(0.5)

        second = live_cluster.create_workload(spec)
        assert second.uid != first.uid
        live_cluster.wait_until_ready(second.namespace, second.name)
        time.sleep(cfg.provider_grace)

        stats = live_cluster.get_stats_summary()
        assert find_workload(stats, second)[1]
        assert not find_workload(stats, first)[1]
    finally:
        try:
            live_cluster.delete_workload(spec.namespace, spec.name)
        except NotFoundError:
            pass
