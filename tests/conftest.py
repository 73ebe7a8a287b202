import pytest

from tests.fake_cluster import FakeCluster, fast_config


@pytest.fixture
def harness_config():
    return fast_config()


@pytest.fixture
def cluster(harness_config):
    fake = FakeCluster(harness_config)
    yield fake
    fake.close()
