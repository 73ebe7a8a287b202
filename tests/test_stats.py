import pytest

from provider_e2e.errors import HarnessError, NotFoundError
from provider_e2e.models import TelemetrySnapshot, WorkloadIdentity
from provider_e2e.stats import count_containers, find_workload, require_absent

SUMMARY = {
    "node": {"nodeName": "vkubelet-mock-0", "cpu": {"usageNanoCores": 0}},
    "pods": [
        {
            "podRef": {"name": "nginx-0-abc", "namespace": "default", "uid": "uid-a"},
            "containers": [{"name": "nginx-0-0"}, {"name": "nginx-0-1"}, {"name": "nginx-0-2"}],
        },
        {
            "podRef": {"name": "nginx-1-def", "namespace": "default", "uid": "uid-b"},
            "containers": [{"name": "nginx-1-0"}],
        },
    ],
}


@pytest.fixture
def snapshot():
    return TelemetrySnapshot.from_summary(SUMMARY)


def test_from_summary(snapshot):
    assert snapshot.node_identity == "vkubelet-mock-0"
    assert [w.identity.name for w in snapshot.workloads] == ["nginx-0-abc", "nginx-1-def"]
    assert snapshot.workloads[0].container_count == 3


def test_from_summary_tolerates_missing_sections():
    snapshot = TelemetrySnapshot.from_summary({"node": {"nodeName": "n"}})
    assert snapshot.workloads == []


def test_find_workload(snapshot):
    b = WorkloadIdentity(namespace="default", name="nginx-1-def", uid="uid-b")
    assert find_workload(snapshot, b) == (1, True)


def test_same_name_different_uid_is_not_found(snapshot):
    recreated = WorkloadIdentity(namespace="default", name="nginx-0-abc", uid="uid-new")
    assert find_workload(snapshot, recreated) == (-1, False)


def test_other_namespace_is_not_found(snapshot):
    other = WorkloadIdentity(namespace="kube-system", name="nginx-0-abc", uid="uid-a")
    assert find_workload(snapshot, other) == (-1, False)


def test_count_containers(snapshot):
    a = WorkloadIdentity(namespace="default", name="nginx-0-abc", uid="uid-a")
    assert count_containers(snapshot, a) == 3


def test_count_containers_of_absent_pod(snapshot):
    gone = WorkloadIdentity(namespace="default", name="gone", uid="x")
    with pytest.raises(NotFoundError):
        count_containers(snapshot, gone)


def test_require_absent(snapshot):
    require_absent(snapshot, WorkloadIdentity(namespace="default", name="gone", uid="x"))
    with pytest.raises(HarnessError, match="NOT find"):
        require_absent(snapshot, WorkloadIdentity(namespace="default", name="nginx-0-abc", uid="uid-a"))
