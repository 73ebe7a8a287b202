# stats.py
from typing import Tuple

from .errors import HarnessError, NotFoundError
from .models import TelemetrySnapshot, WorkloadIdentity, WorkloadRecord


def find_workload(snapshot: TelemetrySnapshot, identity: WorkloadIdentity) -> Tuple[int, bool]:
    """Index of the record for identity, or (-1, False).

    The uid has to match as well: a pod recreated under the same name is a
    different pod.
    """
    for i, record in enumerate(snapshot.workloads):
        ref = record.identity
        if ref.namespace == identity.namespace and ref.name == identity.name and ref.uid == identity.uid:
            return i, True
    return -1, False


def require_workload(snapshot: TelemetrySnapshot, identity: WorkloadIdentity) -> WorkloadRecord:
    idx, found = find_workload(snapshot, identity)
    if not found:
        raise NotFoundError(f"failed to find pod \"{identity}\" in the slice of pod stats")
    return snapshot.workloads[idx]


def count_containers(snapshot: TelemetrySnapshot, identity: WorkloadIdentity) -> int:
    return require_workload(snapshot, identity).container_count


def require_absent(snapshot: TelemetrySnapshot, identity: WorkloadIdentity) -> None:
    _, found = find_workload(snapshot, identity)
    if found:
        raise HarnessError(f"expected to NOT find pod \"{identity}\" in the slice of pod stats")
