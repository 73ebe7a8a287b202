# models.py
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator


class WorkloadIdentity(BaseModel):
    """One pod instance. A recreated pod with the same name gets a new uid."""
    model_config = ConfigDict(frozen=True)

    namespace: str
    name: str
    uid: str

    def __str__(self) -> str:
        return f"{self.namespace}/{self.name}"


# ---------- Workload specs ----------
class SourceKind(str, Enum):
    CONFIG = "config"
    SECRET = "secret"


class EnvReference(BaseModel):
    source: SourceKind
    reference_name: str
    key: str
    optional: bool = False


class EnvEntry(BaseModel):
    name: str
    value: Optional[str] = None
    reference: Optional[EnvReference] = None

    @model_validator(mode="after")
    def _one_source(self):
        if (self.value is None) == (self.reference is None):
            raise ValueError(f"env entry {self.name!r} needs exactly one of value/reference")
        return self


class ContainerSpec(BaseModel):
    name: str
    image: str
    env: List[EnvEntry] = []


class WorkloadSpec(BaseModel):
    name: str
    namespace: str = "default"
    node_name: Optional[str] = None
    containers: List[ContainerSpec]

    def references(self) -> List[EnvReference]:
        return [e.reference for c in self.containers for e in c.env if e.reference is not None]


# ---------- Observed state ----------
class WorkloadState(BaseModel):
    identity: WorkloadIdentity
    phase: Optional[str] = None
    ready: bool = False
    pod_ip: Optional[str] = None
    container_names: List[str] = []
    running_containers: List[str] = []
    marked_for_deletion: bool = False
    deleted: bool = False
    resource_version: Optional[str] = None
    message: Optional[str] = None


class EventType(str, Enum):
    ADDED = "ADDED"
    MODIFIED = "MODIFIED"
    DELETED = "DELETED"


class LifecycleEvent(BaseModel):
    type: EventType
    state: WorkloadState
    resource_version: str

    @property
    def identity(self) -> WorkloadIdentity:
        return self.state.identity


# ---------- Telemetry ----------
class ContainerRecord(BaseModel):
    name: str


class WorkloadRecord(BaseModel):
    identity: WorkloadIdentity
    containers: List[ContainerRecord] = []

    @property
    def container_count(self) -> int:
        return len(self.containers)


class TelemetrySnapshot(BaseModel):
    node_identity: str
    workloads: List[WorkloadRecord] = []

    @classmethod
    def from_summary(cls, payload: Dict[str, Any]) -> "TelemetrySnapshot":
        """Parse a kubelet /stats/summary document."""
        node = payload.get("node") or {}
        records = []
        for p in payload.get("pods") or []:
            ref = p.get("podRef") or {}
            records.append(WorkloadRecord(
                identity=WorkloadIdentity(
                    namespace=ref.get("namespace", ""),
                    name=ref.get("name", ""),
                    uid=ref.get("uid", ""),
                ),
                containers=[ContainerRecord(name=c.get("name", "")) for c in (p.get("containers") or [])],
            ))
        return cls(node_identity=node.get("nodeName", ""), workloads=records)


# ---------- Results ----------
class ScenarioResult(BaseModel):
    schema_version: str = Field(default="v1")
    name: str
    passed: bool
    failed_step: Optional[str] = None
    error: Optional[str] = None
    duration_s: float = 0.0
    teardown_errors: List[str] = []
