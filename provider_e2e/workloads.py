# workloads.py
"""
Pod fixtures for the provider scenarios.

Everything here is pure construction: nothing talks to the cluster. The
secret/config-map shapes point at stores the harness never creates, so a
provider must tolerate the optional ones and refuse the mandatory ones.
"""
import uuid
from typing import Dict, List, Optional

import yaml

from .models import ContainerSpec, EnvEntry, EnvReference, SourceKind, WorkloadSpec

SUFFIX_LEN = 10
DEFAULT_ENV_PREFIX = "nginxtest"
DEFAULT_ENV_IMAGE = "foo"


def unique_name(prefix: str) -> str:
    # DNS-1123 safe: lowercase hex
    return f"{prefix}{uuid.uuid4().hex[:SUFFIX_LEN]}"


def build_basic(prefix: str, *images: str, namespace: str = "default",
                node_name: Optional[str] = None) -> WorkloadSpec:
    if not images:
        raise ValueError("build_basic needs at least one container image")
    containers = [ContainerSpec(name=f"{prefix}{idx}", image=img) for idx, img in enumerate(images)]
    return WorkloadSpec(
        name=unique_name(prefix),
        namespace=namespace,
        node_name=node_name,
        containers=containers,
    )


def build_with_env(prefix: str, image: str, env: List[EnvEntry], namespace: str = "default",
                   node_name: Optional[str] = None) -> WorkloadSpec:
    spec = build_basic(prefix, image, namespace=namespace, node_name=node_name)
    spec.containers[0].env = list(env)
    return spec


def _ref(var: str, source: SourceKind, ref_name: str, key: str, optional: bool) -> EnvEntry:
    return EnvEntry(
        name=var,
        reference=EnvReference(source=source, reference_name=ref_name, key=key, optional=optional),
    )


# ---------- Reference shapes ----------
def optional_secret_env() -> List[EnvEntry]:
    return [_ref("ENVIRONMENTVARIABLE", SourceKind.SECRET, "secretname0", "key", True)]


def mandatory_secret_env() -> List[EnvEntry]:
    return [
        _ref("zero", SourceKind.SECRET, "secretname0", "secretkey0", True),
        _ref("one", SourceKind.SECRET, "secretname1", "secretkey1", False),
    ]


def optional_config_map_env() -> List[EnvEntry]:
    return [_ref("ENVIRONMENTVARIABLE", SourceKind.CONFIG, "configname0", "key", True)]


def mandatory_config_map_env() -> List[EnvEntry]:
    return [
        _ref("zero", SourceKind.CONFIG, "configname0", "key0", True),
        _ref("one", SourceKind.CONFIG, "configname1", "key1", False),
    ]


def with_optional_secrets(**kwargs) -> WorkloadSpec:
    return build_with_env(DEFAULT_ENV_PREFIX, DEFAULT_ENV_IMAGE, optional_secret_env(), **kwargs)


def with_mandatory_secrets(**kwargs) -> WorkloadSpec:
    return build_with_env(DEFAULT_ENV_PREFIX, DEFAULT_ENV_IMAGE, mandatory_secret_env(), **kwargs)


def with_optional_config_maps(**kwargs) -> WorkloadSpec:
    return build_with_env(DEFAULT_ENV_PREFIX, DEFAULT_ENV_IMAGE, optional_config_map_env(), **kwargs)


def with_mandatory_config_maps(**kwargs) -> WorkloadSpec:
    return build_with_env(DEFAULT_ENV_PREFIX, DEFAULT_ENV_IMAGE, mandatory_config_map_env(), **kwargs)


# ---------- Manifests ----------
def _env_to_manifest(e: EnvEntry) -> Dict:
    if e.reference is None:
        return {"name": e.name, "value": e.value}
    ref = e.reference
    selector = {"name": ref.reference_name, "key": ref.key, "optional": ref.optional}
    field = "secretKeyRef" if ref.source == SourceKind.SECRET else "configMapKeyRef"
    return {"name": e.name, "valueFrom": {field: selector}}


def to_manifest(spec: WorkloadSpec) -> Dict:
    pod_spec: Dict = {
        "containers": [
            {
                "name": c.name,
                "image": c.image,
                **({"env": [_env_to_manifest(e) for e in c.env]} if c.env else {}),
            }
            for c in spec.containers
        ],
    }
    if spec.node_name:
        pod_spec["nodeName"] = spec.node_name
    return {
        "apiVersion": "v1",
        "kind": "Pod",
        "metadata": {"name": spec.name, "namespace": spec.namespace},
        "spec": pod_spec,
    }


def render_manifest(spec: WorkloadSpec) -> str:
    return yaml.safe_dump(to_manifest(spec), sort_keys=False)
