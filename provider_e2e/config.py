# config.py
import os
from typing import Any, Dict, Optional

import yaml
from pydantic import BaseModel, ConfigDict, ValidationError

from .errors import ConfigError


class HarnessConfig(BaseModel):
    model_config = ConfigDict(extra="forbid")

    kubeconfig: Optional[str] = None
    ca_file: Optional[str] = None
    verify_ssl: Optional[bool] = None

    namespace: str = "default"
    node_name: str = "vkubelet-mock-0"
    kubelet_port: int = 10255
    stats_url: Optional[str] = None

    ready_timeout: float = 120.0
    delete_timeout: float = 120.0
    node_ready_timeout: float = 60.0
    # time the provider gets to process a deletion before stats are re-read;
    # not verified against real reconciliation latency
    provider_grace: float = 0.1
    rejection_window: float = 5.0


def _env_defaults() -> Dict[str, Any]:
    env = {
        "kubeconfig": os.getenv("KUBECONFIG"),
        "ca_file": os.getenv("K8S_CA_FILE"),
        "namespace": os.getenv("E2E_NAMESPACE"),
        "node_name": os.getenv("E2E_NODE_NAME"),
        "kubelet_port": os.getenv("E2E_KUBELET_PORT"),
        "stats_url": os.getenv("E2E_STATS_URL"),
    }
    return {k: v for k, v in env.items() if v}


def load_config(path: Optional[str] = None, **overrides) -> HarnessConfig:
    """Build the config from env defaults, then an optional YAML file, then overrides."""
    data: Dict[str, Any] = _env_defaults()
    if path:
        try:
            with open(path, "r") as f:
                loaded = yaml.safe_load(f) or {}
        except (OSError, yaml.YAMLError) as e:
            raise ConfigError(f"Could not read config file {path}: {e}") from e
        if not isinstance(loaded, dict):
            raise ConfigError(f"Config file {path} must contain a mapping")
        data.update(loaded)
    data.update({k: v for k, v in overrides.items() if v is not None})
    try:
        return HarnessConfig(**data)
    except ValidationError as e:
        raise ConfigError(f"Invalid harness config: {e}") from e
