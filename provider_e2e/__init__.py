from .cluster import ProviderCluster
from .config import HarnessConfig, load_config
from .models import TelemetrySnapshot, WorkloadIdentity, WorkloadSpec, WorkloadState
from .scenarios import SCENARIOS, run_all, run_scenario
from .stats import count_containers, find_workload
from .waiter import delete_and_wait, is_gone_or_marked_deleted, is_ready_and_running, wait_until

__version__ = "0.1.0"
