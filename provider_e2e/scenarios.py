# scenarios.py
"""
The provider scenarios.

Each scenario gets its own ScenarioRun: steps run in order, the first
failing step aborts the scenario, and the pods it created are deleted on
the way out whatever happened. One failing scenario never stops the others.
"""
import contextlib
import logging
import time
from typing import Callable, Dict, Iterable, List, Optional

from . import workloads
from .cluster import ProviderCluster
from .errors import HarnessError, NotFoundError, StepFailure, TeardownError, WaitTimeoutError
from .models import ScenarioResult, TelemetrySnapshot, WorkloadIdentity, WorkloadSpec
from .stats import count_containers, require_absent

logger = logging.getLogger(__name__)

ScenarioFn = Callable[["ScenarioRun"], None]
SCENARIOS: Dict[str, ScenarioFn] = {}


def scenario(name: str):
    def register(fn: ScenarioFn) -> ScenarioFn:
        SCENARIOS[name] = fn
        return fn
    return register


class ScenarioRun:
    def __init__(self, cluster: ProviderCluster, name: str):
        self.cluster = cluster
        self.config = cluster.config
        self.name = name
        self.current_step: Optional[str] = None
        self.teardown_errors: List[str] = []
        self._teardown = contextlib.ExitStack()

    def __enter__(self) -> "ScenarioRun":
        return self

    def __exit__(self, exc_type, exc, tb):
        self._teardown.close()

    @contextlib.contextmanager
    def step(self, name: str):
        self.current_step = name
        logger.info("[%s] %s", self.name, name)
        try:
            yield
        except StepFailure:
            raise
        except Exception as e:
            raise StepFailure(name, e) from e

    # ---------- Teardown ----------
    def defer_delete(self, identity: WorkloadIdentity):
        self._teardown.callback(self._best_effort_delete, identity)

    def _best_effort_delete(self, identity: WorkloadIdentity):
        try:
            self.cluster.delete_workload(identity.namespace, identity.name, uid=identity.uid)
        except NotFoundError:
            logger.debug("[%s] %s already gone at teardown", self.name, identity)
        except HarnessError as e:
            err = TeardownError(f"teardown of {identity} failed: {e}")
            logger.warning("[%s] %s", self.name, err)
            self.teardown_errors.append(str(err))

    # ---------- Steps ----------
    def build_basic(self, prefix: str, *images: str) -> WorkloadSpec:
        return workloads.build_basic(prefix, *images, namespace=self.config.namespace,
                                     node_name=self.config.node_name)

    def submit(self, spec: WorkloadSpec) -> WorkloadIdentity:
        with self.step(f"create {spec.name}"):
            identity = self.cluster.create_workload(spec)
        self.defer_delete(identity)
        return identity

    def wait_ready(self, identity: WorkloadIdentity):
        with self.step(f"wait until {identity} is ready"):
            self.cluster.wait_until_ready(identity.namespace, identity.name)

    def expect_never_ready(self, identity: WorkloadIdentity):
        with self.step(f"confirm {identity} never becomes ready"):
            try:
                self.cluster.wait_until_ready(identity.namespace, identity.name,
                                              timeout=self.config.rejection_window)
            except WaitTimeoutError:
                return
            raise HarnessError(f"pod {identity} became ready despite a missing mandatory reference")

    def snapshot(self) -> TelemetrySnapshot:
        with self.step("get stats summary"):
            stats = self.cluster.get_stats_summary()
            if stats.node_identity != self.config.node_name:
                raise HarnessError(
                    f"expected stats for node {self.config.node_name}, got stats for node {stats.node_identity}"
                )
        return stats

    def expect_present(self, stats: TelemetrySnapshot, identity: WorkloadIdentity,
                       containers: Optional[int] = None):
        with self.step(f"find {identity} in stats"):
            current = count_containers(stats, identity)
            if containers is not None and current != containers:
                raise HarnessError(f"expected stats for {containers} containers, got stats for {current} containers")

    def expect_absent(self, stats: TelemetrySnapshot, identity: WorkloadIdentity):
        with self.step(f"confirm {identity} is absent from stats"):
            require_absent(stats, identity)

    def delete(self, identity: WorkloadIdentity, graceful: bool = True):
        how = "delete" if graceful else "force delete"
        with self.step(f"{how} {identity} and wait for deletion"):
            self.cluster.delete_and_wait(identity.namespace, identity.name, graceful=graceful, uid=identity.uid)
        # the provider reconciles asynchronously to the delete acknowledgement
        time.sleep(self.config.provider_grace)

    def delete_and_confirm_absent(self, identity: WorkloadIdentity, graceful: bool = True) -> TelemetrySnapshot:
        self.delete(identity, graceful=graceful)
        stats = self.snapshot()
        self.expect_absent(stats, identity)
        return stats


# ---------- Scenarios ----------
@scenario("stats_summary")
def stats_summary(run: ScenarioRun):
    spec = run.build_basic("nginx-0-", "foo", "bar", "baz")
    pod = run.submit(spec)
    run.wait_ready(pod)
    run.expect_present(run.snapshot(), pod, containers=len(spec.containers))
    run.delete_and_confirm_absent(pod)


@scenario("pod_lifecycle")
def pod_lifecycle(run: ScenarioRun):
    spec0 = run.build_basic("nginx-0-", "foo", "bar", "baz")
    spec1 = run.build_basic("nginx-1-", "bar")
    pod0 = run.submit(spec0)
    pod1 = run.submit(spec1)
    run.wait_ready(pod0)
    run.wait_ready(pod1)

    stats = run.snapshot()
    run.expect_present(stats, pod0, containers=len(spec0.containers))
    run.expect_present(stats, pod1, containers=len(spec1.containers))

    stats = run.delete_and_confirm_absent(pod1, graceful=True)
    run.expect_present(stats, pod0, containers=len(spec0.containers))

    run.delete_and_confirm_absent(pod0, graceful=False)


def _optional_references(run: ScenarioRun, spec: WorkloadSpec):
    pod = run.submit(spec)
    run.wait_ready(pod)
    run.expect_present(run.snapshot(), pod, containers=len(spec.containers))
    run.delete_and_confirm_absent(pod)


def _mandatory_references(run: ScenarioRun, spec: WorkloadSpec):
    pod = run.submit(spec)
    run.expect_never_ready(pod)
    run.expect_absent(run.snapshot(), pod)
    run.delete_and_confirm_absent(pod)


def _env_kwargs(run: ScenarioRun) -> dict:
    return {"namespace": run.config.namespace, "node_name": run.config.node_name}


@scenario("optional_secrets")
def optional_secrets(run: ScenarioRun):
    _optional_references(run, workloads.with_optional_secrets(**_env_kwargs(run)))


@scenario("mandatory_secrets")
def mandatory_secrets(run: ScenarioRun):
    _mandatory_references(run, workloads.with_mandatory_secrets(**_env_kwargs(run)))


@scenario("optional_config_maps")
def optional_config_maps(run: ScenarioRun):
    _optional_references(run, workloads.with_optional_config_maps(**_env_kwargs(run)))


@scenario("mandatory_config_maps")
def mandatory_config_maps(run: ScenarioRun):
    _mandatory_references(run, workloads.with_mandatory_config_maps(**_env_kwargs(run)))


# ---------- Runner ----------
def run_scenario(cluster: ProviderCluster, name: str) -> ScenarioResult:
    try:
        fn = SCENARIOS[name]
    except KeyError:
        raise ValueError(f"Unknown scenario: {name}. Known: {', '.join(SCENARIOS)}") from None

    run = ScenarioRun(cluster, name)
    started = time.monotonic()
    failed_step = error = None
    try:
        with run:
            fn(run)
    except StepFailure as e:
        failed_step, error = e.step, f"{type(e.cause).__name__}: {e.cause}"
    except HarnessError as e:
        failed_step, error = run.current_step, f"{type(e).__name__}: {e}"

    result = ScenarioResult(
        name=name,
        passed=error is None,
        failed_step=failed_step,
        error=error,
        duration_s=round(time.monotonic() - started, 3),
        teardown_errors=run.teardown_errors,
    )
    if result.passed:
        logger.info("[%s] PASS (%.2fs)", name, result.duration_s)
    else:
        logger.error("[%s] FAIL at step '%s': %s", name, failed_step, error)
    return result


def run_all(cluster: ProviderCluster, names: Optional[Iterable[str]] = None) -> List[ScenarioResult]:
    return [run_scenario(cluster, name) for name in (names or list(SCENARIOS))]
