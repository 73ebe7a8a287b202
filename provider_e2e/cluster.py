# cluster.py
import json
import logging
import math
import socket
import time
from typing import Iterator, Optional, Tuple

import requests
import urllib3
from kubernetes import client, config, watch
from kubernetes.client.exceptions import ApiException
from kubernetes.config.config_exception import ConfigException
from kubernetes.watch.watch import iter_resp_lines

from . import waiter
from .config import HarnessConfig
from .errors import (
    ApiError,
    KubernetesConfigurationError,
    NotFoundError,
    SubmissionError,
    WaitTimeoutError,
    describe_api_exception,
    translate_api_exception,
)
from .models import EventType, LifecycleEvent, TelemetrySnapshot, WorkloadIdentity, WorkloadSpec, WorkloadState
from .workloads import to_manifest

logger = logging.getLogger(__name__)

STATS_TIMEOUT = 10
NODE_POLL_INTERVAL = 2.0
# the server closes the watch a little after the caller's own deadline
WATCH_SLACK_S = 5


# ---------- K8s config & clients ----------
def _load_k8s_config(cfg: client.Configuration, kubeconfig: Optional[str] = None) -> None:
    """
    Try: explicit kubeconfig path -> local kubeconfig -> in-cluster.
    """
    try:
        if kubeconfig:
            logger.info("Loading kubeconfig from %s", kubeconfig)
            config.load_kube_config(config_file=kubeconfig, client_configuration=cfg)
            return
        logger.info("Trying to load local kubeconfig...")
        config.load_kube_config(client_configuration=cfg)
        logger.info("Loaded local kubeconfig.")
    except ConfigException:
        logger.warning("Local kubeconfig not found. Trying in-cluster config...")
        try:
            config.load_incluster_config(client_configuration=cfg)
            logger.info("Loaded in-cluster config.")
        except ConfigException as e:
            logger.error("Failed to load any Kubernetes config.")
            raise KubernetesConfigurationError("Kubernetes configuration could not be loaded.") from e


def _apply_ssl_settings(cfg: client.Configuration, ca_file: Optional[str], verify_ssl: Optional[bool]) -> None:
    if verify_ssl is not None:
        cfg.verify_ssl = bool(verify_ssl)
    if ca_file:
        cfg.ssl_ca_cert = ca_file


def build_core_api(harness: HarnessConfig) -> client.CoreV1Api:
    cfg = client.Configuration()
    _load_k8s_config(cfg, harness.kubeconfig)
    _apply_ssl_settings(cfg, harness.ca_file, harness.verify_ssl)
    return client.CoreV1Api(client.ApiClient(cfg))


def _shutdown_stream(resp) -> None:
    """Unblock a reader waiting in recv on another thread, then close the response."""
    conn = getattr(resp, "connection", None)
    sock = getattr(conn, "sock", None) if conn is not None else None
    if sock is not None:
        try:
            sock.shutdown(socket.SHUT_RDWR)
        except OSError:
            logger.debug("Watch socket already disconnected")
    resp.close()


# ---------- Pod -> state ----------
def state_from_pod(pod: client.V1Pod) -> WorkloadState:
    meta = pod.metadata
    status = pod.status
    conditions = (status.conditions if status else None) or []
    statuses = (status.container_statuses if status else None) or []
    containers = (pod.spec.containers if pod.spec else None) or []
    return WorkloadState(
        identity=WorkloadIdentity(namespace=meta.namespace, name=meta.name, uid=meta.uid or ""),
        phase=status.phase if status else None,
        ready=any(c.type == "Ready" and c.status == "True" for c in conditions),
        pod_ip=status.pod_ip if status else None,
        container_names=[c.name for c in containers],
        running_containers=[cs.name for cs in statuses if cs.state is not None and cs.state.running is not None],
        marked_for_deletion=meta.deletion_timestamp is not None,
        resource_version=meta.resource_version,
        message=status.message if status else None,
    )


class ProviderCluster:
    """
    Everything the scenarios need from the cluster: the pod API, pod watches
    and the provider's /stats/summary. One instance per run, passed around
    explicitly.
    """

    def __init__(self, harness: HarnessConfig, core: Optional[client.CoreV1Api] = None):
        self.config = harness
        self.core = core if core is not None else build_core_api(harness)

    @property
    def namespace(self) -> str:
        return self.config.namespace

    @property
    def node_name(self) -> str:
        return self.config.node_name

    def close(self):
        self.core.api_client.close()

    def __enter__(self) -> "ProviderCluster":
        return self

    def __exit__(self, exc_type, exc, tb):
        self.close()

    # ---------- Pods ----------
    def create_workload(self, spec: WorkloadSpec) -> WorkloadIdentity:
        try:
            pod = self.core.create_namespaced_pod(namespace=spec.namespace, body=to_manifest(spec))
        except ApiException as e:
            raise SubmissionError(
                f"create pod {spec.namespace}/{spec.name}: {describe_api_exception(e)}", status=e.status
            ) from e
        except urllib3.exceptions.HTTPError as e:
            raise SubmissionError(f"create pod {spec.namespace}/{spec.name}: {e}") from e
        identity = WorkloadIdentity(namespace=pod.metadata.namespace, name=pod.metadata.name, uid=pod.metadata.uid)
        logger.info("Created pod %s (uid %s)", identity, identity.uid)
        return identity

    def delete_workload(self, namespace: str, name: str, graceful: bool = True,
                        uid: Optional[str] = None) -> None:
        """
        Delete a pod by name. With a uid the server only deletes that exact
        pod; a different pod that reused the name fails the uid precondition
        (409), which is reported as NotFoundError like a missing pod.
        """
        kwargs = {} if graceful else {"grace_period_seconds": 0}
        if uid:
            kwargs["body"] = client.V1DeleteOptions(preconditions=client.V1Preconditions(uid=uid))
        try:
            self.core.delete_namespaced_pod(name=name, namespace=namespace, **kwargs)
        except ApiException as e:
            if uid and e.status == 409:
                raise NotFoundError(
                    f"delete pod {namespace}/{name}: uid {uid} is gone ({describe_api_exception(e)})",
                    status=e.status,
                ) from e
            raise translate_api_exception(e, f"delete pod {namespace}/{name}") from e
        except urllib3.exceptions.HTTPError as e:
            raise ApiError(f"delete pod {namespace}/{name}: {e}") from e
        logger.info("Deleted pod %s/%s (%s)", namespace, name, "graceful" if graceful else "immediate")

    def get_workload(self, namespace: str, name: str) -> Optional[WorkloadState]:
        try:
            return state_from_pod(self.core.read_namespaced_pod(name=name, namespace=namespace))
        except ApiException as e:
            if e.status == 404:
                return None
            raise translate_api_exception(e, f"read pod {namespace}/{name}") from e

    def list_workload(self, namespace: str, name: str) -> Tuple[Optional[WorkloadState], str]:
        try:
            pods = self.core.list_namespaced_pod(namespace=namespace, field_selector=f"metadata.name={name}")
        except ApiException as e:
            raise translate_api_exception(e, f"list pod {namespace}/{name}") from e
        state = state_from_pod(pods.items[0]) if pods.items else None
        return state, pods.metadata.resource_version

    def watch_workload(self, namespace: str, name: str, resource_version: str, timeout: float,
                       stop: waiter.StopSignal) -> Iterator[LifecycleEvent]:
        if stop.is_set():
            return
        try:
            resp = self.core.list_namespaced_pod(
                namespace=namespace,
                field_selector=f"metadata.name={name}",
                resource_version=resource_version,
                timeout_seconds=int(math.ceil(timeout)) + WATCH_SLACK_S,
                watch=True,
                _preload_content=False,
            )
        except ApiException as e:
            raise translate_api_exception(e, f"watch pod {namespace}/{name}") from e
        except urllib3.exceptions.HTTPError as e:
            raise ApiError(f"watch pod {namespace}/{name}: {e}") from e
        stop.on_stop(lambda: _shutdown_stream(resp))

        w = watch.Watch()
        try:
            for line in iter_resp_lines(resp):
                if stop.is_set():
                    break
                event = w.unmarshal_event(line, "V1Pod")
                if event is None:
                    continue
                etype = event["type"]
                if etype == "ERROR":
                    raise ApiError(f"watch on pod {namespace}/{name} failed: {event.get('raw_object')}")
                if etype not in EventType.__members__:
                    continue  # BOOKMARK
                pod = event["object"]
                yield LifecycleEvent(
                    type=EventType(etype),
                    state=state_from_pod(pod),
                    resource_version=pod.metadata.resource_version or "",
                )
        except ApiError:
            raise
        except Exception as e:
            if not stop.is_set():
                raise ApiError(f"watch on pod {namespace}/{name} broke: {e}") from e
            # reading from a stream we shut down ourselves
            logger.debug("Watch on %s/%s closed: %s", namespace, name, e)
        finally:
            resp.close()
            resp.release_conn()

    # ---------- Waits ----------
    def wait_until_ready(self, namespace: str, name: str, timeout: Optional[float] = None) -> Optional[WorkloadState]:
        return waiter.wait_until(self, namespace, name, waiter.is_ready_and_running,
                                 timeout or self.config.ready_timeout)

    def delete_and_wait(self, namespace: str, name: str, graceful: bool = True,
                        timeout: Optional[float] = None, uid: Optional[str] = None) -> Optional[WorkloadState]:
        return waiter.delete_and_wait(
            self,
            lambda: self.delete_workload(namespace, name, graceful=graceful, uid=uid),
            namespace,
            name,
            timeout or self.config.delete_timeout,
        )

    # ---------- Stats ----------
    def get_stats_summary(self) -> TelemetrySnapshot:
        if self.config.stats_url:
            try:
                r = requests.get(self.config.stats_url, timeout=STATS_TIMEOUT,
                                 verify=self.config.verify_ssl if self.config.verify_ssl is not None else True)
                r.raise_for_status()
                payload = r.json()
            except (requests.RequestException, ValueError) as e:
                raise ApiError(f"GET {self.config.stats_url}: {e}") from e
        else:
            proxy_name = f"http:{self.config.node_name}:{self.config.kubelet_port}"
            try:
                resp = self.core.connect_get_namespaced_pod_proxy_with_path(
                    name=proxy_name,
                    namespace=self.config.namespace,
                    path="stats/summary",
                    _preload_content=False,
                )
                payload = json.loads(resp.data)
            except ApiException as e:
                raise translate_api_exception(e, f"stats summary via {proxy_name}") from e
            except ValueError as e:
                raise ApiError(f"stats summary via {proxy_name} is not JSON: {e}") from e
        return TelemetrySnapshot.from_summary(payload)

    # ---------- Node ----------
    def node_is_ready(self) -> bool:
        try:
            node = self.core.read_node(name=self.config.node_name)
        except ApiException as e:
            if e.status == 404:
                return False
            raise translate_api_exception(e, f"read node {self.config.node_name}") from e
        conditions = (node.status.conditions if node.status else None) or []
        return any(c.type == "Ready" and c.status == "True" for c in conditions)

    def wait_until_node_ready(self, timeout: Optional[float] = None) -> None:
        timeout = timeout or self.config.node_ready_timeout
        started = time.monotonic()
        while not self.node_is_ready():
            elapsed = time.monotonic() - started
            if elapsed >= timeout:
                raise WaitTimeoutError(f"node/{self.config.node_name}", "node_is_ready", elapsed)
            time.sleep(min(NODE_POLL_INTERVAL, max(timeout - elapsed, 0.0)))
        logger.info("Node %s is ready", self.config.node_name)
