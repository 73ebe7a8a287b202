# waiter.py
"""
Waiting for a pod to reach a state without losing events.

A wait is list-then-watch: the channel lists the pod, remembers the
listing's resourceVersion, and watches from that version. Whatever happens
after the listing is replayed by the API server, even if the watch
connection itself is established late. To wait for a deletion the channel
must therefore be opened *before* the delete is issued (see delete_and_wait);
opening it afterwards can list a pod that is already gone from the watch
window and hang until the deadline.
"""
import logging
import queue
import threading
import time
from concurrent.futures import Future
from typing import Callable, Iterator, List, Optional, Protocol, Tuple

from .errors import ChannelClosedError, WaitTimeoutError
from .models import EventType, LifecycleEvent, WorkloadState

logger = logging.getLogger(__name__)

Predicate = Callable[[Optional[WorkloadState]], bool]

JOIN_TIMEOUT = 1.0


# ---------- Stop signal ----------
class StopSignal(threading.Event):
    """
    A stop flag that sources can attach closers to. Setting it runs every
    closer registered so far. A closer registered after the flag is set runs
    immediately. A watch blocked on a socket read only ends when its stream
    is closed, so checking the flag is not enough.
    """

    def __init__(self):
        super().__init__()
        self._lock = threading.Lock()
        self._closers: List[Callable[[], None]] = []

    def on_stop(self, closer: Callable[[], None]) -> None:
        with self._lock:
            if not self.is_set():
                self._closers.append(closer)
                return
        closer()

    def set(self) -> None:
        with self._lock:
            super().set()
            closers, self._closers = self._closers, []
        for closer in closers:
            closer()


class WorkloadSource(Protocol):
    def list_workload(self, namespace: str, name: str) -> Tuple[Optional[WorkloadState], str]:
        ...

    def watch_workload(self, namespace: str, name: str, resource_version: str, timeout: float,
                       stop: StopSignal) -> Iterator[LifecycleEvent]:
        ...


# ---------- Predicates ----------
def is_ready_and_running(state: Optional[WorkloadState]) -> bool:
    if state is None or state.deleted:
        return False
    if state.phase != "Running" or not state.ready or not state.pod_ip:
        return False
    return bool(state.container_names) and set(state.container_names) <= set(state.running_containers)


def is_gone_or_marked_deleted(state: Optional[WorkloadState]) -> bool:
    return state is None or state.deleted or state.marked_for_deletion


def predicate_name(predicate: Predicate) -> str:
    return getattr(predicate, "__name__", repr(predicate))


# ---------- Channel ----------
_CLOSED = object()


class ObservationChannel:
    def __init__(self, source: WorkloadSource, namespace: str, name: str, timeout: float):
        self.source = source
        self.namespace = namespace
        self.name = name
        self.timeout = timeout
        self.state: Optional[WorkloadState] = None
        self.resource_version: Optional[str] = None
        self._queue: "queue.Queue" = queue.Queue()
        self._stop = StopSignal()
        self._thread: Optional[threading.Thread] = None
        self._closed = False

    @property
    def identity(self) -> str:
        return f"{self.namespace}/{self.name}"

    def open(self) -> Optional[WorkloadState]:
        if self._thread is not None:
            raise RuntimeError(f"observation channel for {self.identity} is already open")
        self.state, self.resource_version = self.source.list_workload(self.namespace, self.name)
        logger.debug("Watching %s from resourceVersion %s", self.identity, self.resource_version)
        self._thread = threading.Thread(
            target=self._pump, name=f"watch-{self.identity}", daemon=True
        )
        self._thread.start()
        return self.state

    def _pump(self):
        try:
            for event in self.source.watch_workload(
                self.namespace, self.name, self.resource_version, self.timeout, self._stop
            ):
                if self._stop.is_set():
                    break
                self._queue.put(event)
        except Exception as e:
            # handed to the waiting caller as the closure cause
            self._queue.put(e)
        finally:
            self._queue.put(_CLOSED)

    def _apply(self, event: LifecycleEvent) -> WorkloadState:
        if event.type == EventType.DELETED:
            return event.state.model_copy(update={"deleted": True})
        return event.state

    def wait_for(self, predicate: Predicate, timeout: float, label: Optional[str] = None) -> Optional[WorkloadState]:
        label = label or predicate_name(predicate)
        started = time.monotonic()
        deadline = started + timeout
        if predicate(self.state):
            return self.state
        while True:
            if self._closed:
                raise ChannelClosedError(self.identity, label)
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                raise WaitTimeoutError(self.identity, label, time.monotonic() - started)
            try:
                item = self._queue.get(timeout=remaining)
            except queue.Empty:
                continue
            if item is _CLOSED:
                self._closed = True
                raise ChannelClosedError(self.identity, label)
            if isinstance(item, BaseException):
                self._closed = True
                raise ChannelClosedError(self.identity, label, cause=item)
            self.state = self._apply(item)
            logger.debug("%s %s (rv %s)", item.type.value, self.identity, item.resource_version)
            if predicate(self.state):
                return self.state

    def close(self):
        # runs the source's closers, which end a watch blocked on a read
        self._stop.set()
        # wakes a caller still blocked in wait_for
        self._queue.put(_CLOSED)
        if self._thread is not None and self._thread is not threading.current_thread():
            self._thread.join(timeout=JOIN_TIMEOUT)
            if self._thread.is_alive():
                logger.warning("Watch on %s did not stop within %.1fs", self.identity, JOIN_TIMEOUT)

    def __enter__(self) -> "ObservationChannel":
        self.open()
        return self

    def __exit__(self, exc_type, exc, tb):
        self.close()


def wait_until(source: WorkloadSource, namespace: str, name: str, predicate: Predicate,
               timeout: float, label: Optional[str] = None) -> Optional[WorkloadState]:
    """Block until the pod satisfies predicate; raises WaitTimeoutError or ChannelClosedError."""
    with ObservationChannel(source, namespace, name, timeout) as channel:
        state = channel.wait_for(predicate, timeout, label)
    logger.info("%s/%s satisfied %s", namespace, name, label or predicate_name(predicate))
    return state


# ---------- Detached waits ----------
class PendingWait:
    """A wait running on its own thread; the result arrives on a single-use Future."""

    def __init__(self, channel: ObservationChannel, predicate: Predicate, timeout: float):
        self._channel = channel
        self._predicate = predicate
        self._timeout = timeout
        self._future: Future = Future()
        self._thread = threading.Thread(
            target=self._run, name=f"wait-{channel.identity}", daemon=True
        )

    def _run(self):
        try:
            state = self._channel.wait_for(self._predicate, self._timeout)
        except BaseException as e:
            self._future.set_exception(e)
        else:
            self._future.set_result(state)
        finally:
            self._channel.close()

    def start(self) -> "PendingWait":
        self._thread.start()
        return self

    def result(self, timeout: Optional[float] = None) -> Optional[WorkloadState]:
        return self._future.result(timeout)

    def done(self) -> bool:
        return self._future.done()

    def cancel(self):
        self._channel.close()
        self._thread.join(timeout=JOIN_TIMEOUT)


def start_wait(source: WorkloadSource, namespace: str, name: str, predicate: Predicate,
               timeout: float) -> PendingWait:
    """Open the channel now, in the caller, then drain it in the background."""
    channel = ObservationChannel(source, namespace, name, timeout)
    channel.open()
    pending = PendingWait(channel, predicate, timeout)
    pending.start()
    return pending


def delete_and_wait(source: WorkloadSource, delete: Callable[[], None], namespace: str, name: str,
                    timeout: float, predicate: Predicate = is_gone_or_marked_deleted) -> Optional[WorkloadState]:
    pending = start_wait(source, namespace, name, predicate, timeout)
    try:
        delete()
    except BaseException:
        pending.cancel()
        raise
    return pending.result()
