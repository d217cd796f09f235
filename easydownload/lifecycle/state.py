"""Server lifecycle state management."""

import enum
import socket
import threading
import time
from dataclasses import dataclass
from typing import Callable, Optional

from easydownload.domain.request_id import get_logger

LIFECYCLE_LOGGER = get_logger("lifecycle")


class LifecycleState(enum.IntEnum):
    CREATED = 0
    RUNNING = 1
    SHUTTING_DOWN = 2
    STOPPED = 3


@dataclass(frozen=True)
class LifecycleEvent:
    previous: LifecycleState
    current: LifecycleState
    timestamp: float


class InvalidTransition(RuntimeError):
    """Raised when a transition would move the lifecycle backwards."""


Observer = Callable[[LifecycleEvent], None]


class ServerLifecycle:
    """Lifecycle state plus the set of live connection workers.

    The state only ever moves forward. ``cancel_event`` is set when in-flight
    work must stop at the shutdown deadline.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._state = LifecycleState.CREATED
        self._history: list[LifecycleEvent] = []
        self._observers: list[Observer] = []
        self._workers: dict[threading.Thread, Optional[socket.socket]] = {}
        self._idle: set[threading.Thread] = set()
        self._stopping = threading.Event()
        self.cancel_event = threading.Event()

    @property
    def state(self) -> LifecycleState:
        with self._lock:
            return self._state

    @property
    def history(self) -> list[LifecycleEvent]:
        with self._lock:
            return list(self._history)

    def subscribe(self, observer: Observer) -> None:
        """Call ``observer`` for every later transition."""
        with self._lock:
            self._observers.append(observer)

    def advance(self, target: LifecycleState) -> bool:
        """Move to ``target``; returns False when already there.

        Raises InvalidTransition for any backwards move.
        """
        with self._lock:
            if target == self._state:
                return False
            if target < self._state:
                raise InvalidTransition(
                    f"cannot move from {self._state.name} to {target.name}"
                )
            event = LifecycleEvent(self._state, target, time.time())
            self._state = target
            self._history.append(event)
            observers = list(self._observers)
            if target >= LifecycleState.SHUTTING_DOWN:
                self._stopping.set()
        LIFECYCLE_LOGGER.info(
            "Lifecycle state changed",
            extra={
                "event": "lifecycle_transition",
                "previous_state": event.previous.name,
                "state": event.current.name,
            },
        )
        for observer in observers:
            observer(event)
        return True

    def should_stop(self) -> bool:
        """Check if the server should stop accepting new connections."""
        return self._stopping.is_set()

    def is_draining(self) -> bool:
        return self.state == LifecycleState.SHUTTING_DOWN

    def register_worker(
        self, thread: threading.Thread, client_socket: Optional[socket.socket] = None
    ) -> None:
        """Register a worker thread and the connection it owns."""
        with self._lock:
            self._workers[thread] = client_socket

    def cleanup_worker(self, thread: threading.Thread) -> None:
        """Remove a worker thread from tracking."""
        with self._lock:
            self._workers.pop(thread, None)
            self._idle.discard(thread)

    def active_worker_count(self) -> int:
        with self._lock:
            return len(self._workers)

    def mark_idle(self, thread: threading.Thread) -> bool:
        """Flag a worker as waiting between requests.

        Returns False once shutdown has begun; the worker should close its
        connection instead of waiting.
        """
        with self._lock:
            if self._stopping.is_set():
                return False
            self._idle.add(thread)
            return True

    def mark_busy(self, thread: threading.Thread) -> None:
        with self._lock:
            self._idle.discard(thread)

    def close_idle_workers(self) -> int:
        """Shut down connections parked between requests so their workers exit."""
        with self._lock:
            connections = [
                self._workers[worker]
                for worker in self._idle
                if self._workers.get(worker) is not None
            ]
            self._idle.clear()
        for connection in connections:
            try:
                connection.shutdown(socket.SHUT_RDWR)
            except OSError:
                pass
        if connections:
            LIFECYCLE_LOGGER.info(
                "Closed idle keep-alive connections",
                extra={
                    "event": "idle_connections_closed",
                    "remaining_workers": len(connections),
                },
            )
        return len(connections)

    def _live_workers(self) -> list[threading.Thread]:
        with self._lock:
            # A worker is registered before its thread starts.
            self._workers = {
                worker: conn
                for worker, conn in self._workers.items()
                if worker.ident is None or worker.is_alive()
            }
            return list(self._workers)

    def wait_for_workers(self, timeout: float) -> bool:
        """Wait for all worker threads to complete within the timeout."""
        deadline = time.monotonic() + timeout
        while True:
            active_workers = self._live_workers()
            if not active_workers:
                return True
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                LIFECYCLE_LOGGER.warning(
                    "Shutdown timeout exceeded",
                    extra={
                        "event": "shutdown_deadline_exceeded",
                        "remaining_workers": len(active_workers),
                    },
                )
                return False
            for worker in active_workers:
                if worker.ident is None:
                    time.sleep(min(0.01, remaining))
                    continue
                worker.join(timeout=min(0.1, remaining))
                if time.monotonic() >= deadline:
                    break

    def terminate_workers(self) -> int:
        """Cancel in-flight transfers and close every tracked client socket."""
        self.cancel_event.set()
        with self._lock:
            connections = [conn for conn in self._workers.values() if conn is not None]
        for connection in connections:
            try:
                connection.shutdown(socket.SHUT_RDWR)
            except OSError:
                pass
            connection.close()
        if connections:
            LIFECYCLE_LOGGER.warning(
                "Forcibly closed connections",
                extra={
                    "event": "connections_terminated",
                    "remaining_workers": len(connections),
                },
            )
        return len(connections)
