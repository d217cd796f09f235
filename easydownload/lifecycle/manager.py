"""Listener start-up, stop signal wait and bounded graceful shutdown."""

import signal
import socket
import threading
from typing import Callable, Optional

from easydownload.bootstrap.config import ServerConfig
from easydownload.bootstrap.socket_factory import ACCEPT_POLL_SECONDS, create_server_socket
from easydownload.domain.errors import BindFailure
from easydownload.domain.request_id import get_logger
from easydownload.lifecycle.state import InvalidTransition, LifecycleState, ServerLifecycle
from easydownload.pipeline.router import Dispatcher
from easydownload.transport.accept_loop import run_accept_loop
from easydownload.transport.context import WorkerContext

MANAGER_LOGGER = get_logger("lifecycle.manager")

FORCED_STOP_JOIN_SECONDS = 1.0

Hook = Callable[[], None]


def _noop() -> None:
    return None


class StopSource:
    """Something that can ask the server to stop: a signal or a caller."""

    def __init__(self) -> None:
        self._event = threading.Event()
        self._previous_handlers: dict[int, object] = {}
        self.reason: Optional[str] = None

    def request_stop(self, reason: str = "requested") -> None:
        if not self._event.is_set():
            self.reason = reason
        self._event.set()

    def is_set(self) -> bool:
        return self._event.is_set()

    def wait(self, timeout: Optional[float] = None) -> bool:
        return self._event.wait(timeout)

    def _on_signal(self, signum: int, _frame) -> None:
        name = signal.Signals(signum).name
        MANAGER_LOGGER.info(
            "Received shutdown signal", extra={"event": "signal_received", "signal": name}
        )
        self.request_stop(name)

    def install_signal_handlers(
        self, signums: tuple[int, ...] = (signal.SIGINT, signal.SIGTERM)
    ) -> None:
        """Route the given signals to ``request_stop``; main thread only."""
        for signum in signums:
            self._previous_handlers[signum] = signal.signal(signum, self._on_signal)

    def restore_signal_handlers(self) -> None:
        for signum, handler in self._previous_handlers.items():
            signal.signal(signum, handler)
        self._previous_handlers.clear()


class LifecycleManager:
    """Owns the listening socket and drives CREATED → RUNNING → SHUTTING_DOWN → STOPPED.

    ``on_abnormal_stop`` runs when binding fails or the accept loop dies;
    ``on_shutdown_complete`` runs exactly once, after ``shutdown`` finished.
    """

    def __init__(
        self,
        config: ServerConfig,
        dispatcher: Dispatcher,
        lifecycle: Optional[ServerLifecycle] = None,
        stop_source: Optional[StopSource] = None,
        on_abnormal_stop: Hook = _noop,
        on_shutdown_complete: Hook = _noop,
    ) -> None:
        # pylint: disable=too-many-arguments
        self.config = config
        self.lifecycle = lifecycle or ServerLifecycle()
        self.stop_source = stop_source or StopSource()
        self._on_abnormal_stop = on_abnormal_stop
        self._on_shutdown_complete = on_shutdown_complete
        self._context = WorkerContext(dispatcher, self.lifecycle, config)
        self._server_socket: Optional[socket.socket] = None
        self._accept_thread: Optional[threading.Thread] = None
        self._shutdown_lock = threading.Lock()
        self._shutdown_started = False
        self.abnormal_error: Optional[BaseException] = None

    @property
    def state(self) -> LifecycleState:
        return self.lifecycle.state

    @property
    def server_address(self) -> Optional[tuple[str, int]]:
        """Actual bound address; useful when listening on port 0."""
        if self._server_socket is None:
            return None
        host, port = self._server_socket.getsockname()[:2]
        return host, port

    def start(self) -> bool:
        """Bind and start accepting on a background thread.

        Returns False when binding failed; the abnormal-stop hook has run then.
        """
        if self.lifecycle.state != LifecycleState.CREATED:
            raise InvalidTransition("server already started")
        try:
            self._server_socket = create_server_socket(self.config)
        except BindFailure as error:
            self._abnormal_stop(error)
            return False

        self.lifecycle.advance(LifecycleState.RUNNING)
        host, port = self.server_address
        MANAGER_LOGGER.info(
            "Running on %s:%s",
            host,
            port,
            extra={"event": "server_listening", "host": host, "port": port},
        )
        self._accept_thread = threading.Thread(
            target=self._accept_main, name="accept-loop", daemon=True
        )
        self._accept_thread.start()
        return True

    def _accept_main(self) -> None:
        try:
            run_accept_loop(self._server_socket, self._context)
        except Exception as error:  # pylint: disable=broad-except
            self._abnormal_stop(error)

    def _abnormal_stop(self, error: BaseException) -> None:
        self.abnormal_error = error
        MANAGER_LOGGER.error(
            "Server is shutting down",
            extra={
                "event": "abnormal_stop",
                "error_type": type(error).__name__,
                "error": str(error),
            },
        )
        self._on_abnormal_stop()
        if self.lifecycle.state < LifecycleState.SHUTTING_DOWN:
            self.lifecycle.advance(LifecycleState.SHUTTING_DOWN)
        self.stop_source.request_stop("abnormal_stop")

    def await_stop(self, timeout: Optional[float] = None) -> bool:
        """Block until a stop is requested; False only when ``timeout`` ran out."""
        return self.stop_source.wait(timeout)

    def _close_listener(self) -> None:
        if self._accept_thread is not None:
            self._accept_thread.join(timeout=ACCEPT_POLL_SECONDS * 2)
        if self._server_socket is not None:
            self._server_socket.close()

    def shutdown(self, grace_seconds: Optional[float] = None) -> bool:
        """Stop accepting, drain within the grace period, then force-close.

        Returns True when every in-flight connection finished on its own.
        Only the first call does anything.
        """
        with self._shutdown_lock:
            if self._shutdown_started:
                return True
            self._shutdown_started = True

        grace = self.config.shutdown_grace_seconds if grace_seconds is None else grace_seconds
        clean = True
        try:
            self.lifecycle.advance(LifecycleState.SHUTTING_DOWN)
            self._close_listener()
            self.lifecycle.close_idle_workers()
            MANAGER_LOGGER.info(
                "Waiting for active connections to complete",
                extra={
                    "event": "shutdown_waiting",
                    "grace_seconds": grace,
                    "remaining_workers": self.lifecycle.active_worker_count(),
                },
            )
            clean = self.lifecycle.wait_for_workers(grace)
            if not clean:
                self.lifecycle.terminate_workers()
                self.lifecycle.wait_for_workers(FORCED_STOP_JOIN_SECONDS)
            self.lifecycle.advance(LifecycleState.STOPPED)
            MANAGER_LOGGER.info(
                "Server shutdown complete",
                extra={"event": "server_stopped", "state": LifecycleState.STOPPED.name},
            )
        finally:
            self._on_shutdown_complete()
        return clean

    def run(self, grace_seconds: Optional[float] = None) -> bool:
        """start, await_stop and shutdown in one call; True on a normal stop."""
        self.start()
        self.await_stop()
        self.shutdown(grace_seconds)
        return self.abnormal_error is None
