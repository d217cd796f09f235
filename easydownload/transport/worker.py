"""Worker thread logic for handling individual client connections."""

import logging
import socket
import threading
import time
from dataclasses import dataclass
from typing import Optional

from easydownload.domain.http_types import HttpRequest, HttpResponse
from easydownload.domain.request_id import (
    bind_request_id,
    get_logger,
    new_request_id,
    unbind_request_id,
)
from easydownload.domain.response_builders import (
    bad_request_response,
    draining_response,
)
from easydownload.pipeline.io import receive_request, send_response
from easydownload.transport.context import WorkerContext

WORKER_LOGGER = get_logger("transport.worker")


@dataclass
class _Connection:
    client_socket: socket.socket
    client: str
    buffer: bytes = b""
    served: int = 0


def _read_request(
    connection: _Connection, context: WorkerContext
) -> tuple[Optional[HttpRequest], bool]:
    """Read the next request; the bool asks the caller to close the connection.

    The first request on a connection gets ``read_timeout``; later ones wait
    at most ``idle_timeout`` for the client to start talking.
    """
    timeout = context.config.read_timeout
    if connection.served and not connection.buffer:
        timeout = context.config.idle_timeout
    connection.client_socket.settimeout(timeout)
    try:
        request, connection.buffer = receive_request(
            connection.client_socket, connection.buffer
        )
    except (ValueError, UnicodeDecodeError):
        WORKER_LOGGER.warning(
            "Malformed request received",
            extra={"event": "malformed_request", "client": connection.client},
        )
        send_response(
            connection.client_socket,
            bad_request_response(),
            context.config.write_timeout,
        )
        return None, True
    except socket.timeout:
        if WORKER_LOGGER.logger.isEnabledFor(logging.DEBUG):
            WORKER_LOGGER.debug(
                "Connection idle timeout",
                extra={"event": "idle_timeout", "client": connection.client},
            )
        return None, True

    if request is None:
        if WORKER_LOGGER.logger.isEnabledFor(logging.DEBUG):
            WORKER_LOGGER.debug(
                "Client disconnected",
                extra={"event": "client_disconnected", "client": connection.client},
            )
        return None, True
    return request, False


def _declared_length(response: HttpResponse) -> Optional[int]:
    value = response.headers.get("Content-Length")
    return int(value) if value is not None else None


def _serve_request(
    request: HttpRequest, connection: _Connection, context: WorkerContext
) -> bool:
    """Dispatch and answer one request; returns True when the connection must close."""
    started = time.monotonic()
    response = context.dispatcher.dispatch(request)
    if context.lifecycle.is_draining():
        response.close_connection = True
    written = send_response(
        connection.client_socket,
        response,
        context.config.write_timeout,
        include_body=request.method != "HEAD",
    )
    connection.served += 1

    truncated = False
    declared = _declared_length(response)
    if request.method != "HEAD" and declared is not None and written < declared:
        truncated = True
        WORKER_LOGGER.warning(
            "Response body truncated",
            extra={
                "event": "response_truncated",
                "client": connection.client,
                "route": request.path,
                "bytes_sent": written,
                "total_bytes": declared,
            },
        )
    WORKER_LOGGER.info(
        "Request complete",
        extra={
            "event": "request_complete",
            "client": connection.client,
            "method": request.method,
            "route": request.path,
            "status_code": response.status_code,
            "bytes_sent": written,
            "duration_ms": round((time.monotonic() - started) * 1000, 1),
        },
    )
    return response.close_connection or truncated


def handle_client(
    client_socket: socket.socket,
    client_address: tuple[str, int],
    context: WorkerContext,
) -> None:
    """Process requests on a client socket until the connection is closed.

    The caller registers the worker with the lifecycle before starting it.
    """
    lifecycle = context.lifecycle
    current_thread = threading.current_thread()
    connection = _Connection(client_socket, f"{client_address[0]}:{client_address[1]}")

    try:
        while True:
            bind_request_id(new_request_id())
            if connection.served and lifecycle.is_draining():
                break

            idle = connection.served > 0 and not connection.buffer
            if idle and not lifecycle.mark_idle(current_thread):
                break
            request, should_close = _read_request(connection, context)
            if idle:
                lifecycle.mark_busy(current_thread)
            if should_close or request is None:
                break

            if _serve_request(request, connection, context):
                break
            unbind_request_id()
    except (ConnectionError, TimeoutError, OSError) as error:
        WORKER_LOGGER.error(
            "Error handling client connection",
            extra={
                "event": "connection_error",
                "client": connection.client,
                "error_type": type(error).__name__,
            },
        )
    except Exception as error:  # pylint: disable=broad-except
        WORKER_LOGGER.error(
            "Unexpected error in worker",
            extra={
                "event": "worker_error",
                "client": connection.client,
                "error_type": type(error).__name__,
                "error": str(error),
            },
            exc_info=True,
        )
    finally:
        lifecycle.cleanup_worker(current_thread)
        try:
            client_socket.shutdown(socket.SHUT_WR)
        except OSError:
            pass
        client_socket.close()
        unbind_request_id()


def reject_draining(client_socket: socket.socket, write_timeout: float) -> None:
    """Answer a connection accepted during shutdown with 503 and close it."""
    try:
        send_response(client_socket, draining_response(), write_timeout)
    except OSError:
        pass
    finally:
        client_socket.close()
