"""Main connection acceptance loop."""

import logging
import socket
import threading

from easydownload.domain.request_id import get_logger
from easydownload.transport.context import WorkerContext
from easydownload.transport.worker import handle_client, reject_draining

ACCEPT_LOGGER = get_logger("transport.accept")


def _spawn_worker(
    client_socket: socket.socket,
    client_address: tuple[str, int],
    context: WorkerContext,
) -> threading.Thread:
    if ACCEPT_LOGGER.logger.isEnabledFor(logging.DEBUG):
        ACCEPT_LOGGER.debug(
            "Client connection accepted",
            extra={
                "event": "client_accepted",
                "client": f"{client_address[0]}:{client_address[1]}",
            },
        )
    thread = threading.Thread(
        target=handle_client,
        args=(client_socket, client_address, context),
        name=f"worker-{client_address[0]}:{client_address[1]}",
        daemon=True,
    )
    context.lifecycle.register_worker(thread, client_socket)
    try:
        thread.start()
    except RuntimeError:
        context.lifecycle.cleanup_worker(thread)
        client_socket.close()
        raise
    return thread


def run_accept_loop(server_socket: socket.socket, context: WorkerContext) -> None:
    """Accept connections until the lifecycle asks to stop.

    Each connection gets its own thread. Errors other than an aborted
    handshake propagate to the caller, which treats them as an abnormal stop.
    """
    lifecycle = context.lifecycle
    while not lifecycle.should_stop():
        try:
            client_socket, client_address = server_socket.accept()
        except socket.timeout:
            continue
        except ConnectionAbortedError:
            continue
        except OSError as error:
            if lifecycle.should_stop():
                break
            ACCEPT_LOGGER.error(
                "Socket accept failed",
                extra={
                    "event": "accept_error",
                    "error_type": type(error).__name__,
                    "error": str(error),
                },
            )
            raise

        if lifecycle.should_stop():
            reject_draining(client_socket, context.config.write_timeout)
            break

        _spawn_worker(client_socket, client_address, context)
    ACCEPT_LOGGER.info("Accept loop stopped", extra={"event": "accept_loop_stopped"})
