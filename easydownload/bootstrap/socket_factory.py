"""Listening socket creation."""

import socket

from easydownload.bootstrap.config import ServerConfig
from easydownload.domain.errors import BindFailure
from easydownload.domain.request_id import get_logger

SOCKET_LOGGER = get_logger("socket")

ACCEPT_POLL_SECONDS = 0.5


def create_server_socket(config: ServerConfig) -> socket.socket:
    """Bind and listen on the configured address, raising BindFailure on error."""
    try:
        server_socket = socket.create_server((config.host, config.port))
    except (OSError, OverflowError) as error:
        SOCKET_LOGGER.critical(
            "Failed to bind listening socket",
            extra={
                "event": "bind_failed",
                "host": config.host,
                "port": config.port,
                "error_type": type(error).__name__,
                "error": str(error),
            },
        )
        raise BindFailure(config.host, config.port, error) from error
    server_socket.settimeout(ACCEPT_POLL_SECONDS)
    return server_socket
