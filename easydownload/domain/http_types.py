"""Shared HTTP type definitions to avoid circular imports."""

from dataclasses import dataclass, field
from typing import Callable, Optional, Protocol


class ResponseSink(Protocol):
    """Destination for a streamed response body."""

    def write(self, data: bytes) -> int:
        ...


@dataclass
class HttpRequest:
    """Represents a parsed HTTP request."""

    method: str
    path: str
    headers: dict[str, str]
    path_params: dict[str, str] = field(default_factory=dict)


@dataclass
class HttpResponse:
    """Represents an HTTP response to be sent to a client.

    When ``streamer`` is set the body is produced by calling it with a sink
    after the header block went out; ``Content-Length`` must then already be
    present in ``headers``.
    """

    status_line: str
    headers: dict[str, str]
    body: bytes
    close_connection: bool
    streamer: Optional[Callable[[ResponseSink], None]] = None

    @property
    def status_code(self) -> int:
        return int(self.status_line.split(" ", 2)[1])


def should_close(headers: dict[str, str]) -> bool:
    """Determine whether the connection should be closed after responding."""
    return headers.get("connection", "").lower() == "close"
