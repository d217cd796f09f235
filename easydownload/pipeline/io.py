"""HTTP Input/Output operations."""

import logging
import socket
import urllib.parse
from typing import BinaryIO, Optional, Tuple

from easydownload.bootstrap.config import HEADER_DELIMITER, MAX_HEADER_BYTES
from easydownload.domain.http_types import HttpRequest, HttpResponse
from easydownload.domain.request_id import bind_request_id, get_logger, get_request_id

IO_LOGGER = get_logger("io")


class SocketSink:
    """Response sink writing straight to a client socket.

    Every socket operation is bounded by ``write_timeout``.
    """

    def __init__(self, client_socket: socket.socket, write_timeout: Optional[float]):
        self._socket = client_socket
        self._write_timeout = write_timeout
        self.bytes_written = 0

    def write(self, data: bytes) -> int:
        self._socket.settimeout(self._write_timeout)
        self._socket.sendall(data)
        self.bytes_written += len(data)
        return len(data)

    def flush(self) -> None:
        """Writes are unbuffered; sendall already handed the bytes to the kernel."""

    def copy_from(self, stream: BinaryIO, count: int) -> int:
        """Send ``count`` bytes of ``stream`` using sendfile where the OS allows it."""
        if count == 0:
            return 0
        self._socket.settimeout(self._write_timeout)
        sent = self._socket.sendfile(stream, count=count)
        self.bytes_written += sent
        return sent


def parse_headers(lines: list[str]) -> dict[str, str]:
    """Convert raw header lines into a lowercase-keyed dictionary."""
    parsed = {}
    for line in lines:
        if ":" in line:
            name, value = line.split(":", 1)
            parsed[name.strip().lower()] = value.strip()
    return parsed


def parse_request_line(request_line: str) -> Tuple[str, str]:
    """Parse the HTTP method and decoded path from the request line."""
    try:
        method, target, version = request_line.split(" ", 2)
    except ValueError as exc:
        raise ValueError("Invalid request line") from exc
    if not version.startswith("HTTP/") or not target.startswith("/"):
        raise ValueError("Invalid request line")

    parsed_target = urllib.parse.urlsplit(target)
    return method.upper(), urllib.parse.unquote(parsed_target.path)


def _content_length(headers: dict[str, str]) -> int:
    header_value = headers.get("content-length")
    if header_value is None:
        return 0
    try:
        content_length = int(header_value)
    except ValueError as exc:
        raise ValueError("Invalid Content-Length") from exc
    if content_length < 0 or content_length > MAX_HEADER_BYTES:
        raise ValueError("Unacceptable Content-Length")
    return content_length


def receive_request(
    client_socket: socket.socket, buffer: bytes
) -> Tuple[Optional[HttpRequest], bytes]:
    """Read bytes from the socket until a complete request is available.

    Returns ``(None, b"")`` when the peer closed the connection first.
    Request bodies are read and discarded; no route accepts one.
    """
    while HEADER_DELIMITER not in buffer:
        if len(buffer) > MAX_HEADER_BYTES:
            raise ValueError("Header block too large")
        chunk = client_socket.recv(4096)
        if not chunk:
            return None, b""
        buffer += chunk

    header_block, remainder = buffer.split(HEADER_DELIMITER, 1)
    header_lines = header_block.decode("iso-8859-1").split("\r\n")
    method, path = parse_request_line(header_lines[0])
    headers = parse_headers(header_lines[1:])

    incoming_request_id = headers.get("x-request-id")
    if incoming_request_id:
        bind_request_id(incoming_request_id)

    content_length = _content_length(headers)
    while len(remainder) < content_length:
        chunk = client_socket.recv(4096)
        if not chunk:
            return None, b""
        remainder += chunk

    leftover = remainder[content_length:]
    if IO_LOGGER.logger.isEnabledFor(logging.DEBUG):
        IO_LOGGER.debug(
            "Parsed request",
            extra={"event": "request_parsed", "method": method, "path": path},
        )
    return HttpRequest(method, path, headers), leftover


def send_response(
    client_socket: socket.socket,
    response: HttpResponse,
    write_timeout: Optional[float] = None,
    include_body: bool = True,
) -> int:
    """Serialize and send the HTTP response; returns the body bytes written."""
    headers = dict(response.headers)

    request_id = get_request_id()
    if request_id:
        headers["X-Request-ID"] = request_id

    if response.streamer is None:
        headers.setdefault("Content-Length", str(len(response.body)))
    if response.close_connection:
        headers["Connection"] = "close"
    header_lines = [response.status_line]
    header_lines.extend(f"{name}: {value}" for name, value in headers.items())
    header_block = "\r\n".join(header_lines).encode("utf-8") + HEADER_DELIMITER

    sink = SocketSink(client_socket, write_timeout)
    client_socket.settimeout(write_timeout)
    if not include_body:
        client_socket.sendall(header_block)
    elif response.streamer is not None:
        client_socket.sendall(header_block)
        response.streamer(sink)
    else:
        client_socket.sendall(header_block + response.body)
        sink.bytes_written = len(response.body)

    if IO_LOGGER.logger.isEnabledFor(logging.DEBUG):
        IO_LOGGER.debug(
            "Sent response",
            extra={
                "event": "response_sent",
                "status_code": response.status_code,
                "bytes_sent": sink.bytes_written,
            },
        )
    return sink.bytes_written
