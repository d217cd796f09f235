"""Streams resolved resources to a response sink, at full speed or throttled."""

import enum
import logging
import math
import shutil
import threading
import time
from dataclasses import dataclass
from typing import Callable, Optional

from easydownload.bootstrap.config import ThrottleSettings
from easydownload.domain.errors import MidStreamReadError
from easydownload.domain.http_types import ResponseSink
from easydownload.domain.request_id import get_logger
from easydownload.storage.resource_store import Resource, ResourceStore

TRANSFER_LOGGER = get_logger("transfer")

COPY_BUFFER_SIZE = 1024 * 1024


class TransferMode(enum.Enum):
    FULL = "full"
    THROTTLED = "throttled"


@dataclass(frozen=True)
class TransferRequest:
    """A download route asking for ``filename`` in a given mode."""

    filename: str
    mode: TransferMode


@dataclass(frozen=True)
class TransferProgress:
    """Snapshot emitted after every throttled chunk."""

    filename: str
    bytes_sent: int
    total_size: int

    @property
    def percent(self) -> float:
        if self.total_size == 0:
            return 100.0
        return self.bytes_sent / self.total_size * 100


ProgressCallback = Callable[[TransferProgress], None]


class TransferSession:
    """Byte accounting for one throttled transfer.

    ``bytes_sent`` never decreases and never exceeds ``total_size``.
    """

    def __init__(self, filename: str, total_size: int, settings: ThrottleSettings):
        self.filename = filename
        self.total_size = total_size
        self.chunk_size = settings.chunk_size
        self.interval = settings.interval
        self.bytes_sent = 0

    @property
    def complete(self) -> bool:
        return self.bytes_sent == self.total_size

    @property
    def expected_chunks(self) -> int:
        return math.ceil(self.total_size / self.chunk_size)

    def record(self, count: int) -> TransferProgress:
        if count < 0 or self.bytes_sent + count > self.total_size:
            raise ValueError(
                f"chunk of {count} bytes overruns {self.filename} "
                f"({self.bytes_sent}/{self.total_size})"
            )
        self.bytes_sent += count
        return TransferProgress(self.filename, self.bytes_sent, self.total_size)


def download_headers(filename: str, size: int) -> dict[str, str]:
    """Headers sent ahead of every download body."""
    return {
        "Content-Disposition": f'attachment; filename="{filename}"',
        "Content-Type": "application/octet-stream",
        "Content-Length": str(size),
    }


def log_progress(progress: TransferProgress) -> None:
    TRANSFER_LOGGER.info(
        "Downloaded total: %d bytes (%.1f%%)",
        progress.bytes_sent,
        progress.percent,
        extra={
            "event": "transfer_progress",
            "resource": progress.filename,
            "bytes_sent": progress.bytes_sent,
            "total_bytes": progress.total_size,
            "percent": round(progress.percent, 1),
        },
    )


def _flush(sink: ResponseSink) -> None:
    flush = getattr(sink, "flush", None)
    if callable(flush):
        flush()


class TransferEngine:
    """Resolves names against a store and streams the bytes to a sink."""

    def __init__(
        self,
        store: ResourceStore,
        throttle: Optional[ThrottleSettings] = None,
        cancel_event: Optional[threading.Event] = None,
        on_progress: Optional[ProgressCallback] = log_progress,
    ) -> None:
        self.store = store
        self.throttle = throttle or ThrottleSettings()
        self.cancel_event = cancel_event or threading.Event()
        self.on_progress = on_progress

    def resolve(self, name: str) -> Resource:
        """Open ``name``; raises ResourceNotFound or StatFailure before any I/O."""
        return self.store.open(name)

    def stream_for(self, transfer: TransferRequest, resource: Resource):
        """Return a body streamer serving ``resource`` in the requested mode."""

        def stream_body(sink: ResponseSink) -> None:
            self.serve(resource, transfer.mode, sink)

        return stream_body

    def serve(self, resource: Resource, mode: TransferMode, sink: ResponseSink) -> int:
        """Stream ``resource`` to ``sink`` and close it; returns bytes written."""
        started = time.monotonic()
        try:
            if mode is TransferMode.FULL:
                sent = self._serve_full(resource, sink)
            else:
                sent = self._serve_throttled(resource, sink)
        finally:
            resource.close()
        TRANSFER_LOGGER.info(
            "Transfer finished",
            extra={
                "event": "transfer_finished",
                "resource": resource.name,
                "mode": mode.value,
                "bytes_sent": sent,
                "total_bytes": resource.size,
                "duration_ms": round((time.monotonic() - started) * 1000, 1),
            },
        )
        return sent

    def _serve_full(self, resource: Resource, sink: ResponseSink) -> int:
        try:
            copy_from = getattr(sink, "copy_from", None)
            if callable(copy_from):
                return copy_from(resource.stream, resource.size)
            start = resource.stream.tell()
            shutil.copyfileobj(resource.stream, sink, COPY_BUFFER_SIZE)
            return resource.stream.tell() - start
        except OSError as error:
            sent = getattr(sink, "bytes_written", 0)
            TRANSFER_LOGGER.error(
                "Full-speed copy aborted",
                extra={
                    "event": "transfer_aborted",
                    "resource": resource.name,
                    "mode": TransferMode.FULL.value,
                    "bytes_sent": sent,
                    "error_type": type(error).__name__,
                    "error": str(error),
                },
            )
            return sent

    def _read_chunk(self, resource: Resource, session: TransferSession) -> bytes:
        try:
            return resource.stream.read(session.chunk_size)
        except (OSError, ValueError) as error:
            raise MidStreamReadError(resource.name, session.bytes_sent, error) from error

    def _serve_throttled(self, resource: Resource, sink: ResponseSink) -> int:
        session = TransferSession(resource.name, resource.size, self.throttle)
        if TRANSFER_LOGGER.logger.isEnabledFor(logging.DEBUG):
            TRANSFER_LOGGER.debug(
                "Throttled transfer started",
                extra={
                    "event": "throttled_started",
                    "resource": resource.name,
                    "total_bytes": resource.size,
                    "chunk_size": session.chunk_size,
                    "interval": session.interval,
                    "chunks": session.expected_chunks,
                },
            )
        while True:
            try:
                chunk = self._read_chunk(resource, session)
            except MidStreamReadError as error:
                TRANSFER_LOGGER.error(
                    "Error reading file",
                    extra={
                        "event": "transfer_aborted",
                        "resource": resource.name,
                        "bytes_sent": error.bytes_sent,
                        "error_type": type(error.cause).__name__,
                        "error": str(error.cause),
                    },
                )
                break
            if not chunk:
                break
            remaining = session.total_size - session.bytes_sent
            chunk = chunk[:remaining]
            try:
                sink.write(chunk)
                _flush(sink)
            except OSError as error:
                TRANSFER_LOGGER.warning(
                    "Client write failed",
                    extra={
                        "event": "transfer_aborted",
                        "resource": resource.name,
                        "bytes_sent": session.bytes_sent,
                        "error_type": type(error).__name__,
                    },
                )
                break
            progress = session.record(len(chunk))
            if self.on_progress is not None:
                self.on_progress(progress)
            if session.complete:
                break
            if self.cancel_event.wait(session.interval):
                TRANSFER_LOGGER.warning(
                    "Throttled transfer cancelled",
                    extra={
                        "event": "transfer_cancelled",
                        "resource": resource.name,
                        "bytes_sent": session.bytes_sent,
                        "total_bytes": session.total_size,
                    },
                )
                break
        return session.bytes_sent
