"""Unit tests for the transfer engine in both modes."""

import io
import logging
import math
import threading
import time

import pytest

from easydownload.bootstrap.config import ThrottleSettings
from easydownload.domain.errors import ResourceNotFound
from easydownload.storage.resource_store import Resource
from easydownload.transfer.engine import (
    TransferEngine,
    TransferMode,
    TransferProgress,
    TransferSession,
    download_headers,
)


class FlakyStream(io.BytesIO):
    """Raises on the read after ``fail_after`` successful reads."""

    def __init__(self, payload: bytes, fail_after: int) -> None:
        super().__init__(payload)
        self.reads = 0
        self.fail_after = fail_after

    def read(self, size=-1):
        self.reads += 1
        if self.reads > self.fail_after:
            raise OSError("disk went away")
        return super().read(size)


def _engine(store, chunk_size=4, interval=0.0, **kwargs):
    return TransferEngine(store, ThrottleSettings(chunk_size, interval), **kwargs)


def test_download_headers_describe_attachment():
    """Headers name the file, force a download and declare the exact size."""
    assert download_headers("a.bin", 10) == {
        "Content-Disposition": 'attachment; filename="a.bin"',
        "Content-Type": "application/octet-stream",
        "Content-Length": "10",
    }


def test_resolve_unknown_name_raises_not_found(memory_store):
    """Unknown names fail before any byte could be written."""
    engine = _engine(memory_store)
    with pytest.raises(ResourceNotFound) as excinfo:
        engine.resolve("missing.bin")
    assert excinfo.value.path == "downloads/missing.bin"


def test_throttled_ten_bytes_in_chunks_of_four(memory_store, sink):
    """10 bytes with chunk size 4 are written as 4, 4 and 2."""
    progress: list[TransferProgress] = []
    engine = _engine(memory_store, on_progress=progress.append)

    resource = engine.resolve("a.bin")
    sent = engine.serve(resource, TransferMode.THROTTLED, sink)

    assert [len(chunk) for chunk in sink.writes] == [4, 4, 2]
    assert sink.data == bytes(range(10))
    assert sink.flushes == 3
    assert sent == 10
    assert [p.bytes_sent for p in progress] == [4, 8, 10]
    assert [round(p.percent) for p in progress] == [40, 80, 100]
    assert resource.stream.closed


def test_throttled_empty_resource_writes_nothing(memory_store, sink):
    """A zero-length file completes immediately without writes."""
    progress: list[TransferProgress] = []
    engine = _engine(memory_store, interval=5.0, on_progress=progress.append)

    started = time.monotonic()
    sent = engine.serve(engine.resolve("empty.bin"), TransferMode.THROTTLED, sink)

    assert time.monotonic() - started < 1.0
    assert sent == 0
    assert sink.writes == []
    assert progress == []


def test_chunk_size_larger_than_resource_gives_one_chunk(memory_store, sink):
    engine = _engine(memory_store, chunk_size=64)
    engine.serve(engine.resolve("a.bin"), TransferMode.THROTTLED, sink)
    assert sink.writes == [bytes(range(10))]


@pytest.mark.parametrize("chunk_size", [1, 7, 4096, 99_999, 100_000])
def test_chunk_count_and_final_chunk_size(memory_store, sink, chunk_size):
    """ceil(S/C) chunks that add up to S with a short final chunk."""
    size = len(memory_store.files["big.bin"])
    engine = _engine(memory_store, chunk_size=chunk_size, on_progress=None)

    engine.serve(engine.resolve("big.bin"), TransferMode.THROTTLED, sink)

    chunks = math.ceil(size / chunk_size)
    assert len(sink.writes) == chunks
    assert sum(len(chunk) for chunk in sink.writes) == size
    assert len(sink.writes[-1]) == size - chunk_size * (chunks - 1)
    assert sink.data == memory_store.files["big.bin"]


def test_throttled_elapsed_time_tracks_interval(memory_store, sink):
    """Three chunks pause twice: roughly 2 * interval overall."""
    engine = _engine(memory_store, chunk_size=4, interval=0.1)

    started = time.monotonic()
    engine.serve(engine.resolve("a.bin"), TransferMode.THROTTLED, sink)
    elapsed = time.monotonic() - started

    assert 0.18 <= elapsed < 0.6


def test_full_mode_copies_byte_exact(memory_store, sink):
    engine = _engine(memory_store)
    resource = engine.resolve("big.bin")

    sent = engine.serve(resource, TransferMode.FULL, sink)

    assert sink.data == memory_store.files["big.bin"]
    assert sent == resource.size == len(sink.data)
    assert resource.stream.closed


def test_full_mode_prefers_sink_copy_from(memory_store):
    """Sinks that can copy a whole stream (sendfile) get the stream directly."""

    class CopySink:
        def __init__(self):
            self.copied = None

        def write(self, data):
            raise AssertionError("write should not be used")

        def copy_from(self, stream, count):
            self.copied = stream.read(count)
            return len(self.copied)

    engine = _engine(memory_store)
    copy_sink = CopySink()
    sent = engine.serve(engine.resolve("a.bin"), TransferMode.FULL, copy_sink)
    assert copy_sink.copied == bytes(range(10))
    assert sent == 10


def test_full_mode_copy_failure_is_logged(memory_store, caplog):
    class BrokenSink:
        def write(self, data):
            raise BrokenPipeError("client gone")

    caplog.set_level(logging.ERROR)
    engine = _engine(memory_store)
    resource = engine.resolve("a.bin")

    sent = engine.serve(resource, TransferMode.FULL, BrokenSink())

    assert sent == 0
    assert resource.stream.closed
    assert any(getattr(r, "event", None) == "transfer_aborted" for r in caplog.records)


def test_full_mode_copy_failure_reports_partial_bytes(memory_store, caplog):
    """A copy cut off midway reports what actually reached the client."""

    class HalfSink:
        def __init__(self):
            self.bytes_written = 0

        def write(self, data):
            raise AssertionError("write should not be used")

        def copy_from(self, stream, count):
            self.bytes_written = 6
            raise BrokenPipeError("client gone")

    caplog.set_level(logging.ERROR)
    engine = _engine(memory_store)

    sent = engine.serve(engine.resolve("a.bin"), TransferMode.FULL, HalfSink())

    assert sent == 6
    aborted = next(
        r for r in caplog.records if getattr(r, "event", None) == "transfer_aborted"
    )
    assert aborted.bytes_sent == 6


def test_mid_stream_read_error_truncates_body(sink, caplog):
    """A read failure after the first chunk ends the body early and is logged."""
    caplog.set_level(logging.ERROR)
    payload = bytes(range(10))
    stream = FlakyStream(payload, fail_after=1)

    class SingleStore:
        def open(self, name):
            return Resource(name, len(payload), stream)

    engine = _engine(SingleStore())
    sent = engine.serve(engine.resolve("a.bin"), TransferMode.THROTTLED, sink)

    assert sent == 4
    assert sink.writes == [payload[:4]]
    assert stream.closed
    record = next(r for r in caplog.records if getattr(r, "event", None) == "transfer_aborted")
    assert record.bytes_sent == 4
    assert record.error_type == "OSError"


def test_client_write_failure_stops_throttled_loop(memory_store):
    class ClosingSink:
        def __init__(self):
            self.calls = 0

        def write(self, data):
            self.calls += 1
            if self.calls == 2:
                raise ConnectionResetError("peer reset")
            return len(data)

    engine = _engine(memory_store)
    broken = ClosingSink()
    sent = engine.serve(engine.resolve("a.bin"), TransferMode.THROTTLED, broken)
    assert sent == 4
    assert broken.calls == 2


def test_cancel_event_cuts_throttled_transfer_short(memory_store, sink, caplog):
    """Setting the cancellation event interrupts the wait between chunks."""
    caplog.set_level(logging.WARNING)
    cancel = threading.Event()
    engine = _engine(memory_store, chunk_size=1000, interval=10.0, cancel_event=cancel)
    timer = threading.Timer(0.1, cancel.set)
    timer.start()

    started = time.monotonic()
    sent = engine.serve(engine.resolve("big.bin"), TransferMode.THROTTLED, sink)
    timer.join()

    assert time.monotonic() - started < 5.0
    assert sent == 1000
    assert len(sink.writes) == 1
    assert any(getattr(r, "event", None) == "transfer_cancelled" for r in caplog.records)


def test_concurrent_transfers_do_not_share_counts(memory_store, sink_factory):
    """Parallel transfers of different files keep their own bytes and counts."""
    engine = _engine(memory_store, chunk_size=997, interval=0.001, on_progress=None)
    names = ["big.bin", "a.bin", "big.bin", "empty.bin"]
    sinks = [sink_factory() for _ in names]
    results: dict[int, int] = {}

    def run(index: int) -> None:
        resource = engine.resolve(names[index])
        results[index] = engine.serve(resource, TransferMode.THROTTLED, sinks[index])

    threads = [threading.Thread(target=run, args=(i,)) for i in range(len(names))]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join(timeout=10)

    for index, name in enumerate(names):
        assert sinks[index].data == memory_store.files[name]
        assert results[index] == len(memory_store.files[name])


def test_session_rejects_overrun():
    """bytes_sent can never pass total_size."""
    session = TransferSession("a.bin", 10, ThrottleSettings(4, 0))
    session.record(4)
    session.record(4)
    with pytest.raises(ValueError):
        session.record(4)
    assert session.bytes_sent == 8
    assert session.expected_chunks == 3
    assert not session.complete


def test_progress_percent_for_empty_total():
    assert TransferProgress("empty.bin", 0, 0).percent == 100.0
