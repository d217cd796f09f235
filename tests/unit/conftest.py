"""Shared fixtures for unit tests."""

import io
import logging

import pytest

from easydownload.domain.errors import ResourceNotFound
from easydownload.storage.resource_store import Resource


@pytest.fixture(autouse=True)
def enable_log_propagation():
    """Ensure logs propagate to root so caplog can catch them."""
    logger = logging.getLogger("easydownload")
    old_propagate = logger.propagate
    old_level = logger.level
    logger.propagate = True
    yield
    for handler in list(logger.handlers):
        handler.close()
    logger.handlers.clear()
    logger.setLevel(old_level)
    logger.propagate = old_propagate


class MemoryStore:
    """In-memory resource store keyed by name."""

    def __init__(self, files: dict[str, bytes]) -> None:
        self.files = files
        self.opened: list[Resource] = []

    def open(self, name: str) -> Resource:
        if name not in self.files:
            raise ResourceNotFound(name, f"downloads/{name}")
        resource = Resource(name, len(self.files[name]), io.BytesIO(self.files[name]))
        self.opened.append(resource)
        return resource


class RecordingSink:
    """Sink that keeps every write separately and counts flushes."""

    def __init__(self) -> None:
        self.writes: list[bytes] = []
        self.flushes = 0

    def write(self, data: bytes) -> int:
        self.writes.append(bytes(data))
        return len(data)

    def flush(self) -> None:
        self.flushes += 1

    @property
    def data(self) -> bytes:
        return b"".join(self.writes)


@pytest.fixture(name="memory_store")
def memory_store_fixture() -> MemoryStore:
    return MemoryStore(
        {
            "a.bin": bytes(range(10)),
            "empty.bin": b"",
            "big.bin": bytes(i % 251 for i in range(100_000)),
        }
    )


@pytest.fixture(name="sink")
def sink_fixture() -> RecordingSink:
    return RecordingSink()


@pytest.fixture(name="sink_factory")
def sink_factory_fixture():
    return RecordingSink
