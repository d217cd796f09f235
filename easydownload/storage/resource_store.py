"""Read-only lookup from logical file names to byte streams."""

import logging
import os
from dataclasses import dataclass
from importlib import resources
from typing import BinaryIO, Protocol

from easydownload.domain.errors import ResourceNotFound, StatFailure
from easydownload.domain.request_id import get_logger
from easydownload.domain.sandbox import ForbiddenPath, resolve_sandbox_path

STORE_LOGGER = get_logger("storage")

BUNDLE_PACKAGE = "easydownload.assets"
BUNDLE_DIRECTORY = "downloads"


@dataclass
class Resource:
    """An opened resource; the holder must close it."""

    name: str
    size: int
    stream: BinaryIO

    def close(self) -> None:
        self.stream.close()

    def __enter__(self) -> "Resource":
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()


class ResourceStore(Protocol):
    """Anything that can open a named resource."""

    def open(self, name: str) -> Resource:
        ...


_UNSAFE_NAME_CHARS = (
    frozenset('/\\"') | frozenset(chr(code) for code in range(32)) | {"\x7f"}
)


def _is_plain_name(name: str) -> bool:
    """A single path segment that can also be quoted in Content-Disposition."""
    if not name or name in {".", ".."}:
        return False
    return not any(char in _UNSAFE_NAME_CHARS for char in name)


def _stream_size(name: str, stream: BinaryIO) -> int:
    try:
        try:
            return os.fstat(stream.fileno()).st_size
        except (AttributeError, OSError, ValueError):
            current = stream.tell()
            end = stream.seek(0, os.SEEK_END)
            stream.seek(current)
            return end
    except (OSError, ValueError) as error:
        raise StatFailure(name, error) from error


def _open_sized(name: str, stream: BinaryIO) -> Resource:
    try:
        size = _stream_size(name, stream)
    except StatFailure:
        stream.close()
        raise
    return Resource(name, size, stream)


class BundledResourceStore:
    """Serves the files shipped inside the package under ``assets/downloads``."""

    def __init__(self, root=None) -> None:
        self._root = root or resources.files(BUNDLE_PACKAGE).joinpath(BUNDLE_DIRECTORY)

    def display_path(self, name: str) -> str:
        return f"{BUNDLE_DIRECTORY}/{name}"

    def open(self, name: str) -> Resource:
        path = self.display_path(name)
        if STORE_LOGGER.logger.isEnabledFor(logging.DEBUG):
            STORE_LOGGER.debug(
                "Looking up resource", extra={"event": "resource_lookup", "path": path}
            )
        if not _is_plain_name(name):
            raise ResourceNotFound(name, path)
        entry = self._root.joinpath(name)
        if not entry.is_file():
            raise ResourceNotFound(name, path)
        try:
            stream = entry.open("rb")
        except OSError as error:
            raise ResourceNotFound(name, path) from error
        return _open_sized(name, stream)


class DirectoryResourceStore:
    """Serves regular files from a directory on disk, confined to that directory."""

    def __init__(self, directory: str) -> None:
        self._directory = directory

    def display_path(self, name: str) -> str:
        return os.path.join(self._directory, name)

    def open(self, name: str) -> Resource:
        path = self.display_path(name)
        if not _is_plain_name(name):
            raise ResourceNotFound(name, path)
        try:
            resolved = resolve_sandbox_path(self._directory, name)
        except ForbiddenPath as error:
            STORE_LOGGER.warning(
                "Path escapes served directory",
                extra={"event": "forbidden_path", "path": path},
            )
            raise ResourceNotFound(name, path) from error
        if not resolved.is_file():
            raise ResourceNotFound(name, path)
        try:
            stream = open(resolved, "rb")  # pylint: disable=consider-using-with
        except OSError as error:
            raise ResourceNotFound(name, path) from error
        return _open_sized(name, stream)
