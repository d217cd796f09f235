"""Shared pytest fixtures for integration and unit tests."""

from __future__ import annotations

import subprocess
import sys
from pathlib import Path
from typing import Generator, TypedDict

import pytest

from tests.utils.http import reserve_port, wait_for_port

PROJECT_ROOT = Path(__file__).resolve().parent.parent
SERVER_ENTRYPOINT = PROJECT_ROOT / "main.py"


class ServerProcessInfo(TypedDict):
    """Metadata describing a running server fixture instance."""

    base_url: str
    host: str
    port: int
    directory: Path
    process: subprocess.Popen
    log_file: Path


def launch_server(
    host: str,
    port: int,
    directory: Path,
    extra_args: list[str] | None = None,
) -> Generator[ServerProcessInfo, None, None]:
    """Run main.py serving ``directory`` until the generator is closed."""
    log_file = directory.parent / f"{directory.name}-server.log"
    args = [
        sys.executable,
        str(SERVER_ENTRYPOINT),
        "--directory",
        str(directory),
        "--host",
        host,
        "--port",
        str(port),
        "--log-destination",
        str(log_file),
        "--log-level",
        "DEBUG",
    ]
    if extra_args:
        args.extend(extra_args)

    with subprocess.Popen(
        args,
        cwd=PROJECT_ROOT,
        stdout=subprocess.PIPE,
        stderr=subprocess.PIPE,
        text=True,
    ) as process:
        try:
            wait_for_port(host, port)
        except Exception:
            process.terminate()
            stdout, stderr = process.communicate(timeout=5)
            print(f"\nServer stdout:\n{stdout}")
            print(f"\nServer stderr:\n{stderr}")
            raise

        try:
            yield {
                "base_url": f"http://{host}:{port}",
                "host": host,
                "port": port,
                "directory": directory,
                "process": process,
                "log_file": log_file,
            }
        finally:
            if process.poll() is None:
                process.terminate()
                try:
                    process.wait(timeout=5)
                except subprocess.TimeoutExpired:
                    process.kill()


@pytest.fixture(name="download_dir")
def _download_dir(tmp_path_factory: pytest.TempPathFactory) -> Path:
    """Directory with a few deterministic files to serve."""
    directory = tmp_path_factory.mktemp("downloads")
    (directory / "a.bin").write_bytes(bytes(range(10)))
    (directory / "empty.bin").write_bytes(b"")
    (directory / "big.bin").write_bytes(bytes(i % 251 for i in range(300_000)))
    return directory


@pytest.fixture(name="server_process")
def _server_process(download_dir: Path) -> Generator[ServerProcessInfo, None, None]:
    """Launch the server with a fast throttle for integration tests."""
    host = "127.0.0.1"
    port = reserve_port(host)
    yield from launch_server(
        host,
        port,
        download_dir,
        ["--chunk-size", "4", "--throttle-interval", "0.05"],
    )


@pytest.fixture()
def base_url(server_process: ServerProcessInfo) -> str:
    """Expose the running server base URL to integration tests."""
    return server_process["base_url"]
