"""Server configuration and CLI argument parsing."""

import argparse
from dataclasses import dataclass
from typing import Optional

DEFAULT_HOST = "0.0.0.0"
DEFAULT_PORT = 8080
DEFAULT_TIMEOUT_SECONDS = 10.0
DEFAULT_SHUTDOWN_GRACE_SECONDS = 10.0
DEFAULT_CHUNK_SIZE = 200 * 1024
DEFAULT_THROTTLE_INTERVAL = 1.0
SAMPLE_FILENAME = "sample.bin"

HEADER_DELIMITER = b"\r\n\r\n"
MAX_HEADER_BYTES = 64 * 1024
ALLOWED_METHODS = {"GET", "HEAD"}

DEFAULT_LOG_LEVEL = "INFO"
DEFAULT_LOG_DESTINATION = "stdout"


@dataclass(frozen=True)
class ServerConfig:
    """Listener address and per-connection timeouts, fixed once listening."""

    host: str = DEFAULT_HOST
    port: int = DEFAULT_PORT
    read_timeout: float = DEFAULT_TIMEOUT_SECONDS
    write_timeout: float = DEFAULT_TIMEOUT_SECONDS
    idle_timeout: float = DEFAULT_TIMEOUT_SECONDS
    shutdown_grace_seconds: float = DEFAULT_SHUTDOWN_GRACE_SECONDS


@dataclass(frozen=True)
class ThrottleSettings:
    """Chunk size and pause used by throttled transfers.

    Target throughput is roughly ``chunk_size / interval`` bytes per second.
    """

    chunk_size: int = DEFAULT_CHUNK_SIZE
    interval: float = DEFAULT_THROTTLE_INTERVAL

    def __post_init__(self) -> None:
        if self.chunk_size <= 0:
            raise ValueError("chunk_size must be positive")
        if self.interval < 0:
            raise ValueError("interval must not be negative")

    @property
    def target_rate(self) -> Optional[float]:
        if self.interval == 0:
            return None
        return self.chunk_size / self.interval


@dataclass(frozen=True)
class FeatureFlags:
    """Optional routes and compatibility switches."""

    throttled_route: bool = True
    legacy_limited_not_found: bool = False


def _positive_float(value: str) -> float:
    number = float(value)
    if number <= 0:
        raise argparse.ArgumentTypeError(f"expected a positive number, got {value}")
    return number


def _non_negative_float(value: str) -> float:
    number = float(value)
    if number < 0:
        raise argparse.ArgumentTypeError(f"expected a non-negative number, got {value}")
    return number


def _positive_int(value: str) -> int:
    number = int(value)
    if number <= 0:
        raise argparse.ArgumentTypeError(f"expected a positive integer, got {value}")
    return number


def parse_cli_args(argv: list[str]) -> argparse.Namespace:
    """Return parsed CLI arguments for server configuration."""
    parser = argparse.ArgumentParser(
        prog="easydownload",
        description="Serve bundled files at full speed or throttled",
    )
    parser.add_argument("--host", default=DEFAULT_HOST, help="Server host")
    parser.add_argument("--port", type=int, default=DEFAULT_PORT, help="Server port")
    parser.add_argument(
        "--directory",
        default=None,
        help="Serve files from this directory instead of the bundled downloads",
    )
    parser.add_argument(
        "--log-level",
        default=DEFAULT_LOG_LEVEL,
        choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
        type=str.upper,
    )
    parser.add_argument(
        "--log-destination",
        default=DEFAULT_LOG_DESTINATION,
        help="stdout or a file path",
    )
    parser.add_argument(
        "--read-timeout",
        type=_positive_float,
        default=DEFAULT_TIMEOUT_SECONDS,
        help="Seconds allowed for reading a request",
    )
    parser.add_argument(
        "--write-timeout",
        type=_positive_float,
        default=DEFAULT_TIMEOUT_SECONDS,
        help="Seconds allowed for a single socket write",
    )
    parser.add_argument(
        "--idle-timeout",
        type=_positive_float,
        default=DEFAULT_TIMEOUT_SECONDS,
        help="Seconds a keep-alive connection may stay idle",
    )
    parser.add_argument(
        "--shutdown-grace-seconds",
        type=_non_negative_float,
        default=DEFAULT_SHUTDOWN_GRACE_SECONDS,
        help="Grace period for in-flight transfers during shutdown",
    )
    parser.add_argument(
        "--throttled-route",
        action=argparse.BooleanOptionalAction,
        default=True,
        help="Expose /download/limited/{filename}",
    )
    parser.add_argument(
        "--chunk-size",
        type=_positive_int,
        default=DEFAULT_CHUNK_SIZE,
        help="Bytes written per throttled chunk",
    )
    parser.add_argument(
        "--throttle-interval",
        type=_non_negative_float,
        default=DEFAULT_THROTTLE_INTERVAL,
        help="Seconds to pause between throttled chunks",
    )
    parser.add_argument(
        "--legacy-limited-not-found",
        action="store_true",
        help="Answer unknown throttled downloads with 200 instead of 404",
    )
    return parser.parse_args(argv)


def server_config_from_args(args: argparse.Namespace) -> ServerConfig:
    return ServerConfig(
        host=args.host,
        port=args.port,
        read_timeout=args.read_timeout,
        write_timeout=args.write_timeout,
        idle_timeout=args.idle_timeout,
        shutdown_grace_seconds=args.shutdown_grace_seconds,
    )


def throttle_settings_from_args(args: argparse.Namespace) -> ThrottleSettings:
    return ThrottleSettings(chunk_size=args.chunk_size, interval=args.throttle_interval)


def feature_flags_from_args(args: argparse.Namespace) -> FeatureFlags:
    return FeatureFlags(
        throttled_route=args.throttled_route,
        legacy_limited_not_found=args.legacy_limited_not_found,
    )
