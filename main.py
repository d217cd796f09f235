"""Download server exposing full-speed and throttled file transfers."""

import sys
import threading
from argparse import Namespace
from typing import Optional

from easydownload.bootstrap.config import (
    SAMPLE_FILENAME,
    feature_flags_from_args,
    parse_cli_args,
    server_config_from_args,
    throttle_settings_from_args,
)
from easydownload.bootstrap.logging_setup import configure_logging
from easydownload.domain.request_id import get_logger
from easydownload.handlers.landing_handler import LandingPage
from easydownload.lifecycle.manager import Hook, LifecycleManager, StopSource
from easydownload.lifecycle.state import ServerLifecycle
from easydownload.pipeline.router import build_dispatcher
from easydownload.storage.resource_store import (
    BundledResourceStore,
    DirectoryResourceStore,
)
from easydownload.transfer.engine import TransferEngine

SERVER_LOGGER = get_logger("server")


def build_manager(
    args: Namespace,
    stop_source: Optional[StopSource] = None,
    on_abnormal_stop: Optional[Hook] = None,
    on_shutdown_complete: Optional[Hook] = None,
) -> LifecycleManager:
    """Wire store, engine, dispatcher and lifecycle from parsed arguments."""
    config = server_config_from_args(args)
    throttle = throttle_settings_from_args(args)
    flags = feature_flags_from_args(args)
    lifecycle = ServerLifecycle()

    if args.directory:
        store = DirectoryResourceStore(args.directory)
    else:
        store = BundledResourceStore()
    engine = TransferEngine(store, throttle, cancel_event=lifecycle.cancel_event)
    landing_page = LandingPage(
        config.host,
        config.port,
        SAMPLE_FILENAME,
        target_rate=throttle.target_rate,
        throttled_route=flags.throttled_route,
    )
    dispatcher = build_dispatcher(engine, landing_page, flags)

    return LifecycleManager(
        config,
        dispatcher,
        lifecycle=lifecycle,
        stop_source=stop_source,
        on_abnormal_stop=on_abnormal_stop or (lambda: None),
        on_shutdown_complete=on_shutdown_complete or (lambda: None),
    )


def main(argv: Optional[list[str]] = None) -> int:
    """Start the server and block until it has shut down."""
    args = parse_cli_args(sys.argv[1:] if argv is None else argv)
    configure_logging(args.log_level, args.log_destination)

    process_done = threading.Event()

    def on_abnormal_stop() -> None:
        SERVER_LOGGER.warning("Shutting down server", extra={"event": "shutting_down"})

    def on_shutdown_complete() -> None:
        SERVER_LOGGER.info("Shut down", extra={"event": "shutdown_complete"})
        process_done.set()

    stop_source = StopSource()
    stop_source.install_signal_handlers()
    manager = build_manager(args, stop_source, on_abnormal_stop, on_shutdown_complete)

    SERVER_LOGGER.info(
        "Starting download server",
        extra={
            "event": "server_starting",
            "host": args.host,
            "port": args.port,
            "path": args.directory or "bundled downloads",
            "chunk_size": args.chunk_size,
            "interval": args.throttle_interval,
            "grace_seconds": args.shutdown_grace_seconds,
        },
    )
    try:
        clean = manager.run()
    finally:
        stop_source.restore_signal_handlers()
    process_done.wait()
    return 0 if clean else 1


if __name__ == "__main__":
    sys.exit(main())
