"""Context object shared across worker threads."""

from dataclasses import dataclass

from easydownload.bootstrap.config import ServerConfig
from easydownload.lifecycle.state import ServerLifecycle
from easydownload.pipeline.router import Dispatcher


@dataclass
class WorkerContext:
    """Dependencies shared across handler threads; all read-only after start."""

    dispatcher: Dispatcher
    lifecycle: ServerLifecycle
    config: ServerConfig
