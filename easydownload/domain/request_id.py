"""Per-request identifiers carried through log records."""

import contextvars
import logging
import uuid
from typing import Any, MutableMapping, Optional

LOGGER_ROOT = "easydownload"

_request_id_var: contextvars.ContextVar[Optional[str]] = contextvars.ContextVar(
    "request_id", default=None
)


def new_request_id() -> str:
    """Return a fresh random request identifier."""
    return uuid.uuid4().hex


def get_request_id() -> Optional[str]:
    """Return the request id bound to the current thread context."""
    return _request_id_var.get()


def bind_request_id(request_id: str) -> None:
    """Bind a request id to the current thread context."""
    _request_id_var.set(request_id)


def unbind_request_id() -> None:
    _request_id_var.set(None)


def component_for(logger_name: str) -> str:
    """Strip the project prefix from a logger name."""
    prefix = f"{LOGGER_ROOT}."
    if logger_name.startswith(prefix):
        return logger_name[len(prefix) :]
    return logger_name


class RequestLoggerAdapter(logging.LoggerAdapter):
    """Adds ``request_id`` and ``component`` to every record it emits."""

    def process(
        self, msg: str, kwargs: MutableMapping[str, Any]
    ) -> tuple[str, MutableMapping[str, Any]]:
        extra = dict(kwargs.get("extra") or {})
        request_id = get_request_id()
        extra["request_id"] = request_id if request_id is not None else "-"
        extra["component"] = component_for(self.logger.name)
        kwargs["extra"] = extra
        return msg, kwargs


def get_logger(component: str) -> RequestLoggerAdapter:
    """Return an adapter for ``easydownload.<component>``."""
    return RequestLoggerAdapter(logging.getLogger(f"{LOGGER_ROOT}.{component}"), {})
