"""Request routing logic."""

import logging
import re
from dataclasses import dataclass
from typing import Callable, Iterable, Optional

from easydownload.bootstrap.config import ALLOWED_METHODS, FeatureFlags
from easydownload.domain.http_types import HttpRequest, HttpResponse
from easydownload.domain.request_id import get_logger
from easydownload.domain.response_builders import (
    method_not_allowed_response,
    not_found_response,
)
from easydownload.handlers.download_handler import full_download, limited_download
from easydownload.handlers.landing_handler import LandingPage
from easydownload.transfer.engine import TransferEngine

ROUTER_LOGGER = get_logger("pipeline.router")

Handler = Callable[[HttpRequest], HttpResponse]

_PARAM_PATTERN = re.compile(r"\{([A-Za-z_][A-Za-z0-9_]*)\}")


def compile_pattern(pattern: str) -> re.Pattern:
    """Turn ``/download/{filename}`` into a regex capturing one path segment."""
    regex = ""
    position = 0
    for match in _PARAM_PATTERN.finditer(pattern):
        regex += re.escape(pattern[position : match.start()])
        regex += f"(?P<{match.group(1)}>[^/]+)"
        position = match.end()
    regex += re.escape(pattern[position:])
    return re.compile(f"^{regex}$")


@dataclass(frozen=True)
class Route:
    pattern: str
    regex: re.Pattern
    handler: Handler

    def match(self, path: str) -> Optional[dict[str, str]]:
        found = self.regex.match(path)
        if found is None:
            return None
        return found.groupdict()


class Dispatcher:
    """Ordered route table; the first registered pattern that matches wins."""

    def __init__(self, allowed_methods: Iterable[str] = ALLOWED_METHODS) -> None:
        self._routes: list[Route] = []
        self._allowed_methods = frozenset(allowed_methods)

    @property
    def patterns(self) -> list[str]:
        return [route.pattern for route in self._routes]

    def add_route(self, pattern: str, handler: Handler) -> None:
        self._routes.append(Route(pattern, compile_pattern(pattern), handler))

    def dispatch(self, request: HttpRequest) -> HttpResponse:
        """Route the request to the matching handler and return its response."""
        if request.method not in self._allowed_methods:
            ROUTER_LOGGER.info(
                "Method not allowed",
                extra={
                    "event": "method_not_allowed",
                    "method": request.method,
                    "route": request.path,
                },
            )
            return method_not_allowed_response(request, self._allowed_methods)

        for route in self._routes:
            params = route.match(request.path)
            if params is None:
                continue
            if ROUTER_LOGGER.logger.isEnabledFor(logging.DEBUG):
                ROUTER_LOGGER.debug(
                    "Route matched",
                    extra={"event": "route_matched", "route": route.pattern},
                )
            request.path_params = params
            return route.handler(request)

        ROUTER_LOGGER.info(
            "No matching route found",
            extra={
                "event": "route_not_found",
                "route": request.path,
                "method": request.method,
            },
        )
        return not_found_response(request, f"404 page not found: {request.path}")


def build_dispatcher(
    engine: TransferEngine, landing_page: LandingPage, flags: FeatureFlags
) -> Dispatcher:
    """Register the application routes; the throttled one only when enabled."""
    dispatcher = Dispatcher()
    dispatcher.add_route("/", landing_page.handle)
    if flags.throttled_route:
        dispatcher.add_route(
            "/download/limited/{filename}",
            lambda request: limited_download(
                request, engine, flags.legacy_limited_not_found
            ),
        )
    dispatcher.add_route("/download/{filename}", lambda request: full_download(request, engine))
    return dispatcher
