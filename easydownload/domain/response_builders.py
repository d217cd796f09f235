"""Pure HTTP response builders."""

from typing import Iterable, Optional

from easydownload.domain.http_types import HttpRequest, HttpResponse, should_close

TEXT_CONTENT_TYPE = "text/plain; charset=utf-8"
HTML_CONTENT_TYPE = "text/html; charset=utf-8"


def _close_preference(request: Optional[HttpRequest]) -> bool:
    return should_close(request.headers) if request is not None else True


def text_response(
    status_line: str, message: str, request: Optional[HttpRequest]
) -> HttpResponse:
    """Return a plain-text response with the given status line."""
    return HttpResponse(
        status_line,
        {"Content-Type": TEXT_CONTENT_TYPE},
        message.encode(),
        _close_preference(request),
    )


def html_response(document: str, request: HttpRequest) -> HttpResponse:
    """Return a 200 OK HTML document."""
    return HttpResponse(
        "HTTP/1.1 200 OK",
        {"Content-Type": HTML_CONTENT_TYPE},
        document.encode(),
        should_close(request.headers),
    )


def not_found_response(request: Optional[HttpRequest], message: str = "") -> HttpResponse:
    """Return a 404 response reusing the connection preference."""
    return text_response("HTTP/1.1 404 Not Found", message, request)


def internal_error_response(
    request: Optional[HttpRequest], message: str = "Internal server error"
) -> HttpResponse:
    """Return a 500 response."""
    return text_response("HTTP/1.1 500 Internal Server Error", message, request)


def bad_request_response() -> HttpResponse:
    """Produce a 400 response that always closes the connection."""
    return text_response("HTTP/1.1 400 Bad Request", "", None)


def method_not_allowed_response(
    request: HttpRequest, allowed_methods: Iterable[str]
) -> HttpResponse:
    """Produce a 405 response enumerating the supported HTTP methods."""
    response = text_response("HTTP/1.1 405 Method Not Allowed", "", request)
    response.headers["Allow"] = ", ".join(sorted(allowed_methods))
    return response


def draining_response() -> HttpResponse:
    """Produce a 503 response indicating the server is draining."""
    return HttpResponse(
        "HTTP/1.1 503 Service Unavailable",
        {"Content-Type": TEXT_CONTENT_TYPE},
        b"draining",
        True,
    )
