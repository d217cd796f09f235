"""Download route handlers."""

from typing import Callable

from easydownload.domain.errors import ResourceNotFound, StatFailure
from easydownload.domain.http_types import HttpRequest, HttpResponse, should_close
from easydownload.domain.request_id import get_logger
from easydownload.domain.response_builders import (
    internal_error_response,
    not_found_response,
    text_response,
)
from easydownload.transfer.engine import (
    TransferEngine,
    TransferMode,
    TransferRequest,
    download_headers,
)

DOWNLOAD_LOGGER = get_logger("handlers.download")

LIMITED_NOT_FOUND_BODY = "404: File not found"

NotFoundResponder = Callable[[HttpRequest, ResourceNotFound], HttpResponse]


def _attachment(
    request: HttpRequest,
    engine: TransferEngine,
    transfer: TransferRequest,
    on_not_found: NotFoundResponder,
) -> HttpResponse:
    """Resolve the file, then answer with headers and a streamed body."""
    try:
        resource = engine.resolve(transfer.filename)
    except ResourceNotFound as error:
        DOWNLOAD_LOGGER.warning(
            "Download not found",
            extra={
                "event": "resource_not_found",
                "resource": transfer.filename,
                "path": error.path,
                "mode": transfer.mode.value,
            },
        )
        return on_not_found(request, error)
    except StatFailure as error:
        DOWNLOAD_LOGGER.error(
            "Cannot determine resource size",
            extra={
                "event": "stat_failed",
                "resource": error.name,
                "mode": transfer.mode.value,
                "error_type": type(error.cause).__name__,
                "error": str(error.cause),
            },
        )
        return internal_error_response(request)

    DOWNLOAD_LOGGER.info(
        "Serving download",
        extra={
            "event": "download_started",
            "resource": transfer.filename,
            "total_bytes": resource.size,
            "mode": transfer.mode.value,
        },
    )
    headers = download_headers(resource.name, resource.size)
    if request.method == "HEAD":
        resource.close()
        return HttpResponse(
            "HTTP/1.1 200 OK", headers, b"", should_close(request.headers)
        )
    return HttpResponse(
        "HTTP/1.1 200 OK",
        headers,
        b"",
        should_close(request.headers),
        streamer=engine.stream_for(transfer, resource),
    )


def full_download(request: HttpRequest, engine: TransferEngine) -> HttpResponse:
    """GET /download/{filename}: whole file, no rate limiting."""
    transfer = TransferRequest(request.path_params["filename"], TransferMode.FULL)
    return _attachment(
        request,
        engine,
        transfer,
        lambda req, error: not_found_response(req, f"File not found: {error.path}"),
    )


def limited_download(
    request: HttpRequest, engine: TransferEngine, legacy_not_found: bool = False
) -> HttpResponse:
    """GET /download/limited/{filename}: chunked writes paced by the throttle.

    Unknown names answer ``404: File not found``; ``legacy_not_found`` keeps
    the historical 200 status on that body.
    """
    transfer = TransferRequest(request.path_params["filename"], TransferMode.THROTTLED)
    status_line = "HTTP/1.1 200 OK" if legacy_not_found else "HTTP/1.1 404 Not Found"
    return _attachment(
        request,
        engine,
        transfer,
        lambda req, _error: text_response(status_line, LIMITED_NOT_FOUND_BODY, req),
    )
