"""Landing page rendering."""

from importlib import resources
from string import Template
from typing import Optional

from easydownload.bootstrap.config import SAMPLE_FILENAME
from easydownload.domain.http_types import HttpRequest, HttpResponse
from easydownload.domain.response_builders import html_response

TEMPLATE_PACKAGE = "easydownload.assets"
TEMPLATE_NAME = "index.html"

LIMITED_LINK = (
    '<li><a href="/download/limited/${filename}">Throttled download</a>'
    " (about ${rate} per second)</li>"
)


def load_template(name: str = TEMPLATE_NAME) -> Template:
    source = (
        resources.files(TEMPLATE_PACKAGE)
        .joinpath("templates", name)
        .read_text(encoding="utf-8")
    )
    return Template(source)


def _human_rate(rate: Optional[float]) -> str:
    if rate is None:
        return "unlimited"
    if rate >= 1024 * 1024:
        return f"{rate / (1024 * 1024):.1f} MiB"
    if rate >= 1024:
        return f"{rate / 1024:.0f} KiB"
    return f"{rate:.0f} B"


class LandingPage:
    """Renders the index template with the listener address and a sample file."""

    def __init__(
        self,
        host: str,
        port: int,
        filename: str = SAMPLE_FILENAME,
        target_rate: Optional[float] = None,
        throttled_route: bool = True,
        template: Optional[Template] = None,
    ) -> None:
        # pylint: disable=too-many-arguments
        self.host = host
        self.port = port
        self.filename = filename
        self.target_rate = target_rate
        self.throttled_route = throttled_route
        self.template = template or load_template()

    def render(self) -> str:
        limited_link = ""
        if self.throttled_route:
            limited_link = Template(LIMITED_LINK).substitute(
                filename=self.filename, rate=_human_rate(self.target_rate)
            )
        return self.template.safe_substitute(
            host=self.host,
            port=self.port,
            filename=self.filename,
            limited_link=limited_link,
        )

    def handle(self, request: HttpRequest) -> HttpResponse:
        return html_response(self.render(), request)
