"""Exception hierarchy shared by the store, the transfer engine and the lifecycle."""


class DownloadServerError(Exception):
    """Base class for every error raised by this package."""


class ResourceNotFound(DownloadServerError):
    """The requested logical name has no backing resource."""

    def __init__(self, name: str, path: str) -> None:
        super().__init__(f"resource not found: {path}")
        self.name = name
        self.path = path


class StatFailure(DownloadServerError):
    """The resource exists but its size could not be determined."""

    def __init__(self, name: str, cause: BaseException) -> None:
        super().__init__(f"cannot stat {name}: {cause}")
        self.name = name
        self.cause = cause


class MidStreamReadError(DownloadServerError):
    """Reading the resource failed after the response headers were sent."""

    def __init__(self, name: str, bytes_sent: int, cause: BaseException) -> None:
        super().__init__(f"read failed for {name} after {bytes_sent} bytes: {cause}")
        self.name = name
        self.bytes_sent = bytes_sent
        self.cause = cause


class BindFailure(DownloadServerError):
    """The listening socket could not be created."""

    def __init__(self, host: str, port: int, cause: BaseException) -> None:
        super().__init__(f"cannot listen on {host}:{port}: {cause}")
        self.host = host
        self.port = port
        self.cause = cause
