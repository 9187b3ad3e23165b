from typing import Optional


class GrowthBookError(Exception):
    """Base class for errors raised by the SDK."""


class FetchError(GrowthBookError):
    """A feature or override document could not be loaded.

    Passed to the `*_fetch_failed` delegate methods rather than raised to the
    application.
    """

    def __init__(self, url: str, message: str, status: Optional[int] = None) -> None:
        super().__init__(message)
        self.url = url
        self.status = status

    def __str__(self) -> str:
        return f"{self.url}: {super().__str__()}"
