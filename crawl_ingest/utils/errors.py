"""
Error taxonomy for the crawl ingestion pipeline and helpers for
consistent error message extraction.

``ConfigurationError``, ``ProvisioningError`` and ``StartupError`` end a
run.  The per-page errors are logged by the coordinator and the crawl
continues.
"""

from __future__ import annotations


class CrawlIngestError(Exception):
    """Base class for all pipeline errors."""

    def __init__(self, message: str, *, url: str | None = None) -> None:
        super().__init__(message)
        self.url = url


class ConfigurationError(CrawlIngestError):
    """The configuration file is missing or does not validate."""

    def __init__(self, message: str, *, problems: list[str] | None = None) -> None:
        super().__init__(message)
        self.problems = problems or []


class ProvisioningError(CrawlIngestError):
    """Dataset or table creation failed for a reason other than already-exists."""


class StartupError(CrawlIngestError):
    """The browser or the warehouse client could not be started."""



class FetchError(CrawlIngestError):
    """The fetch engine could not load a page."""


class MappingError(CrawlIngestError):
    """A fetch result could not be turned into an ingestion record."""


class SinkWriteError(CrawlIngestError):
    """The warehouse rejected or failed to acknowledge a row."""

    def __init__(
        self,
        message: str,
        *,
        url: str | None = None,
        row: dict[str, object] | None = None,
    ) -> None:
        super().__init__(message, url=url)
        self.row = row


def get_error_message(error: BaseException | object) -> str:
    """
    Safely extract an error message from an unknown error type.

    Falls back to the exception class name when the message is empty.
    """
    if isinstance(error, BaseException):
        return str(error) or type(error).__name__
    return "Unknown error"
