"""Pydantic models for crawl requests, fetch results and ingestion records."""

from __future__ import annotations

from typing import Literal

import pydantic

_FROZEN = pydantic.ConfigDict(frozen=True)


class ScopeRule(pydantic.BaseModel):
    """The origin (and optional base path) that counts as in-scope.

    Attributes:
        domain: Bare host name, with or without a ``www.`` prefix.
        base_path: Path prefix, always starting and ending with ``/``.
        scheme: Restrict to ``http`` or ``https``; ``None`` accepts both.
    """

    model_config = _FROZEN

    domain: str
    base_path: str = "/"
    scheme: Literal["http", "https"] | None = None

    @pydantic.field_validator("domain")
    @classmethod
    def _check_domain(cls, value: str) -> str:
        value = value.strip().lower().rstrip(".")
        if not value or "/" in value or ":" in value or " " in value:
            raise ValueError("domain must be a bare host name such as 'example.com'")
        return value

    @pydantic.field_validator("base_path")
    @classmethod
    def _normalise_base_path(cls, value: str) -> str:
        value = "/" + value.strip().strip("/")
        return value if value == "/" else value + "/"


class CrawlRequest(pydantic.BaseModel):
    """A URL waiting in the frontier.

    ``remaining_depth`` decrements per hop.  ``0`` means fetch the page
    but do not expand its links; ``None`` means no depth limit.
    """

    model_config = _FROZEN

    url: str
    remaining_depth: int | None = None
    previous_url: str | None = None


AdmissionAction = Literal["skip", "fetch_only", "fetch_and_expand"]


class AdmissionDecision(pydantic.BaseModel):
    """Outcome of the frontier controller's admission check.

    For ``fetch_and_expand`` the ``remaining_depth`` is the depth handed
    to links discovered on the page (``None`` keeps the crawl unbounded).
    ``fetch_only`` pins it to ``1``: the page is the last level fetched.
    """

    model_config = _FROZEN

    action: AdmissionAction
    remaining_depth: int | None = None

    @classmethod
    def skip(cls) -> AdmissionDecision:
        return cls(action="skip", remaining_depth=None)

    @classmethod
    def fetch_only(cls) -> AdmissionDecision:
        return cls(action="fetch_only", remaining_depth=1)

    @classmethod
    def fetch_and_expand(cls, remaining_depth: int | None) -> AdmissionDecision:
        return cls(action="fetch_and_expand", remaining_depth=remaining_depth)

    @property
    def fetches(self) -> bool:
        return self.action != "skip"

    @property
    def expands(self) -> bool:
        return self.action == "fetch_and_expand"


class Cookie(pydantic.BaseModel):
    """A cookie as captured from the browser context.

    ``expires`` is Unix epoch seconds; ``-1`` marks a session cookie.
    """

    model_config = _FROZEN

    name: str
    value: str
    domain: str
    path: str = "/"
    expires: float = -1
    size: int = 0
    http_only: bool = False
    secure: bool = False
    session: bool = False
    same_site: str | None = None


class FetchResult(pydantic.BaseModel):
    """Rendered page data produced once per successful fetch."""

    model_config = _FROZEN

    requested_url: str
    final_url: str
    http_status: int | None = None
    content_type: str | None = None
    cookies: tuple[Cookie, ...] = ()
    local_storage: dict[str, str] = pydantic.Field(default_factory=dict)
    page_title: str | None = None
    meta_description: str | None = None
    previous_url: str | None = None


SAME_SITE_UNSPECIFIED = "unspecified"


class IngestionCookie(pydantic.BaseModel):
    """Warehouse-shaped cookie with an ISO-8601 expiry."""

    model_config = _FROZEN

    name: str
    value: str
    domain: str
    path: str
    expires: str
    size: int
    http_only: bool
    secure: bool
    session: bool
    same_site: str = SAME_SITE_UNSPECIFIED


class StorageEntry(pydantic.BaseModel):
    """One ``localStorage`` key/value pair."""

    model_config = _FROZEN

    name: str
    value: str


class IngestionRecord(pydantic.BaseModel):
    """Canonical row appended to the warehouse for one crawled page.

    Cookies and local storage are always empty when ``external`` is set.
    """

    model_config = _FROZEN

    requested_url: str
    final_url: str | None = None
    http_status: int | None = None
    content_type: str | None = None
    external: bool
    previous_url: str | None = None
    document_title: str | None = None
    meta_description: str | None = None
    cookies: tuple[IngestionCookie, ...] = ()
    local_storage: tuple[StorageEntry, ...] = ()
    crawled_at: str

    def to_row(self) -> dict[str, object]:
        """Return the JSON row accepted by ``insert_rows_json``."""
        return self.model_dump(mode="json")


PipelineState = Literal["idle", "provisioning", "running", "draining", "done", "failed"]


class CrawlSummary(pydantic.BaseModel):
    """Totals reported when the frontier drains.

    ``pages_crawled`` counts pages whose record was acknowledged by the sink.
    """

    pages_crawled: int = 0
    fetch_failures: int = 0
    mapping_failures: int = 0
    write_failures: int = 0
    elapsed_ms: float = 0.0
