"""
Result mapper: turns a raw :class:`FetchResult` into the warehouse-shaped
:class:`IngestionRecord`.

Pages outside the crawl scope never carry cookies or local storage into
the warehouse, whatever the browser captured for them.
"""

from __future__ import annotations

import math
from datetime import UTC, datetime, timedelta

import pydantic

from crawl_ingest.models import crawl
from crawl_ingest.utils import errors, url as url_mod

_EPOCH = datetime(1970, 1, 1, tzinfo=UTC)


def epoch_to_iso(seconds: float) -> str:
    """Convert Unix epoch *seconds* to an ISO-8601 UTC instant.

    Raises:
        ValueError: If *seconds* is not finite or is out of range.
    """
    if not math.isfinite(seconds):
        raise ValueError(f"Cookie expiry is not a finite number: {seconds!r}")
    try:
        instant = _EPOCH + timedelta(seconds=seconds)
    except OverflowError as exc:
        raise ValueError(f"Cookie expiry out of range: {seconds!r}") from exc
    return instant.isoformat().replace("+00:00", "Z")


def map_cookie(cookie: crawl.Cookie) -> crawl.IngestionCookie:
    """Project a browser cookie onto the warehouse cookie shape.

    Expiry is always converted, so session cookies (``-1``) map to one
    second before the epoch; the ``session`` flag identifies them.
    """
    return crawl.IngestionCookie(
        name=cookie.name,
        value=cookie.value,
        domain=cookie.domain,
        path=cookie.path,
        expires=epoch_to_iso(cookie.expires),
        size=cookie.size,
        http_only=cookie.http_only,
        secure=cookie.secure,
        session=cookie.session,
        same_site=cookie.same_site or crawl.SAME_SITE_UNSPECIFIED,
    )


def map_result(
    result: crawl.FetchResult,
    scope: crawl.ScopeRule,
    *,
    cookies_only: bool = False,
    crawled_at: datetime | None = None,
) -> crawl.IngestionRecord:
    """Build the ingestion record for one fetched page.

    Args:
        result: The page data returned by the fetch engine.
        scope: Scope rule shared with the frontier controller.
        cookies_only: Leave the page metadata columns empty.
        crawled_at: Timestamp for the row, defaults to now.

    Raises:
        MappingError: If the final URL is malformed or a field cannot be
            converted.
    """
    try:
        external = not url_mod.is_in_scope(result.final_url, scope)
    except ValueError as exc:
        raise errors.MappingError(str(exc), url=result.requested_url) from exc

    try:
        if external:
            cookies: tuple[crawl.IngestionCookie, ...] = ()
            storage: tuple[crawl.StorageEntry, ...] = ()
        else:
            cookies = tuple(map_cookie(c) for c in result.cookies)
            storage = tuple(
                crawl.StorageEntry(name=name, value=value)
                for name, value in result.local_storage.items()
            )

        stamp = (crawled_at or datetime.now(UTC)).isoformat().replace("+00:00", "Z")
        if cookies_only:
            return crawl.IngestionRecord(
                requested_url=result.requested_url,
                external=external,
                cookies=cookies,
                crawled_at=stamp,
            )
        return crawl.IngestionRecord(
            requested_url=result.requested_url,
            final_url=result.final_url,
            http_status=result.http_status,
            content_type=result.content_type,
            external=external,
            previous_url=result.previous_url,
            document_title=result.page_title,
            meta_description=result.meta_description,
            cookies=cookies,
            local_storage=storage,
            crawled_at=stamp,
        )
    except (ValueError, pydantic.ValidationError) as exc:
        raise errors.MappingError(errors.get_error_message(exc), url=result.requested_url) from exc
