"""
URL and origin utility functions for crawl scope decisions.

Scope is decided by comparing origins (scheme + host) exactly, never by
substring search, so ``https://example.com.evil.com/`` is not mistaken
for ``example.com``.  Both the frontier controller and the result mapper
call :func:`is_in_scope`, which keeps the two decisions identical.
"""

from __future__ import annotations

from urllib import parse

from crawl_ingest.models import crawl

_ALLOWED_SCHEMES = frozenset(["http", "https"])


def extract_domain(url: str) -> str:
    """Extract the hostname from a URL string."""
    try:
        parsed = parse.urlparse(url)
        return parsed.hostname or "unknown"
    except ValueError:
        return "unknown"


def strip_www(host: str) -> str:
    """Lower-case *host* and drop one leading ``www.`` label."""
    return host.lower().removeprefix("www.")


def normalize_url(url: str) -> str | None:
    """Return a canonical form of *url* used for de-duplication.

    Lower-cases the scheme and host, drops the fragment and gives an
    empty path a single ``/``.

    Returns:
        The normalised URL, or ``None`` when *url* is not an absolute
        ``http(s)`` URL with a host.
    """
    try:
        parsed = parse.urlsplit(url.strip())
        # Accessing .port validates it and raises on garbage.
        port = parsed.port
    except (ValueError, AttributeError):
        return None
    scheme = parsed.scheme.lower()
    if scheme not in _ALLOWED_SCHEMES or not parsed.hostname:
        return None
    netloc = parsed.hostname.lower()
    if port is not None:
        netloc = f"{netloc}:{port}"
    return parse.urlunsplit((scheme, netloc, parsed.path or "/", parsed.query, ""))


def resolve_link(base_url: str, href: str) -> str | None:
    """Resolve *href* against *base_url* and normalise the result."""
    href = href.strip()
    if not href or href.startswith(("javascript:", "mailto:", "tel:", "data:")):
        return None
    try:
        joined = parse.urljoin(base_url, href)
    except ValueError:
        return None
    return normalize_url(joined)


def is_in_scope(url: str, rule: crawl.ScopeRule) -> bool:
    """Return whether *url* belongs to the origin described by *rule*.

    Hosts are compared exactly after ``www.`` normalisation.  When the
    rule carries a base path the URL path must sit under it.

    Raises:
        ValueError: If *url* is not an absolute ``http(s)`` URL.
    """
    normalised = normalize_url(url)
    if normalised is None:
        raise ValueError(f"Malformed URL: {url!r}")

    parsed = parse.urlsplit(normalised)
    if rule.scheme is not None and parsed.scheme != rule.scheme:
        return False
    if strip_www(parsed.hostname or "") != strip_www(rule.domain):
        return False
    if rule.base_path == "/":
        return True
    path = parsed.path if parsed.path.endswith("/") else parsed.path + "/"
    return path.startswith(rule.base_path)
