"""
Browser session used as the crawl's page fetcher.

A single Chromium browser and context are shared by all workers; every
fetch renders in its own page, captures cookies, ``localStorage``, the
title, meta description and outbound links, then closes the page.
"""

from __future__ import annotations

import pydantic
from playwright import async_api

from crawl_ingest import config as config_mod
from crawl_ingest.browser import engine
from crawl_ingest.models import crawl
from crawl_ingest.utils import errors, logger, url as url_mod

log = logger.create_logger("BrowserSession")

# ============================================================================
# Page scripts
# ============================================================================

_LOCAL_STORAGE_SCRIPT = """() => {
    const items = [];
    for (let i = 0; i < window.localStorage.length; i++) {
        const key = window.localStorage.key(i);
        if (key !== null) items.push([key, window.localStorage.getItem(key) ?? '']);
    }
    return items;
}"""

_PAGE_FIELDS_SCRIPT = """() => {
    const meta = document.querySelector('meta[name="description"]');
    return {
        title: document.title || null,
        metaDescription: meta ? meta.getAttribute('content') : null,
        links: Array.from(document.querySelectorAll('a[href]'), (a) => a.href),
    };
}"""

MAX_LINKS_PER_PAGE = 2000


def cookie_from_playwright(raw: dict) -> crawl.Cookie:
    """Convert a Playwright cookie dict into a :class:`Cookie`.

    Playwright omits Chrome's ``size`` and ``session`` flags, so they
    are derived: size is name plus value length and a negative expiry
    marks a session cookie.
    """
    name = raw.get("name", "")
    value = raw.get("value", "")
    expires = raw.get("expires", -1)
    return crawl.Cookie(
        name=name,
        value=value,
        domain=raw.get("domain", ""),
        path=raw.get("path", "/"),
        expires=expires,
        size=len(name) + len(value),
        http_only=raw.get("httpOnly", False),
        secure=raw.get("secure", False),
        session=expires < 0,
        same_site=raw.get("sameSite"),
    )


def parse_storage_payload(payload: object) -> dict[str, str]:
    """Validate the ``localStorage`` payload returned by the page script.

    Raises:
        ValueError: If the payload is not a list of ``[key, value]`` string pairs.
    """
    if not isinstance(payload, list):
        raise ValueError(f"localStorage payload is not a list: {type(payload).__name__}")
    entries: dict[str, str] = {}
    for item in payload:
        if not (isinstance(item, (list, tuple)) and len(item) == 2 and all(isinstance(p, str) for p in item)):
            raise ValueError(f"Malformed localStorage entry: {item!r}")
        entries[item[0]] = item[1]
    return entries


class BrowserSession:
    """Playwright-backed page fetcher.

    Args:
        browser_config: Launch options for Chromium.
        crawler_options: Navigation timeout and load state.
    """

    def __init__(
        self,
        browser_config: config_mod.BrowserConfig,
        crawler_options: config_mod.CrawlerOptions,
    ) -> None:
        self._browser_config = browser_config
        self._options = crawler_options
        self._playwright: async_api.Playwright | None = None
        self._browser: async_api.Browser | None = None
        self._context: async_api.BrowserContext | None = None

    # ==========================================================================
    # Browser Lifecycle
    # ==========================================================================

    async def launch(self) -> None:
        """Start Playwright and open a Chromium browser context."""
        if self._context is not None:
            return
        log.info("Launching browser", {"headless": self._browser_config.headless})
        self._playwright = await async_api.async_playwright().start()
        try:
            self._browser = await self._playwright.chromium.launch(
                headless=self._browser_config.headless,
                args=list(self._browser_config.args),
            )
            self._context = await self._browser.new_context(
                user_agent=self._browser_config.user_agent,
                java_script_enabled=True,
            )
        except Exception as exc:
            log.error("Browser launch failed", {"error": errors.get_error_message(exc)})
            await self.close()
            raise errors.StartupError(f"Browser launch failed: {errors.get_error_message(exc)}") from exc

    async def close(self) -> None:
        """Close the browser and clean up all resources."""
        log.debug("Closing browser session")
        if self._context:
            try:
                await self._context.close()
            except async_api.Error as exc:
                log.debug("Context close error (non-fatal)", {"error": str(exc)})
            self._context = None
        if self._browser:
            try:
                await self._browser.close()
            except async_api.Error as exc:
                log.debug("Browser close error (non-fatal)", {"error": str(exc)})
            self._browser = None
        if self._playwright:
            await self._playwright.stop()
            self._playwright = None

    # ==========================================================================
    # Fetch
    # ==========================================================================

    async def fetch(self, request: crawl.CrawlRequest) -> engine.FetchedPage:
        """Render *request* in a fresh page and capture its data.

        Raises:
            FetchError: If navigation fails or times out.
            MappingError: If the captured page data is malformed.
        """
        if self._context is None:
            raise RuntimeError("No browser session active")

        page = await self._context.new_page()
        try:
            try:
                response = await page.goto(
                    request.url,
                    wait_until=self._options.wait_until,
                    timeout=self._options.navigation_timeout_ms,
                )
            except async_api.Error as exc:
                raise errors.FetchError(f"Navigation failed: {exc}", url=request.url) from exc

            final_url = page.url
            if final_url != request.url:
                log.debug("Redirected", {"from": request.url, "to": final_url})

            try:
                raw_cookies = await self._context.cookies([final_url])
                fields = await page.evaluate(_PAGE_FIELDS_SCRIPT)
            except async_api.Error as exc:
                raise errors.FetchError(f"Page capture failed: {exc}", url=request.url) from exc
            try:
                storage_payload = await page.evaluate(_LOCAL_STORAGE_SCRIPT)
            except async_api.Error as exc:
                # Opaque origins (about:, data:) refuse localStorage access.
                log.debug("localStorage unavailable", {"url": final_url, "error": str(exc)})
                storage_payload = []
        finally:
            await page.close()

        try:
            result = crawl.FetchResult(
                requested_url=request.url,
                final_url=final_url,
                http_status=response.status if response else None,
                content_type=response.headers.get("content-type") if response else None,
                cookies=tuple(cookie_from_playwright(c) for c in raw_cookies),
                local_storage=parse_storage_payload(storage_payload),
                page_title=fields.get("title"),
                meta_description=fields.get("metaDescription"),
                previous_url=request.previous_url,
            )
        except (ValueError, pydantic.ValidationError) as exc:
            raise errors.MappingError(errors.get_error_message(exc), url=request.url) from exc

        links: list[str] = []
        seen: set[str] = set()
        for href in fields.get("links") or ():
            resolved = url_mod.resolve_link(final_url, href) if isinstance(href, str) else None
            if resolved and resolved not in seen:
                seen.add(resolved)
                links.append(resolved)
            if len(links) >= MAX_LINKS_PER_PAGE:
                break
        return engine.FetchedPage(result=result, links=tuple(links))
