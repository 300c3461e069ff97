"""Shared fixtures and fakes for the test suite."""

from __future__ import annotations

import copy

import pytest

from crawl_ingest import config as config_mod
from crawl_ingest.browser import engine
from crawl_ingest.models import crawl
from crawl_ingest.utils import errors

BASE_CONFIG: dict = {
    "start_url": "https://example.com/",
    "domain": "example.com",
    "project_id": "test-project",
    "skip_external": False,
    "cookies_only": False,
    "bigquery": {"dataset_id": "web_crawl", "table_id": "crawl_results"},
    "browser": {"headless": True, "args": ["--no-sandbox"]},
    "crawler": {"max_concurrency": 2},
}


# ── Fakes ───────────────────────────────────────────────────────


class FakeFetcher:
    """Serves pages from a dict of ``url -> (links, cookies)``.

    URLs listed in ``failing`` raise ``FetchError``; unknown URLs are
    served as empty pages.
    """

    def __init__(
        self,
        pages: dict[str, list[str]] | None = None,
        *,
        failing: set[str] | None = None,
        redirects: dict[str, str] | None = None,
        cookies: tuple[crawl.Cookie, ...] = (),
        local_storage: dict[str, str] | None = None,
    ) -> None:
        self.pages = pages or {}
        self.failing = failing or set()
        self.redirects = redirects or {}
        self.cookies = cookies
        self.local_storage = local_storage or {}
        self.fetched: list[str] = []
        self.launched = False
        self.closed = False

    async def launch(self) -> None:
        self.launched = True

    async def close(self) -> None:
        self.closed = True

    async def fetch(self, request: crawl.CrawlRequest) -> engine.FetchedPage:
        self.fetched.append(request.url)
        if request.url in self.failing:
            raise errors.FetchError("net::ERR_NAME_NOT_RESOLVED", url=request.url)
        final_url = self.redirects.get(request.url, request.url)
        result = crawl.FetchResult(
            requested_url=request.url,
            final_url=final_url,
            http_status=200,
            content_type="text/html; charset=utf-8",
            cookies=self.cookies,
            local_storage=self.local_storage,
            page_title=f"Title of {final_url}",
            meta_description=None,
            previous_url=request.previous_url,
        )
        return engine.FetchedPage(result=result, links=tuple(self.pages.get(request.url, [])))


class FakeSink:
    """Records written rows; URLs in ``fail_urls`` raise ``SinkWriteError``."""

    def __init__(
        self,
        *,
        provision_error: Exception | None = None,
        fail_urls: set[str] | None = None,
    ) -> None:
        self.provision_error = provision_error
        self.fail_urls = fail_urls or set()
        self.ensure_calls = 0
        self.write_calls = 0
        self.records: list[crawl.IngestionRecord] = []

    async def ensure_schema(self) -> None:
        self.ensure_calls += 1
        if self.provision_error is not None:
            raise self.provision_error

    async def write(self, record: crawl.IngestionRecord) -> None:
        self.write_calls += 1
        if record.requested_url in self.fail_urls:
            raise errors.SinkWriteError("quota exceeded", url=record.requested_url, row=record.to_row())
        self.records.append(record)


# ── Fixtures ────────────────────────────────────────────────────


@pytest.fixture()
def config_data() -> dict:
    """A fresh, valid configuration dict."""
    return copy.deepcopy(BASE_CONFIG)


@pytest.fixture()
def crawl_config(config_data: dict) -> config_mod.CrawlConfig:
    """A validated configuration."""
    return config_mod.parse_config(config_data)


@pytest.fixture()
def scope_rule() -> crawl.ScopeRule:
    return crawl.ScopeRule(domain="example.com")


@pytest.fixture()
def sample_cookie() -> crawl.Cookie:
    """A first-party persistent cookie."""
    return crawl.Cookie(
        name="session_id",
        value="abc123",
        domain="example.com",
        path="/",
        expires=1591696664,
        size=15,
        http_only=True,
        secure=True,
        session=False,
        same_site="Lax",
    )


@pytest.fixture()
def fetch_result(sample_cookie: crawl.Cookie) -> crawl.FetchResult:
    """A first-party page with a cookie and one storage entry."""
    return crawl.FetchResult(
        requested_url="https://example.com/page/",
        final_url="https://example.com/redirect-page/",
        http_status=200,
        content_type="text/html",
        cookies=(sample_cookie,),
        local_storage={"theme": "dark"},
        page_title="Test title",
        meta_description=None,
        previous_url="https://example.com/",
    )
