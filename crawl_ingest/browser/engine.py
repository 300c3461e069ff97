"""
Crawl engine: the URL queue and worker pool that drive page fetches.

The engine owns de-duplication, concurrency and completion detection.
Which URLs are fetched, and whether their links are followed, is left
to the ``pre_request`` hook; what happens to a fetched page is left to
the ``on_success`` and ``on_failure`` callbacks.
"""

from __future__ import annotations

import asyncio
import dataclasses
from typing import Awaitable, Callable, Protocol

from crawl_ingest.models import crawl
from crawl_ingest.utils import errors, logger, url as url_mod

log = logger.create_logger("Engine")


@dataclasses.dataclass(frozen=True)
class FetchedPage:
    """A fetch result plus the outbound links discovered on the page."""

    result: crawl.FetchResult
    links: tuple[str, ...] = ()


class PageFetcher(Protocol):
    """Renders a URL and returns its data."""

    async def launch(self) -> None: ...

    async def fetch(self, request: crawl.CrawlRequest) -> FetchedPage: ...

    async def close(self) -> None: ...


PreRequestHook = Callable[[crawl.CrawlRequest], crawl.AdmissionDecision]
SuccessCallback = Callable[[crawl.FetchResult], Awaitable[None]]
FailureCallback = Callable[[crawl.CrawlRequest, BaseException], Awaitable[None]]


class CrawlEngine:
    """Breadth-first crawl over a shared :class:`PageFetcher`.

    Args:
        fetcher: Page fetcher, already launched.
        pre_request: Admission hook consulted before each fetch.
        on_success: Awaited with every successful fetch result.
        on_failure: Awaited with the request and error of every failed fetch.
        max_concurrency: Number of worker tasks.
        max_requests: Stop fetching after this many pages; ``0`` is unlimited.
    """

    def __init__(
        self,
        fetcher: PageFetcher,
        *,
        pre_request: PreRequestHook,
        on_success: SuccessCallback,
        on_failure: FailureCallback,
        max_concurrency: int = 4,
        max_requests: int = 0,
    ) -> None:
        self._fetcher = fetcher
        self._pre_request = pre_request
        self._on_success = on_success
        self._on_failure = on_failure
        self._max_concurrency = max_concurrency
        self._max_requests = max_requests

        self._queue: asyncio.Queue[crawl.CrawlRequest] = asyncio.Queue()
        self._seen: set[str] = set()
        self._workers: list[asyncio.Task[None]] = []
        self.requested_count = 0
        self.skipped_count = 0

    # ==========================================================================
    # Queueing
    # ==========================================================================

    def queue(self, request: crawl.CrawlRequest) -> bool:
        """Add *request* unless its URL was already queued or visited.

        Returns:
            ``True`` when the request was queued.
        """
        key = url_mod.normalize_url(request.url) or request.url
        if key in self._seen:
            return False
        self._seen.add(key)
        self._queue.put_nowait(request)
        return True

    def pending_count(self) -> int:
        """Number of requests queued but not yet picked up."""
        return self._queue.qsize()

    # ==========================================================================
    # Workers
    # ==========================================================================

    def start(self) -> None:
        """Spawn the worker tasks."""
        if self._workers:
            return
        self._workers = [
            asyncio.create_task(self._worker(), name=f"crawl-worker-{i}")
            for i in range(self._max_concurrency)
        ]
        log.debug("Workers started", {"count": len(self._workers)})

    async def on_idle(self) -> None:
        """Wait until every queued request has been processed."""
        await self._queue.join()

    async def stop(self) -> None:
        """Cancel the worker tasks and wait for them to exit."""
        for task in self._workers:
            task.cancel()
        await asyncio.gather(*self._workers, return_exceptions=True)
        self._workers = []

    async def _worker(self) -> None:
        while True:
            request = await self._queue.get()
            try:
                await self._process(request)
            except Exception as exc:
                log.error(
                    "Unhandled error while processing request",
                    {"url": request.url, "error": errors.get_error_message(exc)},
                )
            finally:
                self._queue.task_done()

    async def _process(self, request: crawl.CrawlRequest) -> None:
        decision = self._pre_request(request)
        if not decision.fetches:
            self.skipped_count += 1
            return
        if self._max_requests and self.requested_count >= self._max_requests:
            log.debug("Request limit reached, dropping", {"url": request.url})
            return
        self.requested_count += 1

        try:
            page = await self._fetcher.fetch(request)
        except Exception as exc:
            await self._on_failure(request, exc)
            return

        # Redirect targets count as visited so they are not fetched twice.
        final_key = url_mod.normalize_url(page.result.final_url)
        if final_key:
            self._seen.add(final_key)

        if decision.expands:
            for link in page.links:
                self.queue(
                    crawl.CrawlRequest(
                        url=link,
                        remaining_depth=decision.remaining_depth,
                        previous_url=page.result.final_url,
                    )
                )

        await self._on_success(page.result)
