"""
Pipeline coordinator: provisions the sink, runs the crawl, maps every
fetched page into an ingestion record and writes it, then reports totals.

State machine::

    idle -> provisioning -> running -> draining -> done
                 |                         |
                 +-> failed <--------------+

Only provisioning and fetcher start-up can fail the whole run.  Fetch,
mapping and write failures are counted, logged with the page URL and kept in
:attr:`PipelineCoordinator.failures` for replay.
"""

from __future__ import annotations

import asyncio
import time

from crawl_ingest import config as config_mod
from crawl_ingest.browser import engine as engine_mod
from crawl_ingest.crawl import frontier, mapper
from crawl_ingest.models import crawl
from crawl_ingest.sink import bigquery_sink
from crawl_ingest.utils import errors, logger

log = logger.create_logger("Coordinator")

_TRANSITIONS: dict[crawl.PipelineState, frozenset[crawl.PipelineState]] = {
    "idle": frozenset({"provisioning"}),
    "provisioning": frozenset({"running", "failed"}),
    "running": frozenset({"draining"}),
    "draining": frozenset({"done", "failed"}),
    "done": frozenset(),
    "failed": frozenset(),
}


class PipelineCoordinator:
    """Drives one crawl-to-warehouse run.

    Args:
        config: Validated crawl configuration.
        sink: Warehouse writer.
        fetcher: Page fetcher handed to the crawl engine.
    """

    def __init__(
        self,
        config: config_mod.CrawlConfig,
        sink: bigquery_sink.Sink,
        fetcher: engine_mod.PageFetcher,
    ) -> None:
        self._config = config
        self._sink = sink
        self._fetcher = fetcher
        self._scope = config.scope_rule()
        self._frontier = frontier.FrontierController(self._scope, skip_external=config.skip_external)

        self._state: crawl.PipelineState = "idle"
        self._summary = crawl.CrawlSummary()
        self._lock = asyncio.Lock()
        self._provision_lock = asyncio.Lock()
        self._provisioned = False
        self._writes: set[asyncio.Task[None]] = set()
        self.failures: list[errors.CrawlIngestError] = []

    @property
    def state(self) -> crawl.PipelineState:
        return self._state

    @property
    def summary(self) -> crawl.CrawlSummary:
        return self._summary

    @property
    def frontier(self) -> frontier.FrontierController:
        return self._frontier

    def _transition(self, new_state: crawl.PipelineState) -> None:
        if new_state not in _TRANSITIONS[self._state]:
            raise RuntimeError(f"Invalid pipeline transition {self._state} -> {new_state}")
        log.debug("State change", {"from": self._state, "to": new_state})
        self._state = new_state

    # ==========================================================================
    # Run
    # ==========================================================================

    async def run(self) -> crawl.CrawlSummary:
        """Provision, crawl and drain.

        Returns:
            The final crawl summary.

        Raises:
            ProvisioningError: If the dataset or table cannot be created.
                No page is fetched in that case.
            StartupError: If the fetcher cannot be launched.  The fetcher is
                still closed and the state ends as ``failed``.
        """
        started = time.monotonic()
        self._transition("provisioning")
        try:
            await self.provision()
        except errors.ProvisioningError as exc:
            self._transition("failed")
            log.error("Provisioning failed, crawl aborted", {"error": errors.get_error_message(exc)})
            raise

        self._transition("running")
        log.info("Starting crawl", {"startUrl": self._config.start_url})
        engine = engine_mod.CrawlEngine(
            self._fetcher,
            pre_request=self._frontier.admit,
            on_success=self._handle_success,
            on_failure=self._handle_failure,
            max_concurrency=self._config.crawler.max_concurrency,
            max_requests=self._config.crawler.max_requests,
        )
        completed = False
        try:
            await self._launch_fetcher()
            engine.queue(self._frontier.seed(self._config.start_url))
            engine.start()
            await self._wait_for_idle(engine)
            completed = True
        finally:
            await engine.stop()
            self._transition("draining")
            try:
                await self._drain_writes()
            finally:
                await self._fetcher.close()
                if not completed:
                    self._transition("failed")

        self._summary.elapsed_ms = (time.monotonic() - started) * 1000
        self._transition("done")
        log.success(
            f"Crawl took {logger.format_duration(self._summary.elapsed_ms)}",
            {
                "pagesCrawled": self._summary.pages_crawled,
                "fetchFailures": self._summary.fetch_failures,
                "mappingFailures": self._summary.mapping_failures,
                "writeFailures": self._summary.write_failures,
            },
        )
        return self._summary

    async def provision(self) -> None:
        """Run ``ensure_schema`` once; later calls return immediately."""
        async with self._provision_lock:
            if self._provisioned:
                return
            await self._sink.ensure_schema()
            self._provisioned = True

    async def _launch_fetcher(self) -> None:
        try:
            await self._fetcher.launch()
        except errors.StartupError:
            log.error("Fetcher failed to start, crawl aborted")
            raise
        except Exception as exc:
            log.error("Fetcher failed to start, crawl aborted", {"error": errors.get_error_message(exc)})
            raise errors.StartupError(f"Browser launch failed: {errors.get_error_message(exc)}") from exc

    async def _wait_for_idle(self, engine: engine_mod.CrawlEngine) -> None:
        deadline = self._config.crawler.deadline_seconds
        if deadline is None:
            await engine.on_idle()
            return
        try:
            await asyncio.wait_for(engine.on_idle(), timeout=deadline)
        except TimeoutError:
            log.warn(
                "Crawl deadline reached, abandoning queued requests",
                {"deadlineSeconds": deadline, "pending": engine.pending_count()},
            )

    async def _drain_writes(self) -> None:
        while self._writes:
            await asyncio.gather(*list(self._writes))

    # ==========================================================================
    # Callbacks
    # ==========================================================================

    async def _handle_success(self, result: crawl.FetchResult) -> None:
        try:
            record = mapper.map_result(result, self._scope, cookies_only=self._config.cookies_only)
        except errors.MappingError as exc:
            await self._record_failure(exc)
            return

        log.info(f"Crawled {result.final_url}", {"status": result.http_status, "external": record.external})
        task = asyncio.create_task(self._write(record))
        self._writes.add(task)
        task.add_done_callback(self._writes.discard)

    async def _handle_failure(self, request: crawl.CrawlRequest, error: BaseException) -> None:
        if isinstance(error, errors.CrawlIngestError):
            failure = error
        else:
            failure = errors.FetchError(errors.get_error_message(error), url=request.url)
            failure.__cause__ = error
        await self._record_failure(failure)

    async def _write(self, record: crawl.IngestionRecord) -> None:
        try:
            await self._sink.write(record)
        except errors.SinkWriteError as exc:
            await self._record_failure(exc)
            return
        except Exception as exc:
            failure = errors.SinkWriteError(
                errors.get_error_message(exc), url=record.requested_url, row=record.to_row()
            )
            failure.__cause__ = exc
            await self._record_failure(failure)
            return
        async with self._lock:
            self._summary.pages_crawled += 1

    async def _record_failure(self, failure: errors.CrawlIngestError) -> None:
        async with self._lock:
            if isinstance(failure, errors.SinkWriteError):
                self._summary.write_failures += 1
                kind = "Write"
            elif isinstance(failure, errors.MappingError):
                self._summary.mapping_failures += 1
                kind = "Mapping"
            else:
                self._summary.fetch_failures += 1
                kind = "Fetch"
            self.failures.append(failure)
        log.error(f"{kind} failed, page skipped", {"url": failure.url, "error": errors.get_error_message(failure)})
