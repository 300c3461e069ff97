"""
Command-line entry point: validate the configuration, then crawl the
configured site into BigQuery.

Exit codes: ``0`` success, ``1`` configuration error, ``2`` provisioning
error, ``3`` start-up error (no Google credentials or the browser could
not be launched).
"""

from __future__ import annotations

import asyncio
import sys

import dotenv

from crawl_ingest import config as config_mod
from crawl_ingest.browser import session as browser_session
from crawl_ingest.models import crawl
from crawl_ingest.pipeline import coordinator
from crawl_ingest.sink import bigquery_sink
from crawl_ingest.utils import errors, logger

log = logger.create_logger("Main")

EXIT_OK = 0
EXIT_CONFIG_ERROR = 1
EXIT_PROVISIONING_ERROR = 2
EXIT_STARTUP_ERROR = 3


def build_sink(config: config_mod.CrawlConfig, settings: config_mod.Settings) -> bigquery_sink.Sink:
    """Return the BigQuery sink, or an in-memory one for dry runs."""
    if settings.dry_run:
        log.warn("Dry run: rows will not be written to BigQuery")
        return bigquery_sink.InMemorySink()
    return bigquery_sink.BigQuerySink.from_config(
        config.project_id,
        config.bigquery.dataset_id,
        config.bigquery.table_id,
        location=config.bigquery.location,
    )


async def run_crawl(config: config_mod.CrawlConfig, settings: config_mod.Settings) -> crawl.CrawlSummary:
    """Run one crawl with the Playwright fetcher and the configured sink."""
    pipeline = coordinator.PipelineCoordinator(
        config,
        build_sink(config, settings),
        browser_session.BrowserSession(config.browser, config.crawler),
    )
    return await pipeline.run()


def main() -> int:
    """Entry point for the ``crawl-ingest`` command."""
    dotenv.load_dotenv()
    settings = config_mod.Settings()

    try:
        config = config_mod.load_config(settings.config_path)
    except errors.ConfigurationError as exc:
        log.error(errors.get_error_message(exc))
        return EXIT_CONFIG_ERROR

    log_path = logger.start_log_file(config.domain, enabled=settings.write_to_file)
    if log_path:
        log.info("Writing logs to file", {"path": log_path})
    log.section(f"Crawling {config.domain}")
    try:
        summary = asyncio.run(run_crawl(config, settings))
    except errors.ProvisioningError as exc:
        log.error("Provisioning failed", {"error": errors.get_error_message(exc)})
        return EXIT_PROVISIONING_ERROR
    except errors.StartupError as exc:
        log.error("Start-up failed", {"error": errors.get_error_message(exc)})
        return EXIT_STARTUP_ERROR
    finally:
        logger.end_log_file()

    log.success(f"Crawled {summary.pages_crawled} pages", {"elapsedMs": round(summary.elapsed_ms)})
    return EXIT_OK


if __name__ == "__main__":
    sys.exit(main())
