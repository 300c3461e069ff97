"""
Warehouse sinks for ingestion records.

:class:`BigQuerySink` provisions the dataset and day-partitioned table,
then appends one row per crawled page.  The BigQuery client is
synchronous, so each remote call runs in a worker thread to keep the
crawl's event loop responsive.
"""

from __future__ import annotations

import asyncio
from typing import Protocol

from google.api_core import exceptions as google_exceptions
from google.auth import exceptions as google_auth_exceptions
from google.cloud import bigquery

from crawl_ingest.models import crawl
from crawl_ingest.sink import schema
from crawl_ingest.utils import errors, logger, retry

log = logger.create_logger("Sink")

INSERT_TIMEOUT_SECONDS = 30.0


class Sink(Protocol):
    """What the coordinator needs from a warehouse writer."""

    async def ensure_schema(self) -> None: ...

    async def write(self, record: crawl.IngestionRecord) -> None: ...


def is_already_exists(error: BaseException) -> bool:
    """Return whether *error* means the resource is already there.

    Branches on the HTTP 409 classification first; the message check is
    a last resort for clients that do not expose a status.
    """
    if isinstance(error, google_exceptions.Conflict):
        return True
    if getattr(error, "code", None) == 409:
        return True
    return "already exists" in str(error).lower()


class BigQuerySink:
    """Idempotent, schema-provisioning BigQuery writer.

    Args:
        client: A ``google.cloud.bigquery.Client``.
        dataset_id: Dataset to create and write into.
        table_id: Table to create and write into.
        location: Location used when creating the dataset.
        max_retries: Retries per row for transient insert failures.  The
            client library's own retry is disabled so this is the only layer.
        insert_timeout: Seconds allowed for each insert call.
    """

    def __init__(
        self,
        client: bigquery.Client,
        dataset_id: str,
        table_id: str,
        *,
        location: str = "US",
        max_retries: int = 3,
        insert_timeout: float = INSERT_TIMEOUT_SECONDS,
    ) -> None:
        self._client = client
        self._dataset_id = dataset_id
        self._table_id = table_id
        self._location = location
        self._max_retries = max_retries
        self._insert_timeout = insert_timeout

    @classmethod
    def from_config(cls, project_id: str, dataset_id: str, table_id: str, location: str = "US") -> BigQuerySink:
        """Create a sink backed by a new client for *project_id*.

        Raises:
            StartupError: If no Google credentials can be found.
        """
        try:
            client = bigquery.Client(project=project_id)
        except google_auth_exceptions.DefaultCredentialsError as exc:
            raise errors.StartupError(
                f"BigQuery client could not be created: {errors.get_error_message(exc)}"
            ) from exc
        return cls(client, dataset_id, table_id, location=location)

    @property
    def dataset_ref(self) -> str:
        return f"{self._client.project}.{self._dataset_id}"

    @property
    def table_ref(self) -> str:
        return f"{self.dataset_ref}.{self._table_id}"

    # ==========================================================================
    # Provisioning
    # ==========================================================================

    async def ensure_schema(self) -> None:
        """Create the dataset and table unless they already exist.

        Raises:
            ProvisioningError: For any failure other than already-exists.
        """
        log.info("Creating table", {"table": self._table_id, "dataset": self._dataset_id})
        await asyncio.to_thread(self._create_dataset)
        await asyncio.to_thread(self._create_table)

    def _create_dataset(self) -> None:
        dataset = bigquery.Dataset(self.dataset_ref)
        dataset.location = self._location
        try:
            self._client.create_dataset(dataset)
            log.success("Dataset created", {"dataset": self.dataset_ref})
        except Exception as exc:
            if is_already_exists(exc):
                log.debug("Dataset already exists", {"dataset": self.dataset_ref})
                return
            raise errors.ProvisioningError(
                f"Failed to create dataset {self.dataset_ref}: {errors.get_error_message(exc)}"
            ) from exc

    def _create_table(self) -> None:
        table = bigquery.Table(self.table_ref, schema=schema.PAGE_SCHEMA)
        table.time_partitioning = schema.PARTITIONING
        try:
            self._client.create_table(table)
            log.success("Table created", {"table": self.table_ref})
        except Exception as exc:
            if is_already_exists(exc):
                log.debug("Table already exists", {"table": self.table_ref})
                return
            raise errors.ProvisioningError(
                f"Failed to create table {self.table_ref}: {errors.get_error_message(exc)}"
            ) from exc

    # ==========================================================================
    # Writes
    # ==========================================================================

    async def write(self, record: crawl.IngestionRecord) -> None:
        """Append *record* as one row.

        Returns once BigQuery acknowledges the row.

        Raises:
            SinkWriteError: If the insert fails after bounded retries or
                BigQuery reports row-level errors.
        """
        row = record.to_row()

        async def _insert() -> list[dict]:
            return await asyncio.to_thread(
                self._client.insert_rows_json,
                self.table_ref,
                [row],
                retry=None,
                timeout=self._insert_timeout,
            )

        try:
            row_errors = await retry.with_retry(
                _insert,
                max_retries=self._max_retries,
                context=f"insert {record.requested_url}",
            )
        except Exception as exc:
            raise errors.SinkWriteError(
                f"Insert failed: {errors.get_error_message(exc)}", url=record.requested_url, row=row
            ) from exc

        if row_errors:
            raise errors.SinkWriteError(
                f"Insert rejected: {row_errors}", url=record.requested_url, row=row
            )


class InMemorySink:
    """Sink that keeps rows in a list, used for dry runs."""

    def __init__(self) -> None:
        self.rows: list[dict[str, object]] = []
        self.provisioned = False

    async def ensure_schema(self) -> None:
        self.provisioned = True

    async def write(self, record: crawl.IngestionRecord) -> None:
        self.rows.append(record.to_row())
        log.debug("Row captured (dry run)", {"url": record.requested_url})
