"""Tests for crawl_ingest.sink — BigQuery provisioning and writes."""

from __future__ import annotations

import asyncio
from unittest import mock

import pytest
from google.api_core import exceptions as google_exceptions

from crawl_ingest.crawl import mapper
from crawl_ingest.models import crawl
from crawl_ingest.sink import bigquery_sink, schema
from crawl_ingest.utils import errors, retry


@pytest.fixture()
def client() -> mock.MagicMock:
    fake = mock.MagicMock()
    fake.project = "test-project"
    fake.insert_rows_json.return_value = []
    return fake


@pytest.fixture()
def sink(client: mock.MagicMock) -> bigquery_sink.BigQuerySink:
    return bigquery_sink.BigQuerySink(client, "web_crawl", "crawl_results", max_retries=2)


@pytest.fixture()
def record(fetch_result: crawl.FetchResult, scope_rule: crawl.ScopeRule) -> crawl.IngestionRecord:
    return mapper.map_result(fetch_result, scope_rule)


@pytest.fixture()
def no_sleep():
    with mock.patch.object(retry.asyncio, "sleep", new=mock.AsyncMock()) as sleeper:
        yield sleeper


# ── Already-exists classification ──────────────────────────────


class TestIsAlreadyExists:
    def test_conflict(self) -> None:
        assert bigquery_sink.is_already_exists(google_exceptions.Conflict("Already Exists: Dataset"))

    def test_status_code_attribute(self) -> None:
        exc = Exception("conflict")
        exc.code = 409  # type: ignore[attr-defined]
        assert bigquery_sink.is_already_exists(exc)

    def test_message_fallback(self) -> None:
        assert bigquery_sink.is_already_exists(RuntimeError("Table already exists"))

    def test_other_errors(self) -> None:
        assert not bigquery_sink.is_already_exists(google_exceptions.Forbidden("Access Denied"))


# ── ensure_schema ───────────────────────────────────────────────


class TestEnsureSchema:
    """Tests for BigQuerySink.ensure_schema()."""

    def test_creates_dataset_and_partitioned_table(
        self, sink: bigquery_sink.BigQuerySink, client: mock.MagicMock
    ) -> None:
        asyncio.run(sink.ensure_schema())

        dataset = client.create_dataset.call_args.args[0]
        assert dataset.dataset_id == "web_crawl"
        assert dataset.location == "US"

        table = client.create_table.call_args.args[0]
        assert table.table_id == "crawl_results"
        assert table.time_partitioning.type_ == "DAY"
        assert [f.name for f in table.schema] == [f.name for f in schema.PAGE_SCHEMA]

    def test_idempotent_when_resources_exist(
        self, sink: bigquery_sink.BigQuerySink, client: mock.MagicMock
    ) -> None:
        client.create_dataset.side_effect = google_exceptions.Conflict("Already Exists: Dataset")
        client.create_table.side_effect = google_exceptions.Conflict("Already Exists: Table")

        asyncio.run(sink.ensure_schema())
        asyncio.run(sink.ensure_schema())

        assert client.create_dataset.call_count == 2
        assert client.create_table.call_count == 2

    def test_dataset_failure_is_fatal(self, sink: bigquery_sink.BigQuerySink, client: mock.MagicMock) -> None:
        client.create_dataset.side_effect = google_exceptions.Forbidden("Access Denied")

        with pytest.raises(errors.ProvisioningError, match="Access Denied"):
            asyncio.run(sink.ensure_schema())
        client.create_table.assert_not_called()

    def test_table_failure_is_fatal(self, sink: bigquery_sink.BigQuerySink, client: mock.MagicMock) -> None:
        client.create_table.side_effect = google_exceptions.BadRequest("Invalid schema")

        with pytest.raises(errors.ProvisioningError, match="crawl_results"):
            asyncio.run(sink.ensure_schema())


# ── write ───────────────────────────────────────────────────────


class TestWrite:
    """Tests for BigQuerySink.write()."""

    def test_inserts_one_row(
        self, sink: bigquery_sink.BigQuerySink, client: mock.MagicMock, record: crawl.IngestionRecord
    ) -> None:
        asyncio.run(sink.write(record))

        table_ref, rows = client.insert_rows_json.call_args.args
        assert table_ref == "test-project.web_crawl.crawl_results"
        assert rows == [record.to_row()]

    def test_client_retry_disabled(
        self, sink: bigquery_sink.BigQuerySink, client: mock.MagicMock, record: crawl.IngestionRecord
    ) -> None:
        asyncio.run(sink.write(record))

        kwargs = client.insert_rows_json.call_args.kwargs
        assert kwargs["retry"] is None
        assert kwargs["timeout"] == bigquery_sink.INSERT_TIMEOUT_SECONDS

    def test_row_errors_raise(
        self, sink: bigquery_sink.BigQuerySink, client: mock.MagicMock, record: crawl.IngestionRecord
    ) -> None:
        client.insert_rows_json.return_value = [{"index": 0, "errors": [{"reason": "invalid"}]}]

        with pytest.raises(errors.SinkWriteError) as exc_info:
            asyncio.run(sink.write(record))
        assert exc_info.value.url == record.requested_url
        assert exc_info.value.row == record.to_row()

    def test_transient_error_is_retried(
        self,
        sink: bigquery_sink.BigQuerySink,
        client: mock.MagicMock,
        record: crawl.IngestionRecord,
        no_sleep: mock.AsyncMock,
    ) -> None:
        client.insert_rows_json.side_effect = [google_exceptions.ServiceUnavailable("try later"), []]

        asyncio.run(sink.write(record))

        assert client.insert_rows_json.call_count == 2
        assert no_sleep.await_count == 1

    def test_retries_are_bounded(
        self,
        sink: bigquery_sink.BigQuerySink,
        client: mock.MagicMock,
        record: crawl.IngestionRecord,
        no_sleep: mock.AsyncMock,
    ) -> None:
        client.insert_rows_json.side_effect = google_exceptions.TooManyRequests("rate limit")

        with pytest.raises(errors.SinkWriteError, match="rate limit"):
            asyncio.run(sink.write(record))
        assert client.insert_rows_json.call_count == 3

    def test_permanent_error_not_retried(
        self,
        sink: bigquery_sink.BigQuerySink,
        client: mock.MagicMock,
        record: crawl.IngestionRecord,
        no_sleep: mock.AsyncMock,
    ) -> None:
        client.insert_rows_json.side_effect = google_exceptions.NotFound("Table not found")

        with pytest.raises(errors.SinkWriteError):
            asyncio.run(sink.write(record))
        assert client.insert_rows_json.call_count == 1


# ── Schema ──────────────────────────────────────────────────────


class TestSchema:
    def test_record_fields_match_schema(self, record: crawl.IngestionRecord) -> None:
        assert set(record.to_row()) == {f.name for f in schema.PAGE_SCHEMA}

    def test_cookie_fields_match_schema(self, record: crawl.IngestionRecord) -> None:
        cookie_row = record.to_row()["cookies"][0]
        assert set(cookie_row) == {f.name for f in schema.COOKIE_FIELDS}


class TestInMemorySink:
    def test_collects_rows(self, record: crawl.IngestionRecord) -> None:
        memory = bigquery_sink.InMemorySink()
        asyncio.run(memory.ensure_schema())
        asyncio.run(memory.write(record))
        assert memory.provisioned is True
        assert memory.rows == [record.to_row()]
