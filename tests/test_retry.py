"""Tests for crawl_ingest.utils.retry — transient error classification and backoff."""

from __future__ import annotations

import asyncio
from unittest import mock

import pytest
from google.api_core import exceptions as google_exceptions

from crawl_ingest.utils import retry


class TestIsRetryableError:
    """Tests for is_retryable_error()."""

    @pytest.mark.parametrize(
        "error",
        [
            google_exceptions.TooManyRequests("slow down"),
            google_exceptions.InternalServerError("oops"),
            google_exceptions.ServiceUnavailable("unavailable"),
            ConnectionResetError("peer reset"),
            TimeoutError("timed out"),
            Exception("Error 429 Too Many Requests"),
        ],
    )
    def test_retryable(self, error: Exception) -> None:
        assert retry.is_retryable_error(error)

    @pytest.mark.parametrize(
        "error",
        [
            google_exceptions.BadRequest("invalid"),
            google_exceptions.NotFound("missing"),
            ValueError("bad input"),
        ],
    )
    def test_not_retryable(self, error: Exception) -> None:
        assert not retry.is_retryable_error(error)

    def test_status_code_attribute(self) -> None:
        exc = Exception("bad gateway")
        exc.status_code = 502  # type: ignore[attr-defined]
        assert retry.is_retryable_error(exc)

    def test_status_wins_over_message(self) -> None:
        error = google_exceptions.NotFound("Not found: Table proj:ds.crawl_429")
        assert not retry.is_rate_limit_error(error)
        assert not retry.is_retryable_error(error)


class TestWithRetry:
    """Tests for with_retry()."""

    def test_returns_first_success(self) -> None:
        fn = mock.AsyncMock(return_value="ok")
        assert asyncio.run(retry.with_retry(fn)) == "ok"
        assert fn.await_count == 1

    def test_retries_then_succeeds(self) -> None:
        fn = mock.AsyncMock(side_effect=[ConnectionError("reset"), "ok"])
        with mock.patch.object(retry.asyncio, "sleep", new=mock.AsyncMock()) as sleeper:
            assert asyncio.run(retry.with_retry(fn, max_retries=2)) == "ok"
        assert fn.await_count == 2
        assert sleeper.await_count == 1

    def test_gives_up_after_max_retries(self) -> None:
        fn = mock.AsyncMock(side_effect=TimeoutError("still down"))
        with mock.patch.object(retry.asyncio, "sleep", new=mock.AsyncMock()):
            with pytest.raises(TimeoutError):
                asyncio.run(retry.with_retry(fn, max_retries=2))
        assert fn.await_count == 3

    def test_non_retryable_raised_immediately(self) -> None:
        fn = mock.AsyncMock(side_effect=ValueError("nope"))
        with pytest.raises(ValueError):
            asyncio.run(retry.with_retry(fn))
        assert fn.await_count == 1

    def test_delay_capped(self) -> None:
        fn = mock.AsyncMock(side_effect=[ConnectionError("x")] * 3 + ["ok"])
        with mock.patch.object(retry.asyncio, "sleep", new=mock.AsyncMock()) as sleeper:
            asyncio.run(retry.with_retry(fn, max_retries=3, initial_delay_ms=800, max_delay_ms=1000))
        assert all(call.args[0] <= 1.0 for call in sleeper.await_args_list)
