"""
Property-based tests for the health prober.

Probes run against httpx.MockTransport; results are checked both on the
returned records and in the DuckDB analytics store.
"""

import asyncio
import itertools
from io import StringIO

import httpx
from hypothesis import given, settings
from hypothesis import strategies as st

from dataset_monitor.analytics_store import AnalyticsStore
from dataset_monitor.audit_logger import AuditLogger
from dataset_monitor.config import MonitorConfig, RetryConfig
from dataset_monitor.enums import ErrorCategory, LogLevel
from dataset_monitor.health_prober import HealthProber, summarize
from dataset_monitor.models import DatasetDocument
from dataset_monitor.retry_manager import RetryManager

from provider_fakes import dataset_body


def _document(dataset_id: str, url=None, with_url: bool = True) -> DatasetDocument:
    body = dataset_body(dataset_id, "center-a", url=url)
    if not with_url:
        del body["schema:url"]
    return DatasetDocument.from_body(body, "center-a", dataset_id)


def _id_factory():
    counter = itertools.count(1)
    return lambda: f"obs-{next(counter)}"


def _probe(documents, handler, config=None, retry_manager=None, logger=None):
    store = AnalyticsStore()

    async def scenario():
        async with HealthProber(
            store,
            config=config or MonitorConfig(),
            retry_manager=retry_manager,
            transport=httpx.MockTransport(handler),
            logger=logger,
            id_factory=_id_factory(),
        ) as prober:
            results = await prober.probe_all(documents)
            return results, prober.last_summary

    results, summary = asyncio.run(scenario())
    return store, results, summary


def _by_raw_id(results):
    return {record.raw_id: record for record in results}


class TestStatusOutcomeProperty:
    """Error statuses are classified; everything else is a success."""

    def test_not_found_is_a_remote_client_error(self) -> None:
        store, results, summary = _probe(
            [_document("a")],
            lambda request: httpx.Response(404),
        )

        record = results[0]
        assert record.status_code == 404
        assert record.status_text == "Not Found"
        assert record.error_category == ErrorCategory.CLIENT_ERROR
        assert record.error_msg == "Client error: 404 Not Found"
        assert record.error_detail == "status code: 404, reason: Not Found"
        assert record.is_likely_local_issue is False
        assert summary.remote_issues == 1

        stored = store.get_record(record.id)
        assert stored.status_code == 404
        assert stored.error_category == ErrorCategory.CLIENT_ERROR

    @given(status=st.integers(min_value=500, max_value=599))
    @settings(max_examples=20, deadline=None)
    def test_server_errors(self, status: int) -> None:
        _, results, _ = _probe([_document("a")], lambda request: httpx.Response(status))

        record = results[0]
        assert record.status_code == status
        assert record.error_category == ErrorCategory.SERVER_ERROR
        assert record.error_msg.startswith(f"Server error: {status}")
        assert record.is_likely_local_issue is False

    @given(status=st.sampled_from([200, 201, 204, 206, 304]))
    @settings(max_examples=10, deadline=None)
    def test_non_error_statuses_are_success(self, status: int) -> None:
        _, results, summary = _probe(
            [_document("a")],
            lambda request: httpx.Response(status, headers={"x-test": "1"}),
        )

        record = results[0]
        assert record.status_code == status
        assert record.error_category is None
        assert record.error_msg is None
        assert "x-test: 1" in record.headers
        assert summary.success == 1

    def test_probe_uses_head_and_browser_headers(self) -> None:
        seen = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(200)

        _probe([_document("a", url="https://data.example.net/x")], handler)

        assert len(seen) == 1
        assert seen[0].method == "HEAD"
        assert str(seen[0].url) == "https://data.example.net/x"
        assert "Chrome" in seen[0].headers["user-agent"]
        assert seen[0].headers["accept-language"] == "en-US,en;q=0.5"

    def test_redirects_are_followed(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            if request.url.path == "/old":
                return httpx.Response(301, headers={"location": "https://data.example.net/new"})
            return httpx.Response(200)

        _, results, _ = _probe([_document("a", url="https://data.example.net/old")], handler)

        assert results[0].status_code == 200
        assert results[0].error_category is None

    def test_redirect_loop_is_too_many_redirects(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(302, headers={"location": str(request.url)})

        _, results, summary = _probe(
            [_document("a")],
            handler,
            config=MonitorConfig(max_redirects=2),
        )

        record = results[0]
        assert record.status_code is None
        assert record.error_category == ErrorCategory.TOO_MANY_REDIRECTS
        assert record.is_likely_local_issue is False
        assert summary.remote_issues == 1


class TestTransportErrorProperty:
    """Requests without a response are classified from the error."""

    def test_timeout_is_local(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ReadTimeout("timed out", request=request)

        store, results, summary = _probe([_document("a")], handler)

        record = results[0]
        assert record.status_code is None
        assert record.error_category == ErrorCategory.TIMEOUT
        assert record.is_likely_local_issue is True
        assert "timeout: True" in record.error_detail
        assert summary.local_issues == 1
        assert store.get_record(record.id).is_likely_local_issue is True

    def test_connection_refused_is_remote(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            error = httpx.ConnectError("All connection attempts failed", request=request)
            error.__cause__ = ConnectionRefusedError(111, "Connection refused")
            raise error

        _, results, _ = _probe([_document("a")], handler)

        assert results[0].error_category == ErrorCategory.CONNECTION_REFUSED
        assert results[0].is_likely_local_issue is False
        assert "connect: True" in results[0].error_detail

    def test_unexpected_exception_is_unknown(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            raise RuntimeError("handler exploded")

        _, results, _ = _probe([_document("a")], handler)

        assert results[0].error_category == ErrorCategory.UNKNOWN
        assert results[0].error_msg == "handler exploded"


class TestPlaceholderProperty:
    """Only documents with a URL are probed and stored."""

    def test_documents_without_url_are_skipped(self) -> None:
        documents = [
            _document("a"),
            _document("b", with_url=False),
            _document("c"),
        ]
        store, results, summary = _probe(documents, lambda request: httpx.Response(200))

        assert store.count() == 2
        assert sorted(r.raw_id for r in results) == ["a", "c"]
        assert summary.total == 2
        assert summary.skipped_without_url == 1

    def test_blank_url_counts_as_missing(self) -> None:
        store, results, summary = _probe(
            [_document("a", url="   ")],
            lambda request: httpx.Response(200),
        )

        assert results == []
        assert store.count() == 0
        assert summary.skipped_without_url == 1

    def test_no_documents_writes_nothing(self) -> None:
        store, results, summary = _probe([], lambda request: httpx.Response(200))

        assert results == []
        assert store.count() == 0
        assert summary.total == 0

    def test_record_fields_come_from_document(self) -> None:
        store, results, _ = _probe(
            [_document("a", url="https://data.example.net/a")],
            lambda request: httpx.Response(200),
        )

        stored = store.get_record("obs-1")
        assert stored.raw_id == "a"
        assert stored.url == "https://data.example.net/a"
        assert stored.name == "Dataset a"
        assert stored.center_name == "center-a"
        assert stored.date_published == "2023-05-01"
        assert stored.response_time_ms is not None
        assert stored.response_time_ms >= 0

    @given(
        count=st.integers(min_value=1, max_value=30),
        max_concurrent=st.integers(min_value=1, max_value=8),
    )
    @settings(max_examples=20, deadline=None)
    def test_every_record_is_probed_once(self, count: int, max_concurrent: int) -> None:
        hits = []
        in_flight = {"now": 0, "peak": 0}

        async def handler(request: httpx.Request) -> httpx.Response:
            in_flight["now"] += 1
            in_flight["peak"] = max(in_flight["peak"], in_flight["now"])
            await asyncio.sleep(0)
            hits.append(str(request.url))
            in_flight["now"] -= 1
            return httpx.Response(200)

        documents = [
            _document(f"d{i}", url=f"https://data.example.net/{i}") for i in range(count)
        ]
        store, results, summary = _probe(
            documents,
            handler,
            config=MonitorConfig(max_concurrent=max_concurrent),
        )

        assert sorted(hits) == sorted(f"https://data.example.net/{i}" for i in range(count))
        assert len(results) == count
        assert store.count() == count
        assert summary.success == count
        assert in_flight["peak"] <= max_concurrent

    @given(
        count=st.integers(min_value=1, max_value=12),
        max_concurrent=st.integers(min_value=1, max_value=4),
    )
    @settings(max_examples=20, deadline=None)
    def test_all_placeholders_exist_before_first_request(self, count: int, max_concurrent: int) -> None:
        store = AnalyticsStore()
        rows_seen = []
        untouched_at_start = []

        def handler(request: httpx.Request) -> httpx.Response:
            if not rows_seen:
                records = [store.get_record(f"obs-{i}") for i in range(1, count + 1)]
                untouched_at_start.append(
                    all(r is not None and r.status_code is None for r in records)
                )
            rows_seen.append(store.count())
            return httpx.Response(200)

        documents = [
            _document(f"d{i}", url=f"https://data.example.net/{i}") for i in range(count)
        ]

        async def scenario():
            async with HealthProber(
                store,
                config=MonitorConfig(max_concurrent=max_concurrent),
                transport=httpx.MockTransport(handler),
                id_factory=_id_factory(),
            ) as prober:
                await prober.probe_all(documents)

        asyncio.run(scenario())

        assert rows_seen == [count] * count
        assert untouched_at_start == [True]
        assert store.get_record("obs-1").status_code == 200
        store.close()


class TestLocalIssueWarningProperty:
    """A high share of local failures produces one warning."""

    def _handler(self, failing: set):
        def handler(request: httpx.Request) -> httpx.Response:
            if request.url.path.strip("/") in failing:
                raise httpx.ConnectError("[Errno 101] Network is unreachable", request=request)
            return httpx.Response(200)
        return handler

    def _warnings(self, logger: AuditLogger):
        return [e for e in logger.entries if e.level == LogLevel.WARN]

    def test_two_of_ten_local_failures_warn(self) -> None:
        logger = AuditLogger(output_format="json", output_stream=StringIO())
        documents = [
            _document(f"d{i}", url=f"https://data.example.net/{i}") for i in range(10)
        ]

        _, results, summary = _probe(documents, self._handler({"0", "1"}), logger=logger)

        assert summary.local_issues == 2
        assert summary.success == 8
        local = [r for r in results if r.is_likely_local_issue]
        assert {r.error_category for r in local} == {ErrorCategory.NETWORK_CONNECTION}

        warnings = self._warnings(logger)
        assert len(warnings) == 1
        assert "(2/10)" in warnings[0].message

    def test_ratio_at_threshold_does_not_warn(self) -> None:
        logger = AuditLogger(output_format="json", output_stream=StringIO())
        documents = [
            _document(f"d{i}", url=f"https://data.example.net/{i}") for i in range(10)
        ]

        _, _, summary = _probe(documents, self._handler({"0"}), logger=logger)

        assert summary.local_issue_ratio == 0.1
        assert self._warnings(logger) == []


class TestRetryProperty:
    """With retries configured, transient failures are attempted again."""

    def test_transient_failure_then_success(self) -> None:
        calls = []
        sleeps = []

        async def fake_sleep(delay: float) -> None:
            sleeps.append(delay)

        def handler(request: httpx.Request) -> httpx.Response:
            calls.append(request)
            return httpx.Response(503 if len(calls) < 3 else 200)

        manager = RetryManager(RetryConfig(max_retries=3, base_delay_seconds=0.5), sleep=fake_sleep)
        _, results, _ = _probe([_document("a")], handler, retry_manager=manager)

        assert len(calls) == 3
        assert sleeps == [0.5, 1.0]
        assert results[0].status_code == 200
        assert results[0].error_category is None

    def test_client_errors_are_not_retried(self) -> None:
        calls = []

        async def fake_sleep(delay: float) -> None:
            raise AssertionError("should not sleep")

        def handler(request: httpx.Request) -> httpx.Response:
            calls.append(request)
            return httpx.Response(404)

        manager = RetryManager(RetryConfig(max_retries=3), sleep=fake_sleep)
        _, results, _ = _probe([_document("a")], handler, retry_manager=manager)

        assert len(calls) == 1
        assert results[0].error_category == ErrorCategory.CLIENT_ERROR


class TestSummarize:
    def test_counts(self) -> None:
        _, results, _ = _probe(
            [_document("ok"), _document("bad")],
            lambda request: httpx.Response(500 if "bad" in request.url.path else 200),
        )
        summary = summarize(results, skipped_without_url=4)

        assert summary.total == 2
        assert summary.success == 1
        assert summary.remote_issues == 1
        assert summary.local_issues == 0
        assert summary.skipped_without_url == 4
