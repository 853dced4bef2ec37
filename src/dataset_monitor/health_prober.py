"""
Health prober: bounded-concurrency URL checks for stored datasets.

A probe run has three phases:
1. Build one HealthRecord per document that has a URL and bulk-insert them
   as placeholders (result fields empty).
2. Probe every URL with HEAD through a fixed pool of workers draining a queue.
3. Bulk-update the placeholders with the results.

Probe failures never escape a worker; each one becomes a classified record.
"""

import asyncio
import time
import uuid
from typing import Callable, Iterable, Optional

import httpx

from .analytics_store import AnalyticsStore
from .audit_logger import AuditLogger
from .classifier import classify, error_chain_text, is_likely_local_issue
from .config import MonitorConfig
from .enums import ErrorCategory, LogLevel
from .exceptions import ProbeError
from .models import DatasetDocument, HealthRecord, ProbeOutcome, ProbeSummary, utc_now
from .retry_manager import RetryManager

# Some hosts reject HEAD requests without a browser-like identity
PROBE_HEADERS = {
    "User-Agent": (
        "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
        "(KHTML, like Gecko) Chrome/127.0.0.0 Safari/537.36"
    ),
    "Accept": "text/html,application/xhtml+xml,application/xml;q=0.9,*/*;q=0.8",
    "Accept-Language": "en-US,en;q=0.5",
    "Connection": "keep-alive",
}


def reason_phrase(status_code: int) -> str:
    return httpx.codes.get_reason_phrase(status_code) or "Unknown"


def flatten_headers(headers: httpx.Headers) -> str:
    return ", ".join(f"{key}: {value}" for key, value in headers.multi_items())


def outcome_from_response(response: httpx.Response) -> ProbeOutcome:
    """Success for anything but 4xx/5xx; error statuses keep their code."""
    status_code = response.status_code
    status_text = reason_phrase(status_code)

    if response.is_server_error or response.is_client_error:
        category = classify(status_code)
        kind = "Server error" if category is ErrorCategory.SERVER_ERROR else "Client error"
        return ProbeOutcome(
            status_code=status_code,
            status_text=status_text,
            error_category=category,
            error_msg=f"{kind}: {status_code} {status_text}",
            error_detail=f"status code: {status_code}, reason: {status_text}",
        )

    return ProbeOutcome(
        status_code=status_code,
        status_text=status_text,
        headers=flatten_headers(response.headers),
    )


def probe_error(url: str, error: BaseException) -> ProbeError:
    """Wrap a request failure with its category as the error code."""
    category = classify(error)
    return ProbeError(
        code=category.value,
        message=str(error) or type(error).__name__,
        details={"url": url, "error_type": type(error).__name__},
    )


def outcome_from_error(error: ProbeError) -> ProbeOutcome:
    """Classified outcome for a request that produced no response."""
    cause = error.__cause__ or error
    category = ErrorCategory(error.code)
    detail = (
        f"error: {error.message}\n"
        f"error chain: {error_chain_text(cause)}\n"
        f"timeout: {category is ErrorCategory.TIMEOUT}\n"
        f"connect: {isinstance(cause, httpx.ConnectError)}\n"
        f"redirect: {isinstance(cause, httpx.TooManyRedirects)}"
    )
    return ProbeOutcome(
        error_category=category,
        error_msg=error.message,
        error_detail=detail,
    )


def summarize(records: Iterable[HealthRecord], skipped_without_url: int = 0) -> ProbeSummary:
    """Count successes and local/remote failures of a finished probe run."""
    summary = ProbeSummary(skipped_without_url=skipped_without_url)
    for record in records:
        summary.total += 1
        if record.error_category is None:
            summary.success += 1
        elif record.is_likely_local_issue:
            summary.local_issues += 1
        else:
            summary.remote_issues += 1
    return summary


class HealthProber:
    """
    Probes dataset URLs and records the results in the analytics store.

    Use as an async context manager, or call close() when done.
    """

    COMPONENT = "health_prober"

    def __init__(
        self,
        store: AnalyticsStore,
        config: Optional[MonitorConfig] = None,
        retry_manager: Optional[RetryManager] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        logger: Optional[AuditLogger] = None,
        id_factory: Callable[[], str] = lambda: str(uuid.uuid4()),
    ) -> None:
        """
        Initialize the prober.

        Args:
            store: Analytics store receiving placeholders and results
            config: Probe behavior (timeout, concurrency, redirects, warning ratio)
            retry_manager: Optional retry policy; one attempt per URL without it
            transport: Optional httpx transport (e.g. httpx.MockTransport)
            logger: Optional audit logger
            id_factory: Produces the synthetic id of each observation
        """
        self._store = store
        self._config = config or MonitorConfig()
        self._retry_manager = retry_manager
        self._transport = transport
        self._logger = logger
        self._id_factory = id_factory
        self._client: Optional[httpx.AsyncClient] = None
        self.last_summary: Optional[ProbeSummary] = None

    async def __aenter__(self) -> "HealthProber":
        self._ensure_client()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()

    def _ensure_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(
                headers=PROBE_HEADERS,
                timeout=httpx.Timeout(self._config.http_timeout_seconds),
                follow_redirects=True,
                max_redirects=self._config.max_redirects,
                # Availability is what matters, not certificate validity
                verify=False,
                transport=self._transport,
                limits=httpx.Limits(max_connections=self._config.max_concurrent),
            )
        return self._client

    def _log(self, level: LogLevel, message: str, data: Optional[dict] = None) -> None:
        if self._logger:
            self._logger.log(level, self.COMPONENT, message, data)

    def build_records(self, documents: Iterable[DatasetDocument]) -> tuple[list[HealthRecord], int]:
        """
        One placeholder record per document with a URL.

        Returns:
            Tuple of (records, number of documents skipped for lacking a URL)
        """
        records = []
        skipped = 0
        check_time = utc_now()
        for document in documents:
            url = document.extract_url()
            if url is None:
                skipped += 1
                continue
            records.append(HealthRecord(
                id=self._id_factory(),
                raw_id=document.raw_id,
                url=url,
                name=document.extract_name(),
                center_name=document.center_name,
                date_published=document.extract_date_published(),
                check_time=check_time,
            ))
        return records, skipped

    async def _send_head(self, url: str) -> httpx.Response:
        """
        Send one HEAD request under the overall timeout.

        Raises:
            ProbeError: For any failure that produced no response
        """
        client = self._ensure_client()
        try:
            return await asyncio.wait_for(
                client.head(url),
                timeout=self._config.http_timeout_seconds,
            )
        except Exception as e:
            raise probe_error(url, e) from e

    async def probe_url(self, url: str) -> ProbeOutcome:
        """Probe one URL. Never raises for request failures."""
        try:
            response = await self._send_head(url)
        except ProbeError as e:
            return outcome_from_error(e)
        return outcome_from_response(response)

    async def probe_record(self, record: HealthRecord) -> HealthRecord:
        """Probe a record's URL and fill in its result fields."""
        start_time = time.perf_counter()
        if self._retry_manager is not None:
            outcome, attempts = await self._retry_manager.execute_probe_with_retry(
                lambda: self.probe_url(record.url)
            )
        else:
            outcome, attempts = await self.probe_url(record.url), 1

        record.response_time_ms = int((time.perf_counter() - start_time) * 1000)
        record.check_time = utc_now()
        record.status_code = outcome.status_code
        record.status_text = outcome.status_text
        record.error_category = outcome.error_category
        record.error_msg = outcome.error_msg
        record.error_detail = outcome.error_detail
        record.headers = outcome.headers
        record.is_likely_local_issue = (
            outcome.error_category is not None and is_likely_local_issue(outcome.error_category)
        )

        self._log(LogLevel.DEBUG, f"Checked {record.url}", {
            "provider": record.center_name,
            "dataset_id": record.raw_id,
            "status_code": record.status_code,
            "error_category": str(record.error_category) if record.error_category else None,
            "attempts": attempts,
            "response_time_ms": record.response_time_ms,
        })
        return record

    async def _run_workers(self, records: list[HealthRecord]) -> list[HealthRecord]:
        queue: asyncio.Queue[HealthRecord] = asyncio.Queue()
        for record in records:
            queue.put_nowait(record)

        results: list[HealthRecord] = []

        async def worker() -> None:
            while True:
                try:
                    record = queue.get_nowait()
                except asyncio.QueueEmpty:
                    return
                results.append(await self.probe_record(record))

        worker_count = max(1, min(self._config.max_concurrent, len(records)))
        await asyncio.gather(*(worker() for _ in range(worker_count)))
        return results

    async def probe_all(self, documents: Iterable[DatasetDocument]) -> list[HealthRecord]:
        """
        Probe every document's URL and persist the results.

        Placeholders for all records are inserted before the first request is
        sent; results are written with one bulk update at the end.

        Returns:
            Completed records, in completion order

        Raises:
            StorageError: If the insert or the update fails
        """
        records, skipped = self.build_records(documents)
        self._log(LogLevel.INFO, f"Probing {len(records)} URLs", {
            "records": len(records),
            "skipped_without_url": skipped,
            "max_concurrent": self._config.max_concurrent,
        })

        self._store.insert(records)
        results = await self._run_workers(records) if records else []
        self._store.update(results)

        summary = summarize(results, skipped)
        self.last_summary = summary
        self._log(LogLevel.INFO, (
            f"Probe finished: {summary.success}/{summary.total} succeeded, "
            f"{summary.local_issues} local issues, {summary.remote_issues} remote issues"
        ), {
            "total": summary.total,
            "success": summary.success,
            "local_issues": summary.local_issues,
            "remote_issues": summary.remote_issues,
            "skipped_without_url": summary.skipped_without_url,
        })
        if summary.total and summary.local_issue_ratio > self._config.local_issue_warning_ratio:
            self._log(LogLevel.WARN, (
                f"Many local network issues ({summary.local_issues}/{summary.total}), "
                "check this host's connectivity"
            ), {
                "local_issues": summary.local_issues,
                "total": summary.total,
                "ratio": round(summary.local_issue_ratio, 3),
            })
        return results

    async def close(self) -> None:
        """Close the HTTP client."""
        if self._client:
            await self._client.aclose()
            self._client = None
