"""
Monitor pipeline for the dataset monitor system.

This module provides the orchestration layer that coordinates all components:
- Credential cache and provider client for authenticated provider calls
- Discovery of new dataset ids and detail fetching into the document store
- URL health probing with results written to the analytics store

Providers are processed one after another. A provider whose ticket, list or
detail service fails is logged and skipped; storage failures end the run.
"""

from dataclasses import dataclass
from typing import Optional

import httpx

from .analytics_store import AnalyticsStore
from .audit_logger import AuditLogger
from .config import SystemConfig
from .credential_cache import CredentialCache
from .detail_fetcher import DetailFetcher
from .discovery import DiscoveryEngine
from .document_store import DocumentStore
from .enums import LogLevel
from .exceptions import AuthError, DetailFetchError, DiscoveryError
from .health_prober import HealthProber
from .models import ProbeSummary
from .provider_client import ProviderClient
from .retry_manager import RetryManager


@dataclass
class ProviderCycleResult:
    """Outcome of one provider's fetch cycle."""

    provider: str
    new_ids: int = 0
    stored: int = 0
    error: Optional[str] = None
    error_code: Optional[str] = None

    @property
    def success(self) -> bool:
        return self.error is None


class MonitorPipeline:
    """
    Owns every component of a monitoring run.

    Use as an async context manager so HTTP clients and the analytics store
    are closed when the run ends.
    """

    COMPONENT = "pipeline"

    def __init__(
        self,
        config: SystemConfig,
        document_store: Optional[DocumentStore] = None,
        analytics_store: Optional[AnalyticsStore] = None,
        logger: Optional[AuditLogger] = None,
        provider_transport: Optional[httpx.AsyncBaseTransport] = None,
        probe_transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        """
        Initialize the pipeline.

        Args:
            config: System configuration
            document_store: Optional document store; built from config if omitted
            analytics_store: Optional analytics store; opened from config on
                first use if omitted
            logger: Optional audit logger shared by all components
            provider_transport: Optional httpx transport for provider calls
            probe_transport: Optional httpx transport for URL probes
        """
        self._config = config
        self._logger = logger
        self._document_store = document_store or DocumentStore(
            config.document_store.path,
            config.document_store.hmac_secret,
        )
        self._analytics_store = analytics_store
        self._owns_analytics_store = analytics_store is None
        self._probe_transport = probe_transport

        self._client = ProviderClient(
            timeout=config.monitor.http_timeout_seconds,
            transport=provider_transport,
        )
        self._credentials = CredentialCache(
            self._client,
            safety_margin_seconds=config.monitor.credential_safety_margin_seconds,
            logger=logger,
        )
        self._discovery = DiscoveryEngine(
            self._client, self._credentials, self._document_store, logger=logger
        )
        self._detail_fetcher = DetailFetcher(
            self._client, self._credentials, self._document_store, logger=logger
        )
        self._prober: Optional[HealthProber] = None

    async def __aenter__(self) -> "MonitorPipeline":
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()

    def _log_info(self, message: str, data: Optional[dict] = None) -> None:
        if self._logger:
            self._logger.log(LogLevel.INFO, self.COMPONENT, message, data)

    def _log_error(self, message: str, error: Exception, data: Optional[dict] = None) -> None:
        if self._logger:
            self._logger.error(self.COMPONENT, message, error, data)

    @property
    def config(self) -> SystemConfig:
        return self._config

    @property
    def document_store(self) -> DocumentStore:
        return self._document_store

    @property
    def credentials(self) -> CredentialCache:
        return self._credentials

    @property
    def analytics_store(self) -> AnalyticsStore:
        if self._analytics_store is None:
            self._analytics_store = AnalyticsStore(self._config.analytics_store.path)
        return self._analytics_store

    @property
    def prober(self) -> HealthProber:
        if self._prober is None:
            retry = self._config.retry
            self._prober = HealthProber(
                self.analytics_store,
                config=self._config.monitor,
                retry_manager=RetryManager(retry) if retry.max_retries > 0 else None,
                transport=self._probe_transport,
                logger=self._logger,
            )
        return self._prober

    async def fetch_provider(self, provider) -> ProviderCycleResult:
        """
        Discover new ids of one provider and fetch their details.

        Pending ids left over from earlier cycles are fetched too.

        Raises:
            StorageError: If the document store fails
        """
        result = ProviderCycleResult(provider=provider.name)
        try:
            result.new_ids = await self._discovery.discover(provider)
            result.stored = await self._detail_fetcher.process_pending(provider)
        except (AuthError, DiscoveryError, DetailFetchError) as e:
            result.error = e.message
            result.error_code = e.code
            self._log_error(f"Skipping {provider.name} for this cycle", e, {
                "provider": provider.name,
            })
        return result

    async def fetch_all_providers(self) -> list[ProviderCycleResult]:
        """Run the fetch cycle for every enabled provider, one at a time."""
        results = []
        for provider in self._config.enabled_providers:
            self._log_info(f"Fetching {provider.name}", {"provider": provider.name})
            result = await self.fetch_provider(provider)
            self._log_info(f"Finished {provider.name}", {
                "provider": provider.name,
                "new_ids": result.new_ids,
                "stored": result.stored,
                "success": result.success,
            })
            results.append(result)
        return results

    async def check_all_urls(self) -> ProbeSummary:
        """
        Probe the URLs of every stored dataset of the enabled providers.

        Raises:
            StorageError: If a store read or write fails
        """
        documents = []
        for provider in self._config.enabled_providers:
            provider_documents = self._document_store.get_datasets(provider.name)
            self._log_info(f"{provider.name} has {len(provider_documents)} datasets", {
                "provider": provider.name,
                "datasets": len(provider_documents),
            })
            documents.extend(provider_documents)

        self._log_info(f"Checking {len(documents)} datasets", {"datasets": len(documents)})
        prober = self.prober
        await prober.probe_all(documents)
        return prober.last_summary

    async def run_cycle(self) -> tuple[list[ProviderCycleResult], ProbeSummary]:
        """Fetch from all providers, then probe all URLs."""
        fetch_results = await self.fetch_all_providers()
        summary = await self.check_all_urls()
        return fetch_results, summary

    async def close(self) -> None:
        await self._client.close()
        if self._prober is not None:
            await self._prober.close()
            self._prober = None
        if self._owns_analytics_store and self._analytics_store is not None:
            self._analytics_store.close()
            self._analytics_store = None
