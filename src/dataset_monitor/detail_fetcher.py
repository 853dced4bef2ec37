"""
Detail fetcher: turns pending dataset ids into stored dataset documents.

Ids whose details cannot be fetched or parsed stay pending and are retried on
the next cycle. Ids that were stored are marked processed in one bulk write,
even when a later storage failure aborts the run.
"""

from typing import Optional

from .audit_logger import AuditLogger
from .config import ProviderConfig
from .credential_cache import CredentialCache
from .document_store import DocumentStore
from .enums import LogLevel
from .exceptions import DetailFetchError
from .models import DatasetDocument
from .provider_client import DATASET_DETAILS_SERVICE, ProviderClient


class DetailFetcher:
    """Fetches, stamps and upserts the details of pending ids."""

    COMPONENT = "detail_fetcher"

    def __init__(
        self,
        client: ProviderClient,
        credentials: CredentialCache,
        store: DocumentStore,
        logger: Optional[AuditLogger] = None,
    ) -> None:
        self._client = client
        self._credentials = credentials
        self._store = store
        self._logger = logger

    def _log_info(self, message: str, data: Optional[dict] = None) -> None:
        if self._logger:
            self._logger.log(LogLevel.INFO, self.COMPONENT, message, data)

    def _log_error(self, message: str, error: Exception, data: Optional[dict] = None) -> None:
        if self._logger:
            self._logger.error(self.COMPONENT, message, error, data)

    async def process_pending(self, provider: ProviderConfig) -> int:
        """
        Fetch and store every pending id of a provider.

        Returns:
            Number of documents stored in this call

        Raises:
            AuthError: If no credential can be obtained
            DetailFetchError: If the provider does not advertise the detail service
            StorageError: If a document cannot be stored (ids stored before
                the failure are still marked processed)
        """
        pending = self._store.get_pending_ids(provider.name)
        if not pending:
            return 0

        credential = await self._credentials.get_or_refresh(provider)
        details_url = credential.service_url(DATASET_DETAILS_SERVICE)
        if details_url is None:
            raise DetailFetchError(
                code="SERVICE_MISSING",
                message=f"{provider.name} does not advertise {DATASET_DETAILS_SERVICE}",
                details={"provider": provider.name},
            )

        self._log_info(f"{provider.name}: fetching details of {len(pending)} pending ids", {
            "provider": provider.name,
            "pending": len(pending),
            "url": details_url,
        })

        stored: list[str] = []
        failed = 0
        try:
            for dataset_id in pending:
                try:
                    body = await self._client.fetch_dataset_detail(
                        provider, credential, details_url, dataset_id
                    )
                except DetailFetchError as e:
                    # Stays pending for the next cycle
                    failed += 1
                    self._log_error(
                        f"{provider.name}: details of {dataset_id} unavailable",
                        e,
                        {"provider": provider.name, "dataset_id": dataset_id},
                    )
                    continue

                document = DatasetDocument.from_body(body, provider.name, dataset_id)
                self._store.upsert_dataset(document)
                stored.append(dataset_id)
        finally:
            if stored:
                self._store.mark_processed(provider.name, stored)

        self._log_info(f"{provider.name}: stored {len(stored)} datasets", {
            "provider": provider.name,
            "stored": len(stored),
            "failed": failed,
        })
        return len(stored)
