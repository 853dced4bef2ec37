"""
Discovery engine: finds dataset ids a provider has that we have not seen yet.
"""

from typing import Any, Optional

from .audit_logger import AuditLogger
from .config import ProviderConfig
from .credential_cache import CredentialCache
from .document_store import DocumentStore
from .enums import LogLevel
from .exceptions import DiscoveryError
from .provider_client import DATASET_LIST_SERVICE, ProviderClient


def extract_dataset_ids(items: list[Any]) -> list[str]:
    """
    Take the string 'id' of every object in a dataset list.

    Entries that are not objects or lack a string id are skipped. Order is
    kept and duplicates are collapsed to their first occurrence.
    """
    seen: set[str] = set()
    ids = []
    for item in items:
        if not isinstance(item, dict):
            continue
        dataset_id = item.get("id")
        if not isinstance(dataset_id, str) or not dataset_id or dataset_id in seen:
            continue
        seen.add(dataset_id)
        ids.append(dataset_id)
    return ids


class DiscoveryEngine:
    """Computes and records the set difference between listed and known ids."""

    COMPONENT = "discovery"

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

    def _log(self, level: LogLevel, message: str, data: Optional[dict] = None) -> None:
        if self._logger:
            self._logger.log(level, self.COMPONENT, message, data)

    async def discover(self, provider: ProviderConfig) -> int:
        """
        Record ids the provider lists that are not yet known as pending.

        Returns:
            Number of newly recorded ids (0 when nothing is new; nothing is
            written in that case)

        Raises:
            AuthError: If no credential can be obtained
            DiscoveryError: If the list service is missing, fails, or returns
                something other than a JSON array
            StorageError: If the document store cannot be read or written
        """
        credential = await self._credentials.get_or_refresh(provider)
        list_url = credential.service_url(DATASET_LIST_SERVICE)
        if list_url is None:
            raise DiscoveryError(
                code="SERVICE_MISSING",
                message=f"{provider.name} does not advertise {DATASET_LIST_SERVICE}",
                details={"provider": provider.name},
            )

        items = await self._client.list_dataset_ids(provider, credential, list_url)
        fetched = extract_dataset_ids(items)
        known = self._store.get_known_ids(provider.name)
        new_ids = [dataset_id for dataset_id in fetched if dataset_id not in known]

        self._log(LogLevel.INFO, f"{provider.name}: {len(fetched)} ids listed, {len(new_ids)} new", {
            "provider": provider.name,
            "listed": len(fetched),
            "skipped_entries": len(items) - len(fetched),
            "known": len(known),
            "new": len(new_ids),
        })

        if not new_ids:
            return 0
        return self._store.save_pending_ids(provider.name, new_ids)
