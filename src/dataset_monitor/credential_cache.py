"""
Per-provider credential cache.

Holds at most one Credential per provider name. A cached credential is
returned unchanged until it expires; after that the next caller fetches a
fresh ticket and replaces the entry. Concurrent refreshes for the same
provider may both hit the ticket endpoint; the last one to finish wins.
"""

from datetime import datetime, timedelta
from typing import Callable, Optional

from .audit_logger import AuditLogger
from .config import ProviderConfig
from .enums import LogLevel
from .models import Credential, utc_now
from .provider_client import ProviderClient


class CredentialCache:
    """Caches provider tickets keyed by provider name."""

    COMPONENT = "credential_cache"

    def __init__(
        self,
        client: ProviderClient,
        safety_margin_seconds: int = 300,
        clock: Callable[[], datetime] = utc_now,
        logger: Optional[AuditLogger] = None,
    ) -> None:
        """
        Initialize the cache.

        Args:
            client: Provider client used to fetch tickets
            safety_margin_seconds: Subtracted from the ticket lifetime so a
                credential is refreshed before the provider rejects it
            clock: Returns the current aware UTC time
            logger: Optional audit logger
        """
        self._client = client
        self._safety_margin = timedelta(seconds=safety_margin_seconds)
        self._clock = clock
        self._logger = logger
        self._entries: dict[str, Credential] = {}

    def _log(self, level: LogLevel, message: str, data: Optional[dict] = None) -> None:
        if self._logger:
            self._logger.log(level, self.COMPONENT, message, data)

    def get(self, provider_name: str) -> Optional[Credential]:
        """Return the cached credential for a provider, valid or not."""
        return self._entries.get(provider_name)

    def invalidate(self, provider_name: str) -> None:
        """Drop one provider's cached credential."""
        self._entries.pop(provider_name, None)

    async def get_or_refresh(self, provider: ProviderConfig) -> Credential:
        """
        Return a valid credential for the provider, fetching one if needed.

        Raises:
            AuthError: If a fresh ticket cannot be obtained
        """
        cached = self._entries.get(provider.name)
        if cached is not None and cached.is_valid(self._clock()):
            return cached

        ticket = await self._client.fetch_ticket(provider)
        credential = Credential(
            token=ticket.token,
            version=ticket.version,
            services=ticket.services,
            expires_at=self._clock()
            + timedelta(seconds=ticket.expires_in_seconds)
            - self._safety_margin,
        )
        # Whole-entry replacement; other providers' entries are untouched
        self._entries[provider.name] = credential

        self._log(LogLevel.INFO, f"Obtained ticket for {provider.name}", {
            "provider": provider.name,
            "version": credential.version,
            "services": [s.name for s in credential.services],
            "expires_at": credential.expires_at.isoformat(),
        })
        return credential
