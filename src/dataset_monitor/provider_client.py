"""
Provider API client.

Async client for the provider ("data center") HTTP contract: ticket
acquisition, the dataset id list service, and the dataset detail service.
Redirects are never followed and nothing is retried here; a failed call fails
the current unit of work with the response body captured in the error details.
"""

import json
import re
from dataclasses import dataclass
from typing import Any, Optional

import httpx

from .config import ProviderConfig
from .exceptions import AuthError, DetailFetchError, DiscoveryError, ParseError
from .models import Credential, ServiceEndpoint

# Provider service names advertised in the ticket response
DATASET_LIST_SERVICE = "DATASET_LIST"
DATASET_DETAILS_SERVICE = "GET_DATASET_DETAILS"

DEFAULT_API_VERSION = "1.0"

# Longest body excerpt kept in error details
MAX_BODY_EXCERPT = 500

# C0 controls and DEL, keeping tab, line feed and carriage return
_CONTROL_CHARS = re.compile(r"[\x00-\x08\x0b\x0c\x0e-\x1f\x7f]")


def sanitize_control_characters(text: str) -> str:
    """Strip control characters that break JSON parsing, except \\n, \\r and \\t."""
    return _CONTROL_CHARS.sub("", text)


def _excerpt(text: str) -> str:
    if len(text) <= MAX_BODY_EXCERPT:
        return text
    return text[:MAX_BODY_EXCERPT] + "..."


@dataclass
class TicketResponse:
    """Parsed ticket endpoint payload."""

    token: str
    expires_in_seconds: int
    services: tuple[ServiceEndpoint, ...]

    @property
    def version(self) -> str:
        """API version: the first service's version, '1.0' when none is listed."""
        if self.services and self.services[0].version:
            return self.services[0].version
        return DEFAULT_API_VERSION


def parse_ticket_payload(payload: Any) -> TicketResponse:
    """
    Parse `{ticket: {token, expires}, serviceList: [{name, version, url}]}`.

    Raises:
        ValueError: If a required field is missing or has the wrong type
    """
    if not isinstance(payload, dict):
        raise ValueError("ticket response is not a JSON object")
    ticket = payload.get("ticket")
    if not isinstance(ticket, dict):
        raise ValueError("ticket response has no 'ticket' object")

    token = ticket.get("token")
    if not isinstance(token, str) or not token:
        raise ValueError("ticket has no token")
    expires = ticket.get("expires")
    if isinstance(expires, bool) or not isinstance(expires, (int, float)):
        raise ValueError("ticket has no numeric 'expires'")

    services = []
    for item in payload.get("serviceList") or []:
        if not isinstance(item, dict):
            continue
        name, url = item.get("name"), item.get("url")
        if not isinstance(name, str) or not isinstance(url, str):
            continue
        version = item.get("version")
        services.append(ServiceEndpoint(
            name=name,
            version=str(version) if version is not None else DEFAULT_API_VERSION,
            url=url,
        ))

    return TicketResponse(
        token=token,
        expires_in_seconds=int(expires),
        services=tuple(services),
    )


class ProviderClient:
    """
    Async client for provider APIs.

    Use as an async context manager, or call close() when done. An httpx
    transport may be injected for testing.
    """

    def __init__(
        self,
        timeout: float = 30.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        """
        Initialize the provider client.

        Args:
            timeout: Per-request timeout in seconds
            transport: Optional httpx transport (e.g. httpx.MockTransport)
        """
        self._timeout = timeout
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None

    async def __aenter__(self) -> "ProviderClient":
        self._ensure_client()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()

    def _ensure_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(
                timeout=httpx.Timeout(self._timeout),
                follow_redirects=False,
                transport=self._transport,
            )
        return self._client

    @staticmethod
    def _api_headers(credential: Credential) -> dict[str, str]:
        return {"token": credential.token, "version": credential.version}

    async def fetch_ticket(self, provider: ProviderConfig) -> TicketResponse:
        """
        Request a fresh access ticket for a provider.

        Raises:
            AuthError: If the endpoint is unreachable, answers non-2xx, or
                returns a body that cannot be parsed
        """
        client = self._ensure_client()
        details = {"provider": provider.name, "url": provider.url}
        try:
            response = await client.get(provider.url, headers={"secretKey": provider.secret_key})
        except httpx.HTTPError as e:
            raise AuthError(
                code="TICKET_UNREACHABLE",
                message=f"Ticket endpoint for {provider.name} unreachable: {e}",
                details={**details, "cause": str(e)},
            ) from e

        if not response.is_success:
            raise AuthError(
                code="TICKET_REJECTED",
                message=f"Ticket endpoint for {provider.name} returned HTTP {response.status_code}",
                details={
                    **details,
                    "status_code": response.status_code,
                    "body": _excerpt(response.text),
                },
            )

        try:
            return parse_ticket_payload(response.json())
        except ValueError as e:
            # json.JSONDecodeError is a ValueError too
            raise AuthError(
                code="TICKET_INVALID",
                message=f"Ticket response for {provider.name} is malformed: {e}",
                details={**details, "body": _excerpt(response.text)},
            ) from e

    async def list_dataset_ids(
        self,
        provider: ProviderConfig,
        credential: Credential,
        url: str,
    ) -> list:
        """
        Call the DATASET_LIST service and return the decoded JSON array.

        Raises:
            DiscoveryError: On transport failure, non-2xx status or a body
                that is not a JSON array
        """
        client = self._ensure_client()
        method = provider.list_method.upper()
        details = {"provider": provider.name, "url": url, "method": method}
        try:
            response = await client.request(method, url, headers=self._api_headers(credential))
        except httpx.HTTPError as e:
            raise DiscoveryError(
                code="LIST_UNREACHABLE",
                message=f"Dataset list for {provider.name} unreachable: {e}",
                details={**details, "cause": str(e)},
            ) from e

        if not response.is_success:
            raise DiscoveryError(
                code="LIST_REJECTED",
                message=f"Dataset list for {provider.name} returned HTTP {response.status_code}",
                details={
                    **details,
                    "status_code": response.status_code,
                    "body": _excerpt(response.text),
                },
            )

        try:
            payload = json.loads(sanitize_control_characters(response.text))
        except ValueError as e:
            raise DiscoveryError(
                code="LIST_INVALID",
                message=f"Dataset list for {provider.name} is not valid JSON: {e}",
                details={**details, "body": _excerpt(response.text)},
            ) from e

        if not isinstance(payload, list):
            raise DiscoveryError(
                code="LIST_NOT_ARRAY",
                message=f"Dataset list for {provider.name} is not a JSON array",
                details={**details, "body": _excerpt(response.text)},
            )
        return payload

    async def fetch_dataset_detail(
        self,
        provider: ProviderConfig,
        credential: Credential,
        url: str,
        dataset_id: str,
    ) -> dict:
        """
        Call the GET_DATASET_DETAILS service for one external id.

        Raises:
            DetailFetchError: On transport failure or non-2xx status
            ParseError: If the body is not a JSON object after sanitizing
        """
        client = self._ensure_client()
        details = {"provider": provider.name, "dataset_id": dataset_id, "url": url}
        try:
            response = await client.get(
                url,
                params={"id": dataset_id},
                headers=self._api_headers(credential),
            )
        except httpx.HTTPError as e:
            raise DetailFetchError(
                code="DETAIL_UNREACHABLE",
                message=f"Details of {dataset_id} from {provider.name} unreachable: {e}",
                details={**details, "cause": str(e)},
            ) from e

        if not response.is_success:
            raise DetailFetchError(
                code="DETAIL_REJECTED",
                message=(
                    f"Details of {dataset_id} from {provider.name} "
                    f"returned HTTP {response.status_code}"
                ),
                details={
                    **details,
                    "status_code": response.status_code,
                    "body": _excerpt(response.text),
                },
            )

        text = sanitize_control_characters(response.text)
        try:
            body = json.loads(text)
        except ValueError as e:
            raise ParseError(
                code="DETAIL_INVALID",
                message=f"Details of {dataset_id} from {provider.name} are not valid JSON: {e}",
                details={**details, "body": _excerpt(text)},
            ) from e

        if not isinstance(body, dict):
            raise ParseError(
                code="DETAIL_NOT_OBJECT",
                message=f"Details of {dataset_id} from {provider.name} are not a JSON object",
                details={**details, "body": _excerpt(text)},
            )
        return body

    async def close(self) -> None:
        """Close the HTTP client."""
        if self._client:
            await self._client.aclose()
            self._client = None
