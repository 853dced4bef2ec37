"""
Failure classifier for URL probes.

Maps a failed probe attempt (a transport exception or an HTTP error status)
onto the closed ErrorCategory taxonomy. The mapping from category to the
"likely local issue" flag is a separate lookup so that policy can change
without touching classification.
"""

import asyncio
from typing import Union

import httpx

from .enums import ErrorCategory


LOCAL_ISSUE_CATEGORIES = frozenset({
    ErrorCategory.NETWORK_CONNECTION,
    ErrorCategory.DNS_RESOLUTION,
    ErrorCategory.TIMEOUT,
    ErrorCategory.REQUEST_CANCELED,
})

# Cause-text markers, checked in this order for connect failures
CONNECTION_REFUSED_MARKERS = ("connection refused",)
DNS_MARKERS = (
    "dns",
    "resolve",
    "name resolution",
    "name or service not known",
    "nodename nor servname",
    "getaddrinfo",
)
NETWORK_MARKERS = ("network unreachable", "network is unreachable", "no route to host")
TLS_MARKERS = ("ssl", "tls", "certificate")

TIMEOUT_ERRORS = (httpx.TimeoutException, asyncio.TimeoutError, TimeoutError)
REQUEST_CANCELED_ERRORS = (httpx.InvalidURL, httpx.UnsupportedProtocol, asyncio.CancelledError)


def error_chain_text(error: BaseException) -> str:
    """Lower-cased text of an exception and every exception in its cause chain."""
    parts: list[str] = []
    seen: set[int] = set()
    current = error
    while current is not None and id(current) not in seen:
        seen.add(id(current))
        parts.append(f"{type(current).__name__}: {current}")
        current = current.__cause__ or current.__context__
    return " | ".join(parts).lower()


def _contains_any(text: str, markers: tuple[str, ...]) -> bool:
    return any(marker in text for marker in markers)


def classify_status(status_code: int) -> ErrorCategory:
    """Category for an HTTP error status. Non-error statuses map to Unknown."""
    if 500 <= status_code <= 599:
        return ErrorCategory.SERVER_ERROR
    if 400 <= status_code <= 499:
        return ErrorCategory.CLIENT_ERROR
    return ErrorCategory.UNKNOWN


def classify_transport_error(error: BaseException) -> ErrorCategory:
    """Category for an exception raised while sending a probe request."""
    if isinstance(error, TIMEOUT_ERRORS):
        return ErrorCategory.TIMEOUT

    text = error_chain_text(error)

    if isinstance(error, httpx.ConnectError):
        if _contains_any(text, CONNECTION_REFUSED_MARKERS):
            return ErrorCategory.CONNECTION_REFUSED
        if _contains_any(text, DNS_MARKERS):
            return ErrorCategory.DNS_RESOLUTION
        if _contains_any(text, NETWORK_MARKERS):
            return ErrorCategory.NETWORK_CONNECTION
        return ErrorCategory.NETWORK_CONNECTION

    if isinstance(error, httpx.TooManyRedirects):
        return ErrorCategory.TOO_MANY_REDIRECTS

    if isinstance(error, REQUEST_CANCELED_ERRORS):
        return ErrorCategory.REQUEST_CANCELED

    if _contains_any(text, TLS_MARKERS):
        return ErrorCategory.SSL_CERTIFICATE
    return ErrorCategory.UNKNOWN


def classify(error_or_status: Union[BaseException, int]) -> ErrorCategory:
    """
    Classify a failed probe attempt.

    Total over its inputs: anything unrecognised becomes ErrorCategory.UNKNOWN.

    Args:
        error_or_status: The transport exception, or the HTTP status code

    Returns:
        The matching ErrorCategory
    """
    if isinstance(error_or_status, bool):
        return ErrorCategory.UNKNOWN
    if isinstance(error_or_status, int):
        return classify_status(error_or_status)
    if isinstance(error_or_status, BaseException):
        return classify_transport_error(error_or_status)
    return ErrorCategory.UNKNOWN


def is_likely_local_issue(category: ErrorCategory) -> bool:
    """True when the failure points at the monitoring host's own network."""
    return category in LOCAL_ISSUE_CATEGORIES
