"""
Enumeration types for the dataset monitor.

These enums provide type-safe constants for workflow states, probe failure
categories, and configuration options throughout the system.
"""

from enum import Enum


class LogLevel(Enum):
    """Logging severity levels."""

    DEBUG = "debug"
    INFO = "info"
    WARN = "warn"
    ERROR = "error"


class ProcessingStatus(Enum):
    """Workflow state of a discovered dataset id. Only moves PENDING -> PROCESSED."""

    PENDING = "pending"
    PROCESSED = "processed"


class HttpMethod(Enum):
    """HTTP methods a provider may require for its dataset list service."""

    GET = "GET"
    POST = "POST"


class ErrorCategory(Enum):
    """Closed taxonomy of URL probe failure causes."""

    NETWORK_CONNECTION = "NetworkConnection"
    DNS_RESOLUTION = "DnsResolution"
    TIMEOUT = "Timeout"
    SSL_CERTIFICATE = "SslCertificate"
    CONNECTION_REFUSED = "ConnectionRefused"
    SERVER_ERROR = "ServerError"
    CLIENT_ERROR = "ClientError"
    TOO_MANY_REDIRECTS = "TooManyRedirects"
    REQUEST_CANCELED = "RequestCanceled"
    UNKNOWN = "Unknown"

    def __str__(self) -> str:
        return self.value
