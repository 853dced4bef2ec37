"""
Exception classes for the dataset monitor.

All exceptions inherit from DatasetMonitorError and provide structured
error information with codes, messages, and optional details.
"""

from typing import Optional


class DatasetMonitorError(Exception):
    """Base exception for all dataset monitor errors."""

    def __init__(
        self,
        code: str,
        message: str,
        details: Optional[dict] = None,
    ) -> None:
        self.code = code
        self.message = message
        self.details = details or {}
        super().__init__(message)

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}(code={self.code!r}, message={self.message!r})"

    def to_dict(self) -> dict:
        """Convert exception to dictionary for serialization."""
        return {
            "error_type": self.__class__.__name__,
            "code": self.code,
            "message": self.message,
            "details": self.details,
        }


class ConfigError(DatasetMonitorError):
    """Raised when configuration is missing or invalid. Fatal at startup."""

    pass


class AuthError(DatasetMonitorError):
    """Raised when a provider ticket cannot be obtained or parsed."""

    pass


class DiscoveryError(DatasetMonitorError):
    """Raised when a provider's dataset id list cannot be fetched or parsed."""

    pass


class DetailFetchError(DatasetMonitorError):
    """Raised when the details of a single dataset cannot be fetched."""

    pass


class ParseError(DetailFetchError):
    """Raised when a dataset body is not valid JSON or not an object."""

    pass


class StorageError(DatasetMonitorError):
    """Raised when the document store or analytics store fails a read or write."""

    pass


class TamperingError(StorageError):
    """Raised when HMAC validation fails, indicating data tampering."""

    pass


class ProbeError(DatasetMonitorError):
    """
    Failure of a single URL probe.

    Never leaves the health prober; it is converted into a classified
    HealthRecord instead.
    """

    pass
