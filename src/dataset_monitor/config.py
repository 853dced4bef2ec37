"""
Configuration dataclasses for the dataset monitor.

This module defines all configuration structures used throughout the system:
provider (data center) settings, document and analytics store locations,
probe behavior, retry logic, and logging configuration.
"""

from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional
from urllib.parse import urlparse

from .enums import ErrorCategory, HttpMethod, LogLevel


@dataclass(frozen=True)
class ProviderConfig:
    """Configuration for one external data center."""

    name: str
    url: str  # Ticket endpoint
    secret_key: str
    enabled: bool = True
    list_method: str = HttpMethod.GET.value  # Method the DATASET_LIST service expects


@dataclass
class DocumentStoreConfig:
    """Location and integrity secret of the document store."""

    path: Path
    hmac_secret: str


@dataclass
class AnalyticsStoreConfig:
    """Location of the DuckDB analytics database (':memory:' allowed)."""

    path: str = ":memory:"


@dataclass
class MonitorConfig:
    """Fetch schedule and probe behavior."""

    fetch_interval_days: int = 30
    check_interval_days: int = 7
    http_timeout_seconds: float = 30.0
    max_concurrent: int = 50
    max_redirects: int = 10
    credential_safety_margin_seconds: int = 300
    local_issue_warning_ratio: float = 0.1


@dataclass
class RetryConfig:
    """Probe retry behavior. max_retries=0 disables retrying."""

    max_retries: int = 0
    base_delay_seconds: float = 1.0
    max_delay_seconds: float = 30.0
    retryable_categories: list[str] = field(
        default_factory=lambda: [
            ErrorCategory.TIMEOUT.value,
            ErrorCategory.NETWORK_CONNECTION.value,
            ErrorCategory.SERVER_ERROR.value,
        ]
    )


@dataclass
class LoggingConfig:
    """Logging and audit configuration."""

    level: str = "info"
    audit_mode: bool = False
    audit_signing_key: Optional[str] = None
    output_format: str = "text"  # 'json', 'text', 'both'


@dataclass
class SystemConfig:
    """Main system configuration combining all sub-configurations."""

    providers: list[ProviderConfig]
    document_store: DocumentStoreConfig
    analytics_store: AnalyticsStoreConfig
    monitor: MonitorConfig = field(default_factory=MonitorConfig)
    retry: RetryConfig = field(default_factory=RetryConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)

    @property
    def enabled_providers(self) -> list[ProviderConfig]:
        return [p for p in self.providers if p.enabled]


def validate_config(config: SystemConfig) -> list[str]:
    """
    Check a configuration for problems that would make a run meaningless.

    Returns:
        List of human-readable problems; empty when the config is usable
    """
    errors: list[str] = []

    if not config.providers:
        errors.append("No providers configured")

    seen: set[str] = set()
    for provider in config.providers:
        if not provider.name or not provider.name.strip():
            errors.append("Provider with empty name")
            continue
        if provider.name in seen:
            errors.append(f"Duplicate provider name: {provider.name}")
        seen.add(provider.name)

        scheme = urlparse(provider.url).scheme.lower()
        if scheme not in ("http", "https"):
            errors.append(f"Provider {provider.name}: ticket URL must be http(s): {provider.url!r}")
        if provider.enabled and not provider.secret_key:
            errors.append(f"Provider {provider.name}: missing secret key")
        if provider.list_method.upper() not in {m.value for m in HttpMethod}:
            errors.append(
                f"Provider {provider.name}: unsupported list_method {provider.list_method!r}"
            )

    monitor = config.monitor
    if monitor.max_concurrent < 1:
        errors.append(f"max_concurrent must be >= 1, got {monitor.max_concurrent}")
    if monitor.http_timeout_seconds <= 0:
        errors.append(f"http_timeout_seconds must be > 0, got {monitor.http_timeout_seconds}")
    if monitor.max_redirects < 0:
        errors.append(f"max_redirects must be >= 0, got {monitor.max_redirects}")
    if monitor.fetch_interval_days < 1 or monitor.check_interval_days < 1:
        errors.append("Schedule intervals must be at least one day")

    if config.retry.max_retries < 0:
        errors.append(f"max_retries must be >= 0, got {config.retry.max_retries}")
    known_categories = {c.value for c in ErrorCategory}
    for name in config.retry.retryable_categories:
        if name not in known_categories:
            errors.append(f"Unknown retryable category: {name}")

    if config.logging.level not in {lvl.value for lvl in LogLevel}:
        errors.append(f"Unknown log level: {config.logging.level}")
    if config.logging.output_format not in ("json", "text", "both"):
        errors.append(f"Unknown log output format: {config.logging.output_format}")
    if config.logging.audit_mode and not config.logging.audit_signing_key:
        errors.append("Audit mode enabled without audit_signing_key")

    if not config.document_store.hmac_secret:
        errors.append("Document store hmac_secret is empty")

    return errors
