"""
Dataset Monitor - dataset catalog ingestion and URL health monitoring.

This package pulls dataset metadata from authenticated provider APIs, keeps
track of which records were already captured, and periodically probes every
dataset's public URL, recording classified results in DuckDB.
"""

__version__ = "0.1.0"
__author__ = "Dataset Monitor Team"

from dataset_monitor.exceptions import (
    DatasetMonitorError,
    ConfigError,
    AuthError,
    DiscoveryError,
    DetailFetchError,
    ParseError,
    StorageError,
    TamperingError,
    ProbeError,
)
from dataset_monitor.enums import (
    ErrorCategory,
    HttpMethod,
    LogLevel,
    ProcessingStatus,
)
from dataset_monitor.config import (
    ProviderConfig,
    DocumentStoreConfig,
    AnalyticsStoreConfig,
    MonitorConfig,
    RetryConfig,
    LoggingConfig,
    SystemConfig,
    validate_config,
)
from dataset_monitor.models import (
    ServiceEndpoint,
    Credential,
    ProcessedIdRecord,
    DatasetDocument,
    ProbeOutcome,
    HealthRecord,
    ProbeSummary,
)
from dataset_monitor.audit_logger import (
    AuditLogger,
    LogEntry,
)
from dataset_monitor.classifier import (
    classify,
    is_likely_local_issue,
)
from dataset_monitor.provider_client import (
    ProviderClient,
    TicketResponse,
    sanitize_control_characters,
)
from dataset_monitor.credential_cache import CredentialCache
from dataset_monitor.document_store import DocumentStore
from dataset_monitor.analytics_store import AnalyticsStore
from dataset_monitor.discovery import DiscoveryEngine
from dataset_monitor.detail_fetcher import DetailFetcher
from dataset_monitor.retry_manager import RetryManager
from dataset_monitor.health_prober import HealthProber
from dataset_monitor.pipeline import (
    MonitorPipeline,
    ProviderCycleResult,
)
from dataset_monitor.scheduler import (
    Scheduler,
    ScheduledJob,
)
from dataset_monitor.self_test import (
    SelfTest,
    SelfTestResult,
    run_self_test,
)

__all__ = [
    # Version
    "__version__",
    # Exceptions
    "DatasetMonitorError",
    "ConfigError",
    "AuthError",
    "DiscoveryError",
    "DetailFetchError",
    "ParseError",
    "StorageError",
    "TamperingError",
    "ProbeError",
    # Enums
    "ErrorCategory",
    "HttpMethod",
    "LogLevel",
    "ProcessingStatus",
    # Config
    "ProviderConfig",
    "DocumentStoreConfig",
    "AnalyticsStoreConfig",
    "MonitorConfig",
    "RetryConfig",
    "LoggingConfig",
    "SystemConfig",
    "validate_config",
    # Models
    "ServiceEndpoint",
    "Credential",
    "ProcessedIdRecord",
    "DatasetDocument",
    "ProbeOutcome",
    "HealthRecord",
    "ProbeSummary",
    # Logging
    "AuditLogger",
    "LogEntry",
    # Classification
    "classify",
    "is_likely_local_issue",
    # Provider access
    "ProviderClient",
    "TicketResponse",
    "sanitize_control_characters",
    "CredentialCache",
    # Storage
    "DocumentStore",
    "AnalyticsStore",
    # Pipeline stages
    "DiscoveryEngine",
    "DetailFetcher",
    "RetryManager",
    "HealthProber",
    "MonitorPipeline",
    "ProviderCycleResult",
    # Scheduling
    "Scheduler",
    "ScheduledJob",
    # Self-test
    "SelfTest",
    "SelfTestResult",
    "run_self_test",
]
