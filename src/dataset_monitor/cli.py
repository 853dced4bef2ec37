"""
Command-line interface for the dataset monitor.

This module provides the main CLI entry point with commands for:
- fetch: Discover new datasets and fetch their details from every provider
- monitor: Probe the URLs of all stored datasets
- run: fetch followed by monitor
- serve: Run fetch and monitor on their configured intervals
- config: Configuration management
- self-test: Validate configuration and provider connectivity
"""

import argparse
import asyncio
import json
import os
import signal
import sys
from datetime import timedelta
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv

from . import __version__
from .audit_logger import AuditLogger
from .config import (
    AnalyticsStoreConfig,
    DocumentStoreConfig,
    LoggingConfig,
    MonitorConfig,
    ProviderConfig,
    RetryConfig,
    SystemConfig,
    validate_config,
)
from .enums import LogLevel
from .exceptions import ConfigError, StorageError
from .models import ProbeSummary
from .pipeline import MonitorPipeline, ProviderCycleResult
from .scheduler import Scheduler
from .self_test import run_self_test

CONFIG_PATH_ENV = "DATASET_MONITOR_CONFIG"


def default_config_path() -> Path:
    env_path = os.getenv(CONFIG_PATH_ENV)
    if env_path:
        return Path(env_path)
    return Path.home() / ".dataset_monitor" / "config.json"


def create_default_config(
    data_dir: Optional[Path] = None,
    hmac_secret: str = "default-secret-change-me",
) -> SystemConfig:
    """
    Create a starter configuration with one example provider.

    Args:
        data_dir: Directory for the document store and the DuckDB file
        hmac_secret: Secret for HMAC protection of the document store

    Returns:
        SystemConfig with default settings
    """
    if data_dir is None:
        data_dir = Path.home() / ".dataset_monitor"

    return SystemConfig(
        providers=[
            ProviderConfig(
                name="example-center",
                url="https://catalog.example.org/api/ticket",
                secret_key="change-me",
                enabled=False,
            ),
        ],
        document_store=DocumentStoreConfig(
            path=data_dir / "documents",
            hmac_secret=hmac_secret,
        ),
        analytics_store=AnalyticsStoreConfig(path=str(data_dir / "monitor.duckdb")),
        monitor=MonitorConfig(),
        retry=RetryConfig(),
        logging=LoggingConfig(level="info", output_format="text"),
    )


def _resolve_secret(data: dict, key: str, owner: str) -> str:
    """Read `key`, or the environment variable named by `<key>_env`."""
    env_name = data.get(f"{key}_env")
    if env_name:
        value = os.getenv(env_name)
        if value is None:
            raise ConfigError(
                code="missing_env",
                message=f"{owner}: environment variable {env_name} is not set",
                details={"variable": env_name},
            )
        return value
    return data.get(key, "")


def parse_config(data: dict) -> SystemConfig:
    """
    Build a SystemConfig from its JSON form.

    Raises:
        ConfigError: If a required field is missing or has the wrong type
    """
    try:
        providers = []
        # "centers" is accepted as an alias of "providers"
        for provider_data in data.get("providers", data.get("centers", [])):
            name = provider_data["name"]
            providers.append(ProviderConfig(
                name=name,
                url=provider_data["url"],
                secret_key=_resolve_secret(provider_data, "secret_key", f"Provider {name}"),
                enabled=bool(provider_data.get("enabled", True)),
                list_method=str(provider_data.get("list_method", "GET")).upper(),
            ))

        store_data = data.get("document_store", {})
        document_store = DocumentStoreConfig(
            path=Path(store_data.get("path") or Path.home() / ".dataset_monitor" / "documents"),
            hmac_secret=_resolve_secret(store_data, "hmac_secret", "document_store"),
        )

        analytics_data = data.get("analytics_store", data.get("duckdb", {}))
        analytics_store = AnalyticsStoreConfig(path=str(analytics_data.get("path", ":memory:")))

        monitor_data = data.get("monitor", {})
        defaults = MonitorConfig()
        monitor = MonitorConfig(
            fetch_interval_days=int(monitor_data.get("fetch_interval_days", defaults.fetch_interval_days)),
            check_interval_days=int(monitor_data.get("check_interval_days", defaults.check_interval_days)),
            http_timeout_seconds=float(
                monitor_data.get("http_timeout_seconds", defaults.http_timeout_seconds)
            ),
            max_concurrent=int(monitor_data.get("max_concurrent", defaults.max_concurrent)),
            max_redirects=int(monitor_data.get("max_redirects", defaults.max_redirects)),
            credential_safety_margin_seconds=int(monitor_data.get(
                "credential_safety_margin_seconds", defaults.credential_safety_margin_seconds
            )),
            local_issue_warning_ratio=float(monitor_data.get(
                "local_issue_warning_ratio", defaults.local_issue_warning_ratio
            )),
        )

        retry_data = data.get("retry", {})
        retry = RetryConfig(
            max_retries=int(retry_data.get("max_retries", 0)),
            base_delay_seconds=float(retry_data.get("base_delay_seconds", 1.0)),
            max_delay_seconds=float(retry_data.get("max_delay_seconds", 30.0)),
        )
        if "retryable_categories" in retry_data:
            retry.retryable_categories = list(retry_data["retryable_categories"])

        logging_data = data.get("logging", {})
        logging_config = LoggingConfig(
            level=logging_data.get("level", "info"),
            audit_mode=bool(logging_data.get("audit_mode", False)),
            audit_signing_key=logging_data.get("audit_signing_key"),
            output_format=logging_data.get("output_format", "text"),
        )
    except (KeyError, TypeError, ValueError, AttributeError) as e:
        raise ConfigError(
            code="invalid_config",
            message=f"Invalid configuration: {e!r}",
        ) from e

    return SystemConfig(
        providers=providers,
        document_store=document_store,
        analytics_store=analytics_store,
        monitor=monitor,
        retry=retry,
        logging=logging_config,
    )


def load_config_from_file(config_path: Path) -> SystemConfig:
    """
    Load configuration from a JSON file.

    Raises:
        ConfigError: If the file is missing, unreadable, or invalid
    """
    try:
        with open(config_path, "r", encoding="utf-8") as f:
            data = json.load(f)
    except FileNotFoundError as e:
        raise ConfigError(
            code="not_found",
            message=f"No configuration found at: {config_path}",
            details={"path": str(config_path)},
        ) from e
    except json.JSONDecodeError as e:
        raise ConfigError(
            code="parse_error",
            message=f"Configuration at {config_path} is not valid JSON: {e}",
            details={"path": str(config_path)},
        ) from e
    except OSError as e:
        raise ConfigError(
            code="io_error",
            message=f"Could not read configuration at {config_path}: {e}",
            details={"path": str(config_path)},
        ) from e

    if not isinstance(data, dict):
        raise ConfigError(
            code="invalid_config",
            message=f"Configuration at {config_path} must be a JSON object",
            details={"path": str(config_path)},
        )
    return parse_config(data)


def config_to_dict(config: SystemConfig) -> dict:
    return {
        "providers": [
            {
                "name": provider.name,
                "url": provider.url,
                "secret_key": provider.secret_key,
                "enabled": provider.enabled,
                "list_method": provider.list_method,
            }
            for provider in config.providers
        ],
        "document_store": {
            "path": str(config.document_store.path),
            "hmac_secret": config.document_store.hmac_secret,
        },
        "analytics_store": {"path": config.analytics_store.path},
        "monitor": {
            "fetch_interval_days": config.monitor.fetch_interval_days,
            "check_interval_days": config.monitor.check_interval_days,
            "http_timeout_seconds": config.monitor.http_timeout_seconds,
            "max_concurrent": config.monitor.max_concurrent,
            "max_redirects": config.monitor.max_redirects,
            "credential_safety_margin_seconds": config.monitor.credential_safety_margin_seconds,
            "local_issue_warning_ratio": config.monitor.local_issue_warning_ratio,
        },
        "retry": {
            "max_retries": config.retry.max_retries,
            "base_delay_seconds": config.retry.base_delay_seconds,
            "max_delay_seconds": config.retry.max_delay_seconds,
            "retryable_categories": list(config.retry.retryable_categories),
        },
        "logging": {
            "level": config.logging.level,
            "audit_mode": config.logging.audit_mode,
            "audit_signing_key": config.logging.audit_signing_key,
            "output_format": config.logging.output_format,
        },
    }


def save_config_to_file(config: SystemConfig, config_path: Path) -> bool:
    """
    Save configuration to a JSON file.

    Returns:
        True if successful, False otherwise
    """
    try:
        config_path.parent.mkdir(parents=True, exist_ok=True)
        with open(config_path, "w", encoding="utf-8") as f:
            json.dump(config_to_dict(config), f, indent=2, ensure_ascii=False)
        return True
    except (OSError, TypeError) as e:
        print(f"Error saving config: {e}", file=sys.stderr)
        return False


def _load_valid_config(config_arg: Optional[str]) -> Optional[SystemConfig]:
    """Load and validate the configuration, printing problems to stderr."""
    load_dotenv()
    config_path = Path(config_arg) if config_arg else default_config_path()
    try:
        config = load_config_from_file(config_path)
    except ConfigError as e:
        print(f"Error: {e.message}", file=sys.stderr)
        return None

    errors = validate_config(config)
    if errors:
        print(f"Error: Invalid configuration at {config_path}:", file=sys.stderr)
        for error in errors:
            print(f"  - {error}", file=sys.stderr)
        return None
    return config



def _print_fetch_results(results: list[ProviderCycleResult]) -> None:
    for result in results:
        if result.success:
            print(f"  ✓ {result.provider}: {result.new_ids} new ids, {result.stored} datasets stored")
        else:
            print(f"  ✗ {result.provider}: {result.error}")


def _print_summary(summary: ProbeSummary) -> None:
    print(
        f"Checked {summary.total} URLs: {summary.success} ok, "
        f"{summary.local_issues} local issues, {summary.remote_issues} remote issues"
    )
    if summary.skipped_without_url:
        print(f"  {summary.skipped_without_url} datasets have no URL")


async def run_fetch(config: SystemConfig, logger: AuditLogger) -> list[ProviderCycleResult]:
    async with MonitorPipeline(config, logger=logger) as pipeline:
        return await pipeline.fetch_all_providers()


async def run_monitor(config: SystemConfig, logger: AuditLogger) -> ProbeSummary:
    async with MonitorPipeline(config, logger=logger) as pipeline:
        return await pipeline.check_all_urls()


async def run_serve(config: SystemConfig, logger: AuditLogger) -> None:
    """Run fetch and monitor jobs on their intervals until interrupted."""
    stop_event = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, stop_event.set)
        except (NotImplementedError, RuntimeError):
            pass  # not supported on this platform; Ctrl+C still raises KeyboardInterrupt

    async with MonitorPipeline(config, logger=logger) as pipeline:
        async def fetch_job() -> None:
            _print_fetch_results(await pipeline.fetch_all_providers())

        async def monitor_job() -> None:
            _print_summary(await pipeline.check_all_urls())

        scheduler = Scheduler(logger=logger)
        scheduler.every("fetch", timedelta(days=config.monitor.fetch_interval_days), fetch_job)
        scheduler.every("monitor", timedelta(days=config.monitor.check_interval_days), monitor_job)
        await scheduler.run(stop_event)


def _run_command(args: argparse.Namespace, runner) -> int:
    config = _load_valid_config(args.config)
    if config is None:
        return 1
    logger = AuditLogger.from_config(
        config.logging,
        min_level=LogLevel.DEBUG if args.verbose else None,
    )
    try:
        return runner(config, logger)
    except StorageError as e:
        logger.error("cli", "Storage failure, aborting", e)
        print(f"Error: {e.message}", file=sys.stderr)
        return 1


def cmd_fetch(args: argparse.Namespace) -> int:
    """Handle the 'fetch' command."""
    def runner(config: SystemConfig, logger: AuditLogger) -> int:
        results = asyncio.run(run_fetch(config, logger))
        _print_fetch_results(results)
        return 0

    return _run_command(args, runner)


def cmd_monitor(args: argparse.Namespace) -> int:
    """Handle the 'monitor' command."""
    def runner(config: SystemConfig, logger: AuditLogger) -> int:
        _print_summary(asyncio.run(run_monitor(config, logger)))
        return 0

    return _run_command(args, runner)


def cmd_run(args: argparse.Namespace) -> int:
    """Handle the 'run' command."""
    async def run_both(config: SystemConfig, logger: AuditLogger):
        async with MonitorPipeline(config, logger=logger) as pipeline:
            return await pipeline.run_cycle()

    def runner(config: SystemConfig, logger: AuditLogger) -> int:
        results, summary = asyncio.run(run_both(config, logger))
        _print_fetch_results(results)
        _print_summary(summary)
        return 0

    return _run_command(args, runner)


def cmd_serve(args: argparse.Namespace) -> int:
    """Handle the 'serve' command."""
    def runner(config: SystemConfig, logger: AuditLogger) -> int:
        print(
            f"Serving: fetch every {config.monitor.fetch_interval_days} days, "
            f"monitor every {config.monitor.check_interval_days} days"
        )
        try:
            asyncio.run(run_serve(config, logger))
        except KeyboardInterrupt:
            print("Stopped.")
        return 0

    return _run_command(args, runner)


def cmd_self_test(args: argparse.Namespace) -> int:
    """Handle the 'self-test' command."""
    load_dotenv()
    config_path = Path(args.config) if args.config else default_config_path()
    try:
        config = load_config_from_file(config_path)
    except ConfigError as e:
        print(f"Error: {e.message}", file=sys.stderr)
        return 1

    result = asyncio.run(run_self_test(config=config, print_output=True))
    return 0 if result.success else 1


def cmd_config(args: argparse.Namespace) -> int:
    """Handle the 'config' command."""
    config_path = Path(args.path) if args.path else default_config_path()

    if args.action == "show":
        load_dotenv()
        try:
            config = load_config_from_file(config_path)
        except ConfigError as e:
            print(e.message)
            print("Use 'config init' to create a default configuration.")
            return 1

        print(f"Configuration from: {config_path}")
        for provider in config.providers:
            state = "enabled" if provider.enabled else "disabled"
            print(f"  Provider: {provider.name} ({state}, list via {provider.list_method}) {provider.url}")
        print(f"  Document store: {config.document_store.path}")
        print(f"  Analytics store: {config.analytics_store.path}")
        print(f"  Fetch interval: {config.monitor.fetch_interval_days} days")
        print(f"  Check interval: {config.monitor.check_interval_days} days")
        print(f"  Max concurrent probes: {config.monitor.max_concurrent}")
        print(f"  Probe retries: {config.retry.max_retries}")
        print(f"  Log level: {config.logging.level}")
        print(f"  Audit mode: {config.logging.audit_mode}")
        return 0

    elif args.action == "init":
        if config_path.exists() and not args.force:
            print(f"Configuration already exists at: {config_path}")
            print("Use --force to overwrite.")
            return 1

        config = create_default_config(data_dir=config_path.parent)
        if save_config_to_file(config, config_path):
            print(f"Configuration created at: {config_path}")
            return 0
        return 1

    elif args.action == "validate":
        config = _load_valid_config(str(config_path))
        if config is None:
            return 1
        print(f"Configuration at {config_path} is valid.")
        return 0

    return 1


def _add_run_options(parser: argparse.ArgumentParser) -> None:
    parser.add_argument(
        "--config", "-c",
        help=f"Path to configuration file (default: ${CONFIG_PATH_ENV} or ~/.dataset_monitor/config.json)",
    )
    parser.add_argument(
        "--verbose", "-v",
        action="store_true",
        help="Enable debug logging",
    )


def create_parser() -> argparse.ArgumentParser:
    """Create the argument parser for the CLI."""
    parser = argparse.ArgumentParser(
        prog="dataset-monitor",
        description="Dataset catalog ingestion and URL health monitor",
    )
    parser.add_argument(
        "--version",
        action="version",
        version=f"%(prog)s {__version__}",
    )

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    fetch_parser = subparsers.add_parser(
        "fetch",
        help="Discover new datasets and fetch their details",
    )
    _add_run_options(fetch_parser)
    fetch_parser.set_defaults(func=cmd_fetch)

    monitor_parser = subparsers.add_parser(
        "monitor",
        help="Probe the URLs of all stored datasets",
    )
    _add_run_options(monitor_parser)
    monitor_parser.set_defaults(func=cmd_monitor)

    run_parser = subparsers.add_parser(
        "run",
        help="Fetch, then probe, once",
    )
    _add_run_options(run_parser)
    run_parser.set_defaults(func=cmd_run)

    serve_parser = subparsers.add_parser(
        "serve",
        help="Fetch and probe on the configured intervals",
    )
    _add_run_options(serve_parser)
    serve_parser.set_defaults(func=cmd_serve)

    config_parser = subparsers.add_parser(
        "config",
        help="Configuration management",
    )
    config_parser.add_argument(
        "action",
        choices=["show", "init", "validate"],
        help="Configuration action",
    )
    config_parser.add_argument(
        "--path", "-p",
        help="Path to configuration file",
    )
    config_parser.add_argument(
        "--force", "-f",
        action="store_true",
        help="Force overwrite existing configuration",
    )
    config_parser.set_defaults(func=cmd_config)

    self_test_parser = subparsers.add_parser(
        "self-test",
        help="Validate configuration and request a ticket from every provider",
    )
    self_test_parser.add_argument(
        "--config", "-c",
        help="Path to configuration file",
    )
    self_test_parser.set_defaults(func=cmd_self_test)

    return parser


def main(argv: Optional[list[str]] = None) -> int:
    """
    Main entry point for the CLI.

    Args:
        argv: Command line arguments (defaults to sys.argv[1:])

    Returns:
        Exit code
    """
    parser = create_parser()
    args = parser.parse_args(argv)

    if args.command is None:
        parser.print_help()
        return 0

    return args.func(args)


if __name__ == "__main__":
    sys.exit(main())
