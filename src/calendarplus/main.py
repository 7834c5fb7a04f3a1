"""Main entry point for CalendarPlus."""

from __future__ import annotations

import asyncio
import logging
import sys
from dataclasses import dataclass
from logging.handlers import RotatingFileHandler
from pathlib import Path

from calendarplus.ai.errors import GenerationError
from calendarplus.ai.failover import FailoverEngine
from calendarplus.config import Settings
from calendarplus.models import GenerationMode
from calendarplus.security.secrets import SecretCipher
from calendarplus.settings.store import DeviceSettingsStore, GlobalSettingsStore
from calendarplus.storage.document import SharedDocumentStore
from calendarplus.storage.file import cleanup_orphaned_temp_files

logger = logging.getLogger(__name__)


def setup_logging(
    level: str = "INFO",
    debug: bool = False,
    log_to_file: bool = True,
    log_file_path: Path | None = None,
    log_file_max_bytes: int = 5 * 1024 * 1024,
    log_file_backup_count: int = 3,
) -> None:
    """Configure logging with console and optional rotating file output.

    Args:
        level: Log level string (DEBUG, INFO, WARNING, ERROR)
        debug: If True, overrides level to DEBUG
        log_to_file: Enable file logging in addition to console
        log_file_path: Path to log file (file logging is skipped when None)
        log_file_max_bytes: Maximum size per log file before rotation
        log_file_backup_count: Number of rotated backup files to keep
    """
    effective_level = logging.DEBUG if debug else getattr(logging, level.upper(), logging.INFO)

    root_logger = logging.getLogger()
    root_logger.setLevel(effective_level)

    # Clear any existing handlers to avoid duplicates
    root_logger.handlers.clear()

    from calendarplus.utils.logging import (
        CorrelationIDFilter,
        LogSanitizer,
        SanitizingFormatter,
    )

    log_format = "%(asctime)s [%(levelname)s] [%(correlation_id)s] %(name)s: %(message)s"
    date_format = "%Y-%m-%d %H:%M:%S"
    formatter = SanitizingFormatter(log_format, datefmt=date_format)

    # Console goes to stderr so generated text on stdout stays clean
    console_handler = logging.StreamHandler(sys.stderr)
    console_handler.setLevel(effective_level)
    console_handler.setFormatter(formatter)
    # Filters are not inherited by child loggers
    console_handler.addFilter(LogSanitizer())
    console_handler.addFilter(CorrelationIDFilter())
    root_logger.addHandler(console_handler)

    if log_to_file and log_file_path:
        try:
            log_file_path.parent.mkdir(parents=True, exist_ok=True)

            file_handler = RotatingFileHandler(
                log_file_path,
                maxBytes=log_file_max_bytes,
                backupCount=log_file_backup_count,
                encoding="utf-8",
            )
            file_handler.setLevel(effective_level)
            file_handler.setFormatter(formatter)
            file_handler.addFilter(LogSanitizer())
            file_handler.addFilter(CorrelationIDFilter())
            root_logger.addHandler(file_handler)

            logging.debug(
                f"File logging enabled: {log_file_path} "
                f"(max {log_file_max_bytes / (1024 * 1024):.1f} MB, "
                f"{log_file_backup_count} backups)"
            )
        except OSError as e:
            # Continue with console-only logging
            logging.warning(f"Failed to initialize file logging: {e}. Using console-only logging.")

    # httpx logs every request URL at INFO
    logging.getLogger("httpx").setLevel(max(effective_level, logging.WARNING))


@dataclass
class Services:
    """Opened stores and the generation engine for one process."""

    settings: Settings
    device: DeviceSettingsStore
    global_settings: GlobalSettingsStore
    documents: SharedDocumentStore
    engine: FailoverEngine

    def close(self) -> None:
        self.device.close()
        self.global_settings.close()


def _cleanup_temp_files(directory: Path) -> None:
    removed = cleanup_orphaned_temp_files(directory)
    if removed:
        logger.info(f"Removed {removed} orphaned temp file(s) from {directory}")


def open_services(settings: Settings) -> Services:
    """Open settings (running secret migration) and build the engine.

    Orphaned temp files left by interrupted writes are removed from the
    settings and data directories, and from the folder of a relocated
    calendar document.
    """
    cleaned = {settings.config_dir, settings.sync_dir, settings.data_dir}
    for directory in cleaned:
        _cleanup_temp_files(directory)

    cipher = SecretCipher.from_key_manager()

    device = DeviceSettingsStore(settings.device_settings_path, cipher).open()
    if not device.get_setup_complete() and settings.preload_config_path.exists():
        device.apply_preload_config(settings.preload_config_path)

    global_settings = GlobalSettingsStore(settings.global_settings_path).open()
    data_path = global_settings.get_data_path(settings.default_data_path)
    # A relocated document keeps its temp files next to it
    if data_path.parent not in cleaned:
        _cleanup_temp_files(data_path.parent)
    documents = SharedDocumentStore(data_path)

    engine = FailoverEngine(device, settings=settings)
    return Services(settings, device, global_settings, documents, engine)


def _print_fallback_history(services: Services) -> None:
    events = services.engine.fallback_log.recent()
    if not events:
        print("No fallbacks recorded")
        return
    for event in events:
        print(
            f"{event.timestamp.isoformat()}  {event.from_backend} -> {event.to_backend}  "
            f"{event.reason}"
        )


def _generate(services: Services, prompt: str, single: bool) -> int:
    mode = GenerationMode.SINGLE if single else services.engine.preferred_mode()
    try:
        text = asyncio.run(services.engine.generate(prompt, mode))
    except GenerationError as e:
        print(str(e), file=sys.stderr)
        return 1
    print(text)
    return 0


def main() -> None:
    """Run the CalendarPlus command-line interface."""
    import argparse

    from calendarplus import __version__
    from calendarplus.config import get_settings, reset_settings

    # Load settings from env/.env first for defaults
    env_settings = get_settings()

    parser = argparse.ArgumentParser(
        description="CalendarPlus - local calendar storage and AI assistant backend"
    )
    parser.add_argument(
        "--debug",
        action="store_true",
        default=env_settings.debug,
        help="Enable debug mode (env: CALENDARPLUS_DEBUG)",
    )
    parser.add_argument(
        "--data-dir",
        type=str,
        default=None,
        help=f"Data directory path (default: {env_settings.data_dir}, env: CALENDARPLUS_DATA_DIR)",
    )
    parser.add_argument(
        "--log-level",
        default=env_settings.log_level,
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help=f"Logging level (default: {env_settings.log_level}, env: CALENDARPLUS_LOG_LEVEL)",
    )
    parser.add_argument(
        "--validate",
        action="store_true",
        help="Print configuration, report warnings and exit",
    )
    parser.add_argument(
        "--generate",
        metavar="PROMPT",
        help="Generate text for PROMPT using the configured backends",
    )
    parser.add_argument(
        "--single",
        action="store_true",
        help="With --generate, use only the default backend and the device API key",
    )
    parser.add_argument(
        "--fallback-history",
        action="store_true",
        help="Show recent backend fallbacks and exit",
    )
    parser.add_argument(
        "--version",
        action="version",
        version=f"CalendarPlus {__version__}",
    )

    args = parser.parse_args()

    # Reset cache to apply CLI args
    reset_settings()

    cli_overrides: dict[str, object] = {
        "debug": args.debug,
        "log_level": args.log_level,
    }
    if args.data_dir:
        cli_overrides["data_dir"] = Path(args.data_dir)

    settings = Settings(**cli_overrides)

    if args.validate:
        settings.print_config()
        print()

        warnings = settings.check()
        if warnings:
            print("Configuration warnings:")
            for warning in warnings:
                print(f"  • {warning}")
            print()

        print("Configuration is valid")
        sys.exit(0)

    setup_logging(
        level=settings.log_level,
        debug=settings.debug,
        log_to_file=settings.log_to_file,
        log_file_path=settings.log_file_path if settings.log_to_file else None,
        log_file_max_bytes=settings.log_file_max_bytes,
        log_file_backup_count=settings.log_file_backup_count,
    )

    services = open_services(settings)
    try:
        if args.fallback_history:
            _print_fallback_history(services)
            exit_code = 0
        elif args.generate:
            exit_code = _generate(services, args.generate, args.single)
        else:
            configs = services.device.get_provider_configs()
            print(f"CalendarPlus v{__version__}")
            print(f"Device settings: {services.device.path}")
            print(f"Data file:       {services.documents.path}")
            print(f"Encryption:      {services.device.cipher.is_available}")
            print(f"Providers:       {', '.join(c.kind.value for c in configs) or 'none'}")
            exit_code = 0
    finally:
        services.close()

    sys.exit(exit_code)


if __name__ == "__main__":
    main()
