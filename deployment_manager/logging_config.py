"""
Centralized logging configuration for the deployment manager.

File-based logging with rotation, dedicated streams for backup lifecycle
events and the retention reaper, and optional JSON output.
"""

import json
import logging
import logging.handlers
import sys
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Optional

from deployment_manager.utils.log_sanitizer import mask_sensitive_info

BACKUP_LIFECYCLE_LOGGER = "deployment_manager.backup_lifecycle"
REAPER_LOGGER = "deployment_manager.reaper"

# Extra record attributes copied into structured output when present.
CONTEXT_FIELDS = ("deployment", "instance_guid", "backup_guid", "operation", "duration_ms")


class StructuredFormatter(logging.Formatter):
    """JSON formatter for structured logging."""

    def format(self, record: logging.LogRecord) -> str:
        log_obj = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "module": record.module,
            "function": record.funcName,
            "line": record.lineno,
        }

        for field in CONTEXT_FIELDS:
            if hasattr(record, field):
                log_obj[field] = getattr(record, field)

        if record.exc_info:
            log_obj["exception"] = self.formatException(record.exc_info)

        return json.dumps(log_obj, default=str)


class HumanReadableFormatter(logging.Formatter):
    """Human-readable formatter for console and file logs."""

    COLORS = {
        "DEBUG": "\033[36m",
        "INFO": "\033[32m",
        "WARNING": "\033[33m",
        "ERROR": "\033[31m",
        "CRITICAL": "\033[35m",
    }
    RESET = "\033[0m"

    def __init__(self, use_colors: bool = False):
        self.use_colors = use_colors
        super().__init__(
            fmt="%(asctime)s - %(name)s - %(levelname)s - [%(funcName)s:%(lineno)d] - %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S",
        )

    def format(self, record: logging.LogRecord) -> str:
        if self.use_colors and record.levelname in self.COLORS:
            record = logging.makeLogRecord(record.__dict__)
            record.levelname = f"{self.COLORS[record.levelname]}{record.levelname}{self.RESET}"
        return super().format(record)


def _stream_handler(path: Path, formatter: logging.Formatter, max_bytes: int, backup_count: int):
    handler = logging.handlers.RotatingFileHandler(
        path, maxBytes=max_bytes, backupCount=backup_count
    )
    handler.setFormatter(formatter)
    return handler


def setup_logging(
    log_dir: Optional[str] = "/var/log/deployment-manager",
    console_level: str = "INFO",
    file_level: str = "DEBUG",
    use_json: bool = False,
    max_bytes: int = 10 * 1024 * 1024,
    backup_count: int = 10,
) -> None:
    """
    Configure logging for the deployment manager.

    Args:
        log_dir: Directory for log files, None for console only
        console_level: Console logging level
        file_level: File logging level
        use_json: Use JSON formatting for files
        max_bytes: Max size per log file before rotation
        backup_count: Number of rotated files to keep
    """
    root_logger = logging.getLogger()
    root_logger.setLevel(logging.DEBUG)
    root_logger.handlers.clear()

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setLevel(getattr(logging, console_level))
    console_handler.setFormatter(HumanReadableFormatter(use_colors=sys.stdout.isatty()))
    root_logger.addHandler(console_handler)

    if log_dir is None:
        root_logger.info(f"Logging initialized - Console: {console_level}, no log files")
        return

    log_path = Path(log_dir)
    log_path.mkdir(parents=True, exist_ok=True)

    file_formatter = StructuredFormatter() if use_json else HumanReadableFormatter()

    main_handler = _stream_handler(log_path / "manager.log", file_formatter, max_bytes, backup_count)
    main_handler.setLevel(getattr(logging, file_level))
    root_logger.addHandler(main_handler)

    error_handler = _stream_handler(log_path / "error.log", file_formatter, max_bytes, backup_count)
    error_handler.setLevel(logging.ERROR)
    root_logger.addHandler(error_handler)

    for name, filename in (
        (BACKUP_LIFECYCLE_LOGGER, "backup-lifecycle.log"),
        (REAPER_LOGGER, "backup-reaper.log"),
    ):
        stream_logger = logging.getLogger(name)
        stream_logger.handlers.clear()
        stream_logger.addHandler(
            _stream_handler(log_path / filename, file_formatter, max_bytes, backup_count)
        )
        stream_logger.setLevel(logging.DEBUG)
        stream_logger.propagate = False

    root_logger.info(
        f"Logging initialized - Console: {console_level}, File: {file_level}, "
        f"Directory: {log_dir}, JSON: {use_json}"
    )


def log_backup_operation(
    operation: str,
    backup_guid: str,
    details: Optional[Dict[str, Any]] = None,
    level: str = "INFO",
) -> None:
    """
    Log a backup or restore lifecycle event.

    Args:
        operation: Event (backup_started, backup_compensated, restore_started, ...)
        backup_guid: Backup identifier
        details: Additional details, secrets are masked
        level: Log level (INFO, WARNING, ERROR)
    """
    logger = logging.getLogger(BACKUP_LIFECYCLE_LOGGER)

    message = f"Backup operation: {operation}"
    extra: Dict[str, Any] = {"backup_guid": backup_guid, "operation": operation}
    if details:
        masked = mask_sensitive_info(details)
        extra.update({k: v for k, v in masked.items() if k in CONTEXT_FIELDS})
        message += f" - {json.dumps(masked, default=str)}"

    getattr(logger, level.lower())(message, extra=extra)


def log_reaper_operation(
    operation: str,
    success: bool,
    details: Optional[Dict[str, Any]] = None,
    error: Optional[str] = None,
) -> None:
    """
    Log a retention reaper event.

    Args:
        operation: Event (run, delete, skip)
        success: Whether the event succeeded
        details: Additional details
        error: Error message if failed
    """
    logger = logging.getLogger(REAPER_LOGGER)

    message = f"Reaper {operation}: {'SUCCESS' if success else 'FAILED'}"
    if error:
        message += f" - {error}"
    if details:
        message += f" - {json.dumps(details, default=str)}"

    if success:
        logger.info(message)
    else:
        logger.error(message)
