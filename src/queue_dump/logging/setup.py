"""Logging setup and configuration."""

import io
import logging
import os
import secrets
import sys
from datetime import datetime
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Optional

from queue_dump.logging.context import set_log_context
from queue_dump.logging.formatters import ConsoleFormatter, JSONFormatter

# Default settings
DEFAULT_LOG_DIR = Path("logs")
DEFAULT_MAX_BYTES = 10 * 1024 * 1024  # 10MB
DEFAULT_BACKUP_COUNT = 5
DEFAULT_CONSOLE_LEVEL = logging.INFO
DEFAULT_FILE_LEVEL = logging.DEBUG

# Noisy loggers to suppress
NOISY_LOGGERS = [
    "aiokafka",
    "kafka",
]


def get_log_file_path(
    log_dir: Path,
    domain: Optional[str] = None,
    stage: Optional[str] = None,
    instance_id: Optional[str] = None,
) -> Path:
    """
    Build log file path with domain/date subfolder structure.

    Structure: {log_dir}/{domain}/{YYYY-MM-DD}/{domain}_{stage}_{YYYYMMDD}[_instance].log

    Args:
        log_dir: Base log directory
        domain: Log domain (e.g. "queue_dump")
        stage: Stage name (e.g. "drain")
        instance_id: Unique instance identifier (e.g., process ID)

    Returns:
        Full path to log file
    """
    date_folder = datetime.now().strftime("%Y-%m-%d")
    date_str = datetime.now().strftime("%Y%m%d")

    if domain and stage:
        base_name = f"{domain}_{stage}_{date_str}"
    elif domain:
        base_name = f"{domain}_{date_str}"
    elif stage:
        base_name = f"{stage}_{date_str}"
    else:
        base_name = f"queue_dump_{date_str}"

    if instance_id:
        filename = f"{base_name}_{instance_id}.log"
    else:
        filename = f"{base_name}.log"

    if domain:
        log_path = log_dir / domain / date_folder / filename
    else:
        log_path = log_dir / date_folder / filename

    return log_path


def setup_logging(
    name: str = "queue_dump",
    stage: Optional[str] = None,
    domain: Optional[str] = None,
    log_dir: Optional[Path] = None,
    json_format: bool = True,
    console_level: int = DEFAULT_CONSOLE_LEVEL,
    file_level: int = DEFAULT_FILE_LEVEL,
    max_bytes: int = DEFAULT_MAX_BYTES,
    backup_count: int = DEFAULT_BACKUP_COUNT,
    suppress_noisy: bool = True,
    run_id: Optional[str] = None,
    use_instance_id: bool = True,
) -> logging.Logger:
    """
    Configure logging with console and rotating file handlers.

    Log files are organized by domain and date:
        logs/queue_dump/2025-01-15/queue_dump_drain_20250115_p12345.log

    Args:
        name: Logger name returned to the caller
        stage: Stage name for the log file
        domain: Log domain (subfolder and file prefix)
        log_dir: Directory for log files (default: ./logs)
        json_format: Use JSON format for file logs (default: True)
        console_level: Console handler level (default: INFO)
        file_level: File handler level (default: DEBUG)
        max_bytes: Max size per log file before rotation
        backup_count: Number of backup files to keep
        suppress_noisy: Quiet down Kafka client loggers
        run_id: Run identifier for context
        use_instance_id: Append process ID to log filename (default: True)

    Returns:
        Configured logger instance
    """
    log_dir = log_dir or DEFAULT_LOG_DIR

    set_log_context(domain=domain, stage=stage, run_id=run_id)

    instance_id = f"p{os.getpid()}" if use_instance_id else None

    log_file = get_log_file_path(
        log_dir, domain=domain, stage=stage, instance_id=instance_id
    )
    log_file.parent.mkdir(parents=True, exist_ok=True)

    if json_format:
        file_formatter = JSONFormatter()
    else:
        file_formatter = logging.Formatter(
            "%(asctime)s - %(name)s - %(levelname)s - [%(filename)s:%(lineno)d] - %(message)s"
        )
    console_formatter = ConsoleFormatter()

    file_handler = RotatingFileHandler(
        log_file,
        maxBytes=max_bytes,
        backupCount=backup_count,
        encoding="utf-8",
    )
    file_handler.setLevel(file_level)
    file_handler.setFormatter(file_formatter)

    if sys.platform == "win32":
        safe_stdout = io.TextIOWrapper(
            sys.stdout.buffer, encoding="utf-8", errors="replace"
        )
        console_handler = logging.StreamHandler(safe_stdout)
    else:
        console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setLevel(console_level)
    console_handler.setFormatter(console_formatter)

    root_logger = logging.getLogger()
    root_logger.setLevel(logging.DEBUG)  # Capture all, handlers filter

    # Remove existing handlers to avoid duplicates on re-init
    root_logger.handlers.clear()
    root_logger.addHandler(file_handler)
    root_logger.addHandler(console_handler)

    if suppress_noisy:
        for logger_name in NOISY_LOGGERS:
            logging.getLogger(logger_name).setLevel(logging.WARNING)

    logger = logging.getLogger(name)
    logger.debug(f"Logging initialized: file={log_file}, json={json_format}")

    return logger


def get_logger(name: str) -> logging.Logger:
    """
    Get a logger instance.

    Use this instead of logging.getLogger() to ensure consistent naming.

    Args:
        name: Logger name (typically __name__)

    Returns:
        Logger instance
    """
    return logging.getLogger(name)


def generate_run_id() -> str:
    """
    Generate unique run identifier.

    Format: r-YYYYMMDD-HHMMSS-XXXX where XXXX is random hex.
    """
    ts = datetime.now().strftime("%Y%m%d-%H%M%S")
    suffix = secrets.token_hex(2)
    return f"r-{ts}-{suffix}"
