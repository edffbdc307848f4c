"""Log formatters for JSON and console output."""

import json
import logging
from datetime import datetime, timezone
from typing import Any, Dict

from queue_dump.common.security import sanitize_url
from queue_dump.logging.context import get_log_context


class JSONFormatter(logging.Formatter):
    """
    JSON log formatter with context injection.

    Produces one JSON object per line for easy parsing with jq/grep.
    Sanitizes broker URIs to remove credentials before logging.
    """

    # Fields to extract from LogRecord extras
    EXTRA_FIELDS = [
        "duration_ms",
        "error_category",
        "error_message",
        "classified_as",
        # Drain tracking
        "queue",
        "group_id",
        "poll_timeout_ms",
        "partitions",
        "partition_count",
        "files_written",
        "bytes_written",
        "messages_skipped",
        # Message identifiers
        "data_source",
        "file_name",
        "output_path",
        "output_root",
        "message_type",
        "declared_length",
        "missing",
        "header",
        "policy",
        # Broker
        "broker_uri",
        "bootstrap_servers",
        "security_protocol",
    ]

    # Fields that contain URIs and should be sanitized
    URL_FIELDS = ["broker_uri", "bootstrap_servers"]

    def _sanitize_value(self, key: str, value: Any) -> Any:
        """Sanitize value if it's a URI field."""
        if key in self.URL_FIELDS and isinstance(value, str):
            return sanitize_url(value)
        return value

    def format(self, record: logging.LogRecord) -> str:
        """Format log record as JSON with sanitized URIs."""
        log_entry: Dict[str, Any] = {
            "ts": datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%S.%f")[:-3]
            + "Z",
            "level": record.levelname,
            "logger": record.name,
            "msg": record.getMessage(),
        }

        # Inject context variables
        ctx = get_log_context()
        for key in ("domain", "stage", "run_id"):
            if ctx[key]:
                log_entry[key] = ctx[key]
        if ctx["message"]:
            log_entry.update(ctx["message"])

        # Add source location for DEBUG/ERROR
        if record.levelno in (logging.DEBUG, logging.ERROR, logging.CRITICAL):
            log_entry["file"] = f"{record.filename}:{record.lineno}"

        for field in self.EXTRA_FIELDS:
            value = getattr(record, field, None)
            if value is not None:
                log_entry[field] = self._sanitize_value(field, value)

        if record.exc_info:
            log_entry["exception"] = self.formatException(record.exc_info)

        return json.dumps(log_entry, default=str, ensure_ascii=False)


class ConsoleFormatter(logging.Formatter):
    """
    Human-readable console formatter.

    Includes context when available.
    """

    def format(self, record: logging.LogRecord) -> str:
        ctx = get_log_context()

        parts = [
            datetime.now().strftime("%Y-%m-%d %H:%M:%S"),
            record.levelname,
        ]

        if ctx["domain"]:
            parts.append(f"[{ctx['domain']}]")
        if ctx["stage"]:
            parts.append(f"[{ctx['stage']}]")

        prefix = " - ".join(parts)

        message = ctx["message"]
        if message:
            coords = f"{message['topic']}:{message['partition']}@{message['offset']}"
            return f"{prefix} - [{coords}] {record.getMessage()}"

        return f"{prefix} - {record.getMessage()}"
