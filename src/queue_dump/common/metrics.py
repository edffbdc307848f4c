"""
Prometheus metrics for queue draining.

Provides instrumentation for:
- Message consumption by outcome
- Files and bytes materialized per data source
- Skipped messages and errors by category
- Per-message processing time
"""

from prometheus_client import Counter, Histogram

messages_consumed_total = Counter(
    "queue_dump_messages_consumed_total",
    "Total number of messages consumed from the queue",
    ["queue", "status"],  # status: success, error, skipped
)

files_written_total = Counter(
    "queue_dump_files_written_total",
    "Total number of files materialized from messages",
    ["data_source"],
)

bytes_written_total = Counter(
    "queue_dump_bytes_written_total",
    "Total bytes of payload written to disk",
    ["data_source"],
)

messages_skipped_total = Counter(
    "queue_dump_messages_skipped_total",
    "Total number of messages acknowledged without writing a file",
    ["queue", "reason"],
)

processing_errors_total = Counter(
    "queue_dump_processing_errors_total",
    "Total number of message processing errors by category",
    ["queue", "error_category"],
)

message_processing_duration_seconds = Histogram(
    "queue_dump_message_processing_duration_seconds",
    "Time spent materializing individual messages",
    ["queue"],
    buckets=(
        0.005,
        0.01,
        0.025,
        0.05,
        0.1,
        0.25,
        0.5,
        1.0,
        2.5,
        5.0,
        10.0,
        30.0,
    ),  # From 5ms to 30s
)


def record_file_written(data_source: str, size: int) -> None:
    files_written_total.labels(data_source=data_source).inc()
    bytes_written_total.labels(data_source=data_source).inc(size)


def record_message_consumed(queue: str, status: str) -> None:
    messages_consumed_total.labels(queue=queue, status=status).inc()


def record_message_skipped(queue: str, reason: str) -> None:
    messages_skipped_total.labels(queue=queue, reason=reason).inc()


def record_processing_error(queue: str, error_category: str) -> None:
    processing_errors_total.labels(queue=queue, error_category=error_category).inc()


__all__ = [
    "messages_consumed_total",
    "files_written_total",
    "bytes_written_total",
    "messages_skipped_total",
    "processing_errors_total",
    "message_processing_duration_seconds",
    "record_file_written",
    "record_message_consumed",
    "record_message_skipped",
    "record_processing_error",
]
