"""
Queue drainer.

Provides the consume loop that empties a queue into files:
- Scoped AIOKafkaConsumer, closed on every exit path
- Bounded-wait polling; an empty poll means the queue is drained
- Strictly sequential materialize-then-acknowledge per message
- Explicit policy for messages lacking metadata
- Fatal errors propagate without acknowledging the failed message
"""

import asyncio
import logging
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional

from aiokafka import AIOKafkaConsumer
from aiokafka.errors import KafkaError
from aiokafka.structs import ConsumerRecord, TopicPartition

from queue_dump.common.exceptions import (
    ConnectionError,
    MissingMetadataError,
    classify_exception,
)
from queue_dump.common.metrics import (
    message_processing_duration_seconds,
    record_file_written,
    record_message_consumed,
    record_message_skipped,
    record_processing_error,
)
from queue_dump.config import DumpConfig, MissingMetadataPolicy
from queue_dump.logging import (
    MessageLogContext,
    get_logger,
    log_exception,
    log_with_context,
)
from queue_dump.materializer import MaterializedFile, Materializer
from queue_dump.payload import DEFAULT_CHUNK_SIZE
from queue_dump.schemas.messages import PropertyNames, QueuedMessage

logger = get_logger(__name__)

DEFAULT_POLL_TIMEOUT_MS = 1000


@dataclass
class DrainSummary:
    """What one drain run did."""

    files_written: int = 0
    bytes_written: int = 0
    messages_skipped: int = 0
    written: List[MaterializedFile] = field(default_factory=list)

    def add(self, result: MaterializedFile) -> None:
        self.files_written += 1
        self.bytes_written += result.bytes_written
        self.written.append(result)


async def acknowledge(consumer: AIOKafkaConsumer, record: ConsumerRecord) -> None:
    """Commit past `record`, removing it from the queue for this consumer group."""
    tp = TopicPartition(record.topic, record.partition)
    try:
        await consumer.commit({tp: record.offset + 1})
    except KafkaError as e:
        raise ConnectionError(
            f"Failed to acknowledge {record.topic}:{record.partition}@{record.offset}",
            cause=e,
        ) from e


async def drain(
    consumer: AIOKafkaConsumer,
    output_root: Path,
    *,
    poll_timeout_ms: int = DEFAULT_POLL_TIMEOUT_MS,
    missing_metadata_policy: MissingMetadataPolicy = MissingMetadataPolicy.DISCARD,
    names: Optional[PropertyNames] = None,
    chunk_size: int = DEFAULT_CHUNK_SIZE,
    queue_name: str = "",
) -> DrainSummary:
    """
    Consume every observable message from a started consumer into files.

    Polls one record at a time with a bounded wait. The first poll that
    returns nothing ends the run. Each record is materialized and only
    then acknowledged; any failure propagates with the record left
    unacknowledged.

    Args:
        consumer: Started consumer with its partitions assigned
        output_root: Root of the output tree
        poll_timeout_ms: How long one poll waits before the queue counts as drained
        missing_metadata_policy: DISCARD acknowledges and skips messages
            without metadata; HALT raises MissingMetadataError
        names: Header names for metadata and encoding
        chunk_size: Write chunk size in bytes
        queue_name: Queue name for logs and metrics

    Returns:
        DrainSummary with counts and written files
    """
    names = names or PropertyNames()
    materializer = Materializer(output_root, names=names, chunk_size=chunk_size)
    summary = DrainSummary()

    while True:
        try:
            batch = await consumer.getmany(timeout_ms=poll_timeout_ms, max_records=1)
        except KafkaError as e:
            raise ConnectionError("Failed to poll queue", cause=e) from e

        records = [record for records in batch.values() for record in records]
        if not records:
            log_with_context(
                logger,
                logging.DEBUG,
                "Poll returned nothing, queue drained",
                queue=queue_name,
                poll_timeout_ms=poll_timeout_ms,
            )
            break

        for record in records:
            await _process_record(
                consumer,
                record,
                materializer,
                summary,
                names,
                missing_metadata_policy,
                queue_name or record.topic,
            )

    return summary


async def _process_record(
    consumer: AIOKafkaConsumer,
    record: ConsumerRecord,
    materializer: Materializer,
    summary: DrainSummary,
    names: PropertyNames,
    policy: MissingMetadataPolicy,
    queue_name: str,
) -> None:
    """Materialize one record and acknowledge it, or propagate the failure."""
    with MessageLogContext(
        topic=record.topic,
        partition=record.partition,
        offset=record.offset,
        key=record.key.decode("utf-8", errors="replace") if record.key else None,
    ):
        start_time = time.perf_counter()
        try:
            message = QueuedMessage.from_record(record, names)
            result = await materializer.materialize(message)
        except MissingMetadataError as e:
            if policy is MissingMetadataPolicy.HALT:
                _record_failure(e, queue_name, start_time)
                raise
            log_with_context(
                logger,
                logging.WARNING,
                "Discarding message without required metadata",
                missing=e.missing,
                policy=policy.value,
            )
            await acknowledge(consumer, record)
            record_message_consumed(queue_name, "skipped")
            record_message_skipped(queue_name, "missing_metadata")
            summary.messages_skipped += 1
            return
        except Exception as e:
            _record_failure(e, queue_name, start_time)
            raise

        await acknowledge(consumer, record)

        duration = time.perf_counter() - start_time
        message_processing_duration_seconds.labels(queue=queue_name).observe(duration)
        record_message_consumed(queue_name, "success")
        record_file_written(result.data_source, result.bytes_written)
        summary.add(result)

        log_with_context(
            logger,
            logging.INFO,
            f"{result.data_source}: {result.file_name}",
            data_source=result.data_source,
            file_name=result.file_name,
            output_path=str(result.path),
            bytes_written=result.bytes_written,
            duration_ms=round(duration * 1000, 2),
        )


def _record_failure(error: Exception, queue_name: str, start_time: float) -> None:
    duration = time.perf_counter() - start_time
    category = classify_exception(error)
    message_processing_duration_seconds.labels(queue=queue_name).observe(duration)
    record_message_consumed(queue_name, "error")
    record_processing_error(queue_name, category.value)
    log_exception(
        logger,
        error,
        "Message processing failed, leaving it on the queue",
        error_category=category.value,
        classified_as=type(error).__name__,
        duration_ms=round(duration * 1000, 2),
    )


class QueueDrainer:
    """
    Scoped broker connection that drains one queue into an output tree.

    The consumer is created on entry and stopped on exit, whatever ends
    the run: completion, a fatal error, cancellation or interrupt.

    Usage:
        >>> config = DumpConfig.from_env("kafka://localhost:9092", "files", Path("out"))
        >>> async with QueueDrainer(config) as drainer:
        ...     summary = await drainer.drain()
    """

    def __init__(
        self,
        config: DumpConfig,
        consumer_factory: Callable[..., AIOKafkaConsumer] = AIOKafkaConsumer,
    ):
        self.config = config
        self._consumer_factory = consumer_factory
        self._consumer: Optional[AIOKafkaConsumer] = None

        log_with_context(
            logger,
            logging.INFO,
            "Initialized queue drainer",
            queue=config.queue,
            group_id=config.group_id,
            broker_uri=config.broker_uri or config.bootstrap_servers,
            output_root=str(config.output_dir),
        )

    def _consumer_config(self) -> Dict[str, Any]:
        consumer_config: Dict[str, Any] = {
            "bootstrap_servers": self.config.bootstrap_servers,
            "group_id": self.config.group_id,
            "enable_auto_commit": False,
            "auto_offset_reset": "earliest",
            "request_timeout_ms": self.config.request_timeout_ms,
        }

        if self.config.security_protocol != "PLAINTEXT":
            consumer_config["security_protocol"] = self.config.security_protocol
            if self.config.security_protocol.startswith("SASL"):
                consumer_config["sasl_mechanism"] = self.config.sasl_mechanism
                consumer_config["sasl_plain_username"] = self.config.sasl_plain_username
                consumer_config["sasl_plain_password"] = self.config.sasl_plain_password

        return consumer_config

    async def start(self) -> None:
        """
        Connect, subscribe to the queue and wait for partition assignment.

        Raises:
            ConnectionError: If the broker is unreachable or no partitions
                are assigned within assignment_timeout_s
        """
        if self._consumer is not None:
            logger.warning("Drainer already started, ignoring duplicate start call")
            return

        log_with_context(
            logger,
            logging.INFO,
            "Connecting to broker",
            bootstrap_servers=self.config.bootstrap_servers,
            security_protocol=self.config.security_protocol,
            queue=self.config.queue,
        )

        self._consumer = self._consumer_factory(
            self.config.queue, **self._consumer_config()
        )
        try:
            await self._consumer.start()
            await self._wait_for_assignment()
        except KafkaError as e:
            await self._stop_after_error()
            raise ConnectionError(
                f"Failed to connect to broker at {self.config.bootstrap_servers}",
                cause=e,
            ) from e
        except BaseException:
            await self._stop_after_error()
            raise

    async def _wait_for_assignment(self) -> None:
        # An empty poll during a group rebalance would look like a drained queue
        loop = asyncio.get_running_loop()
        deadline = loop.time() + self.config.assignment_timeout_s

        while not self._consumer.assignment():
            if loop.time() >= deadline:
                raise ConnectionError(
                    f"No partitions assigned for {self.config.queue!r} "
                    f"within {self.config.assignment_timeout_s}s",
                    context={"group_id": self.config.group_id},
                )
            await asyncio.sleep(0.1)

        partitions = [f"{tp.topic}:{tp.partition}" for tp in self._consumer.assignment()]
        log_with_context(
            logger,
            logging.INFO,
            "Partition assignment received",
            group_id=self.config.group_id,
            partition_count=len(partitions),
            partitions=partitions,
        )

    async def stop(self) -> None:
        """Stop the consumer. Safe to call multiple times."""
        if self._consumer is None:
            return

        consumer, self._consumer = self._consumer, None
        try:
            await consumer.stop()
            logger.info("Broker connection closed")
        except Exception as e:
            log_exception(logger, e, "Error closing broker connection")
            raise

    async def _stop_after_error(self) -> None:
        """Stop while another error propagates; a stop failure is logged, not raised."""
        try:
            await self.stop()
        except Exception:
            logger.warning(
                "Consumer stop failed during error handling, keeping the original error"
            )

    async def drain(self) -> DrainSummary:
        """Drain the queue into config.output_dir."""
        if self._consumer is None:
            raise RuntimeError("Drainer not started; use 'async with QueueDrainer(...)'")

        return await drain(
            self._consumer,
            self.config.output_dir,
            poll_timeout_ms=self.config.poll_timeout_ms,
            missing_metadata_policy=self.config.missing_metadata_policy,
            names=self.config.property_names(),
            chunk_size=self.config.chunk_size,
            queue_name=self.config.queue,
        )

    async def __aenter__(self) -> "QueueDrainer":
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        if exc_type is None:
            await self.stop()
        else:
            await self._stop_after_error()

    @property
    def is_connected(self) -> bool:
        return self._consumer is not None


__all__ = ["DrainSummary", "QueueDrainer", "acknowledge", "drain"]
