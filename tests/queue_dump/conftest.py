"""
Shared fixtures for queue_dump tests.

Provides:
- ConsumerRecord builder with dump headers
- Fake consumer that replays scripted poll results
- Output root directory
"""

from typing import Dict, List, Optional
from unittest.mock import AsyncMock, MagicMock

import pytest
from aiokafka.structs import ConsumerRecord, TopicPartition

TOPIC = "test.files"


def make_record(
    value: Optional[bytes],
    data_source: Optional[str] = "A",
    file_name: Optional[str] = "x.txt",
    message_type: Optional[str] = None,
    offset: int = 0,
    partition: int = 0,
    extra_headers: Optional[Dict[str, bytes]] = None,
    topic: str = TOPIC,
) -> ConsumerRecord:
    """Build a ConsumerRecord carrying the dump headers."""
    headers = []
    if data_source is not None:
        headers.append(("dataSource", data_source.encode("utf-8")))
    if file_name is not None:
        headers.append(("fileName", file_name.encode("utf-8")))
    if message_type is not None:
        headers.append(("messageType", message_type.encode("utf-8")))
    for key, header_value in (extra_headers or {}).items():
        headers.append((key, header_value))

    return ConsumerRecord(
        topic=topic,
        partition=partition,
        offset=offset,
        timestamp=1700000000000,
        timestamp_type=0,
        key=None,
        value=value,
        checksum=None,
        serialized_key_size=-1,
        serialized_value_size=len(value) if value is not None else -1,
        headers=headers,
    )


def make_consumer(records: List[ConsumerRecord]) -> MagicMock:
    """Fake started consumer: one record per poll, then an empty poll."""
    polls = [
        {TopicPartition(r.topic, r.partition): [r]} for r in records
    ]
    polls.append({})

    consumer = MagicMock()
    consumer.getmany = AsyncMock(side_effect=polls)
    consumer.commit = AsyncMock()
    consumer.start = AsyncMock()
    consumer.stop = AsyncMock()
    consumer.assignment.return_value = {TopicPartition(TOPIC, 0)}
    return consumer


@pytest.fixture
def output_root(tmp_path):
    """Existing, empty output root under tmp_path."""
    root = tmp_path / "out"
    root.mkdir()
    return root


@pytest.fixture
def record_factory():
    return make_record


@pytest.fixture
def consumer_factory():
    return make_consumer
