"""Tests for writing queued messages to disk."""

import asyncio
import io
from unittest.mock import patch

import pytest

from queue_dump.common.exceptions import (
    MissingMetadataError,
    SecurityViolationError,
    TruncatedPayloadError,
    UnsupportedEncodingError,
    WriteError,
)
from queue_dump.materializer import Materializer
from queue_dump.payload import BytesPayload
from queue_dump.schemas.messages import QueuedMessage


def leftover_parts(root):
    return [p for p in root.rglob("*") if p.name.endswith(".part")]


class CancelledMidRead(io.BytesIO):
    """Reader that is cancelled after handing out its first chunk."""

    def __init__(self, data: bytes):
        super().__init__(data)
        self.reads = 0

    def read(self, size=-1):
        self.reads += 1
        if self.reads > 1:
            raise asyncio.CancelledError()
        return super().read(size)


class TestMaterializer:
    """Tests for Materializer.materialize."""

    @pytest.mark.asyncio
    async def test_text_message_written_as_utf8(self, output_root, record_factory):
        record = record_factory(
            "héllo".encode("utf-8"), data_source="A", file_name="x.txt", message_type="text"
        )

        result = await Materializer(output_root).materialize(
            QueuedMessage.from_record(record)
        )

        target = output_root / "A" / "x.txt"
        assert target.read_bytes() == "héllo".encode("utf-8")
        assert result.path == target.resolve()
        assert result.bytes_written == len("héllo".encode("utf-8"))
        assert result.data_source == "A"
        assert result.file_name == "x.txt"

    @pytest.mark.asyncio
    async def test_bytes_message_honours_declared_length(
        self, output_root, record_factory
    ):
        record = record_factory(
            b"\x00\xff\x10\x99",
            data_source="B",
            file_name="y.bin",
            message_type="bytes",
            extra_headers={"content-length": b"3"},
        )

        result = await Materializer(output_root).materialize(
            QueuedMessage.from_record(record)
        )

        assert (output_root / "B" / "y.bin").read_bytes() == b"\x00\xff\x10"
        assert result.bytes_written == 3

    @pytest.mark.asyncio
    async def test_empty_body_writes_empty_file(self, output_root, record_factory):
        record = record_factory(b"", data_source="A", file_name="empty.bin")

        await Materializer(output_root).materialize(QueuedMessage.from_record(record))

        assert (output_root / "A" / "empty.bin").read_bytes() == b""

    @pytest.mark.asyncio
    async def test_nested_file_name_creates_parents(self, output_root, record_factory):
        record = record_factory(b"data", data_source="A", file_name="2024/01/x.bin")

        await Materializer(output_root).materialize(QueuedMessage.from_record(record))

        assert (output_root / "A" / "2024" / "01" / "x.bin").read_bytes() == b"data"

    @pytest.mark.asyncio
    async def test_existing_file_is_overwritten(self, output_root, record_factory):
        materializer = Materializer(output_root)
        first = record_factory(b"first version", file_name="x.txt", message_type="text")
        second = record_factory(b"second", file_name="x.txt", message_type="text", offset=1)

        await materializer.materialize(QueuedMessage.from_record(first))
        await materializer.materialize(QueuedMessage.from_record(second))

        assert (output_root / "A" / "x.txt").read_bytes() == b"second"
        assert leftover_parts(output_root) == []

    @pytest.mark.asyncio
    async def test_traversal_is_rejected_before_touching_disk(
        self, tmp_path, output_root, record_factory
    ):
        record = record_factory(b"root:x:0:0", data_source="A", file_name="../../etc/passwd")

        with pytest.raises(SecurityViolationError):
            await Materializer(output_root).materialize(QueuedMessage.from_record(record))

        assert list(output_root.iterdir()) == []
        assert list(tmp_path.rglob("passwd")) == []

    @pytest.mark.asyncio
    async def test_unsupported_encoding_fails_before_mkdir(
        self, output_root, record_factory
    ):
        record = record_factory(b"{}", message_type="map")

        with pytest.raises(UnsupportedEncodingError):
            await Materializer(output_root).materialize(QueuedMessage.from_record(record))

        assert list(output_root.iterdir()) == []

    @pytest.mark.asyncio
    async def test_truncated_body_leaves_no_file(self, output_root, record_factory):
        record = record_factory(
            b"abc", file_name="short.bin", extra_headers={"content-length": b"10"}
        )

        with pytest.raises(TruncatedPayloadError):
            await Materializer(output_root, chunk_size=2).materialize(
                QueuedMessage.from_record(record)
            )

        assert not (output_root / "A" / "short.bin").exists()
        assert leftover_parts(output_root) == []

    @pytest.mark.asyncio
    async def test_truncated_body_keeps_previous_version(
        self, output_root, record_factory
    ):
        materializer = Materializer(output_root)
        good = record_factory(b"good", file_name="x.bin")
        bad = record_factory(
            b"abc", file_name="x.bin", offset=1, extra_headers={"content-length": b"10"}
        )

        await materializer.materialize(QueuedMessage.from_record(good))
        with pytest.raises(TruncatedPayloadError):
            await materializer.materialize(QueuedMessage.from_record(bad))

        assert (output_root / "A" / "x.bin").read_bytes() == b"good"

    @pytest.mark.asyncio
    async def test_missing_metadata_raises(self, output_root, record_factory):
        record = record_factory(b"data", file_name=None)

        with pytest.raises(MissingMetadataError) as exc_info:
            await Materializer(output_root).materialize(QueuedMessage.from_record(record))

        assert exc_info.value.missing == ["fileName"]
        assert list(output_root.iterdir()) == []

    @pytest.mark.asyncio
    async def test_filesystem_error_is_wrapped(self, output_root, record_factory):
        record = record_factory(b"data")

        with patch(
            "queue_dump.materializer.aiofiles.os.replace",
            side_effect=PermissionError("read-only"),
        ):
            with pytest.raises(WriteError) as exc_info:
                await Materializer(output_root).materialize(
                    QueuedMessage.from_record(record)
                )

        assert isinstance(exc_info.value.cause, PermissionError)
        assert not (output_root / "A" / "x.txt").exists()
        assert leftover_parts(output_root) == []

    @pytest.mark.asyncio
    async def test_directory_creation_failure_is_wrapped(
        self, output_root, record_factory
    ):
        (output_root / "A").write_bytes(b"not a directory")
        record = record_factory(b"data", file_name="sub/x.txt")

        with pytest.raises(WriteError):
            await Materializer(output_root).materialize(QueuedMessage.from_record(record))

    @pytest.mark.asyncio
    async def test_same_message_twice_gives_identical_content(
        self, output_root, record_factory
    ):
        materializer = Materializer(output_root)
        body = b"\x00\xff\x10 same body"

        first = await materializer.materialize(
            QueuedMessage.from_record(record_factory(body, file_name="x.bin"))
        )
        once = first.path.read_bytes()
        second = await materializer.materialize(
            QueuedMessage.from_record(record_factory(body, file_name="x.bin", offset=1))
        )

        assert second.path == first.path
        assert second.path.read_bytes() == once == body
        assert leftover_parts(output_root) == []

    @pytest.mark.asyncio
    async def test_absolute_file_name_written_under_data_source(
        self, output_root, record_factory
    ):
        record = record_factory(b"data", data_source="A", file_name="/x.txt")

        await Materializer(output_root).materialize(QueuedMessage.from_record(record))

        assert (output_root / "A" / "x.txt").read_bytes() == b"data"

    @pytest.mark.asyncio
    async def test_cancelled_write_leaves_no_temp_file(self, output_root, record_factory):
        record = record_factory(b"", data_source="A", file_name="y.bin")
        reader = CancelledMidRead(b"abcdef")

        with patch(
            "queue_dump.schemas.messages.payload_from_record",
            return_value=BytesPayload(reader, 6),
        ):
            with pytest.raises(asyncio.CancelledError):
                await Materializer(output_root, chunk_size=2).materialize(
                    QueuedMessage.from_record(record)
                )

        assert reader.reads == 2
        assert not (output_root / "A" / "y.bin").exists()
        assert leftover_parts(output_root) == []

    @pytest.mark.asyncio
    async def test_cancelled_replace_leaves_no_temp_file(
        self, output_root, record_factory
    ):
        record = record_factory(b"data", file_name="x.bin")

        with patch(
            "queue_dump.materializer.aiofiles.os.replace",
            side_effect=asyncio.CancelledError(),
        ):
            with pytest.raises(asyncio.CancelledError):
                await Materializer(output_root).materialize(
                    QueuedMessage.from_record(record)
                )

        assert leftover_parts(output_root) == []
