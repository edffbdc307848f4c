"""
Message payload variants and byte-stream extraction.

A payload is one of three variants: text, raw bytes, or an unsupported
encoding. Each exposes `stream()`, which returns a finite, non-restartable
iterator of byte chunks; the unsupported variant raises instead.
"""

from dataclasses import dataclass
from typing import BinaryIO, ClassVar, Iterator, Union

from queue_dump.common.exceptions import (
    TruncatedPayloadError,
    UnsupportedEncodingError,
)

DEFAULT_CHUNK_SIZE = 64 * 1024

TEXT_ENCODING = "utf-8"


def bounded_stream(
    reader: BinaryIO, length: int, chunk_size: int = DEFAULT_CHUNK_SIZE
) -> Iterator[bytes]:
    """
    Yield exactly `length` bytes from `reader`, in chunks.

    Never requests more than the remaining count, so bytes past the
    declared length stay unread even when the reader has them.

    Raises:
        TruncatedPayloadError: If the reader ends before `length` bytes
    """
    remaining = length
    while remaining > 0:
        chunk = reader.read(min(chunk_size, remaining))
        if not chunk:
            raise TruncatedPayloadError(length, length - remaining)
        remaining -= len(chunk)
        yield chunk


@dataclass(frozen=True)
class TextPayload:
    """Character body, written as UTF-8."""

    text: str
    kind: ClassVar[str] = "text"

    def stream(self, chunk_size: int = DEFAULT_CHUNK_SIZE) -> Iterator[bytes]:
        data = self.text.encode(TEXT_ENCODING)
        return (data[i : i + chunk_size] for i in range(0, len(data), chunk_size))


@dataclass(frozen=True)
class BytesPayload:
    """Raw byte body of a declared length, read once from `reader`."""

    reader: BinaryIO
    declared_length: int
    kind: ClassVar[str] = "bytes"

    def stream(self, chunk_size: int = DEFAULT_CHUNK_SIZE) -> Iterator[bytes]:
        return bounded_stream(self.reader, self.declared_length, chunk_size)


@dataclass(frozen=True)
class UnsupportedPayload:
    """Any body encoding other than text or bytes."""

    encoding: str
    kind: ClassVar[str] = "unsupported"

    def stream(self, chunk_size: int = DEFAULT_CHUNK_SIZE) -> Iterator[bytes]:
        raise UnsupportedEncodingError(self.encoding)


Payload = Union[TextPayload, BytesPayload, UnsupportedPayload]


__all__ = [
    "DEFAULT_CHUNK_SIZE",
    "TEXT_ENCODING",
    "bounded_stream",
    "TextPayload",
    "BytesPayload",
    "UnsupportedPayload",
    "Payload",
]
