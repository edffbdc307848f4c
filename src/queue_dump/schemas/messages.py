"""
Queued message schemas.

Contains the read-only view of a broker record and the Pydantic model
for the metadata every dumpable message must carry.
"""

import io
import logging
from dataclasses import dataclass, field
from functools import cached_property
from typing import Dict, Optional

from aiokafka.structs import ConsumerRecord
from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic import ValidationError as PydanticValidationError

from queue_dump.common.exceptions import MissingMetadataError, ValidationError
from queue_dump.logging import get_logger, log_with_context
from queue_dump.payload import (
    TEXT_ENCODING,
    BytesPayload,
    Payload,
    TextPayload,
    UnsupportedPayload,
)

logger = get_logger(__name__)

MESSAGE_TYPE_TEXT = "text"
MESSAGE_TYPE_BYTES = "bytes"


@dataclass(frozen=True)
class PropertyNames:
    """Header names the dump reads from each record."""

    data_source: str = "dataSource"
    file_name: str = "fileName"
    message_type: str = "messageType"
    content_length: str = "content-length"


class MessageMetadata(BaseModel):
    """Schema for the properties that place a message on disk.

    Attributes:
        data_source: Logical grouping identifier, used as a subdirectory name
        file_name: File name relative to the data source directory

    Example:
        >>> MessageMetadata(data_source="A", file_name="x.txt")
        MessageMetadata(data_source='A', file_name='x.txt')
    """

    model_config = ConfigDict(frozen=True)

    data_source: str = Field(
        ...,
        description="Data source identifier (subdirectory name)",
        min_length=1,
    )
    file_name: str = Field(
        ...,
        description="File name within the data source directory",
        min_length=1,
    )

    @field_validator("data_source", "file_name")
    @classmethod
    def validate_path_component(cls, v: str, info) -> str:
        """Reject whitespace-only values and embedded NUL bytes."""
        if not v.strip():
            raise ValueError(f"{info.field_name} cannot be empty or whitespace")
        if "\x00" in v:
            raise ValueError(f"{info.field_name} cannot contain NUL bytes")
        return v

    @classmethod
    def from_properties(
        cls, properties: Dict[str, str], names: PropertyNames
    ) -> "MessageMetadata":
        """Read metadata from message properties.

        Raises:
            MissingMetadataError: If either property is absent or blank
            ValidationError: If a property is present but unusable
        """
        data_source = properties.get(names.data_source)
        file_name = properties.get(names.file_name)

        missing = [
            name
            for name, value in (
                (names.data_source, data_source),
                (names.file_name, file_name),
            )
            if value is None or not value.strip()
        ]
        if missing:
            raise MissingMetadataError(
                f"Message is missing required properties: {', '.join(missing)}",
                missing=missing,
            )

        try:
            return cls(data_source=data_source, file_name=file_name)
        except PydanticValidationError as e:
            raise ValidationError(
                "Message metadata failed validation",
                cause=e,
                context={"data_source": data_source, "file_name": file_name},
            )


def decode_headers(headers) -> Dict[str, str]:
    """Decode record headers into string properties.

    Headers whose values are not valid UTF-8 are left out; later headers
    win over earlier ones with the same name.
    """
    properties: Dict[str, str] = {}
    for key, value in headers or ():
        if value is None:
            continue
        try:
            properties[key] = value.decode("utf-8")
        except UnicodeDecodeError:
            log_with_context(
                logger,
                logging.DEBUG,
                "Ignoring header with undecodable value",
                header=key,
            )
    return properties


def payload_from_record(
    value: Optional[bytes], properties: Dict[str, str], names: PropertyNames
) -> Payload:
    """Build the payload variant for a record body.

    Raises:
        ValidationError: If a text body is not valid UTF-8, or the content
            length header is not a non-negative integer
    """
    if value is None:
        return UnsupportedPayload("null")

    message_type = properties.get(names.message_type, MESSAGE_TYPE_BYTES)
    message_type = message_type.strip().lower()

    if message_type == MESSAGE_TYPE_TEXT:
        try:
            return TextPayload(value.decode(TEXT_ENCODING))
        except UnicodeDecodeError as e:
            raise ValidationError("Text message body is not valid UTF-8", cause=e)

    if message_type == MESSAGE_TYPE_BYTES:
        raw_length = properties.get(names.content_length)
        if raw_length is None:
            declared_length = len(value)
        else:
            try:
                declared_length = int(raw_length)
            except ValueError as e:
                raise ValidationError(
                    f"Invalid {names.content_length} header: {raw_length!r}",
                    cause=e,
                )
            if declared_length < 0:
                raise ValidationError(
                    f"Invalid {names.content_length} header: {raw_length!r}"
                )
        return BytesPayload(io.BytesIO(value), declared_length)

    return UnsupportedPayload(message_type)


@dataclass(frozen=True)
class QueuedMessage:
    """Read-only view of one broker record.

    The dump never mutates a message; it reads properties and payload and
    then acknowledges it through the consumer. The body is decoded on first
    access to `payload`, so a message is only decoded once its metadata
    has been read.
    """

    topic: str
    partition: int
    offset: int
    properties: Dict[str, str] = field(default_factory=dict)
    value: Optional[bytes] = None
    key: Optional[str] = None
    names: PropertyNames = field(default_factory=PropertyNames)

    @cached_property
    def payload(self) -> Payload:
        """Payload variant for the record body.

        Raises:
            ValidationError: If the body or its content length header is malformed
        """
        return payload_from_record(self.value, self.properties, self.names)

    @classmethod
    def from_record(
        cls, record: ConsumerRecord, names: Optional[PropertyNames] = None
    ) -> "QueuedMessage":
        return cls(
            topic=record.topic,
            partition=record.partition,
            offset=record.offset,
            properties=decode_headers(record.headers),
            value=record.value,
            key=record.key.decode("utf-8", errors="replace") if record.key else None,
            names=names or PropertyNames(),
        )

    def metadata(self, names: Optional[PropertyNames] = None) -> MessageMetadata:
        return MessageMetadata.from_properties(self.properties, names or self.names)
