"""Message schemas for queue_dump."""

from queue_dump.schemas.messages import (
    MessageMetadata,
    PropertyNames,
    QueuedMessage,
)

__all__ = ["MessageMetadata", "PropertyNames", "QueuedMessage"]
