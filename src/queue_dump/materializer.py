"""
Message materializer.

Turns one queued message into one file on disk:
- Metadata validation (data source, file name)
- Output path resolution with containment check
- Lazy per-data-source directory creation
- Payload extraction and atomic overwrite of the target file

Clean interface: QueuedMessage -> MaterializedFile
"""

import logging
import os
import secrets
from dataclasses import dataclass
from pathlib import Path
from typing import Iterator, Optional, Set

import aiofiles
import aiofiles.os

from queue_dump.common.exceptions import WriteError
from queue_dump.common.security import resolve_output_path
from queue_dump.logging import get_logger, log_with_context
from queue_dump.payload import DEFAULT_CHUNK_SIZE
from queue_dump.schemas.messages import PropertyNames, QueuedMessage

logger = get_logger(__name__)


@dataclass(frozen=True)
class MaterializedFile:
    """Result of writing one message to disk."""

    path: Path
    bytes_written: int
    data_source: str
    file_name: str


class Materializer:
    """
    Writes queued messages into `output_root/<data source>/<file name>`.

    Steps for each message:
    1. Read data source and file name from the message properties
    2. Resolve the target path; escaping the data source directory is a
       SecurityViolationError raised before anything touches the disk
    3. Open the payload stream (unsupported encodings fail here)
    4. Create the data source directory and any nested parents
    5. Write to a temporary sibling, fsync, and replace the target

    Usage:
        materializer = Materializer(Path("/var/dump"))
        written = await materializer.materialize(message)
        # caller acknowledges the message only after this returns
    """

    def __init__(
        self,
        output_root: Path,
        names: Optional[PropertyNames] = None,
        chunk_size: int = DEFAULT_CHUNK_SIZE,
    ):
        self.output_root = Path(output_root)
        self.names = names or PropertyNames()
        self.chunk_size = chunk_size
        self._known_dirs: Set[Path] = set()

    async def materialize(self, message: QueuedMessage) -> MaterializedFile:
        """
        Write one message's payload to its resolved path.

        Args:
            message: Message to materialize

        Returns:
            MaterializedFile describing what was written

        Raises:
            MissingMetadataError: Data source or file name absent
            SecurityViolationError: File name escapes the data source directory
            UnsupportedEncodingError: Body is neither text nor bytes
            TruncatedPayloadError: Body shorter than its declared length
            WriteError: Filesystem failure
        """
        metadata = message.metadata(self.names)
        target = resolve_output_path(
            self.output_root, metadata.data_source, metadata.file_name
        )
        chunks = message.payload.stream(self.chunk_size)

        log_with_context(
            logger,
            logging.DEBUG,
            "Materializing message",
            data_source=metadata.data_source,
            file_name=metadata.file_name,
            output_path=str(target),
            message_type=message.payload.kind,
        )

        await self._ensure_directory(target.parent)
        size = await self._write_replace(target, chunks)

        return MaterializedFile(
            path=target,
            bytes_written=size,
            data_source=metadata.data_source,
            file_name=metadata.file_name,
        )

    async def _ensure_directory(self, directory: Path) -> None:
        if directory in self._known_dirs:
            return
        try:
            await aiofiles.os.makedirs(directory, exist_ok=True)
        except OSError as e:
            raise WriteError(
                f"Failed to create directory {directory}",
                cause=e,
                context={"directory": str(directory)},
            ) from e
        self._known_dirs.add(directory)

    async def _write_replace(self, target: Path, chunks: Iterator[bytes]) -> int:
        """Write chunks to a temp file next to `target`, then replace it."""
        tmp_path = target.with_name(f".{target.name}.{secrets.token_hex(4)}.part")
        size = 0
        replaced = False
        try:
            async with aiofiles.open(tmp_path, "wb") as f:
                for chunk in chunks:
                    await f.write(chunk)
                    size += len(chunk)
                await f.flush()
                os.fsync(f.fileno())
            await aiofiles.os.replace(tmp_path, target)
            replaced = True
        except OSError as e:
            raise WriteError(
                f"Failed to write {target}",
                cause=e,
                context={"output_path": str(target)},
            ) from e
        finally:
            # Also runs on cancellation
            if not replaced:
                self._discard(tmp_path)
        return size

    def _discard(self, tmp_path: Path) -> None:
        try:
            os.remove(tmp_path)
        except FileNotFoundError:
            pass


__all__ = ["Materializer", "MaterializedFile"]
