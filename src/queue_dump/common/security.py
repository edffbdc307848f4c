"""
Security utilities for queue_dump.

Provides:
- Output path resolution (path traversal prevention)
- Broker URI sanitization (credential removal for logs)
- Error message sanitization
"""

import os
import re
from pathlib import Path
from typing import Union
from urllib.parse import urlsplit, urlunsplit

from queue_dump.common.exceptions import SecurityViolationError, ValidationError

PathLike = Union[str, "os.PathLike[str]"]


# ---------------------------------------------------------------------------
# Output Path Resolution (Path Traversal Prevention)
# ---------------------------------------------------------------------------


def canonical_path(path: PathLike) -> Path:
    """
    Canonical absolute form of a path, following symlinks.

    Works for paths that do not exist yet; the existing prefix is
    resolved against the filesystem and the rest is normalized.
    """
    return Path(os.path.realpath(os.path.abspath(path)))


def is_within(candidate: Path, sandbox: Path) -> bool:
    """
    Whether canonical `candidate` lies strictly inside canonical `sandbox`.

    Compares whole path components, so /out/A never admits /out/AB.
    """
    if candidate == sandbox:
        return False
    try:
        candidate.relative_to(sandbox)
    except ValueError:
        return False
    return True


def _anchored(name: str) -> str:
    """Normalize `name` and drop any leading separators.

    An absolute name is joined under its parent instead of replacing it,
    so `/x.txt` under `out/A` becomes `out/A/x.txt`.
    """
    normalized = os.path.normpath(name).lstrip(os.sep)
    if os.altsep:
        normalized = normalized.lstrip(os.altsep)
    return normalized or "."


def resolve_data_source_dir(output_root: PathLike, data_source: str) -> Path:
    """
    Resolve the per-data-source directory under the output root.

    Args:
        output_root: Root of the output tree
        data_source: Data source identifier from message metadata

    Returns:
        Canonical data source directory

    Raises:
        SecurityViolationError: If the directory escapes the output root
    """
    root = canonical_path(output_root)
    source_dir = canonical_path(root / _anchored(data_source))

    if not is_within(source_dir, root):
        raise SecurityViolationError(
            f"Invalid data source directory: {data_source!r}",
            sandbox=str(root),
            candidate=str(source_dir),
        )
    return source_dir


def resolve_output_path(
    output_root: PathLike, data_source: str, file_name: str
) -> Path:
    """
    Resolve where a message's payload may be written.

    The file name is normalized (`.` and `..` collapsed), joined to
    `output_root/data_source`, canonicalized and checked for containment.
    A leading separator is dropped, so absolute names land inside the
    data source directory. Nothing is created on disk.

    Args:
        output_root: Root of the output tree
        data_source: Data source identifier (subdirectory name)
        file_name: File name from message metadata, may contain subdirectories

    Returns:
        Canonical absolute target path

    Raises:
        SecurityViolationError: If the target escapes `output_root/data_source`
        ValidationError: If the file name resolves to the data source
            directory itself

    Examples:
        >>> resolve_output_path("/out", "A", "x.txt")
        PosixPath('/out/A/x.txt')
        >>> resolve_output_path("/out", "A", "../../etc/passwd")
        Traceback (most recent call last):
        ...
        SecurityViolationError: Invalid file name ...
    """
    source_dir = resolve_data_source_dir(output_root, data_source)

    candidate = canonical_path(source_dir / _anchored(file_name))

    if candidate == source_dir:
        raise ValidationError(
            f"File name {file_name!r} resolves to the data source directory",
            context={"data_source": data_source, "file_name": file_name},
        )

    if not is_within(candidate, source_dir):
        raise SecurityViolationError(
            f"Invalid file name {file_name!r} escapes {source_dir}",
            sandbox=str(source_dir),
            candidate=str(candidate),
        )
    return candidate


# ---------------------------------------------------------------------------
# Broker URI Sanitization (for logging)
# ---------------------------------------------------------------------------


def sanitize_url(url: str) -> str:
    """
    Remove credentials from a broker URI.

    Preserves scheme, hosts and path for debugging while replacing the
    password in any `user:password@` userinfo with [REDACTED].

    Args:
        url: URI that may carry credentials

    Returns:
        URI with the password replaced with [REDACTED]
    """
    if not url or "@" not in url:
        return url

    try:
        parts = urlsplit(url)
    except ValueError:
        return url  # Return as-is if parsing fails

    if not parts.password:
        return url

    userinfo, _, hosts = parts.netloc.rpartition("@")
    username = userinfo.split(":", 1)[0]
    netloc = f"{username}:[REDACTED]@{hosts}"
    return urlunsplit(parts._replace(netloc=netloc))


# ---------------------------------------------------------------------------
# Error Message Sanitization
# ---------------------------------------------------------------------------

URI_PATTERN = re.compile(r'[a-z][a-z0-9+.\-]*://[^\s"\'<>]+', re.IGNORECASE)


def sanitize_error_message(msg: str, max_length: int = 500) -> str:
    """
    Remove credentials embedded in URIs from an error message.

    Args:
        msg: Error message that may contain sensitive data
        max_length: Maximum length of returned message

    Returns:
        Sanitized and truncated error message
    """
    if not msg:
        return msg

    for match in URI_PATTERN.finditer(msg):
        original = match.group(0)
        sanitized = sanitize_url(original)
        if sanitized != original:
            msg = msg.replace(original, sanitized)

    if len(msg) > max_length:
        msg = msg[: max_length - 3] + "..."

    return msg
