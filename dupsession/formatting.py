"""
Display formatting for sizes, durations, hashes and deletion summaries.
"""

from __future__ import annotations

import re
from typing import Optional

from dupsession.models import DeleteResult

_SIZE_UNITS = ["Bytes", "KB", "MB", "GB", "TB"]
_PATH_SEPARATORS = re.compile(r"[/\\]")


def format_bytes(num_bytes: int, decimals: int = 2) -> str:
    """
    Human-readable byte count (base 1024).

    Example:
        >>> format_bytes(1536)
        '1.5 KB'
    """
    if num_bytes == 0:
        return "0 Bytes"

    decimals = max(decimals, 0)
    index = 0
    while num_bytes >= 1024 ** (index + 1) and index < len(_SIZE_UNITS) - 1:
        index += 1
    text = f"{num_bytes / (1024**index):.{decimals}f}"
    if "." in text:
        # 1.50 -> 1.5, 2.00 -> 2
        text = text.rstrip("0").rstrip(".")
    return f"{text} {_SIZE_UNITS[index]}"


def truncate_hash(content_hash: str, length: int = 8) -> str:
    if len(content_hash) <= length:
        return content_hash
    return content_hash[:length] + "..."


def file_name(path: str) -> str:
    """Last component of a '/' or '\\' separated path."""
    parts = [p for p in _PATH_SEPARATORS.split(path) if p]
    return parts[-1] if parts else ""


def directory(path: str) -> str:
    """Parent directory of a path, normalized to '/' separators."""
    parts = _PATH_SEPARATORS.split(path)
    parts.pop()
    return "/".join(parts) or "/"


def format_duration(ms: int) -> str:
    """
    Human-readable duration.

    Example:
        >>> format_duration(125000)
        '2m 5s'
    """
    if ms < 1000:
        return f"{ms}ms"

    seconds = ms / 1000
    if seconds < 60:
        return f"{seconds:.1f}s"

    minutes = int(seconds // 60)
    remaining = int(seconds % 60 + 0.5)
    return f"{minutes}m {remaining}s"


def format_number(num: int) -> str:
    return f"{num:,}"


def pluralize(count: int, singular: str, plural: Optional[str] = None) -> str:
    word = singular if count == 1 else (plural or singular + "s")
    return f"{format_number(count)} {word}"


def deletion_summary(result: DeleteResult) -> str:
    """One-line summary of a delete command for the user."""
    deleted = len(result.deleted)
    failed = len(result.failed)
    if failed == 0:
        return f"Successfully deleted {pluralize(deleted, 'file')}"
    if deleted == 0:
        return f"Failed to delete {pluralize(failed, 'file')}"
    return f"Deleted {pluralize(deleted, 'file')}, {failed} failed"
