"""
Pydantic models for the scan session core.

Models:
- FileRecord: Single file produced by the engine
- DuplicateGroup: Files sharing the same content hash
- ScanProgress: Progress notification payload
- ScanOptions: Options sent with the start command
- ScanResult: Final scan result (finished notification payload)
- DeleteResult: Outcome of a delete command
- SessionState: Immutable snapshot of the session

Wire names follow the engine's camelCase serialization; Python code uses
snake_case attribute names. Both are accepted on input.
"""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class _WireModel(BaseModel):
    """Base for models exchanged with the engine."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class _FrozenWireModel(_WireModel):
    """Base for models stored inside a session snapshot."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        frozen=True,
    )


class ScanStatus(str, Enum):
    """Lifecycle status of a scan session."""

    idle = "idle"
    scanning = "scanning"
    finished = "finished"
    cancelled = "cancelled"
    error = "error"


class ScanPhase(str, Enum):
    """Phases reported by the engine while scanning."""

    counting = "counting"
    grouping = "grouping"
    hashing = "hashing"
    finalizing = "finalizing"
    complete = "complete"
    cancelled = "cancelled"


class FileRecord(_FrozenWireModel):
    """Single file with metadata."""

    path: str
    size: int = Field(ge=0)
    modified: Optional[datetime] = None


class DuplicateGroup(_FrozenWireModel):
    """Group of files sharing the same content hash.

    ``files[0]`` is the conventional keep candidate.
    """

    content_hash: str = Field(alias="hash")
    size: int = Field(ge=0)
    files: tuple[FileRecord, ...] = ()

    @property
    def paths(self) -> list[str]:
        return [f.path for f in self.files]

    @property
    def wasted_space(self) -> int:
        """Space recovered by keeping a single copy."""
        if len(self.files) <= 1:
            return 0
        return (len(self.files) - 1) * self.size


class ScanError(_FrozenWireModel):
    """Non-fatal per-file error encountered during a scan."""

    path: str
    message: str


class ScanProgress(_FrozenWireModel):
    """Progress of an ongoing scan."""

    files_scanned: int = 0
    files_total: Optional[int] = None
    phase: Optional[ScanPhase] = Field(default=None, alias="currentPhase")
    message: Optional[str] = None


class ScanOptions(_WireModel):
    """Options for a duplicate scan."""

    root_paths: list[str] = Field(default_factory=list)
    min_file_size: Optional[int] = None
    include_extensions: Optional[list[str]] = None
    exclude_extensions: Optional[list[str]] = None
    follow_symlinks: bool = False


class ScanResult(_WireModel):
    """Result of a completed scan."""

    duplicate_groups: list[DuplicateGroup] = Field(default_factory=list)
    total_files_scanned: int = 0
    total_duplicates_found: int = 0
    total_wasted_space: int = 0
    errors: list[ScanError] = Field(default_factory=list)
    duration_ms: int = 0

    @classmethod
    def build(
        cls,
        duplicate_groups: list[DuplicateGroup],
        total_files_scanned: int,
        errors: list[ScanError],
        duration_ms: int,
    ) -> ScanResult:
        """Create a result with duplicate and wasted-space totals computed."""
        return cls(
            duplicate_groups=duplicate_groups,
            total_files_scanned=total_files_scanned,
            total_duplicates_found=sum(len(g.files) for g in duplicate_groups),
            total_wasted_space=sum(g.wasted_space for g in duplicate_groups),
            errors=errors,
            duration_ms=duration_ms,
        )


class DeleteError(_WireModel):
    """A file the engine could not delete."""

    path: str
    reason: str


class DeleteResult(_WireModel):
    """Result of a delete command."""

    deleted: list[str] = Field(default_factory=list)
    failed: list[DeleteError] = Field(default_factory=list)

    @property
    def all_succeeded(self) -> bool:
        return not self.failed


class SessionState(BaseModel):
    """Immutable snapshot of a scan session.

    ``duration_ms``, ``total_files_scanned`` and ``error_message`` are only
    meaningful once the status is ``finished`` or ``error``.
    """

    model_config = ConfigDict(frozen=True)

    status: ScanStatus = ScanStatus.idle
    progress: ScanProgress = Field(default_factory=ScanProgress)
    groups: tuple[DuplicateGroup, ...] = ()
    errors: tuple[ScanError, ...] = ()
    selection: frozenset[str] = frozenset()
    duration_ms: int = 0
    total_files_scanned: int = 0
    error_message: Optional[str] = None

    @classmethod
    def initial(cls) -> SessionState:
        """Idle, empty configuration."""
        return cls()

    def known_paths(self) -> set[str]:
        """Every file path currently inside a duplicate group."""
        return {f.path for g in self.groups for f in g.files}
