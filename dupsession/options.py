"""
Option derivation: raw filter inputs -> ScanOptions.

The user edits folders and filters as raw values (numbers typed as text,
comma-separated extension lists, an include/exclude mode flag).
derive_scan_options() turns a FilterInputs snapshot into the ScanOptions
sent to the engine, deterministically and without side effects.

FolderSelection owns the current FilterInputs and replaces it on every
change (copy-on-write), so observers can compare snapshots by identity.
"""

from __future__ import annotations

from enum import Enum
from typing import Iterable, Optional, Union

import structlog
from pydantic import BaseModel, ConfigDict, field_validator

from config.exceptions import InvalidFilterError
from dupsession.models import ScanOptions

logger = structlog.get_logger(__name__)


class SizeUnit(str, Enum):
    """Unit of the minimum file size input."""

    KB = "KB"
    MB = "MB"

    @property
    def multiplier(self) -> int:
        return 1024 * 1024 if self is SizeUnit.MB else 1024


def coerce_min_size(value: Union[str, float, None]) -> Optional[float]:
    """Raw minimum size (number or numeric text) -> float, blank -> None."""
    if value is None:
        return None
    if isinstance(value, str):
        text = value.strip()
        if not text:
            return None
        try:
            return float(text)
        except ValueError:
            raise InvalidFilterError(f"Invalid minimum file size: {value!r}")
    return float(value)


class FilterInputs(BaseModel):
    """Raw filter inputs as entered by the user."""

    model_config = ConfigDict(frozen=True)

    folders: tuple[str, ...] = ()
    min_file_size: Optional[float] = None
    size_unit: SizeUnit = SizeUnit.KB
    include_extensions: str = ""
    exclude_extensions: str = ""
    use_include_mode: bool = True
    follow_symlinks: bool = False

    @field_validator("min_file_size", mode="before")
    @classmethod
    def _parse_min_file_size(cls, value):
        return coerce_min_size(value)


def parse_extensions(text: str) -> Optional[list[str]]:
    """
    Parse a comma-separated extension list.

    Each token is trimmed, lower-cased and stripped of one leading dot.
    Empty tokens are dropped. An empty result is None, not [].

    Example:
        >>> parse_extensions(" .JPG, png ,,")
        ['jpg', 'png']
    """
    extensions = []
    for token in text.split(","):
        ext = token.strip().lower()
        if ext.startswith("."):
            ext = ext[1:]
        if ext:
            extensions.append(ext)
    return extensions or None


def min_size_bytes(value: Optional[float], unit: SizeUnit) -> Optional[int]:
    """Minimum size in bytes, or None when no positive value is set."""
    if value is None or value <= 0:
        return None
    return int(value * unit.multiplier)


def derive_scan_options(inputs: FilterInputs) -> ScanOptions:
    """
    Build ScanOptions from raw filter inputs.

    Only the extension list of the active mode is emitted. The inactive
    list stays in FilterInputs so toggling the mode does not lose it.
    """
    include = parse_extensions(inputs.include_extensions) if inputs.use_include_mode else None
    exclude = None if inputs.use_include_mode else parse_extensions(inputs.exclude_extensions)

    return ScanOptions(
        root_paths=list(inputs.folders),
        min_file_size=min_size_bytes(inputs.min_file_size, inputs.size_unit),
        include_extensions=include,
        exclude_extensions=exclude,
        follow_symlinks=inputs.follow_symlinks,
    )


class FolderSelection:
    """
    Folder list and filter inputs for the next scan.

    Folders keep insertion order; duplicates are rejected on insertion.
    """

    def __init__(self, inputs: Optional[FilterInputs] = None):
        self._initial = inputs or FilterInputs()
        self._inputs = self._initial

    @property
    def inputs(self) -> FilterInputs:
        return self._inputs

    @property
    def folders(self) -> tuple[str, ...]:
        return self._inputs.folders

    @property
    def has_folders(self) -> bool:
        return len(self._inputs.folders) > 0

    @property
    def folder_count(self) -> int:
        return len(self._inputs.folders)

    @property
    def has_active_filters(self) -> bool:
        """Whether the derived options restrict which files are scanned."""
        options = self.scan_options()
        return (
            options.min_file_size is not None
            or options.include_extensions is not None
            or options.exclude_extensions is not None
        )

    def scan_options(self) -> ScanOptions:
        return derive_scan_options(self._inputs)

    def _update(self, **changes) -> FilterInputs:
        self._inputs = self._inputs.model_copy(update=changes)
        return self._inputs

    def reset(self) -> None:
        self._inputs = self._initial

    def add_folder(self, path: str) -> bool:
        """Add a folder. Returns False if it was already selected."""
        return bool(self.add_folders([path]))

    def add_folders(self, paths: Iterable[str]) -> list[str]:
        """
        Append folders not already selected, preserving order.

        Returns:
            The paths actually added
        """
        added: list[str] = []
        for path in paths:
            if path not in self._inputs.folders and path not in added:
                added.append(path)
        if added:
            self._update(folders=self._inputs.folders + tuple(added))
            logger.debug("folders_added", added=len(added), total=self.folder_count)
        return added

    def remove_folder(self, path: str) -> None:
        self._update(folders=tuple(f for f in self._inputs.folders if f != path))

    def clear_folders(self) -> None:
        self._update(folders=())

    def set_min_file_size(self, value: Union[str, float, None]) -> None:
        """Set the raw minimum size. Raises InvalidFilterError on bad text."""
        self._update(min_file_size=coerce_min_size(value))

    def set_size_unit(self, unit: Union[SizeUnit, str]) -> None:
        self._update(size_unit=SizeUnit(unit))

    def set_include_extensions(self, text: str) -> None:
        self._update(include_extensions=text)

    def set_exclude_extensions(self, text: str) -> None:
        self._update(exclude_extensions=text)

    def set_use_include_mode(self, value: bool) -> None:
        self._update(use_include_mode=value)

    def set_follow_symlinks(self, value: bool) -> None:
        self._update(follow_symlinks=value)
