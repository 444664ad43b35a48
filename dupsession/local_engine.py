"""
In-process scan engine.

Implements the ScanEngine protocol on the local filesystem:
- Recursive walk of every root with size/extension filters
- Size grouping (files with a unique size cannot be duplicates)
- Chunked SHA256 hashing in a worker thread
- Groups of 2+ files sorted by wasted space, biggest first
- Deletion via send2trash (trash) or unlink (permanent)

Notifications are delivered synchronously to the registered handlers from
the event loop running the scan.
"""

from __future__ import annotations

import asyncio
import hashlib
import inspect
import os
import time
from datetime import datetime, timezone
from pathlib import Path
from typing import Awaitable, Callable, Iterable, Optional, Sequence, Union

import structlog
from send2trash import send2trash

from config.exceptions import (
    EngineCancelledError,
    EngineError,
    NoActiveScanError,
    ScanInProgressError,
)
from dupsession.engine import NotificationHandlers
from dupsession.models import (
    DeleteError,
    DeleteResult,
    DuplicateGroup,
    FileRecord,
    ScanError,
    ScanOptions,
    ScanPhase,
    ScanProgress,
    ScanResult,
)
from dupsession.settings import SessionSettings, get_settings

logger = structlog.get_logger(__name__)

FolderPicker = Callable[[], Union[Iterable[str], Awaitable[Iterable[str]]]]


def _normalize_extensions(extensions: Optional[Iterable[str]]) -> Optional[set[str]]:
    if not extensions:
        return None
    return {ext.lower().lstrip(".") for ext in extensions}


class FileFilter:
    """
    Size and extension filter applied during the walk.

    Exclusions win over inclusions. Extensions compare case-insensitively
    without the leading dot; a file without extension only passes an
    include list that contains "".
    """

    def __init__(
        self,
        min_size: Optional[int] = None,
        include_extensions: Optional[Iterable[str]] = None,
        exclude_extensions: Optional[Iterable[str]] = None,
    ):
        self.min_size = min_size
        self.include_extensions = _normalize_extensions(include_extensions)
        self.exclude_extensions = _normalize_extensions(exclude_extensions)

    @classmethod
    def from_options(cls, options: ScanOptions) -> FileFilter:
        return cls(
            min_size=options.min_file_size,
            include_extensions=options.include_extensions,
            exclude_extensions=options.exclude_extensions,
        )

    @property
    def has_restrictions(self) -> bool:
        return (
            self.min_size is not None
            or self.include_extensions is not None
            or self.exclude_extensions is not None
        )

    def matches(self, path: Path, size: int) -> bool:
        if self.min_size is not None and size < self.min_size:
            return False

        extension = path.suffix[1:].lower()

        if self.exclude_extensions is not None and extension and extension in self.exclude_extensions:
            return False

        if self.include_extensions is not None and extension not in self.include_extensions:
            return False

        return True


class LocalEngine:
    """
    Duplicate finder running inside the current process.

    Phases (reported through progress notifications):
    1. counting: walk roots, apply filters
    2. grouping: group candidates by size
    3. hashing: SHA256 of files sharing a size
    4. finalizing: build duplicate groups
    """

    def __init__(
        self,
        settings: Optional[SessionSettings] = None,
        folder_picker: Optional[FolderPicker] = None,
    ):
        """
        Initialize engine.

        Args:
            settings: Chunk size and progress cadence (defaults to env settings)
            folder_picker: Callable (sync or async) returning folders for select_folders
        """
        self.settings = settings or get_settings()
        self.folder_picker = folder_picker
        self._handlers: list[NotificationHandlers] = []
        self._running = False
        self._cancelled = False

    @property
    def is_running(self) -> bool:
        return self._running

    # ------------------------------------------------------------------
    # Notifications
    # ------------------------------------------------------------------

    def listen(self, handlers: NotificationHandlers) -> Callable[[], None]:
        self._handlers.append(handlers)

        def unlisten() -> None:
            if handlers in self._handlers:
                self._handlers.remove(handlers)

        return unlisten

    def _emit_progress(
        self,
        files_scanned: int,
        files_total: Optional[int],
        phase: ScanPhase,
    ) -> None:
        progress = ScanProgress(files_scanned=files_scanned, files_total=files_total, phase=phase)
        for handlers in list(self._handlers):
            if handlers.on_progress:
                handlers.on_progress(progress)

    def _emit_finished(self, result: ScanResult) -> None:
        for handlers in list(self._handlers):
            if handlers.on_finished:
                handlers.on_finished(result)

    def _emit_error(self, message: str) -> None:
        for handlers in list(self._handlers):
            if handlers.on_error:
                handlers.on_error(message)

    def _emit_cancelled(self) -> None:
        for handlers in list(self._handlers):
            if handlers.on_cancelled:
                handlers.on_cancelled()

    def _check_cancelled(self) -> None:
        if self._cancelled:
            logger.info("engine_scan_cancelled")
            self._emit_cancelled()
            raise EngineCancelledError()

    # ------------------------------------------------------------------
    # Commands
    # ------------------------------------------------------------------

    async def cancel_scan(self) -> None:
        """Request cancellation; observed between files and phases."""
        if not self._running:
            raise NoActiveScanError()
        self._cancelled = True

    async def start_scan(self, options: ScanOptions) -> ScanResult:
        """
        Run a full scan.

        Returns:
            ScanResult with duplicate groups

        Raises:
            ScanInProgressError: If a scan is already running
            EngineCancelledError: If the scan was cancelled
            EngineError: If a root path does not exist
        """
        if self._running:
            raise ScanInProgressError()

        self._running = True
        self._cancelled = False
        try:
            return await self._scan(options)
        finally:
            self._running = False
            self._cancelled = False

    async def _scan(self, options: ScanOptions) -> ScanResult:
        start_time = time.monotonic()
        errors: list[ScanError] = []

        logger.info(
            "engine_scan_started",
            root_paths=len(options.root_paths),
            follow_symlinks=options.follow_symlinks,
        )

        roots = [Path(p) for p in options.root_paths]
        for root in roots:
            if not root.exists():
                message = f"Path not found: {root}"
                logger.error("engine_scan_failed", error=message)
                self._emit_error(message)
                raise EngineError(message)

        # Phase 1: walk
        self._emit_progress(0, None, ScanPhase.counting)
        file_filter = FileFilter.from_options(options)
        files = await self._collect_files(roots, options.follow_symlinks, file_filter, errors)
        self._check_cancelled()
        total_files = len(files)

        # Phase 2: size grouping
        self._emit_progress(total_files, total_files, ScanPhase.grouping)
        candidates = self._group_by_size(files)
        self._check_cancelled()

        # Phase 3: hashing
        hashed = await self._hash_candidates(candidates, errors)
        self._check_cancelled()

        # Phase 4: duplicate groups
        self._emit_progress(len(candidates), len(candidates), ScanPhase.finalizing)
        groups = self._build_duplicate_groups(hashed)

        duration_ms = int((time.monotonic() - start_time) * 1000)
        result = ScanResult.build(groups, total_files, errors, duration_ms)

        logger.info(
            "engine_scan_completed",
            total_files_scanned=total_files,
            duplicate_groups=len(groups),
            total_wasted_space=result.total_wasted_space,
            errors=len(errors),
            duration_ms=duration_ms,
        )

        self._emit_progress(total_files, total_files, ScanPhase.complete)
        self._emit_finished(result)
        return result

    async def _collect_files(
        self,
        roots: list[Path],
        follow_symlinks: bool,
        file_filter: FileFilter,
        errors: list[ScanError],
    ) -> list[FileRecord]:
        """Walk every root once and return the files passing the filter."""
        files: list[FileRecord] = []
        seen: set[str] = set()
        visited_dirs: set[str] = set()

        def on_walk_error(exc: OSError) -> None:
            errors.append(ScanError(path=str(exc.filename or ""), message=str(exc)))

        for root in roots:
            for dirpath, dirnames, filenames in os.walk(
                root, onerror=on_walk_error, followlinks=follow_symlinks
            ):
                if self._cancelled:
                    return files

                # Each real directory is walked once (overlapping roots, linked dirs)
                real_dir = os.path.realpath(dirpath)
                if real_dir in visited_dirs:
                    dirnames[:] = []
                    continue
                visited_dirs.add(real_dir)
                dirnames[:] = self._unvisited_subdirs(dirpath, sorted(dirnames), visited_dirs, errors)

                for name in sorted(filenames):
                    file_path = Path(dirpath) / name

                    record = self._file_record(file_path, follow_symlinks, file_filter, errors)
                    if record is None:
                        continue

                    # Overlapping roots must not report a file as its own duplicate
                    resolved_key = os.path.realpath(file_path)
                    if resolved_key in seen:
                        continue
                    seen.add(resolved_key)
                    files.append(record)

                    if len(files) % self.settings.progress_every == 0:
                        self._emit_progress(len(files), None, ScanPhase.counting)
                        await asyncio.sleep(0)

                # Let cancel_scan and caller timeouts run between directories
                await asyncio.sleep(0)

        return files

    @staticmethod
    def _unvisited_subdirs(
        dirpath: str,
        dirnames: list[str],
        visited_dirs: set[str],
        errors: list[ScanError],
    ) -> list[str]:
        """Drop subdirectories resolving to an already walked directory."""
        kept = []
        for name in dirnames:
            child = os.path.join(dirpath, name)
            if os.path.realpath(child) in visited_dirs:
                if os.path.islink(child):
                    errors.append(ScanError(path=child, message="symlink loop"))
                    logger.debug("engine_symlink_loop_skipped", dir_path=child)
                continue
            kept.append(name)
        return kept

    def _file_record(
        self,
        file_path: Path,
        follow_symlinks: bool,
        file_filter: FileFilter,
        errors: list[ScanError],
    ) -> Optional[FileRecord]:
        try:
            if file_path.is_symlink() and not follow_symlinks:
                return None
            stat = file_path.stat()
        except OSError as e:
            errors.append(ScanError(path=str(file_path), message=str(e)))
            return None

        if not file_filter.matches(file_path, stat.st_size):
            return None

        return FileRecord(
            path=str(file_path),
            size=stat.st_size,
            modified=datetime.fromtimestamp(stat.st_mtime, tz=timezone.utc),
        )

    @staticmethod
    def _group_by_size(files: list[FileRecord]) -> list[FileRecord]:
        """Files whose size is shared with at least one other file."""
        by_size: dict[int, list[FileRecord]] = {}
        for record in files:
            by_size.setdefault(record.size, []).append(record)
        return [record for group in by_size.values() if len(group) > 1 for record in group]

    async def _hash_candidates(
        self,
        candidates: list[FileRecord],
        errors: list[ScanError],
    ) -> list[tuple[FileRecord, str]]:
        total = len(candidates)
        hashed: list[tuple[FileRecord, str]] = []

        self._emit_progress(0, total, ScanPhase.hashing)
        for index, record in enumerate(candidates, start=1):
            if self._cancelled:
                break
            try:
                digest = await asyncio.to_thread(self._hash_file, Path(record.path))
            except OSError as e:
                errors.append(ScanError(path=record.path, message=str(e)))
                logger.debug("engine_hash_failed", file_path=record.path, error=str(e))
            else:
                hashed.append((record, digest))

            if index % self.settings.progress_every == 0 and not self._cancelled:
                self._emit_progress(index, total, ScanPhase.hashing)

        return hashed

    def _hash_file(self, file_path: Path) -> str:
        """Compute SHA256 hash (chunked for memory efficiency)."""
        sha256 = hashlib.sha256()
        with open(file_path, "rb") as f:
            while chunk := f.read(self.settings.hash_chunk_size):
                sha256.update(chunk)
        return sha256.hexdigest()

    @staticmethod
    def _build_duplicate_groups(hashed: list[tuple[FileRecord, str]]) -> list[DuplicateGroup]:
        """Only groups with 2+ files are duplicates; biggest savings first."""
        by_hash: dict[str, list[FileRecord]] = {}
        for record, digest in hashed:
            by_hash.setdefault(digest, []).append(record)

        groups = [
            DuplicateGroup(content_hash=digest, size=records[0].size, files=tuple(records))
            for digest, records in by_hash.items()
            if len(records) > 1
        ]
        groups.sort(key=lambda g: g.wasted_space, reverse=True)
        return groups

    async def delete_files(self, paths: Sequence[str], use_trash: bool) -> DeleteResult:
        """
        Delete files one by one.

        Per-file failures are reported in DeleteResult.failed, never raised.
        """
        result = DeleteResult()

        logger.info("engine_deletion_started", files=len(paths), use_trash=use_trash)

        for path_str in paths:
            try:
                if use_trash:
                    await asyncio.to_thread(send2trash, path_str)
                else:
                    await asyncio.to_thread(Path(path_str).unlink)
            except PermissionError as e:
                result.failed.append(DeleteError(path=path_str, reason=f"Permission denied: {e}"))
                logger.warning("engine_delete_permission_denied", file_path=path_str)
            except Exception as e:
                result.failed.append(DeleteError(path=path_str, reason=str(e)))
                logger.warning("engine_delete_failed", file_path=path_str, error=str(e))
            else:
                result.deleted.append(path_str)
                logger.debug("engine_file_deleted", file_path=path_str)

        logger.info(
            "engine_deletion_completed",
            deleted=len(result.deleted),
            failed=len(result.failed),
        )
        return result

    async def select_folders(self) -> list[str]:
        """Folders chosen by the injected picker (none without a picker)."""
        if self.folder_picker is None:
            return []
        picked = self.folder_picker()
        if inspect.isawaitable(picked):
            picked = await picked
        return [str(p) for p in picked]
