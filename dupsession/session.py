"""
Scan session state machine.

ScanSession is the single owner of the SessionState snapshot. Every
operation builds a new frozen snapshot, swaps it in under a lock and then
publishes it to observers. Nothing else writes session state.

Lifecycle:
    idle/finished/cancelled/error --start_scan--> scanning
    scanning --update_progress--> scanning
    scanning --finish_scan--> finished
    scanning --cancel_scan--> cancelled
    scanning --fail_scan--> error

Engine notifications (progress, finished, cancelled, error) are only
applied while scanning. Once the session has left scanning they are
ignored, so a late notification can never overwrite a terminal state.
"""

from __future__ import annotations

import threading
from typing import Callable, Iterable

import structlog

from config.exceptions import ScanInProgressError
from dupsession import selection
from dupsession.metrics import SessionMetrics, compute_metrics
from dupsession.models import (
    DuplicateGroup,
    ScanPhase,
    ScanProgress,
    ScanResult,
    ScanStatus,
    SessionState,
)

logger = structlog.get_logger(__name__)

Observer = Callable[[SessionState], None]


class ScanSession:
    """
    Owner of the session snapshot.

    Created once at startup, reset in place, never reallocated.
    """

    def __init__(self):
        self._state = SessionState.initial()
        self._lock = threading.RLock()
        self._observers: list[Observer] = []

    # ------------------------------------------------------------------
    # Observation
    # ------------------------------------------------------------------

    @property
    def state(self) -> SessionState:
        return self._state

    @property
    def metrics(self) -> SessionMetrics:
        return compute_metrics(self._state)

    def subscribe(self, observer: Observer) -> Callable[[], None]:
        """
        Register an observer.

        The observer is called immediately with the current snapshot, then
        after every commit that produces a new snapshot.

        Returns:
            Function removing the observer
        """
        with self._lock:
            self._observers.append(observer)
        observer(self._state)

        def unsubscribe() -> None:
            with self._lock:
                if observer in self._observers:
                    self._observers.remove(observer)

        return unsubscribe

    def _commit(self, event: str, transform: Callable[[SessionState], SessionState]) -> SessionState:
        with self._lock:
            previous = self._state
            new_state = transform(previous)
            if new_state is previous:
                return previous
            self._state = new_state
            observers = list(self._observers)

        logger.debug(
            "session_state_committed",
            operation=event,
            status=new_state.status.value,
            groups=len(new_state.groups),
            selected=len(new_state.selection),
        )
        self._publish(new_state, observers)
        return new_state

    def _publish(self, state: SessionState, observers: list[Observer]) -> None:
        failures: list[Exception] = []
        for observer in observers:
            try:
                observer(state)
            except Exception as e:
                logger.error("session_observer_failed", error=str(e), exc_info=True)
                failures.append(e)
        if failures:
            raise failures[0]

    def _while_scanning(
        self,
        event: str,
        transform: Callable[[SessionState], SessionState],
    ) -> bool:
        """Apply a notification-driven transition only while scanning."""
        applied = False

        def guarded(state: SessionState) -> SessionState:
            nonlocal applied
            if state.status != ScanStatus.scanning:
                logger.debug(
                    "session_notification_ignored",
                    notification=event,
                    status=state.status.value,
                )
                return state
            applied = True
            return transform(state)

        self._commit(event, guarded)
        return applied

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def start_scan(self) -> SessionState:
        """
        Enter scanning, clearing previous results and selection.

        Raises:
            ScanInProgressError: If a scan is already running
        """

        def transform(state: SessionState) -> SessionState:
            if state.status == ScanStatus.scanning:
                raise ScanInProgressError()
            return state.model_copy(
                update={
                    "status": ScanStatus.scanning,
                    "groups": (),
                    "errors": (),
                    "selection": frozenset(),
                    "progress": ScanProgress(
                        files_scanned=0,
                        files_total=None,
                        phase=ScanPhase.counting,
                    ),
                    "error_message": None,
                }
            )

        new_state = self._commit("session_scan_started", transform)
        logger.info("session_scan_started")
        return new_state

    def update_progress(self, progress: ScanProgress) -> bool:
        """Overwrite progress. A payload without phase keeps the current phase."""

        def transform(state: SessionState) -> SessionState:
            update = progress
            if update.phase is None:
                update = update.model_copy(update={"phase": state.progress.phase})
            return state.model_copy(update={"progress": update})

        return self._while_scanning("session_progress_updated", transform)

    def finish_scan(self, result: ScanResult) -> bool:
        """Store the scan result and enter finished."""

        def transform(state: SessionState) -> SessionState:
            total = result.total_files_scanned
            return state.model_copy(
                update={
                    "status": ScanStatus.finished,
                    "groups": _normalize_groups(result.duplicate_groups),
                    "errors": tuple(result.errors),
                    "duration_ms": result.duration_ms,
                    "total_files_scanned": total,
                    "progress": ScanProgress(
                        files_scanned=total,
                        files_total=total,
                        phase=ScanPhase.complete,
                    ),
                }
            )

        applied = self._while_scanning("session_scan_finished", transform)
        if applied:
            logger.info(
                "session_scan_finished",
                groups=len(self._state.groups),
                total_files_scanned=result.total_files_scanned,
                errors=len(result.errors),
                duration_ms=result.duration_ms,
            )
        return applied

    def cancel_scan(self) -> bool:
        """Enter cancelled. Groups are left as they are (empty)."""
        applied = self._while_scanning(
            "session_scan_cancelled",
            lambda state: state.model_copy(
                update={
                    "status": ScanStatus.cancelled,
                    "progress": state.progress.model_copy(
                        update={"phase": ScanPhase.cancelled}
                    ),
                }
            ),
        )
        if applied:
            logger.info("session_scan_cancelled")
        return applied

    def fail_scan(self, message: str) -> bool:
        """Enter error with a fatal message."""
        applied = self._while_scanning(
            "session_scan_failed",
            lambda state: state.model_copy(
                update={"status": ScanStatus.error, "error_message": message}
            ),
        )
        if applied:
            logger.warning("session_scan_failed", error=message)
        return applied

    def dismiss_errors(self) -> SessionState:
        """Clear the non-fatal error list; status is unchanged."""
        return self._commit(
            "session_errors_dismissed",
            lambda state: state.model_copy(update={"errors": ()}) if state.errors else state,
        )

    def reset(self) -> SessionState:
        """Return to the idle, empty configuration (allowed from any state)."""
        return self._commit("session_reset", lambda _state: SessionState.initial())

    # ------------------------------------------------------------------
    # Selection
    # ------------------------------------------------------------------

    def toggle_file_selection(self, path: str) -> SessionState:
        return self._commit(
            "session_selection_toggled",
            lambda state: selection.toggle(state, path),
        )

    def select_all_but_one(self, group: DuplicateGroup) -> SessionState:
        return self._commit(
            "session_group_selected",
            lambda state: selection.select_all_but_one(state, group),
        )

    def select_all_duplicates(self) -> SessionState:
        return self._commit("session_all_duplicates_selected", selection.select_all_duplicates)

    def clear_group_selection(self, group: DuplicateGroup) -> SessionState:
        return self._commit(
            "session_group_selection_cleared",
            lambda state: selection.clear_group_selection(state, group),
        )

    def clear_all_selections(self) -> SessionState:
        return self._commit("session_selection_cleared", selection.clear_all_selections)

    def remove_deleted_files(self, paths: Iterable[str]) -> SessionState:
        deleted = list(paths)
        return self._commit(
            "session_deleted_files_removed",
            lambda state: selection.remove_deleted_files(state, deleted),
        )


def _normalize_groups(groups: Iterable[DuplicateGroup]) -> tuple[DuplicateGroup, ...]:
    """Keep groups with 2+ files, first occurrence of each content hash."""
    seen: set[str] = set()
    kept = []
    for group in groups:
        if len(group.files) < 2:
            logger.warning(
                "session_group_discarded",
                content_hash=group.content_hash,
                reason="fewer than 2 files",
            )
            continue
        if group.content_hash in seen:
            logger.warning(
                "session_group_discarded",
                content_hash=group.content_hash,
                reason="duplicate content hash",
            )
            continue
        seen.add(group.content_hash)
        kept.append(group)
    return tuple(kept)
