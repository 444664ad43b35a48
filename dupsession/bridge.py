"""
Engine bridge: relays engine commands and notifications into the session.

Race handling:
- start_scan() moves the session to scanning synchronously, before the
  command is issued, so nothing from a previous scan can leak in.
- Notifications are relayed only while the bridge is relaying for the
  current scan. The first terminal transition (finished, cancelled, error)
  stops relaying; anything arriving afterwards is dropped.
- The start_scan response is applied only if no newer scan was started
  while it was in flight.
- cancel_scan() is best effort: it never changes state itself, the
  session only moves once the engine reports the cancellation.
"""

from __future__ import annotations

from typing import Callable, Optional, Sequence, Union

import structlog

from config.exceptions import DeletionError, EngineCommandError, ScanInProgressError
from dupsession.engine import (
    NotificationHandlers,
    ScanCancelled,
    ScanCompleted,
    ScanEngine,
    ScanFailed,
    classify_failure,
)
from dupsession.models import DeleteResult, ScanOptions, ScanProgress, ScanResult, ScanStatus
from dupsession.options import FolderSelection
from dupsession.selection import selected_paths
from dupsession.session import ScanSession
from dupsession.settings import SessionSettings, get_settings

logger = structlog.get_logger(__name__)


class EngineBridge:
    """
    Adapter between a ScanEngine and a ScanSession.

    Usage:
        bridge = EngineBridge(session, engine, folders)
        bridge.attach()
        outcome = await bridge.start_scan(folders.scan_options())
    """

    def __init__(
        self,
        session: ScanSession,
        engine: ScanEngine,
        folders: Optional[FolderSelection] = None,
        settings: Optional[SessionSettings] = None,
    ):
        self.session = session
        self.engine = engine
        self.folders = folders if folders is not None else FolderSelection()
        self.settings = settings or get_settings()
        self._unlisten: Optional[Callable[[], None]] = None
        self._relaying = False
        self._cancel_pending = False
        self._scan_generation = 0

    # ------------------------------------------------------------------
    # Notification wiring
    # ------------------------------------------------------------------

    @property
    def is_attached(self) -> bool:
        return self._unlisten is not None

    @property
    def is_cancelling(self) -> bool:
        return self._cancel_pending

    def attach(self) -> None:
        """Subscribe to engine notifications (idempotent)."""
        if self._unlisten is not None:
            return
        self._unlisten = self.engine.listen(
            NotificationHandlers(
                on_progress=self._on_progress,
                on_finished=self._on_finished,
                on_error=self._on_error,
                on_cancelled=self._on_cancelled,
            )
        )
        logger.debug("bridge_attached")

    def detach(self) -> None:
        """Unsubscribe from engine notifications."""
        if self._unlisten is None:
            return
        unlisten, self._unlisten = self._unlisten, None
        unlisten()
        self._relaying = False
        logger.debug("bridge_detached")

    async def __aenter__(self) -> EngineBridge:
        self.attach()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        self.detach()

    def _end_relay(self) -> None:
        self._relaying = False
        self._cancel_pending = False

    def _drop(self, notification: str) -> None:
        logger.debug(
            "bridge_notification_dropped",
            notification=notification,
            status=self.session.state.status.value,
        )

    def _on_progress(self, progress: ScanProgress) -> None:
        if not self._relaying:
            self._drop("progress")
            return
        self.session.update_progress(progress)

    def _on_finished(self, result: ScanResult) -> None:
        if not self._relaying:
            self._drop("finished")
            return
        self._end_relay()
        self.session.finish_scan(result)

    def _on_error(self, message: str) -> None:
        if not self._relaying:
            self._drop("error")
            return
        self._end_relay()
        self.session.fail_scan(message)

    def _on_cancelled(self) -> None:
        if not self._relaying:
            self._drop("cancelled")
            return
        self._end_relay()
        self.session.cancel_scan()

    # ------------------------------------------------------------------
    # Commands
    # ------------------------------------------------------------------

    async def start_scan(
        self, options: Optional[ScanOptions] = None
    ) -> Union[ScanCompleted, ScanCancelled, ScanFailed]:
        """
        Start a scan and wait for it to end.

        Args:
            options: Scan options (defaults to the folder selection's options)

        Returns:
            Tagged outcome of the request. Fatal engine failures are reported
            as ScanFailed and never raised.

        Raises:
            ScanInProgressError: If the session is already scanning
        """
        if options is None:
            options = self.folders.scan_options()

        # Synchronous transition before the command is issued.
        try:
            self.session.start_scan()
        except ScanInProgressError:
            raise
        except Exception as e:
            if self.session.state.status != ScanStatus.scanning:
                raise
            # An observer failed after the commit; the session is scanning.
            logger.error("bridge_start_observer_failed", error=str(e))
        self._scan_generation += 1
        generation = self._scan_generation
        self._relaying = True
        self._cancel_pending = False

        logger.info(
            "bridge_scan_requested",
            root_paths=len(options.root_paths),
            min_file_size=options.min_file_size,
            follow_symlinks=options.follow_symlinks,
        )

        try:
            result = await self.engine.start_scan(options)
        except Exception as e:
            outcome = classify_failure(e)
            logger.info(
                "bridge_scan_rejected",
                outcome=outcome.kind,
                error=str(e),
            )
        else:
            outcome = ScanCompleted(result=result)

        if generation != self._scan_generation:
            logger.debug("bridge_stale_response_dropped", outcome=outcome.kind)
            return outcome

        self._apply_outcome(outcome)
        return outcome

    def _apply_outcome(self, outcome: Union[ScanCompleted, ScanCancelled, ScanFailed]) -> None:
        was_relaying = self._relaying
        self._end_relay()
        if not was_relaying:
            # A terminal notification already settled this scan.
            return
        if isinstance(outcome, ScanCompleted):
            self.session.finish_scan(outcome.result)
        elif isinstance(outcome, ScanCancelled):
            self.session.cancel_scan()
        else:
            self.session.fail_scan(outcome.reason)

    async def cancel_scan(self) -> bool:
        """
        Request cancellation of the running scan.

        Returns:
            True if the cancel command was issued, False if ignored (not
            scanning, or a cancel request is already outstanding)

        Raises:
            EngineCommandError: If the engine rejected the request
        """
        if self._cancel_pending:
            logger.debug("bridge_cancel_already_pending")
            return False
        if self.session.state.status != ScanStatus.scanning:
            logger.debug("bridge_cancel_not_scanning", status=self.session.state.status.value)
            return False

        self._cancel_pending = True
        logger.info("bridge_cancel_requested")
        try:
            await self.engine.cancel_scan()
        except Exception as e:
            self._cancel_pending = False
            logger.error("bridge_cancel_failed", error=str(e))
            raise EngineCommandError(f"Failed to cancel scan: {e}") from e
        return True

    async def delete_files(
        self, paths: Sequence[str], use_trash: Optional[bool] = None
    ) -> DeleteResult:
        """
        Delete files and drop the deleted ones from the session.

        Files reported as deleted leave the groups and the selection even
        when other files of the same batch failed.

        Raises:
            DeletionError: If the engine rejected the whole command
        """
        paths = list(paths)
        if not paths:
            return DeleteResult()
        if use_trash is None:
            use_trash = self.settings.use_trash

        logger.info("bridge_delete_requested", files=len(paths), use_trash=use_trash)
        try:
            result = await self.engine.delete_files(paths, use_trash)
        except Exception as e:
            logger.error("bridge_delete_failed", files=len(paths), error=str(e))
            raise DeletionError(f"Failed to delete files: {e}") from e

        self.session.remove_deleted_files(result.deleted)

        for failure in result.failed:
            logger.warning("bridge_delete_file_failed", path=failure.path, reason=failure.reason)
        logger.info(
            "bridge_delete_completed",
            deleted=len(result.deleted),
            failed=len(result.failed),
        )
        return result

    async def delete_selected(self, use_trash: Optional[bool] = None) -> DeleteResult:
        """Delete every selected file."""
        return await self.delete_files(selected_paths(self.session.state), use_trash)

    async def select_folders(self) -> list[str]:
        """
        Ask the engine for folders and add them to the folder selection.

        Returns:
            Folders that were not already selected
        """
        try:
            picked = await self.engine.select_folders()
        except Exception as e:
            logger.error("bridge_select_folders_failed", error=str(e))
            raise EngineCommandError(f"Failed to select folders: {e}") from e
        added = self.folders.add_folders(picked)
        logger.info("bridge_folders_selected", picked=len(picked), added=len(added))
        return added

