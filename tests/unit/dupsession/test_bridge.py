"""
Unit tests for EngineBridge.

Tests:
- Scan request lifecycle (completed, cancelled, failed outcomes)
- Notification relay and late-notification discard
- Cancel guard
- Stale responses from superseded scans
- Deletion (partial failures, rejected command)
- Folder picker
"""

import asyncio

import pytest

from config.exceptions import (
    DeletionError,
    EngineCancelledError,
    EngineCommandError,
    ScanInProgressError,
)
from dupsession.bridge import EngineBridge
from dupsession.engine import ScanCancelled, ScanCompleted, ScanFailed
from dupsession.models import (
    DeleteError,
    DeleteResult,
    ScanOptions,
    ScanPhase,
    ScanResult,
    ScanStatus,
)
from tests.helpers.session_factory import make_result, sample_groups


def _pending_scan(engine):
    """Make engine.start_scan block until the returned future resolves."""
    loop = asyncio.get_running_loop()
    future = loop.create_future()

    async def start_scan(options):
        return await future

    engine.start_scan.side_effect = start_scan
    return future


async def _start_in_background(bridge, options=None):
    task = asyncio.create_task(bridge.start_scan(options or ScanOptions(root_paths=["/data"])))
    await asyncio.sleep(0)
    return task


# ============================================================================
# Wiring
# ============================================================================


class TestAttach:
    def test_attach_registers_once(self, session, engine):
        bridge = EngineBridge(session, engine)

        bridge.attach()
        bridge.attach()

        assert len(engine.handlers) == 1
        assert bridge.is_attached is True

    def test_detach_unregisters(self, bridge, engine):
        bridge.detach()
        bridge.detach()

        assert engine.handlers == []
        assert bridge.is_attached is False

    @pytest.mark.asyncio
    async def test_async_context_manager(self, session, engine):
        async with EngineBridge(session, engine) as bridge:
            assert bridge.is_attached
        assert engine.handlers == []

    def test_notifications_without_scan_are_dropped(self, bridge, engine, session):
        engine.emit_progress(10)
        engine.emit_finished(make_result(sample_groups()))

        assert session.state.status == ScanStatus.idle
        assert session.state.groups == ()


# ============================================================================
# start_scan
# ============================================================================


class TestStartScan:
    @pytest.mark.asyncio
    async def test_completed_response_finishes_session(self, bridge, engine, session):
        result = make_result(sample_groups(), total_files_scanned=5)
        engine.start_scan.return_value = result

        outcome = await bridge.start_scan(ScanOptions(root_paths=["/data"]))

        assert isinstance(outcome, ScanCompleted)
        assert outcome.result == result
        assert session.state.status == ScanStatus.finished
        assert len(session.state.groups) == 2
        engine.start_scan.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_options_default_to_folder_selection(self, bridge, engine, folders):
        folders.add_folder("/photos")
        folders.set_include_extensions("JPG")

        await bridge.start_scan()

        options = engine.start_scan.await_args.args[0]
        assert options.root_paths == ["/photos"]
        assert options.include_extensions == ["jpg"]

    @pytest.mark.asyncio
    async def test_session_scanning_before_engine_is_called(self, bridge, engine, session):
        statuses = []

        async def start_scan(options):
            statuses.append(session.state.status)
            return ScanResult()

        engine.start_scan.side_effect = start_scan

        await bridge.start_scan(ScanOptions())

        assert statuses == [ScanStatus.scanning]

    @pytest.mark.asyncio
    async def test_progress_is_relayed_while_scanning(self, bridge, engine, session):
        future = _pending_scan(engine)
        task = await _start_in_background(bridge)

        engine.emit_progress(50, 100, ScanPhase.hashing)

        assert session.state.progress.files_scanned == 50
        assert session.state.progress.files_total == 100
        assert session.state.progress.phase == ScanPhase.hashing

        future.set_result(ScanResult())
        await task

    @pytest.mark.asyncio
    async def test_structured_cancellation_rejection(self, bridge, engine, session):
        engine.start_scan.side_effect = EngineCancelledError()

        outcome = await bridge.start_scan(ScanOptions())

        assert isinstance(outcome, ScanCancelled)
        assert session.state.status == ScanStatus.cancelled
        assert session.state.error_message is None

    @pytest.mark.asyncio
    async def test_cancellation_flavored_rejection(self, bridge, engine, session):
        engine.start_scan.side_effect = RuntimeError("Scan cancelled")

        outcome = await bridge.start_scan(ScanOptions())

        assert isinstance(outcome, ScanCancelled)
        assert session.state.status == ScanStatus.cancelled

    @pytest.mark.asyncio
    async def test_other_rejection_fails_session(self, bridge, engine, session):
        engine.start_scan.side_effect = RuntimeError("Path not found: /nope")

        outcome = await bridge.start_scan(ScanOptions())

        assert isinstance(outcome, ScanFailed)
        assert outcome.reason == "Path not found: /nope"
        assert session.state.status == ScanStatus.error
        assert session.state.error_message == "Path not found: /nope"

    @pytest.mark.asyncio
    async def test_start_while_scanning_raises(self, bridge, engine):
        future = _pending_scan(engine)
        task = await _start_in_background(bridge)

        with pytest.raises(ScanInProgressError):
            await bridge.start_scan(ScanOptions())
        assert engine.start_scan.await_count == 1

        future.set_result(ScanResult())
        await task

    @pytest.mark.asyncio
    async def test_failing_observer_does_not_strand_scanning(self, bridge, engine, session):
        """An observer raising on the scanning commit still lets the scan run and end."""
        calls = []

        def flaky(state):
            calls.append(state.status)
            if len(calls) == 2:
                raise RuntimeError("render failed")

        session.subscribe(flaky)
        engine.start_scan.return_value = make_result(sample_groups())

        outcome = await bridge.start_scan(ScanOptions(root_paths=["/data"]))

        assert isinstance(outcome, ScanCompleted)
        engine.start_scan.assert_awaited_once()
        assert session.state.status == ScanStatus.finished
        assert calls == [ScanStatus.idle, ScanStatus.scanning, ScanStatus.finished]

    @pytest.mark.asyncio
    async def test_finished_notification_then_response(self, bridge, engine, session):
        """The notification settles the scan; the response does not apply it twice."""
        commits = []
        session.subscribe(lambda state: commits.append(state.status))
        future = _pending_scan(engine)
        task = await _start_in_background(bridge)

        result = make_result(sample_groups())
        engine.emit_finished(result)
        future.set_result(result)
        outcome = await task

        assert isinstance(outcome, ScanCompleted)
        assert session.state.status == ScanStatus.finished
        assert commits.count(ScanStatus.finished) == 1

    @pytest.mark.asyncio
    async def test_error_notification_wins_over_response(self, bridge, engine, session):
        future = _pending_scan(engine)
        task = await _start_in_background(bridge)

        engine.emit_error("Path not found: /gone")
        future.set_exception(RuntimeError("Path not found: /gone"))
        outcome = await task

        assert isinstance(outcome, ScanFailed)
        assert session.state.status == ScanStatus.error
        assert session.state.error_message == "Path not found: /gone"

    @pytest.mark.asyncio
    async def test_progress_after_cancelled_is_discarded(self, bridge, engine, session):
        """Cancelled notification followed by a late progress notification."""
        future = _pending_scan(engine)
        task = await _start_in_background(bridge)

        engine.emit_cancelled()
        engine.emit_progress(99, None, ScanPhase.hashing)

        assert session.state.status == ScanStatus.cancelled
        assert session.state.progress.phase == ScanPhase.cancelled
        assert session.state.progress.files_scanned == 0

        future.set_exception(EngineCancelledError())
        await task
        assert session.state.status == ScanStatus.cancelled

    @pytest.mark.asyncio
    async def test_stale_response_is_dropped(self, bridge, engine, session):
        """A response from a superseded scan never touches the new scan."""
        first = _pending_scan(engine)
        first_task = await _start_in_background(bridge)
        engine.emit_cancelled()

        second = _pending_scan(engine)
        second_task = await _start_in_background(bridge)
        assert session.state.status == ScanStatus.scanning

        first.set_result(make_result(sample_groups()))
        await first_task

        assert session.state.status == ScanStatus.scanning
        assert session.state.groups == ()

        second.set_result(make_result())
        await second_task
        assert session.state.status == ScanStatus.finished


# ============================================================================
# cancel_scan
# ============================================================================


class TestCancelScan:
    @pytest.mark.asyncio
    async def test_cancel_does_not_change_state(self, bridge, engine, session):
        future = _pending_scan(engine)
        task = await _start_in_background(bridge)

        assert await bridge.cancel_scan() is True

        assert session.state.status == ScanStatus.scanning
        assert bridge.is_cancelling is True

        engine.emit_cancelled()
        future.set_exception(EngineCancelledError())
        await task

    @pytest.mark.asyncio
    async def test_repeated_cancel_issues_one_command(self, bridge, engine):
        future = _pending_scan(engine)
        task = await _start_in_background(bridge)

        results = [await bridge.cancel_scan() for _ in range(3)]

        assert results == [True, False, False]
        engine.cancel_scan.assert_awaited_once()

        engine.emit_cancelled()
        assert bridge.is_cancelling is False
        future.set_exception(EngineCancelledError())
        await task

    @pytest.mark.asyncio
    async def test_guard_clears_for_next_scan(self, bridge, engine):
        for _ in range(2):
            future = _pending_scan(engine)
            task = await _start_in_background(bridge)
            assert await bridge.cancel_scan() is True
            engine.emit_cancelled()
            future.set_exception(EngineCancelledError())
            await task

        assert engine.cancel_scan.await_count == 2

    @pytest.mark.asyncio
    async def test_cancel_when_not_scanning_is_ignored(self, bridge, engine):
        assert await bridge.cancel_scan() is False
        engine.cancel_scan.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_cancel_failure_resets_guard(self, bridge, engine, session):
        future = _pending_scan(engine)
        task = await _start_in_background(bridge)
        engine.cancel_scan.side_effect = RuntimeError("engine unavailable")

        with pytest.raises(EngineCommandError, match="engine unavailable"):
            await bridge.cancel_scan()

        assert bridge.is_cancelling is False
        assert session.state.status == ScanStatus.scanning

        future.set_result(ScanResult())
        await task


# ============================================================================
# Deletion
# ============================================================================


class TestDeleteFiles:
    @pytest.fixture
    async def finished(self, bridge, engine, session):
        engine.start_scan.return_value = make_result(sample_groups())
        await bridge.start_scan(ScanOptions())
        session.select_all_duplicates()
        return session

    @pytest.mark.asyncio
    async def test_partial_failure(self, bridge, engine, finished):
        """{/b, /d} requested, /d fails: only /b leaves the session."""
        engine.delete_files.return_value = DeleteResult(
            deleted=["/b"], failed=[DeleteError(path="/d", reason="Permission denied")]
        )

        result = await bridge.delete_files(["/b", "/d"])

        assert result.all_succeeded is False
        state = finished.state
        assert [g.content_hash for g in state.groups] == ["def"]
        assert state.groups[0].paths == ["/c", "/d", "/e"]
        assert state.selection == {"/d", "/e"}

    @pytest.mark.asyncio
    async def test_use_trash_defaults_to_settings(self, bridge, engine, finished, settings):
        await bridge.delete_files(["/b"])
        engine.delete_files.assert_awaited_once_with(["/b"], settings.use_trash)

    @pytest.mark.asyncio
    async def test_explicit_permanent_delete(self, bridge, engine, finished):
        await bridge.delete_files(["/b"], use_trash=False)
        engine.delete_files.assert_awaited_once_with(["/b"], False)

    @pytest.mark.asyncio
    async def test_delete_selected_sends_selection_in_group_order(self, bridge, engine, finished):
        engine.delete_files.return_value = DeleteResult(deleted=["/b", "/d", "/e"])

        await bridge.delete_selected()

        engine.delete_files.assert_awaited_once_with(["/b", "/d", "/e"], True)
        assert finished.state.groups == ()
        assert finished.state.selection == frozenset()

    @pytest.mark.asyncio
    async def test_empty_request_skips_engine(self, bridge, engine):
        result = await bridge.delete_files([])

        assert result == DeleteResult()
        engine.delete_files.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_rejected_command_leaves_session_unchanged(self, bridge, engine, finished):
        before = finished.state
        engine.delete_files.side_effect = OSError("engine crashed")

        with pytest.raises(DeletionError, match="engine crashed"):
            await bridge.delete_files(["/b"])

        assert finished.state is before


# ============================================================================
# Folder picker
# ============================================================================


class TestSelectFolders:
    @pytest.mark.asyncio
    async def test_adds_new_folders(self, bridge, engine, folders):
        folders.add_folder("/a")
        engine.select_folders.return_value = ["/a", "/b"]

        added = await bridge.select_folders()

        assert added == ["/b"]
        assert folders.folders == ("/a", "/b")

    @pytest.mark.asyncio
    async def test_dismissed_picker(self, bridge, engine, folders):
        assert await bridge.select_folders() == []
        assert folders.folders == ()

    @pytest.mark.asyncio
    async def test_picker_failure(self, bridge, engine):
        engine.select_folders.side_effect = RuntimeError("no display")

        with pytest.raises(EngineCommandError):
            await bridge.select_folders()
