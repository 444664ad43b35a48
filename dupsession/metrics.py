"""
Derived metrics over a session snapshot.

Pure projections, recomputed on every read. Nothing here is cached, so a
value can never be stale with respect to the snapshot it was computed from.
"""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict

from dupsession.models import ScanStatus, SessionState


def total_wasted_space(state: SessionState) -> int:
    """Sum over groups of (len(files) - 1) * size."""
    return sum(g.wasted_space for g in state.groups)


def selected_files_count(state: SessionState) -> int:
    return len(state.selection)


def selected_files_size(state: SessionState) -> int:
    return sum(f.size for g in state.groups for f in g.files if f.path in state.selection)


def has_selection(state: SessionState) -> bool:
    return selected_files_count(state) > 0


def group_count(state: SessionState) -> int:
    return len(state.groups)


def total_duplicate_files(state: SessionState) -> int:
    return sum(len(g.files) for g in state.groups)


def is_scanning(state: SessionState) -> bool:
    return state.status == ScanStatus.scanning


def has_results(state: SessionState) -> bool:
    return state.status == ScanStatus.finished and group_count(state) > 0


def has_errors(state: SessionState) -> bool:
    return len(state.errors) > 0


class SessionMetrics(BaseModel):
    """All derived metrics of one snapshot."""

    model_config = ConfigDict(frozen=True)

    total_wasted_space: int
    selected_files_count: int
    selected_files_size: int
    has_selection: bool
    group_count: int
    total_duplicate_files: int
    is_scanning: bool
    has_results: bool
    has_errors: bool


def compute_metrics(state: SessionState) -> SessionMetrics:
    return SessionMetrics(
        total_wasted_space=total_wasted_space(state),
        selected_files_count=selected_files_count(state),
        selected_files_size=selected_files_size(state),
        has_selection=has_selection(state),
        group_count=group_count(state),
        total_duplicate_files=total_duplicate_files(state),
        is_scanning=is_scanning(state),
        has_results=has_results(state),
        has_errors=has_errors(state),
    )
