"""
Selection rules for files marked for deletion.

Every function takes a SessionState snapshot and returns a new one; inputs
are never mutated. The selection only ever holds paths that are present in
the snapshot's duplicate groups.
"""

from __future__ import annotations

from typing import Iterable

from dupsession.models import DuplicateGroup, SessionState


def _with_selection(state: SessionState, selection: frozenset[str]) -> SessionState:
    if selection == state.selection:
        return state
    return state.model_copy(update={"selection": selection})


def toggle(state: SessionState, path: str) -> SessionState:
    """Select `path` if unselected, unselect it otherwise.

    Paths that are not part of any group are ignored.
    """
    if path in state.selection:
        return _with_selection(state, state.selection - {path})
    if path not in state.known_paths():
        return state
    return _with_selection(state, state.selection | {path})


def select_all_but_one(state: SessionState, group: DuplicateGroup) -> SessionState:
    """
    Select every file of `group` except the keep candidate (files[0]).

    Additive only: an earlier manual selection of files[0] is kept.
    """
    known = state.known_paths()
    candidates = {f.path for f in group.files[1:] if f.path in known}
    return _with_selection(state, state.selection | candidates)


def select_all_duplicates(state: SessionState) -> SessionState:
    """Apply select_all_but_one to every group in one pass."""
    candidates = {f.path for g in state.groups for f in g.files[1:]}
    return _with_selection(state, state.selection | candidates)


def clear_group_selection(state: SessionState, group: DuplicateGroup) -> SessionState:
    return _with_selection(state, state.selection - set(group.paths))


def clear_all_selections(state: SessionState) -> SessionState:
    return _with_selection(state, frozenset())


def remove_deleted_files(state: SessionState, paths: Iterable[str]) -> SessionState:
    """
    Drop deleted files from the groups and the selection.

    Groups left with fewer than 2 files are removed entirely; the remaining
    file is not promoted, it is simply no longer a duplicate. Every deleted
    path leaves the selection, whether or not it was still in a group.
    """
    deleted = set(paths)
    if not deleted:
        return state

    groups = []
    for group in state.groups:
        remaining = tuple(f for f in group.files if f.path not in deleted)
        if len(remaining) < 2:
            continue
        if len(remaining) == len(group.files):
            groups.append(group)
        else:
            groups.append(group.model_copy(update={"files": remaining}))

    # Selection must not outlive the groups it points into.
    known = {f.path for g in groups for f in g.files}
    selection = frozenset(p for p in state.selection if p not in deleted and p in known)

    return state.model_copy(update={"groups": tuple(groups), "selection": selection})


def selected_paths(state: SessionState) -> list[str]:
    """Selected paths in group/file order."""
    return [f.path for g in state.groups for f in g.files if f.path in state.selection]
