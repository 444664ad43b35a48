"""
Application context.

The session, the folder selection and the bridge are built once at startup
by build_context() and passed around explicitly; there is no module-level
store. close() detaches the bridge at exit.

Usage:
    context = build_context(LocalEngine())
    async with context:
        await context.bridge.start_scan()
        print(context.snapshot().status)
"""

from __future__ import annotations

from typing import Optional

import structlog

from config.logging import configure_logging
from dupsession.bridge import EngineBridge
from dupsession.engine import ScanEngine
from dupsession.models import SessionState
from dupsession.options import FilterInputs, FolderSelection, SizeUnit
from dupsession.session import ScanSession
from dupsession.settings import SessionSettings, get_settings

logger = structlog.get_logger(__name__)


class SessionContext:
    """Explicitly constructed owner of the session and its collaborators."""

    def __init__(self, session: ScanSession, folders: FolderSelection, bridge: EngineBridge):
        self.session = session
        self.folders = folders
        self.bridge = bridge

    def snapshot(self) -> SessionState:
        """Current session snapshot (used by tests and harnesses)."""
        return self.session.state

    def close(self) -> None:
        self.bridge.detach()
        logger.info("session_context_closed")

    async def __aenter__(self) -> SessionContext:
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        self.close()


def build_context(
    engine: ScanEngine,
    settings: Optional[SessionSettings] = None,
    configure_logs: bool = False,
) -> SessionContext:
    """
    Create the session context and attach the bridge to the engine.

    Args:
        engine: Scan engine implementation
        settings: Configuration (defaults to environment settings)
        configure_logs: If True, configure structlog from settings
    """
    settings = settings or get_settings()
    if configure_logs:
        configure_logging(
            level=settings.log_level,
            json_format=settings.log_format == "json",
        )

    session = ScanSession()
    folders = FolderSelection(
        FilterInputs(
            size_unit=SizeUnit(settings.default_size_unit),
            follow_symlinks=settings.follow_symlinks,
        )
    )
    bridge = EngineBridge(session, engine, folders=folders, settings=settings)
    bridge.attach()

    logger.info("session_context_built", engine=type(engine).__name__)
    return SessionContext(session, folders, bridge)
