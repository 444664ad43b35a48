"""
Shared pytest fixtures for dupsession tests.

This file provides:
- PYTHONPATH setup (repo root importable from every test directory)
- Session / folder selection / settings fixtures
- A scriptable engine and an attached bridge

Note: the event loop is managed by pytest-asyncio (asyncio_mode = "auto",
see pyproject.toml).
"""

import sys
from pathlib import Path

import pytest

# ==========================================
# PYTHONPATH Setup
# ==========================================

repo_root = Path(__file__).parent.parent
if str(repo_root) not in sys.path:
    sys.path.insert(0, str(repo_root))

from dupsession.bridge import EngineBridge  # noqa: E402
from dupsession.options import FolderSelection  # noqa: E402
from dupsession.session import ScanSession  # noqa: E402
from dupsession.settings import SessionSettings  # noqa: E402
from tests.helpers.fake_engine import FakeEngine  # noqa: E402


# ==========================================
# Core fixtures
# ==========================================


@pytest.fixture
def settings():
    """Settings independent from the developer's environment."""
    return SessionSettings(
        log_level="DEBUG",
        log_format="console",
        use_trash=True,
        default_size_unit="KB",
        follow_symlinks=False,
        hash_chunk_size=65536,
        progress_every=2,
    )


@pytest.fixture
def session():
    """Fresh idle session."""
    return ScanSession()


@pytest.fixture
def folders():
    return FolderSelection()


@pytest.fixture
def engine():
    """Scriptable engine double."""
    return FakeEngine()


@pytest.fixture
def bridge(session, engine, folders, settings):
    """Bridge attached to the fake engine."""
    bridge = EngineBridge(session, engine, folders=folders, settings=settings)
    bridge.attach()
    yield bridge
    bridge.detach()
