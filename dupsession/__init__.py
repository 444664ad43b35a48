"""
dupsession - scan session core for a duplicate file finder.

Modules:
- models: Pydantic data models
- options: Filter inputs -> ScanOptions
- session: Session state machine (single owner of SessionState)
- selection: Selection rules over session snapshots
- metrics: Derived metrics over session snapshots
- engine: Engine protocol and tagged scan outcomes
- bridge: Engine commands/notifications -> session operations
- local_engine: In-process engine (walk, hash, delete)
- formatting: Display helpers
- settings: Environment configuration
- app: Application context
"""

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
    ScanStatus,
    SessionState,
)

__version__ = "0.1.0"

__all__ = [
    "DeleteError",
    "DeleteResult",
    "DuplicateGroup",
    "FileRecord",
    "ScanError",
    "ScanOptions",
    "ScanPhase",
    "ScanProgress",
    "ScanResult",
    "ScanStatus",
    "SessionState",
]
