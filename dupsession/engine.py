"""
Scan engine boundary.

The engine walks folders, hashes files and deletes them. The session core
only sees it through the ScanEngine protocol: four asynchronous commands
plus four notifications delivered to NotificationHandlers.

A start_scan request ends in one of three tagged outcomes:
ScanCompleted, ScanCancelled or ScanFailed.
"""

from __future__ import annotations

import re
from typing import Annotated, Callable, Literal, Optional, Protocol, Sequence, Union

from pydantic import BaseModel, ConfigDict, Field

from config.exceptions import EngineCancelledError
from dupsession.models import DeleteResult, ScanOptions, ScanProgress, ScanResult

# Engines that cannot raise EngineCancelledError report cancellation as a
# failed request whose message mentions it ("Scan cancelled", "Cancelled by user").
_CANCELLED_MESSAGE = re.compile(r"\bcancel(?:l?ed|lation)\b", re.IGNORECASE)


class NotificationHandlers(BaseModel):
    """Callbacks for the engine's scan notifications."""

    model_config = ConfigDict(arbitrary_types_allowed=True)

    on_progress: Optional[Callable[[ScanProgress], None]] = None
    on_finished: Optional[Callable[[ScanResult], None]] = None
    on_error: Optional[Callable[[str], None]] = None
    on_cancelled: Optional[Callable[[], None]] = None


class ScanEngine(Protocol):
    """Commands and notifications exposed by a deduplication engine."""

    async def start_scan(self, options: ScanOptions) -> ScanResult: ...

    async def cancel_scan(self) -> None: ...

    async def delete_files(self, paths: Sequence[str], use_trash: bool) -> DeleteResult: ...

    async def select_folders(self) -> list[str]: ...

    def listen(self, handlers: NotificationHandlers) -> Callable[[], None]:
        """Register notification handlers; returns the unlisten function."""
        ...


class ScanCompleted(BaseModel):
    kind: Literal["completed"] = "completed"
    result: ScanResult


class ScanCancelled(BaseModel):
    kind: Literal["cancelled"] = "cancelled"


class ScanFailed(BaseModel):
    kind: Literal["failed"] = "failed"
    reason: str


ScanOutcome = Annotated[
    Union[ScanCompleted, ScanCancelled, ScanFailed],
    Field(discriminator="kind"),
]


def is_cancellation_message(message: str) -> bool:
    return bool(_CANCELLED_MESSAGE.search(message))


def classify_failure(exc: BaseException) -> Union[ScanCancelled, ScanFailed]:
    """
    Map a rejected start_scan request to an outcome.

    EngineCancelledError is the structured signal. Any other exception whose
    message mentions cancellation is also treated as a cancellation.
    """
    if isinstance(exc, EngineCancelledError):
        return ScanCancelled()
    reason = str(exc) or type(exc).__name__
    if is_cancellation_message(reason):
        return ScanCancelled()
    return ScanFailed(reason=reason)
