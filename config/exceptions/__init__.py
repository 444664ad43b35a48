"""
dupsession - Canonical exception hierarchy.

Source of truth for every exception raised by the session core, the engine
bridge and the local engine.
"""


class DupSessionError(Exception):
    """Base exception dupsession."""


class SessionError(DupSessionError):
    """Invalid operation for the current session state."""


class ScanInProgressError(SessionError):
    """A scan is already running."""

    def __init__(self, message: str = "A scan is already in progress"):
        super().__init__(message)


class OptionsError(DupSessionError):
    """Filter inputs could not be turned into scan options."""


class InvalidFilterError(OptionsError):
    """A raw filter value is malformed (e.g. non-numeric size)."""


class EngineError(DupSessionError):
    """Errors reported by the scan engine."""


class EngineCancelledError(EngineError):
    """The engine stopped the scan because cancellation was requested."""

    def __init__(self, message: str = "Scan cancelled"):
        super().__init__(message)


class NoActiveScanError(EngineError):
    """Cancellation requested while no scan is running."""

    def __init__(self, message: str = "No scan is currently running"):
        super().__init__(message)


class EngineCommandError(EngineError):
    """An engine command (cancel, folder picker) was rejected."""


class DeletionError(EngineError):
    """The delete command was rejected as a whole."""
