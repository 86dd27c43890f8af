"""Error taxonomy for change-table capture.

Data errors derive from ``CaptureError`` and abort progress for the one
cursor that hit them.  Misuse of the API (reading an unpositioned cursor,
remapping before a schema is bound) raises ``RuntimeError`` subclasses.
"""

from __future__ import annotations


class CaptureError(Exception):
    """Base class for change-table capture failures."""


class MalformedPositionError(CaptureError, ValueError):
    """Raised when a log position violates the fixed encoding."""


class SchemaDriftError(CaptureError):
    """Raised when captured columns cannot be placed in the current source schema."""

    def __init__(self, message: str, missing: list[str] | None = None) -> None:
        super().__init__(message)
        self.missing = missing or []


class CursorIoError(CaptureError):
    """Raised when pulling or decoding a row from a change-table result fails."""


class ChangeTableRetiredError(CaptureError):
    """Raised when a stop position is assigned to a retired capture instance."""


class CursorStateError(RuntimeError):
    """Raised when a cursor is used outside the state its operation requires."""


class SourceTableNotBoundError(RuntimeError):
    """Raised when a remapping is requested before the source schema is bound."""
