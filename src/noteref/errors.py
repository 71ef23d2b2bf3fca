"""Error taxonomy for noteref.

Reference failures are recoverable: the expansion engine records them on the
compilation report and renders a placeholder in place of the reference. Only
configuration and note-loading errors surface to callers as raised exceptions.
"""

from __future__ import annotations

import json
from enum import Enum
from typing import Any


class ErrorCode(str, Enum):
    """Stable error codes for programmatic consumers (``--json-errors``)."""

    REFERENCE_NOT_FOUND = "REFERENCE_NOT_FOUND"
    AMBIGUOUS_REFERENCE = "AMBIGUOUS_REFERENCE"
    ANCHOR_NOT_FOUND = "ANCHOR_NOT_FOUND"
    CYCLE_DETECTED = "CYCLE_DETECTED"
    DEPTH_EXCEEDED = "DEPTH_EXCEEDED"
    NOTE_NOT_FOUND = "NOTE_NOT_FOUND"
    PARSE_ERROR = "PARSE_ERROR"
    CONFIG_ERROR = "CONFIG_ERROR"


class NoteRefError(Exception):
    """Base error carrying a code and structured details."""

    code: ErrorCode = ErrorCode.PARSE_ERROR

    def __init__(self, message: str, details: dict[str, Any] | None = None) -> None:
        self.message = message
        self.details = details or {}
        super().__init__(message)

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {"code": self.code.value, "message": self.message}
        if self.details:
            data["details"] = self.details
        return data

    def to_json(self) -> str:
        return json.dumps({"error": self.to_dict()})


class ConfigurationError(NoteRefError):
    """Raised when workspace configuration is missing or invalid."""

    code = ErrorCode.CONFIG_ERROR


class NoteNotFound(NoteRefError):
    """Raised when a command names a note that is not in the store."""

    code = ErrorCode.NOTE_NOT_FOUND


class ReferenceNotFound(NoteRefError):
    """No note matches the reference target."""

    code = ErrorCode.REFERENCE_NOT_FOUND


class AmbiguousReference(NoteRefError):
    """An unqualified name matches notes in more than one vault."""

    code = ErrorCode.AMBIGUOUS_REFERENCE

    def __init__(self, message: str, candidates: list[str], details: dict[str, Any] | None = None) -> None:
        self.candidates = candidates
        super().__init__(message, {**(details or {}), "candidates": candidates})


class AnchorNotFound(NoteRefError):
    """The note resolved but the requested heading, block or line did not."""

    code = ErrorCode.ANCHOR_NOT_FOUND

    def __init__(self, note_id: str, anchor: str, details: dict[str, Any] | None = None) -> None:
        self.note_id = note_id
        self.anchor = anchor
        super().__init__(
            f"anchor '{anchor}' not found in note '{note_id}'",
            {**(details or {}), "note": note_id, "anchor": anchor},
        )


class CycleDetected(NoteRefError):
    """The resolved note is already on the visitation path."""

    code = ErrorCode.CYCLE_DETECTED


class DepthExceeded(NoteRefError):
    """The expansion chain went past the configured maximum depth."""

    code = ErrorCode.DEPTH_EXCEEDED


def format_error_json(code: ErrorCode, message: str, details: dict | None = None) -> str:
    """Format an error that is not a NoteRefError as JSON."""
    data: dict[str, Any] = {"code": code.value, "message": message}
    if details:
        data["details"] = details
    return json.dumps({"error": data})
