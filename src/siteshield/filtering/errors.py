"""
Error types raised by the filtering engine.

Every error carries a short ``kind`` tag and a human readable message so
callers can route on the tag without parsing text.
"""

from __future__ import annotations


class FilterEngineError(Exception):
    """Base class for filtering engine errors."""

    kind = "error"

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message

    def to_dict(self) -> dict[str, str]:
        return {"kind": self.kind, "message": self.message}


class NotFoundError(FilterEngineError):
    """A filter list or custom rule does not exist."""

    kind = "not_found"


class FetchError(FilterEngineError):
    """A filter list could not be downloaded."""

    kind = "fetch"


class ParseError(FilterEngineError):
    """A downloaded filter list could not be decoded or parsed."""

    kind = "parse"


class InvalidRuleError(FilterEngineError):
    """A rule line produced no usable rule."""

    kind = "invalid_rule"


class InvalidStateError(FilterEngineError):
    """Imported engine state is malformed."""

    kind = "invalid_state"
