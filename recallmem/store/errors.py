from __future__ import annotations


class ValidationError(ValueError):
    """Caller input rejected before anything is written."""


class InvalidCursorError(ValueError):
    """A pagination cursor that was not produced by encode_cursor."""
