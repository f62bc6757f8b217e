"""Error kinds surfaced by the revision engine."""

from __future__ import annotations


class RevisionError(RuntimeError):
    """Base class for revision engine failures."""


class LookupFailure(RevisionError):
    """A taxonomy, cluster assignment, or attempt store could not be reached."""

    def __init__(self, message: str, *, context: dict[str, object] | None = None) -> None:
        super().__init__(message)
        self.context = dict(context or {})


class GenerationFailure(RevisionError):
    """Note generation failed upstream or exceeded its time budget."""

    def __init__(self, message: str, *, scope_key: str | None = None) -> None:
        super().__init__(message)
        self.scope_key = scope_key


class ValidationFailure(RevisionError, ValueError):
    """A scope or context identifier is malformed."""


__all__ = ["GenerationFailure", "LookupFailure", "RevisionError", "ValidationFailure"]
