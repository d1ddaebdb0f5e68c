"""
Error taxonomy for the scheduling core.

Quota exhaustion and end-of-session are normal outcomes (narrowed candidate
lists and ``None`` from ``StudySession.get_next``), so they have no exception
types here.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from mnemo.domain.models import ReviewOutcome


class MnemoError(Exception):
    """Base class for all scheduler errors."""


class InvalidInput(MnemoError, ValueError):
    """Malformed card state, rating or parameters. Nothing was mutated."""


class PersistenceError(MnemoError):
    """
    A computed result could not be durably written.

    ``outcome`` holds the already computed review result (when there is one)
    so the caller can retry the write without grading again.
    """

    def __init__(self, message: str, outcome: ReviewOutcome | None = None):
        super().__init__(message)
        self.outcome = outcome
