"""Error taxonomy for the ranking engine.

Comparison logic never raises at runtime; only persistence can fail.
Every error carries a stable `code` so routes can render the structured
error envelope without leaking backend detail to users.
"""

from __future__ import annotations

from typing import Any


class RankingError(RuntimeError):
    """Base class for all ranking engine errors."""

    code = "RANKING_ERROR"
    user_message = "Something went wrong with your ranking."

    def __init__(self, message: str | None = None, *, detail: dict[str, Any] | None = None):
        super().__init__(message or self.user_message)
        self.detail = detail


class StoreUnavailable(RankingError):
    """Backend failure during a persistence step (read or point write)."""

    code = "STORE_UNAVAILABLE"
    user_message = "Couldn't save, try again."


class ConcurrentWriteInProgress(StoreUnavailable):
    """Another writer holds the per-user lock; nothing was written."""

    code = "CONCURRENT_WRITE"
    user_message = "Your ranking is being updated elsewhere. Try again in a moment."


class InvariantViolation(RankingError):
    """Positions are not exactly {1..N} after a shift (gap or duplicate)."""

    code = "RANKING_INCONSISTENT"
    user_message = "Your ranking may need to be corrected manually."


class EmptyOpponentSet(RankingError):
    """A pivot was computed outside the ranked prefix. Always a defect."""

    code = "EMPTY_OPPONENT_SET"


class WorkflowLevelUndoRequired(RankingError):
    """The session has no comparison history left to undo."""

    code = "WORKFLOW_UNDO_REQUIRED"
    user_message = "Nothing left to undo for this item."


class NothingToUndo(RankingError):
    code = "NOTHING_TO_UNDO"
    user_message = "Nothing to undo."


class InvalidSessionState(RankingError):
    """Operation not allowed in the current session/workflow state."""

    code = "INVALID_STATE"
    user_message = "That action isn't available right now."


class CancelUnsafe(RankingError):
    """Cancel requested while position writes are partially applied."""

    code = "CANCEL_UNSAFE"
    user_message = "Your ranking is still being saved. Cancelling now may leave it out of order."


class HandleNotFound(RankingError):
    code = "HANDLE_NOT_FOUND"
    user_message = "This ranking session has expired."
