"""Ranking session: place one candidate into an existing ordered list.

State machine:
    NOT_STARTED -> AWAITING_CHOICE -> RESOLVING -> (AWAITING_CHOICE | TERMINAL)
    any non-terminal state -> CANCELLED

The session never touches the store. It turns a sequence of binary choices
into a final 1-based position; the owning workflow persists that position.

Ordering convention: position 1 is most preferred, so "candidate won"
moves the search toward lower positions (shrinks `high`).
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum

from playrank.services.comparison_policy import ComparisonPolicy, Pivot, Terminal
from playrank.services.errors import EmptyOpponentSet, InvalidSessionState, WorkflowLevelUndoRequired
from playrank.services.types import CandidateItem, Comparison, RankedItem, SessionSnapshot
from playrank.services.undo import UndoStack


class SessionPhase(str, Enum):
    NOT_STARTED = "not_started"
    AWAITING_CHOICE = "awaiting_choice"
    RESOLVING = "resolving"
    TERMINAL = "terminal"
    CANCELLED = "cancelled"


@dataclass
class SessionState:
    """Search bounds for one placement. Ephemeral, never persisted."""

    low: int = 0
    high: int = -1
    comparison_count: int = 0
    max_comparisons: int = 10
    history: UndoStack[SessionSnapshot] = field(default_factory=UndoStack)

    def snapshot(self) -> SessionSnapshot:
        return SessionSnapshot(low=self.low, high=self.high, comparison_count=self.comparison_count)

    def restore(self, snapshot: SessionSnapshot) -> None:
        self.low = snapshot.low
        self.high = snapshot.high
        self.comparison_count = snapshot.comparison_count


class RankingSession:
    """Binary insertion of `candidate` into `ranked_prefix` (sorted by position)."""

    def __init__(
        self,
        candidate: CandidateItem,
        ranked_prefix: list[RankedItem],
        policy: ComparisonPolicy | None = None,
    ):
        self.candidate = candidate
        self.ranked_prefix = list(ranked_prefix)
        self.policy = policy or ComparisonPolicy()
        self.state = SessionState(max_comparisons=self.policy.max_comparisons)
        self.phase = SessionPhase.NOT_STARTED
        self._decision: Pivot | Terminal | None = None

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def start(self) -> SessionState:
        """Reset bounds and consult the policy.

        An empty prefix goes straight to TERMINAL at position 1.
        """
        if self.phase is not SessionPhase.NOT_STARTED:
            raise InvalidSessionState(f"Session already {self.phase.value}")
        self.state.low = 0
        self.state.high = len(self.ranked_prefix) - 1
        self.state.comparison_count = 0
        self.state.history.clear()
        self._advance()
        return self.state

    def resolve(self, candidate_won: bool) -> SessionState:
        """Apply the user's choice for the current pivot."""
        if self.phase is not SessionPhase.AWAITING_CHOICE:
            raise InvalidSessionState(f"No comparison awaiting a choice (phase={self.phase.value})")

        self.phase = SessionPhase.RESOLVING
        pivot = self._pivot_index()
        self.state.history.push(self.state.snapshot())
        if candidate_won:
            self.state.high = pivot - 1
        else:
            self.state.low = pivot + 1
        self.state.comparison_count += 1
        self._advance()
        return self.state

    def undo(self) -> SessionState:
        """Restore the bounds held before the last resolved comparison.

        Raises:
            WorkflowLevelUndoRequired: history is empty; the workflow should
                fall back to undoing its previous placement.
        """
        if self.phase in (SessionPhase.NOT_STARTED, SessionPhase.CANCELLED):
            raise InvalidSessionState(f"Cannot undo a {self.phase.value} session")
        snapshot = self.state.history.pop()
        if snapshot is None:
            raise WorkflowLevelUndoRequired()
        self.state.restore(snapshot)
        self._advance()
        return self.state

    def cancel(self) -> None:
        """Discard in-memory state. Nothing has been persisted by the session."""
        self.state.history.clear()
        self._decision = None
        self.phase = SessionPhase.CANCELLED

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    @property
    def is_terminal(self) -> bool:
        return self.phase is SessionPhase.TERMINAL

    @property
    def terminal(self) -> Terminal | None:
        return self._decision if isinstance(self._decision, Terminal) else None

    @property
    def final_position(self) -> int | None:
        terminal = self.terminal
        return terminal.final_position if terminal else None

    @property
    def can_undo(self) -> bool:
        return bool(self.state.history)

    def present_pivot(self) -> RankedItem:
        """The opponent for the current comparison."""
        if self.phase is not SessionPhase.AWAITING_CHOICE:
            raise InvalidSessionState(f"No comparison to present (phase={self.phase.value})")
        return self.ranked_prefix[self._pivot_index()]

    def current_comparison(self) -> Comparison | Terminal:
        terminal = self.terminal
        if terminal is not None:
            return terminal
        return Comparison(
            candidate=self.candidate,
            opponent=self.present_pivot(),
            comparison_count=self.state.comparison_count,
            estimated_total=self.policy.estimated_total(len(self.ranked_prefix)),
        )

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _advance(self) -> None:
        decision = self.policy.decide(self.state.low, self.state.high, self.state.comparison_count)
        if isinstance(decision, Pivot) and not 0 <= decision.index < len(self.ranked_prefix):
            raise EmptyOpponentSet(
                f"Pivot {decision.index} outside prefix of {len(self.ranked_prefix)}",
                detail={"low": self.state.low, "high": self.state.high},
            )
        self._decision = decision
        self.phase = SessionPhase.TERMINAL if isinstance(decision, Terminal) else SessionPhase.AWAITING_CHOICE

    def _pivot_index(self) -> int:
        if not isinstance(self._decision, Pivot):
            raise InvalidSessionState("Session has no active pivot")
        return self._decision.index
