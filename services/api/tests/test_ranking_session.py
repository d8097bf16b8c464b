"""Tests for RankingSession: binary insertion, budget, undo."""

import math
import random

import pytest

from playrank.services.comparison_policy import ComparisonPolicy, Pivot, Terminal
from playrank.services.errors import EmptyOpponentSet, InvalidSessionState, WorkflowLevelUndoRequired
from playrank.services.ranking_session import RankingSession, SessionPhase
from playrank.services.types import CandidateItem, Comparison, RankedItem


def _prefix(titles: list[str]) -> list[RankedItem]:
    return [RankedItem(item_id=t.lower(), position=i, title=t) for i, t in enumerate(titles, start=1)]


def _place(session: RankingSession, true_position: int) -> int:
    """Answer every comparison as if the candidate belongs at `true_position`."""
    session.start()
    while not session.is_terminal:
        opponent = session.present_pivot()
        session.resolve(true_position <= opponent.position)
    return session.state.comparison_count


def test_hades_lands_between_metroid_and_celeste():
    session = RankingSession(CandidateItem("hades", "Hades"), _prefix(["Zelda", "Metroid", "Celeste"]))
    session.start()

    assert session.present_pivot().title == "Metroid"
    session.resolve(False)
    assert (session.state.low, session.state.high) == (2, 2)

    assert session.present_pivot().title == "Celeste"
    session.resolve(True)
    assert (session.state.low, session.state.high) == (2, 1)

    assert session.is_terminal
    assert session.terminal == Terminal(final_position=3)
    assert session.state.comparison_count == 2


def test_empty_prefix_is_terminal_without_comparisons():
    session = RankingSession(CandidateItem("hades", "Hades"), [])
    session.start()

    assert session.phase is SessionPhase.TERMINAL
    assert session.final_position == 1
    assert session.state.comparison_count == 0
    assert session.current_comparison() == Terminal(final_position=1)


def test_twelve_items_within_default_budget_converge():
    session = RankingSession(CandidateItem("x", "X"), _prefix([f"G{i}" for i in range(12)]))
    comparisons = _place(session, 1)
    assert session.terminal == Terminal(final_position=1)
    assert comparisons <= 4


def test_budget_exhausted_terminates_at_low_plus_one():
    policy = ComparisonPolicy(max_comparisons=2)
    session = RankingSession(CandidateItem("x", "X"), _prefix([f"G{i}" for i in range(12)]), policy)
    session.start()
    session.resolve(False)  # pivot 5 -> low 6
    session.resolve(False)  # pivot 8 -> low 9

    assert session.is_terminal
    assert session.terminal == Terminal(final_position=10, approximate=True)
    with pytest.raises(InvalidSessionState):
        session.resolve(False)


@pytest.mark.parametrize("size", [1, 2, 3, 5, 8, 13, 31, 32, 40])
def test_binary_search_finds_true_position_within_bound(size: int):
    prefix = _prefix([f"G{i}" for i in range(size)])
    bound = math.ceil(math.log2(size + 1))
    for true_position in range(1, size + 2):
        session = RankingSession(CandidateItem("x", "X"), prefix)
        comparisons = _place(session, true_position)
        assert session.final_position == true_position
        assert comparisons <= bound


def test_current_comparison_exposes_candidate_and_opponent():
    session = RankingSession(CandidateItem("hades", "Hades"), _prefix(["Zelda", "Metroid", "Celeste"]))
    session.start()
    comparison = session.current_comparison()

    assert isinstance(comparison, Comparison)
    assert comparison.candidate.item_id == "hades"
    assert comparison.opponent.item_id == "metroid"
    assert comparison.comparison_count == 0
    assert comparison.estimated_total == 4


def test_undo_restores_exact_state():
    rng = random.Random(7)
    for _ in range(50):
        size = rng.randint(2, 60)
        session = RankingSession(CandidateItem("x", "X"), _prefix([f"G{i}" for i in range(size)]))
        session.start()
        seen = []
        while not session.is_terminal:
            seen.append((session.state.low, session.state.high, session.state.comparison_count, session.present_pivot()))
            session.resolve(rng.random() < 0.5)

        for low, high, count, pivot in reversed(seen):
            session.undo()
            assert (session.state.low, session.state.high, session.state.comparison_count) == (low, high, count)
            assert session.present_pivot() == pivot
            assert session.phase is SessionPhase.AWAITING_CHOICE

        with pytest.raises(WorkflowLevelUndoRequired):
            session.undo()


def test_undo_then_different_choice():
    session = RankingSession(CandidateItem("hades", "Hades"), _prefix(["Zelda", "Metroid", "Celeste"]))
    session.start()
    session.resolve(False)
    session.resolve(True)
    assert session.final_position == 3

    session.undo()
    session.resolve(False)
    assert session.final_position == 4


def test_lifecycle_errors():
    session = RankingSession(CandidateItem("hades", "Hades"), _prefix(["Zelda"]))
    with pytest.raises(InvalidSessionState):
        session.resolve(True)
    with pytest.raises(InvalidSessionState):
        session.undo()

    session.start()
    with pytest.raises(InvalidSessionState):
        session.start()

    session.cancel()
    assert session.phase is SessionPhase.CANCELLED
    with pytest.raises(InvalidSessionState):
        session.resolve(True)


def test_pivot_outside_prefix_is_a_defect():
    class OffByOnePolicy(ComparisonPolicy):
        def decide(self, low, high, comparison_count):
            return Pivot(index=high + 1)

    session = RankingSession(CandidateItem("x", "X"), _prefix(["A", "B"]), OffByOnePolicy())
    with pytest.raises(EmptyOpponentSet):
        session.start()
