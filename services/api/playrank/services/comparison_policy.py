"""Comparison policy: binary-insertion pivot selection and termination.

Given inclusive 0-based bounds into the ranked prefix and the number of
comparisons resolved so far, decide either the next pivot to compare
against or that the search is over.

Termination:
1. low > high                          -> search space exhausted (exact)
2. comparison_count >= max_comparisons -> budget exhausted (approximate)

Final position is always low + 1 (1-based).
"""

from __future__ import annotations

from dataclasses import dataclass
import math

DEFAULT_MAX_COMPARISONS = 10


@dataclass(frozen=True)
class Pivot:
    index: int


@dataclass(frozen=True)
class Terminal:
    final_position: int
    # True when the budget ran out before the bounds converged.
    approximate: bool = False


Decision = Pivot | Terminal


@dataclass(frozen=True)
class ComparisonPolicy:
    """Pure decision function; holds only the comparison budget."""

    max_comparisons: int = DEFAULT_MAX_COMPARISONS

    def __post_init__(self) -> None:
        if self.max_comparisons < 1:
            raise ValueError("max_comparisons must be >= 1")

    def decide(self, low: int, high: int, comparison_count: int) -> Decision:
        if low > high:
            return Terminal(final_position=low + 1)
        if comparison_count >= self.max_comparisons:
            return Terminal(final_position=low + 1, approximate=True)
        return Pivot(index=(low + high) // 2)

    def budget(self, prefix_size: int) -> int:
        """Worst-case resolved comparisons to place into a prefix of this size."""
        if prefix_size <= 0:
            return 0
        return min(math.ceil(math.log2(prefix_size + 1)), self.max_comparisons)

    def estimated_total(self, prefix_size: int) -> int:
        """Comparison count shown to users as "about N questions"."""
        if prefix_size <= 1:
            return 1
        return min(math.ceil(math.log2(prefix_size)) + 2, self.max_comparisons)


def get_policy() -> ComparisonPolicy:
    """Policy configured from settings."""
    from playrank.settings import get_settings

    return ComparisonPolicy(max_comparisons=get_settings().max_comparisons)
