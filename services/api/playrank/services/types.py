"""Value types shared by the ranking engine.

These are plain dataclasses, independent of ORM rows and API schemas:
- RankedItem: a persisted entry with a 1-based position (1 = most preferred)
- CandidateItem: an item awaiting placement (no position)
- snapshots used by the undo stacks
"""

from __future__ import annotations

from dataclasses import dataclass, replace


@dataclass(frozen=True)
class CandidateItem:
    """An item waiting to be placed, with enough metadata to display it."""

    item_id: str
    title: str
    cover_url: str | None = None
    external_id: str | None = None


@dataclass(frozen=True)
class RankedItem:
    """One persisted entry of a user's ordered list."""

    item_id: str
    position: int
    title: str = ""
    cover_url: str | None = None
    external_id: str | None = None

    def as_candidate(self) -> CandidateItem:
        return CandidateItem(
            item_id=self.item_id,
            title=self.title,
            cover_url=self.cover_url,
            external_id=self.external_id,
        )

    def at(self, position: int) -> RankedItem:
        return replace(self, position=position)

    @classmethod
    def from_candidate(cls, candidate: CandidateItem, position: int) -> RankedItem:
        return cls(
            item_id=candidate.item_id,
            position=position,
            title=candidate.title,
            cover_url=candidate.cover_url,
            external_id=candidate.external_id,
        )


@dataclass(frozen=True)
class SessionSnapshot:
    """Bounds captured immediately before a comparison is resolved."""

    low: int
    high: int
    comparison_count: int


@dataclass(frozen=True)
class RebuildSnapshot:
    """Rebuild state captured once per fully placed item.

    `ranked_prefix` is the rebuilt prefix *before* the item was placed.
    """

    item_index: int
    ranked_prefix: tuple[RankedItem, ...]
    last_position: int


@dataclass(frozen=True)
class PlacementRecord:
    """A batch placement that can be rolled back.

    `previous_position` is set when the candidate was already ranked
    (re-rank), so undo can put it back where it was.
    """

    queue_index: int
    item_id: str
    position: int
    previous_position: int | None = None


@dataclass(frozen=True)
class Progress:
    current: int
    total: int


@dataclass(frozen=True)
class Comparison:
    """The binary choice to surface: candidate vs. opponent."""

    candidate: CandidateItem
    opponent: RankedItem | CandidateItem
    comparison_count: int
    estimated_total: int


def positions_of(items: list[RankedItem]) -> list[int]:
    return sorted(item.position for item in items)


def is_contiguous(items: list[RankedItem]) -> bool:
    """True when positions are exactly {1..N} with no gaps or duplicates."""
    return positions_of(items) == list(range(1, len(items) + 1))


def unique_items(items: list[CandidateItem]) -> list[CandidateItem]:
    """Drop repeated item ids, keeping the first occurrence."""
    seen: set[str] = set()
    unique = []
    for item in items:
        if item.item_id not in seen:
            seen.add(item.item_id)
            unique.append(item)
    return unique
