"""In-memory ordered store.

Used by the test suite and by STORE_BACKEND=memory for local runs. Keeps a
log of every point write in `writes` so callers can inspect the order in
which positions were touched.
"""

from __future__ import annotations

from dataclasses import dataclass

from playrank.services.types import CandidateItem, RankedItem
from playrank.stores.ordered import OrderedStore


@dataclass
class _Row:
    item: CandidateItem
    position: int | None
    seq: int


class InMemoryOrderedStore(OrderedStore):
    """Dict-backed store: user_id -> item_id -> row."""

    def __init__(self) -> None:
        self._rows: dict[str, dict[str, _Row]] = {}
        self._seq = 0
        self.writes: list[tuple[str, str, int | None]] = []

    # Seeding helpers --------------------------------------------------

    def seed(self, user_id: str, items: list[CandidateItem | RankedItem]) -> None:
        """Load rows as-is. RankedItem keeps its position; CandidateItem is unranked."""
        for item in items:
            if isinstance(item, RankedItem):
                self._put(user_id, item.as_candidate(), item.position)
            else:
                self._put(user_id, item, None)

    def seed_ranked(self, user_id: str, titles: list[str]) -> list[RankedItem]:
        """Seed `titles` in order as positions 1..N; item_id is the lowercased title."""
        ranked = [
            RankedItem(item_id=title.lower(), position=i, title=title)
            for i, title in enumerate(titles, start=1)
        ]
        self.seed(user_id, ranked)
        return ranked

    def positions(self, user_id: str) -> dict[str, int | None]:
        return {item_id: row.position for item_id, row in self._rows.get(user_id, {}).items()}

    # OrderedStore -----------------------------------------------------

    async def fetch_ranked_items(self, user_id: str) -> list[RankedItem]:
        rows = [row for row in self._rows.get(user_id, {}).values() if row.position is not None]
        rows.sort(key=lambda r: (r.position, r.seq))
        return [RankedItem.from_candidate(row.item, row.position) for row in rows]

    async def fetch_unranked_items(self, user_id: str) -> list[CandidateItem]:
        rows = [row for row in self._rows.get(user_id, {}).values() if row.position is None]
        rows.sort(key=lambda r: r.seq)
        return [row.item for row in rows]

    async def set_position(self, user_id: str, item_id: str, position: int | None) -> None:
        row = self._rows.get(user_id, {}).get(item_id)
        if row is None:
            return
        row.position = position
        self.writes.append((user_id, item_id, position))

    async def insert_at(self, user_id: str, candidate: CandidateItem, position: int) -> None:
        self._put(user_id, candidate, position)
        self.writes.append((user_id, candidate.item_id, position))

    async def delete_item(self, user_id: str, item_id: str) -> None:
        self._rows.get(user_id, {}).pop(item_id, None)
        self.writes.append((user_id, item_id, None))

    async def clear_all_positions(self, user_id: str) -> None:
        for row in self._rows.get(user_id, {}).values():
            row.position = None

    async def list_user_ids(self) -> list[str]:
        return sorted(self._rows)

    def _put(self, user_id: str, item: CandidateItem, position: int | None) -> None:
        rows = self._rows.setdefault(user_id, {})
        existing = rows.get(item.item_id)
        if existing is not None:
            existing.item = item
            existing.position = position
            return
        self._seq += 1
        rows[item.item_id] = _Row(item=item, position=position, seq=self._seq)
