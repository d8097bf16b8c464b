"""Shared fixtures.

Tests run against the in-memory ordered store: no Postgres or Redis needed.
Without an initialized Redis client the per-user write lock is skipped.
"""

import pytest

from playrank.services import registry as registry_module
from playrank.services.errors import StoreUnavailable
from playrank.services.types import CandidateItem
from playrank.settings import get_settings
from playrank.stores import ordered as ordered_module
from playrank.stores.memory import InMemoryOrderedStore

USER = "user-1"


class FlakyStore(InMemoryOrderedStore):
    """In-memory store whose point writes can be made to fail.

    - `transient = k`: the next k writes fail, then writes succeed again
    - `break_after(n)`: n more writes succeed, then every write fails
    - `down = True`: every write fails until `heal()`
    Reads never fail unless `reads_down` is set.
    """

    def __init__(self) -> None:
        super().__init__()
        self.down = False
        self.reads_down = False
        self.transient = 0
        self.failed_writes = 0
        self._budget: int | None = None

    def break_after(self, writes: int) -> None:
        self._budget = writes

    def heal(self) -> None:
        self.down = False
        self.reads_down = False
        self._budget = None

    def _check_write(self) -> None:
        if self._budget is not None:
            if self._budget == 0:
                self.down = True
                self._budget = None
            else:
                self._budget -= 1
        if self.transient > 0:
            self.transient -= 1
            self.failed_writes += 1
            raise StoreUnavailable("transient failure")
        if self.down:
            self.failed_writes += 1
            raise StoreUnavailable("store down")

    async def fetch_ranked_items(self, user_id):
        if self.reads_down:
            raise StoreUnavailable("store down")
        return await super().fetch_ranked_items(user_id)

    async def set_position(self, user_id, item_id, position):
        self._check_write()
        await super().set_position(user_id, item_id, position)

    async def insert_at(self, user_id, candidate, position):
        self._check_write()
        await super().insert_at(user_id, candidate, position)

    async def delete_item(self, user_id, item_id):
        self._check_write()
        await super().delete_item(user_id, item_id)


@pytest.fixture(autouse=True)
def test_settings(monkeypatch: pytest.MonkeyPatch):
    """No retry sleeps, memory backend, fresh handle registry per test."""
    monkeypatch.setenv("STORE_BACKEND", "memory")
    monkeypatch.setenv("STORE_RETRY_WAITS", "[0, 0, 0]")
    get_settings.cache_clear()
    monkeypatch.setattr(registry_module, "_registry", None)
    monkeypatch.setattr(ordered_module, "_store", None)
    yield
    get_settings.cache_clear()


@pytest.fixture
def store() -> InMemoryOrderedStore:
    return InMemoryOrderedStore()


@pytest.fixture
def flaky_store() -> FlakyStore:
    return FlakyStore()


@pytest.fixture
def candidate():
    """Build a CandidateItem from a title (item_id is the lowercased title)."""

    def make(title: str) -> CandidateItem:
        return CandidateItem(item_id=title.lower(), title=title)

    return make


@pytest.fixture
def oracle():
    """Chooser answering from a known true order (titles, most preferred first)."""

    def make(preference: list[str]):
        rank = {title.lower(): i for i, title in enumerate(preference)}

        def choose(candidate, opponent) -> bool:
            return rank[candidate.item_id] < rank[opponent.item_id]

        return choose

    return make
