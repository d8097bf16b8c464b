"""Ordered store: durable per-user sequence of (item_id, position).

The store only offers point operations: read a user's rows, write one
row's position, insert/delete one row, and null out every position of a
user (rebuild bootstrap). There is no range-shift primitive and no
multi-row transaction; the shift protocol in
`playrank.services.shift_protocol` builds range shifts out of point writes
in a collision-free order.

Backend failures surface as `StoreUnavailable`.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
import logging

from sqlalchemy import delete, select, update
from sqlalchemy.exc import SQLAlchemyError

from playrank.models import UserItem
from playrank.services.errors import StoreUnavailable
from playrank.services.types import CandidateItem, RankedItem
from playrank.settings import get_settings
from playrank.stores.postgres import get_session

logger = logging.getLogger("uvicorn.error")


class OrderedStore(ABC):
    """Point-operation interface consumed by the ranking engine."""

    @abstractmethod
    async def fetch_ranked_items(self, user_id: str) -> list[RankedItem]:
        """Rows with a position, ascending by position."""

    @abstractmethod
    async def fetch_unranked_items(self, user_id: str) -> list[CandidateItem]:
        """Rows whose position is NULL (mid-rebuild)."""

    @abstractmethod
    async def set_position(self, user_id: str, item_id: str, position: int | None) -> None:
        """Point write of one row's position (None = unranked)."""

    @abstractmethod
    async def insert_at(self, user_id: str, candidate: CandidateItem, position: int) -> None:
        """Create the row, or position an existing unranked row, at `position`."""

    @abstractmethod
    async def delete_item(self, user_id: str, item_id: str) -> None:
        ...

    @abstractmethod
    async def clear_all_positions(self, user_id: str) -> None:
        ...

    @abstractmethod
    async def list_user_ids(self) -> list[str]:
        ...


class SqlOrderedStore(OrderedStore):
    """OrderedStore over the `user_items` table.

    Every method opens its own session, so every write commits on its own,
    matching the point-write contract of the engine.
    """

    async def fetch_ranked_items(self, user_id: str) -> list[RankedItem]:
        try:
            async with get_session() as session:
                result = await session.execute(
                    select(UserItem)
                    .where(UserItem.user_id == user_id)
                    .where(UserItem.position.is_not(None))
                    .order_by(UserItem.position.asc(), UserItem.id.asc())
                )
                rows = result.scalars().all()
        except (SQLAlchemyError, OSError, RuntimeError) as e:
            raise StoreUnavailable(detail={"op": "fetch_ranked_items", "user_id": user_id}) from e
        return [_to_ranked(row) for row in rows]

    async def fetch_unranked_items(self, user_id: str) -> list[CandidateItem]:
        try:
            async with get_session() as session:
                result = await session.execute(
                    select(UserItem)
                    .where(UserItem.user_id == user_id)
                    .where(UserItem.position.is_(None))
                    .order_by(UserItem.id.asc())
                )
                rows = result.scalars().all()
        except (SQLAlchemyError, OSError, RuntimeError) as e:
            raise StoreUnavailable(detail={"op": "fetch_unranked_items", "user_id": user_id}) from e
        return [_to_candidate(row) for row in rows]

    async def set_position(self, user_id: str, item_id: str, position: int | None) -> None:
        try:
            async with get_session() as session:
                result = await session.execute(
                    update(UserItem)
                    .where(UserItem.user_id == user_id)
                    .where(UserItem.item_id == item_id)
                    .values(position=position)
                )
        except (SQLAlchemyError, OSError, RuntimeError) as e:
            raise StoreUnavailable(detail={"op": "set_position", "item_id": item_id}) from e
        if result.rowcount == 0:
            logger.warning(f"[store] set_position matched no row user={user_id} item={item_id}")

    async def insert_at(self, user_id: str, candidate: CandidateItem, position: int) -> None:
        try:
            async with get_session() as session:
                result = await session.execute(
                    select(UserItem)
                    .where(UserItem.user_id == user_id)
                    .where(UserItem.item_id == candidate.item_id)
                )
                row = result.scalar_one_or_none()
                if row is None:
                    session.add(
                        UserItem(
                            user_id=user_id,
                            item_id=candidate.item_id,
                            title=candidate.title,
                            cover_url=candidate.cover_url,
                            external_id=candidate.external_id,
                            position=position,
                        )
                    )
                else:
                    row.position = position
                    row.title = candidate.title or row.title
                    row.cover_url = candidate.cover_url or row.cover_url
                    row.external_id = candidate.external_id or row.external_id
        except (SQLAlchemyError, OSError, RuntimeError) as e:
            raise StoreUnavailable(detail={"op": "insert_at", "item_id": candidate.item_id}) from e

    async def delete_item(self, user_id: str, item_id: str) -> None:
        try:
            async with get_session() as session:
                await session.execute(
                    delete(UserItem)
                    .where(UserItem.user_id == user_id)
                    .where(UserItem.item_id == item_id)
                )
        except (SQLAlchemyError, OSError, RuntimeError) as e:
            raise StoreUnavailable(detail={"op": "delete_item", "item_id": item_id}) from e

    async def clear_all_positions(self, user_id: str) -> None:
        try:
            async with get_session() as session:
                await session.execute(
                    update(UserItem).where(UserItem.user_id == user_id).values(position=None)
                )
        except (SQLAlchemyError, OSError, RuntimeError) as e:
            raise StoreUnavailable(detail={"op": "clear_all_positions", "user_id": user_id}) from e

    async def list_user_ids(self) -> list[str]:
        try:
            async with get_session() as session:
                result = await session.execute(select(UserItem.user_id).distinct())
                return [str(uid) for uid in result.scalars().all()]
        except (SQLAlchemyError, OSError, RuntimeError) as e:
            raise StoreUnavailable(detail={"op": "list_user_ids"}) from e


def _to_ranked(row: UserItem) -> RankedItem:
    return RankedItem(
        item_id=row.item_id,
        position=int(row.position or 0),
        title=row.title or "",
        cover_url=row.cover_url,
        external_id=row.external_id,
    )


def _to_candidate(row: UserItem) -> CandidateItem:
    return CandidateItem(
        item_id=row.item_id,
        title=row.title or "",
        cover_url=row.cover_url,
        external_id=row.external_id,
    )


# Store instance (memory backend must survive across requests)
_store: OrderedStore | None = None


def get_ordered_store() -> OrderedStore:
    """Get the configured store instance (STORE_BACKEND)."""
    global _store
    if _store is None:
        if get_settings().store_backend == "memory":
            from playrank.stores.memory import InMemoryOrderedStore

            _store = InMemoryOrderedStore()
        else:
            _store = SqlOrderedStore()
    return _store
