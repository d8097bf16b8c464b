"""Position-shift protocol over a store with point writes only.

Insert (candidate, p) into N rows:
1. Read rows with position >= p
2. Write position + 1 for each, highest position first
3. Write the candidate at p

Remove row at d:
1. Delete the row (or null its position, for rebuild undo)
2. Write position - 1 for each row with position > d, lowest position first

Highest-first (resp. lowest-first) guarantees every write targets a
position that has already been vacated, so no two rows share a position
unless a write fails half way.

Each invocation is materialised as a WritePlan before anything is
written. Point writes are retried individually; when retries run out the
plan keeps its cursor, so resuming replays only what is left and the
user's decision is applied against the same final position.

After a plan completes the list is re-read and must be exactly {1..N}.
For insertions it is also checked just before the final write: if the
shift left a gap or duplicate the candidate is not written.
"""

from __future__ import annotations

import asyncio
from collections.abc import AsyncGenerator, Awaitable, Callable
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
import logging
from typing import TypeVar

from redis.exceptions import RedisError

from playrank.services.errors import (
    ConcurrentWriteInProgress,
    InvalidSessionState,
    InvariantViolation,
    StoreUnavailable,
)
from playrank.services.types import CandidateItem, RankedItem, positions_of
from playrank.settings import get_settings
from playrank.stores.ordered import OrderedStore
from playrank.stores.redis import acquire_lock, release_lock, user_write_lock_key

logger = logging.getLogger("uvicorn.error")

T = TypeVar("T")


@dataclass(frozen=True)
class PositionWrite:
    """One point write. `candidate` set -> insert; `delete` -> delete row."""

    item_id: str
    position: int | None
    candidate: CandidateItem | None = None
    delete: bool = False


@dataclass
class WritePlan:
    user_id: str
    kind: str  # insert | remove | unrank | shift | compact
    writes: list[PositionWrite]
    expected_before_final: list[int] | None = None
    expected_count: int | None = None
    cursor: int = 0
    # Result of the post-write verification, once complete.
    result: list[RankedItem] = field(default_factory=list)

    @property
    def done(self) -> bool:
        return self.cursor >= len(self.writes)

    @property
    def started(self) -> bool:
        return self.cursor > 0

    @property
    def in_flight(self) -> bool:
        """Some writes applied, some not: the list may be inconsistent."""
        return self.started and not self.done


# ============================================================
# Plan builders (read-only)
# ============================================================


def _shift_writes(rows: list[RankedItem], from_position: int, delta: int) -> list[PositionWrite]:
    """Point writes for a range shift in collision-free order.

    delta=+1 applies to position >= from_position, highest first.
    delta=-1 applies to position > from_position, lowest first.
    """
    if delta == 1:
        affected = sorted((r for r in rows if r.position >= from_position), key=lambda r: -r.position)
    elif delta == -1:
        affected = sorted((r for r in rows if r.position > from_position), key=lambda r: r.position)
    else:
        raise ValueError("delta must be +1 or -1")
    return [PositionWrite(item_id=r.item_id, position=r.position + delta) for r in affected]


async def plan_insertion(
    store: OrderedStore,
    user_id: str,
    candidate: CandidateItem,
    position: int,
    *,
    retry_waits: list[float] | None = None,
) -> WritePlan:
    rows = await with_retry("fetch", lambda: store.fetch_ranked_items(user_id), retry_waits)
    if any(r.item_id == candidate.item_id for r in rows):
        raise InvalidSessionState(
            f"{candidate.item_id} is already ranked; remove it before inserting",
            detail={"item_id": candidate.item_id},
        )
    n = len(rows)
    if not 1 <= position <= n + 1:
        raise InvalidSessionState(
            f"Position {position} outside 1..{n + 1}",
            detail={"position": position, "count": n},
        )
    writes = _shift_writes(rows, position, +1)
    writes.append(PositionWrite(item_id=candidate.item_id, position=position, candidate=candidate))
    return WritePlan(
        user_id=user_id,
        kind="insert",
        writes=writes,
        expected_before_final=[p for p in range(1, n + 2) if p != position],
        expected_count=n + 1,
    )


async def plan_removal(
    store: OrderedStore,
    user_id: str,
    item_id: str,
    *,
    unrank: bool = False,
    retry_waits: list[float] | None = None,
) -> WritePlan:
    """Plan to delete a row (or null its position) and close the gap."""
    rows = await with_retry("fetch", lambda: store.fetch_ranked_items(user_id), retry_waits)
    target = next((r for r in rows if r.item_id == item_id), None)
    if target is None:
        raise InvalidSessionState(f"{item_id} is not ranked", detail={"item_id": item_id})
    first = PositionWrite(item_id=item_id, position=None, delete=not unrank)
    return WritePlan(
        user_id=user_id,
        kind="unrank" if unrank else "remove",
        writes=[first, *_shift_writes(rows, target.position, -1)],
        expected_count=len(rows) - 1,
    )


# ============================================================
# Execution
# ============================================================


async def apply_plan(
    store: OrderedStore,
    plan: WritePlan,
    *,
    retry_waits: list[float] | None = None,
) -> list[RankedItem]:
    """Run (or resume) a plan from its cursor, then verify the result.

    Raises:
        ConcurrentWriteInProgress: another writer holds the user's lock.
        StoreUnavailable: a point write failed after all retries; the plan
            keeps its cursor and can be passed back in to resume.
        InvariantViolation: positions are not contiguous.
    """
    async with user_write_lock(plan.user_id):
        while not plan.done:
            write = plan.writes[plan.cursor]
            is_final = plan.cursor == len(plan.writes) - 1
            if is_final and plan.expected_before_final is not None:
                await _verify_positions(store, plan, plan.expected_before_final, retry_waits)
            await with_retry(
                f"write {write.item_id}->{write.position}",
                lambda: _apply_write(store, plan.user_id, write),
                retry_waits,
            )
            plan.cursor += 1

        if plan.expected_count is None:
            plan.result = await with_retry(
                "fetch", lambda: store.fetch_ranked_items(plan.user_id), retry_waits
            )
        else:
            plan.result = await _verify_positions(
                store, plan, list(range(1, plan.expected_count + 1)), retry_waits
            )

    logger.info(f"[shift] {plan.kind} applied user={plan.user_id} writes={len(plan.writes)}")
    return plan.result


async def _apply_write(store: OrderedStore, user_id: str, write: PositionWrite) -> None:
    if write.delete:
        await store.delete_item(user_id, write.item_id)
    elif write.candidate is not None:
        await store.insert_at(user_id, write.candidate, write.position)
    else:
        await store.set_position(user_id, write.item_id, write.position)


async def _verify_positions(
    store: OrderedStore,
    plan: WritePlan,
    expected: list[int],
    retry_waits: list[float] | None,
) -> list[RankedItem]:
    rows = await with_retry("verify", lambda: store.fetch_ranked_items(plan.user_id), retry_waits)
    actual = positions_of(rows)
    if actual != expected:
        logger.error(
            f"[shift] invariant violated user={plan.user_id} kind={plan.kind} "
            f"cursor={plan.cursor}/{len(plan.writes)} expected={expected} actual={actual}"
        )
        raise InvariantViolation(
            detail={"user_id": plan.user_id, "expected": expected, "actual": actual}
        )
    return rows


async def with_retry(
    op_name: str,
    fn: Callable[[], Awaitable[T]],
    retry_waits: list[float] | None = None,
) -> T:
    """Retry a single store operation on StoreUnavailable."""
    waits = retry_waits if retry_waits is not None else get_settings().store_retry_waits
    last_err: StoreUnavailable | None = None
    for attempt, wait_s in enumerate(waits, 1):
        if wait_s > 0:
            await asyncio.sleep(wait_s)
        try:
            return await fn()
        except StoreUnavailable as e:
            last_err = e
            logger.warning(f"[shift] {op_name} failed attempt={attempt}/{len(waits)}")
    raise last_err or StoreUnavailable()


@asynccontextmanager
async def user_write_lock(user_id: str) -> AsyncGenerator[None, None]:
    """Per-user Redis lock around a plan.

    Without Redis (tests / local minimal env) the plan runs unguarded.
    """
    settings = get_settings()
    key = user_write_lock_key(user_id)
    locked = False
    if settings.user_lock_enabled:
        try:
            got = await acquire_lock(key, ttl=settings.user_lock_ttl_seconds)
        except (RuntimeError, RedisError):
            got = None
            logger.debug(f"[shift] redis unavailable, running without user lock user={user_id}")
        if got is False:
            raise ConcurrentWriteInProgress(detail={"user_id": user_id})
        locked = bool(got)
    try:
        yield
    finally:
        if locked:
            try:
                await release_lock(key)
            except (RuntimeError, RedisError):
                logger.warning(f"[shift] failed to release user lock user={user_id}; it will expire")


# ============================================================
# Multi-stage jobs
# ============================================================


PlanBuilder = Callable[[], Awaitable[WritePlan]]


@dataclass
class ProtocolJob:
    """Sequential protocol invocations that persist one workflow decision.

    Each stage is planned lazily (after the previous stage has been
    applied, so it reads the list the previous stage left behind). A
    failed job keeps its stage index and in-flight plan; calling `run`
    again resumes exactly where it stopped.
    """

    user_id: str
    stages: list[PlanBuilder]
    description: str = ""
    stage_index: int = 0
    plan: WritePlan | None = None
    result: list[RankedItem] = field(default_factory=list)

    @property
    def done(self) -> bool:
        return self.stage_index >= len(self.stages)

    @property
    def touched(self) -> bool:
        """At least one write has been applied."""
        return self.stage_index > 0 or (self.plan is not None and self.plan.started)

    async def run(self, store: OrderedStore, *, retry_waits: list[float] | None = None) -> list[RankedItem]:
        while not self.done:
            if self.plan is None:
                self.plan = await self.stages[self.stage_index]()
            self.result = await apply_plan(store, self.plan, retry_waits=retry_waits)
            self.plan = None
            self.stage_index += 1
        return self.result


# ============================================================
# Protocol operations
# ============================================================


async def insert_item(
    store: OrderedStore,
    user_id: str,
    candidate: CandidateItem,
    position: int,
    *,
    retry_waits: list[float] | None = None,
) -> list[RankedItem]:
    plan = await plan_insertion(store, user_id, candidate, position, retry_waits=retry_waits)
    return await apply_plan(store, plan, retry_waits=retry_waits)


async def remove_item(
    store: OrderedStore,
    user_id: str,
    item_id: str,
    *,
    retry_waits: list[float] | None = None,
) -> list[RankedItem]:
    plan = await plan_removal(store, user_id, item_id, retry_waits=retry_waits)
    return await apply_plan(store, plan, retry_waits=retry_waits)


async def unrank_item(
    store: OrderedStore,
    user_id: str,
    item_id: str,
    *,
    retry_waits: list[float] | None = None,
) -> list[RankedItem]:
    """Like remove_item but keeps the row with a NULL position."""
    plan = await plan_removal(store, user_id, item_id, unrank=True, retry_waits=retry_waits)
    return await apply_plan(store, plan, retry_waits=retry_waits)


async def rerank_item(
    store: OrderedStore,
    user_id: str,
    candidate: CandidateItem,
    position: int,
    *,
    retry_waits: list[float] | None = None,
) -> list[RankedItem]:
    """Removal followed by a fresh insertion; consistent between the two."""
    await remove_item(store, user_id, candidate.item_id, retry_waits=retry_waits)
    return await insert_item(store, user_id, candidate, position, retry_waits=retry_waits)


async def shift_range(
    store: OrderedStore,
    user_id: str,
    from_position: int,
    delta: int,
    *,
    retry_waits: list[float] | None = None,
) -> list[RankedItem]:
    """Shift a range by +1 (position >= from) or -1 (position > from).

    The result is deliberately not contiguous (it opens or closes a hole),
    so no invariant check runs here.
    """
    rows = await with_retry("fetch", lambda: store.fetch_ranked_items(user_id), retry_waits)
    plan = WritePlan(user_id=user_id, kind="shift", writes=_shift_writes(rows, from_position, delta))
    return await apply_plan(store, plan, retry_waits=retry_waits)


async def verify_order(
    store: OrderedStore,
    user_id: str,
    *,
    retry_waits: list[float] | None = None,
) -> list[RankedItem]:
    """Return the ranked list, raising InvariantViolation if it is not {1..N}."""
    rows = await with_retry("fetch", lambda: store.fetch_ranked_items(user_id), retry_waits)
    expected = list(range(1, len(rows) + 1))
    actual = positions_of(rows)
    if actual != expected:
        raise InvariantViolation(detail={"user_id": user_id, "expected": expected, "actual": actual})
    return rows


async def compact_positions(
    store: OrderedStore,
    user_id: str,
    *,
    retry_waits: list[float] | None = None,
) -> list[RankedItem]:
    """Renumber a damaged list to {1..N}, keeping the current relative order.

    Rows moving down are written lowest first, rows moving up highest first.
    """
    rows = await with_retry("fetch", lambda: store.fetch_ranked_items(user_id), retry_waits)
    targets = [(row, i) for i, row in enumerate(rows, start=1) if row.position != i]
    down = sorted((t for t in targets if t[1] < t[0].position), key=lambda t: t[0].position)
    up = sorted((t for t in targets if t[1] > t[0].position), key=lambda t: -t[0].position)
    plan = WritePlan(
        user_id=user_id,
        kind="compact",
        writes=[PositionWrite(item_id=row.item_id, position=target) for row, target in down + up],
        expected_count=len(rows),
    )
    if plan.writes:
        logger.warning(f"[shift] compacting user={user_id} moved={len(plan.writes)}")
    return await apply_plan(store, plan, retry_waits=retry_waits)
