"""Rebuild workflow: re-derive a user's whole order from scratch.

Flow:
1. Shuffle every item of the user into a queue, clear all positions
2. Queue items 0 and 1: one head-to-head, winner -> #1, loser -> #2
3. Queue items 2..N: RankingSession against the already-rebuilt prefix
4. After each placement push a RebuildSnapshot, so "undo last game" works
   after that item's own comparison history is gone
5. Queue exhausted: emit RebuildCompleted once

Resuming (app restart mid-rebuild): rows that still have a position form
the rebuilt prefix, rows without one are shuffled and queued after it.
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass
import logging
import random

from playrank.services.comparison_policy import ComparisonPolicy, Terminal
from playrank.services.errors import InvalidSessionState, InvariantViolation, NothingToUndo
from playrank.services.ranking_session import RankingSession, SessionState
from playrank.services.shift_protocol import plan_insertion, plan_removal, with_retry
from playrank.services.types import (
    CandidateItem,
    Comparison,
    Progress,
    RankedItem,
    RebuildSnapshot,
    is_contiguous,
    unique_items,
)
from playrank.services.undo import UndoStack
from playrank.services.workflow import WorkflowBase, WorkflowStatus
from playrank.stores.ordered import OrderedStore

logger = logging.getLogger("uvicorn.error")


@dataclass(frozen=True)
class RebuildCompleted:
    user_id: str
    total: int


CompletionListener = Callable[[RebuildCompleted], None]


class RebuildWorkflow(WorkflowBase):
    """Full re-rank of a user's items, resumable and undoable per item."""

    log_tag = "rebuild"

    def __init__(
        self,
        store: OrderedStore,
        user_id: str,
        items: list[CandidateItem] | None = None,
        policy: ComparisonPolicy | None = None,
        *,
        rng: random.Random | None = None,
        retry_waits: list[float] | None = None,
    ):
        super().__init__(store, user_id, policy, retry_waits=retry_waits)
        self.extra_items = unique_items(items or [])
        self.items: list[CandidateItem] | None = None
        self.rng = rng or random.Random()
        self.queue: list[CandidateItem] = []
        self.prefix: list[RankedItem] = []
        self.index = 0
        self.history: UndoStack[RebuildSnapshot] = UndoStack()
        self.resuming = False
        self._loaded = False
        self._listeners: list[CompletionListener] = []
        self._completion_emitted = False

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    @property
    def in_bootstrap(self) -> bool:
        """Waiting on the head-to-head between queue items 0 and 1."""
        return (
            self.status is WorkflowStatus.AWAITING_CHOICE
            and self.session is None
            and self.index == 0
            and len(self.queue) >= 2
        )

    @property
    def current_item(self) -> CandidateItem | None:
        return self.queue[self.index] if self.index < len(self.queue) else None

    def current_comparison(self) -> Comparison | Terminal | None:
        if self.in_bootstrap:
            return Comparison(
                candidate=self.queue[0],
                opponent=self.queue[1],
                comparison_count=0,
                estimated_total=1,
            )
        if self.session is None:
            return None
        return self.session.current_comparison()

    def progress(self) -> Progress:
        total = len(self.queue)
        if self.status is WorkflowStatus.COMPLETE:
            return Progress(current=total, total=total)
        return Progress(current=min(self.index + 1, total), total=total)

    @property
    def can_undo(self) -> bool:
        if self.is_finished:
            return False
        return bool(self.history) or (self.session is not None and self.session.can_undo)

    def add_completion_listener(self, listener: CompletionListener) -> None:
        self._listeners.append(listener)

    # ------------------------------------------------------------------
    # Operations
    # ------------------------------------------------------------------

    async def start(self, *, resuming: bool = False) -> None:
        """Begin a fresh rebuild (wipes positions) or resume an interrupted one."""
        self._require_status(WorkflowStatus.NOT_STARTED)
        self.resuming = resuming
        if resuming:
            await self._guarded(self._load_resumed())
        else:
            await self._guarded(self._load_fresh())
        logger.info(
            f"[rebuild] start user={self.user_id} items={len(self.queue)} "
            f"resuming={resuming} ranked={len(self.prefix)}"
        )
        await self._begin_current()

    async def resolve(self, candidate_won: bool) -> SessionState | None:
        """Apply a choice. In the bootstrap, `candidate_won` means queue item 0 won."""
        self._require_status(WorkflowStatus.AWAITING_CHOICE)
        if self.in_bootstrap:
            await self._place_bootstrap(candidate_won)
            return None
        assert self.session is not None
        session = self.session
        state = session.resolve(candidate_won)
        if session.is_terminal:
            await self._persist_current()
        return state

    async def undo(self) -> None:
        """Undo the last comparison, or un-place the last placed item."""
        if self.status is WorkflowStatus.AWAITING_CHOICE and self.session is not None and self.session.can_undo:
            self.session.undo()
            return
        self._require_status(WorkflowStatus.AWAITING_CHOICE, WorkflowStatus.FAILED)
        if self.save_in_flight:
            raise InvalidSessionState("Finish saving the current item before undoing")

        snapshot = self.history.pop()
        if snapshot is None:
            raise NothingToUndo()
        if self.session is not None:
            self.session.cancel()
            self.session = None
        self.job = None

        if snapshot.item_index == 0:
            # Bootstrap pair: un-rank both and replay the head-to-head.
            unrank = [self.queue[0].item_id, self.queue[1].item_id]
        else:
            unrank = [self.queue[snapshot.item_index].item_id]
        stages = [self._unrank_stage(item_id) for item_id in unrank]

        async def after(result: list) -> None:
            self.prefix = list(result)
            self.index = snapshot.item_index
            logger.info(f"[rebuild] undid placement user={self.user_id} back to item {snapshot.item_index + 1}")
            await self._begin_current()

        await self._start_job(f"undo item {snapshot.item_index}", stages, after)

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    async def _load_fresh(self) -> None:
        # Every stored item is rebuilt; `items` can only refresh metadata or add rows.
        ranked = await with_retry("fetch", lambda: self.store.fetch_ranked_items(self.user_id), self.retry_waits)
        unranked = await with_retry("fetch", lambda: self.store.fetch_unranked_items(self.user_id), self.retry_waits)
        by_id = {item.item_id: item for item in [r.as_candidate() for r in ranked] + unranked}
        for item in self.extra_items:
            by_id[item.item_id] = item
        self.items = list(by_id.values())
        queue = list(self.items)
        self.rng.shuffle(queue)
        await with_retry("clear", lambda: self.store.clear_all_positions(self.user_id), self.retry_waits)
        self.queue = queue
        self.prefix = []
        self.index = 0
        self._loaded = True

    async def _load_resumed(self) -> None:
        ranked = await with_retry("fetch", lambda: self.store.fetch_ranked_items(self.user_id), self.retry_waits)
        if not is_contiguous(ranked):
            raise InvariantViolation(
                "Partially rebuilt list has gaps; repair it before resuming",
                detail={"user_id": self.user_id, "positions": [r.position for r in ranked]},
            )
        unranked = await with_retry("fetch", lambda: self.store.fetch_unranked_items(self.user_id), self.retry_waits)
        known = {r.item_id for r in ranked} | {u.item_id for u in unranked}
        unranked += [item for item in self.extra_items if item.item_id not in known]
        self.rng.shuffle(unranked)
        self.queue = [r.as_candidate() for r in ranked] + unranked
        self.items = list(self.queue)
        self.prefix = ranked
        self.index = len(ranked)
        self._loaded = True

    async def _restart_current(self) -> None:
        if not self._loaded:
            # Failed while loading; start over.
            self.status = WorkflowStatus.NOT_STARTED
            await self.start(resuming=self.resuming)
            return
        await self._begin_current()

    async def _begin_current(self) -> None:
        if self.index >= len(self.queue):
            self._complete()
            return

        if self.index == 0 and not self.prefix:
            if len(self.queue) == 1:
                only = self.queue[0]

                async def after_single(result: list) -> None:
                    self.prefix = list(result)
                    self.index = 1
                    await self._begin_current()

                await self._start_job(f"place {only.item_id}", [self._insert_stage(only, 1)], after_single)
                return
            self.session = None
            self.status = WorkflowStatus.AWAITING_CHOICE
            return

        self.session = RankingSession(self.queue[self.index], self.prefix, self.policy)
        self.session.start()
        if self.session.is_terminal:
            await self._persist_current()
        else:
            self.status = WorkflowStatus.AWAITING_CHOICE

    async def _place_bootstrap(self, first_won: bool) -> None:
        first, second = self.queue[0], self.queue[1]
        winner, loser = (first, second) if first_won else (second, first)

        async def after(result: list) -> None:
            self.prefix = list(result)
            self.history.push(RebuildSnapshot(item_index=0, ranked_prefix=(), last_position=1))
            self.index = 2
            logger.info(f"[rebuild] bootstrap {winner.item_id} #1, {loser.item_id} #2 user={self.user_id}")
            await self._begin_current()

        await self._start_job(
            "bootstrap pair",
            [self._insert_stage(winner, 1), self._insert_stage(loser, 2)],
            after,
        )

    async def _persist_current(self) -> None:
        assert self.session is not None
        item = self.session.candidate
        terminal = self.session.terminal
        assert terminal is not None
        position = terminal.final_position
        snapshot = RebuildSnapshot(
            item_index=self.index,
            ranked_prefix=tuple(self.prefix),
            last_position=position,
        )

        async def after(result: list) -> None:
            self.prefix = list(result)
            self.history.push(snapshot)
            self.session = None
            self.index += 1
            logger.info(
                f"[rebuild] placed {item.item_id} at #{position} "
                f"({self.index}/{len(self.queue)}) approximate={terminal.approximate}"
            )
            await self._begin_current()

        await self._start_job(f"place {item.item_id}", [self._insert_stage(item, position)], after)

    def _complete(self) -> None:
        self.session = None
        self.status = WorkflowStatus.COMPLETE
        if self._completion_emitted:
            return
        self._completion_emitted = True
        event = RebuildCompleted(user_id=self.user_id, total=len(self.queue))
        logger.info(f"[rebuild] complete user={self.user_id} total={event.total}")
        for listener in self._listeners:
            listener(event)

    def _insert_stage(self, item: CandidateItem, position: int):
        return lambda: plan_insertion(self.store, self.user_id, item, position, retry_waits=self.retry_waits)

    def _unrank_stage(self, item_id: str):
        return lambda: plan_removal(self.store, self.user_id, item_id, unrank=True, retry_waits=self.retry_waits)
