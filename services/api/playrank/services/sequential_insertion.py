"""Sequential insertion: place a queue of candidates one at a time.

Used for bulk onboarding and for "rank a friend's games". For every
candidate:
1. Fetch the current ranked prefix from the store
2. Run a RankingSession to Terminal (user choices)
3. Persist with the shift protocol
4. Advance

A candidate is never started before the previous one is persisted, so
each session searches a prefix that already contains every earlier
placement of the batch.

A candidate that is already ranked is re-ranked: the session searches the
list without it, and persistence removes the old row before inserting.

Failures abort the current candidate only. `retry()` resumes its writes,
`skip()` abandons it when nothing has been written yet.
"""

from __future__ import annotations

from collections.abc import Awaitable, Callable
from dataclasses import dataclass
import inspect
import logging

from playrank.services.comparison_policy import ComparisonPolicy, Terminal
from playrank.services.errors import CancelUnsafe, InvalidSessionState, NothingToUndo, StoreUnavailable
from playrank.services.ranking_session import RankingSession, SessionState
from playrank.services.shift_protocol import plan_insertion, plan_removal, with_retry
from playrank.services.types import CandidateItem, Comparison, PlacementRecord, Progress, RankedItem, unique_items
from playrank.services.undo import UndoStack
from playrank.services.workflow import WorkflowBase, WorkflowStatus
from playrank.stores.ordered import OrderedStore

logger = logging.getLogger("uvicorn.error")

Chooser = Callable[[CandidateItem, RankedItem], "bool | Awaitable[bool]"]


@dataclass(frozen=True)
class BatchResult:
    total: int
    placed: int
    skipped: int
    failed: int


class SequentialInsertionWorkflow(WorkflowBase):
    """Drives one RankingSession per queued candidate."""

    log_tag = "batch"

    def __init__(
        self,
        store: OrderedStore,
        user_id: str,
        candidates: list[CandidateItem],
        policy: ComparisonPolicy | None = None,
        *,
        retry_waits: list[float] | None = None,
    ):
        super().__init__(store, user_id, policy, retry_waits=retry_waits)
        self.queue = unique_items(candidates)
        self.index = 0
        self.placements: UndoStack[PlacementRecord] = UndoStack()
        self.previous_position: int | None = None
        self.last_placed: RankedItem | None = None
        self.last_terminal: Terminal | None = None
        self._placed: set[int] = set()
        self._skipped: set[int] = set()
        self._failed: set[int] = set()

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    @property
    def current_candidate(self) -> CandidateItem | None:
        return self.queue[self.index] if self.index < len(self.queue) else None

    def current_comparison(self) -> Comparison | Terminal | None:
        """The pending choice, the Terminal decision being saved, or None when done."""
        if self.session is None:
            return None
        return self.session.current_comparison()

    def progress(self) -> Progress:
        total = len(self.queue)
        return Progress(current=min(self.index + 1, total), total=total)

    def result(self) -> BatchResult:
        return BatchResult(
            total=len(self.queue),
            placed=len(self._placed),
            skipped=len(self._skipped),
            failed=len(self._failed),
        )

    # ------------------------------------------------------------------
    # Operations
    # ------------------------------------------------------------------

    async def start(self) -> None:
        self._require_status(WorkflowStatus.NOT_STARTED)
        logger.info(f"[batch] start user={self.user_id} candidates={len(self.queue)}")
        await self._begin_current()

    async def resolve(self, candidate_won: bool) -> SessionState:
        self._require_status(WorkflowStatus.AWAITING_CHOICE)
        assert self.session is not None
        session = self.session
        state = session.resolve(candidate_won)
        if session.is_terminal:
            await self._persist_current()
        return state

    def undo_comparison(self) -> SessionState:
        """Session-level undo only (raises WorkflowLevelUndoRequired when empty)."""
        self._require_status(WorkflowStatus.AWAITING_CHOICE)
        assert self.session is not None
        return self.session.undo()

    async def undo_last(self) -> None:
        """Undo the last comparison, or the last placement of this batch."""
        if self.status is WorkflowStatus.AWAITING_CHOICE and self.session is not None and self.session.can_undo:
            self.session.undo()
            return
        self._require_status(WorkflowStatus.AWAITING_CHOICE, WorkflowStatus.COMPLETE, WorkflowStatus.FAILED)
        if self.save_in_flight:
            raise InvalidSessionState("Finish saving the current item before undoing")

        record = self.placements.pop()
        if record is None:
            raise NothingToUndo()
        if self.session is not None:
            self.session.cancel()
            self.session = None
        self.job = None

        candidate = self.queue[record.queue_index]
        stages = [lambda: plan_removal(self.store, self.user_id, record.item_id, retry_waits=self.retry_waits)]
        if record.previous_position is not None:
            stages.append(
                lambda: plan_insertion(
                    self.store, self.user_id, candidate, record.previous_position, retry_waits=self.retry_waits
                )
            )

        async def after(_: list) -> None:
            logger.info(f"[batch] undid placement of {record.item_id} at #{record.position}")
            self.index = record.queue_index
            self.last_placed = None
            self.last_terminal = None
            self._forget_from(record.queue_index)
            await self._begin_current()

        await self._start_job(f"undo {record.item_id}", stages, after)

    async def skip(self, *, force: bool = False) -> None:
        """Move past the current candidate without placing it."""
        self._require_status(WorkflowStatus.AWAITING_CHOICE, WorkflowStatus.FAILED)
        if self.save_in_flight and not force:
            raise CancelUnsafe(detail={"item_id": self.current_candidate.item_id if self.current_candidate else None})
        if self.status is WorkflowStatus.FAILED:
            self._failed.add(self.index)
        else:
            self._skipped.add(self.index)
        if self.session is not None:
            self.session.cancel()
        self.session = None
        self.job = None
        self._after_job = None
        self.index += 1
        await self._begin_current()

    async def run(self, chooser: Chooser) -> BatchResult:
        """Drive the whole queue with `chooser(candidate, opponent) -> candidate_won`.

        A candidate whose persistence fails before any write is counted as
        failed and skipped. A half-applied save is retried once more; if it
        still fails the error propagates, since the list may be inconsistent.
        """
        if self.status is WorkflowStatus.NOT_STARTED:
            try:
                await self.start()
            except StoreUnavailable:
                pass

        while not self.is_finished:
            if self.status is WorkflowStatus.FAILED:
                if self.save_in_flight:
                    await self.retry()
                else:
                    try:
                        await self.skip()
                    except StoreUnavailable:
                        pass
                continue

            comparison = self.current_comparison()
            assert isinstance(comparison, Comparison)
            choice = chooser(comparison.candidate, comparison.opponent)
            if inspect.isawaitable(choice):
                choice = await choice
            try:
                await self.resolve(bool(choice))
            except StoreUnavailable:
                continue

        result = self.result()
        logger.info(
            f"[batch] finished user={self.user_id} placed={result.placed} "
            f"skipped={result.skipped} failed={result.failed}"
        )
        return result

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    async def _restart_current(self) -> None:
        await self._begin_current()

    async def _begin_current(self) -> None:
        candidate = self.current_candidate
        if candidate is None:
            self.session = None
            self.status = WorkflowStatus.COMPLETE
            return

        prefix: list[RankedItem] = []

        async def fetch() -> None:
            nonlocal prefix
            prefix = await with_retry(
                "fetch", lambda: self.store.fetch_ranked_items(self.user_id), self.retry_waits
            )

        await self._guarded(fetch())

        existing = next((r for r in prefix if r.item_id == candidate.item_id), None)
        self.previous_position = existing.position if existing else None
        others = [r for r in prefix if r.item_id != candidate.item_id]
        self.session = RankingSession(candidate, others, self.policy)
        self.session.start()
        if self.session.is_terminal:
            await self._persist_current()
        else:
            self.status = WorkflowStatus.AWAITING_CHOICE

    async def _persist_current(self) -> None:
        assert self.session is not None
        candidate = self.session.candidate
        terminal = self.session.terminal
        assert terminal is not None
        position = terminal.final_position
        previous = self.previous_position
        comparisons = self.session.state.comparison_count
        queue_index = self.index

        stages = []
        if previous is not None:
            stages.append(lambda: plan_removal(self.store, self.user_id, candidate.item_id, retry_waits=self.retry_waits))
        stages.append(lambda: plan_insertion(self.store, self.user_id, candidate, position, retry_waits=self.retry_waits))

        async def after(_: list) -> None:
            if comparisons > 0:
                self.placements.push(
                    PlacementRecord(
                        queue_index=queue_index,
                        item_id=candidate.item_id,
                        position=position,
                        previous_position=previous,
                    )
                )
            self._placed.add(queue_index)
            self.last_placed = RankedItem.from_candidate(candidate, position)
            self.last_terminal = terminal
            logger.info(
                f"[batch] placed {candidate.item_id} at #{position} user={self.user_id} "
                f"comparisons={comparisons} approximate={terminal.approximate}"
            )
            self.session = None
            self.index += 1
            await self._begin_current()

        await self._start_job(f"place {candidate.item_id}", stages, after)

    def _forget_from(self, queue_index: int) -> None:
        for bucket in (self._placed, self._skipped, self._failed):
            for i in [i for i in bucket if i >= queue_index]:
                bucket.discard(i)
