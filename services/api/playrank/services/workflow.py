"""Shared plumbing for the batch and rebuild workflows.

A workflow owns at most one live RankingSession and at most one
ProtocolJob (the writes persisting its last decision). While a job is
incomplete the workflow is PERSISTING or FAILED; `retry()` resumes the job
and then runs the continuation registered with it.
"""

from __future__ import annotations

from collections.abc import Awaitable, Callable
from enum import Enum
import logging

from playrank.services.comparison_policy import ComparisonPolicy
from playrank.services.errors import CancelUnsafe, InvalidSessionState, RankingError, StoreUnavailable
from playrank.services.ranking_session import RankingSession
from playrank.services.shift_protocol import PlanBuilder, ProtocolJob
from playrank.services.types import Progress
from playrank.stores.ordered import OrderedStore

logger = logging.getLogger("uvicorn.error")


class WorkflowStatus(str, Enum):
    NOT_STARTED = "not_started"
    AWAITING_CHOICE = "awaiting_choice"
    PERSISTING = "persisting"
    FAILED = "failed"
    COMPLETE = "complete"
    CANCELLED = "cancelled"


class WorkflowBase:
    """Status, job execution, retry and cancel shared by workflows."""

    log_tag = "workflow"

    def __init__(
        self,
        store: OrderedStore,
        user_id: str,
        policy: ComparisonPolicy | None = None,
        *,
        retry_waits: list[float] | None = None,
    ):
        self.store = store
        self.user_id = user_id
        self.policy = policy or ComparisonPolicy()
        self.retry_waits = retry_waits
        self.status = WorkflowStatus.NOT_STARTED
        self.session: RankingSession | None = None
        self.job: ProtocolJob | None = None
        self.last_error: RankingError | None = None
        self._after_job: Callable[[list], Awaitable[None]] | None = None

    # ------------------------------------------------------------------
    # Public operations
    # ------------------------------------------------------------------

    @property
    def is_finished(self) -> bool:
        return self.status in (WorkflowStatus.COMPLETE, WorkflowStatus.CANCELLED)

    @property
    def save_in_flight(self) -> bool:
        """Writes partially applied; cancelling now could leave a gap."""
        return self.job is not None and self.job.touched and not self.job.done

    async def retry(self) -> None:
        """Resume a failed step against the same decision."""
        if self.status is not WorkflowStatus.FAILED:
            raise InvalidSessionState(f"Nothing to retry (status={self.status.value})")
        if self.job is not None:
            await self._run_job()
        else:
            await self._restart_current()

    def cancel(self, *, force: bool = False) -> None:
        """Drop in-memory state.

        Raises:
            CancelUnsafe: a save is half applied and `force` is False.
        """
        if self.save_in_flight and not force:
            raise CancelUnsafe(detail={"user_id": self.user_id})
        if self.save_in_flight:
            logger.warning(f"[{self.log_tag}] cancelled mid-save user={self.user_id}; list may need repair")
        if self.session is not None:
            self.session.cancel()
        self.session = None
        self.job = None
        self._after_job = None
        self.status = WorkflowStatus.CANCELLED

    def progress(self) -> Progress:
        raise NotImplementedError

    # ------------------------------------------------------------------
    # Job plumbing
    # ------------------------------------------------------------------

    async def _start_job(
        self,
        description: str,
        stages: list[PlanBuilder],
        after: Callable[[list], Awaitable[None]],
    ) -> None:
        self.job = ProtocolJob(user_id=self.user_id, stages=stages, description=description)
        self._after_job = after
        await self._run_job()

    async def _run_job(self) -> None:
        assert self.job is not None
        self.status = WorkflowStatus.PERSISTING
        try:
            result = await self.job.run(self.store, retry_waits=self.retry_waits)
        except RankingError as e:
            self.status = WorkflowStatus.FAILED
            self.last_error = e
            logger.warning(
                f"[{self.log_tag}] {self.job.description} failed user={self.user_id} "
                f"code={e.code} touched={self.job.touched}"
            )
            raise
        after = self._after_job
        self.job = None
        self._after_job = None
        self.last_error = None
        if after is not None:
            await after(result)

    async def _guarded(self, coro: Awaitable[None]) -> None:
        """Await a store read that starts a step; mark FAILED on store errors."""
        try:
            await coro
        except StoreUnavailable as e:
            self.status = WorkflowStatus.FAILED
            self.last_error = e
            logger.warning(f"[{self.log_tag}] could not start step user={self.user_id} code={e.code}")
            raise

    async def _restart_current(self) -> None:
        raise NotImplementedError

    def _require_status(self, *allowed: WorkflowStatus) -> None:
        if self.status not in allowed:
            raise InvalidSessionState(
                f"Not allowed while {self.status.value}",
                detail={"status": self.status.value},
            )
