"""Ranking service: the operations exposed to UI callers.

Single insertion:
- begin_insertion(user_id, candidate) -> handle
- current_comparison / resolve_comparison / undo / cancel

Workflows:
- begin_batch(user_id, candidates) -> handle
- begin_rebuild(user_id, resume=...) -> handle
- progress / undo_last / skip / retry

List maintenance:
- list_rankings, remove_ranked_item, verify_rankings

Every handle operation returns a HandleView, a read-only picture of the
workflow after the step. When a step fails on the store the error is
re-raised with the handle id in its detail so the caller can retry.
"""

from __future__ import annotations

from collections.abc import AsyncGenerator, Awaitable, Callable
from contextlib import asynccontextmanager
from dataclasses import dataclass
import logging

from playrank.services.comparison_policy import ComparisonPolicy, Terminal, get_policy
from playrank.services.errors import InvalidSessionState, RankingError
from playrank.services.rebuild import RebuildWorkflow
from playrank.services.registry import Handle, HandleKind, get_registry
from playrank.services.sequential_insertion import BatchResult, SequentialInsertionWorkflow
from playrank.services.shift_protocol import remove_item, verify_order, with_retry
from playrank.services.types import CandidateItem, Comparison, Progress, RankedItem
from playrank.services.workflow import WorkflowStatus
from playrank.stores.ordered import OrderedStore, get_ordered_store

logger = logging.getLogger("uvicorn.error")


@dataclass(frozen=True)
class HandleView:
    handle_id: str
    kind: HandleKind
    user_id: str
    status: WorkflowStatus
    comparison: Comparison | None
    terminal: Terminal | None
    progress: Progress
    can_undo: bool
    placed: RankedItem | None = None
    result: BatchResult | None = None
    error: RankingError | None = None


def _view(handle: Handle) -> HandleView:
    workflow = handle.workflow
    current = workflow.current_comparison()
    comparison = current if isinstance(current, Comparison) else None
    terminal = current if isinstance(current, Terminal) else None
    placed = None
    result = None

    if isinstance(workflow, SequentialInsertionWorkflow):
        if terminal is None and workflow.status is WorkflowStatus.COMPLETE:
            terminal = workflow.last_terminal
        result = workflow.result() if handle.kind == "batch" else None
        placed = workflow.last_placed
        can_undo = (workflow.session is not None and workflow.session.can_undo) or (
            handle.kind == "batch" and bool(workflow.placements)
        )
    else:
        can_undo = workflow.can_undo

    return HandleView(
        handle_id=handle.handle_id,
        kind=handle.kind,
        user_id=handle.user_id,
        status=workflow.status,
        comparison=comparison,
        terminal=terminal,
        progress=workflow.progress(),
        can_undo=can_undo,
        placed=placed,
        result=result,
        error=workflow.last_error if workflow.status is WorkflowStatus.FAILED else None,
    )


@asynccontextmanager
async def _tagged(handle: Handle) -> AsyncGenerator[None, None]:
    """Attach the handle id to errors raised by a step."""
    try:
        yield
    except RankingError as e:
        e.detail = {**(e.detail or {}), "handle": handle.handle_id}
        raise


async def _open(
    kind: HandleKind,
    user_id: str,
    workflow: SequentialInsertionWorkflow | RebuildWorkflow,
    start: Callable[[], Awaitable[None]],
) -> HandleView:
    registry = get_registry()
    handle = registry.register(kind, user_id, workflow)
    async with registry.step(handle.handle_id) as h, _tagged(h):
        await start()
        return _view(h)


async def _step(
    handle_id: str,
    op: Callable[[Handle], Awaitable[object]],
    kind: HandleKind | None = None,
) -> HandleView:
    async with get_registry().step(handle_id, kind) as handle, _tagged(handle):
        await op(handle)
        return _view(handle)


# ============================================================
# Single insertion
# ============================================================


async def begin_insertion(
    user_id: str,
    candidate: CandidateItem,
    *,
    store: OrderedStore | None = None,
    policy: ComparisonPolicy | None = None,
) -> HandleView:
    """Start placing one candidate into the user's current list.

    An empty list places the candidate at #1 straight away (the returned
    view is already COMPLETE).
    """
    workflow = SequentialInsertionWorkflow(
        store or get_ordered_store(),
        user_id,
        [candidate],
        policy or get_policy(),
    )
    return await _open("insertion", user_id, workflow, workflow.start)


async def current_comparison(handle_id: str, *, kind: HandleKind | None = None) -> HandleView:
    async with get_registry().step(handle_id, kind) as handle:
        return _view(handle)


async def resolve_comparison(handle_id: str, candidate_won: bool, *, kind: HandleKind | None = None) -> HandleView:
    """Apply one choice; persists automatically when it reaches Terminal."""
    return await _step(handle_id, lambda h: h.workflow.resolve(candidate_won), kind=kind)


async def undo(handle_id: str, *, kind: HandleKind | None = None) -> HandleView:
    """Step back one comparison.

    For a single insertion this is session-level only and raises
    WorkflowLevelUndoRequired once the history is empty. Workflows fall
    back to undoing their previous placement.
    """

    async def op(handle: Handle) -> None:
        workflow = handle.workflow
        if handle.kind == "insertion":
            workflow.undo_comparison()
        elif isinstance(workflow, RebuildWorkflow):
            await workflow.undo()
        else:
            await workflow.undo_last()

    return await _step(handle_id, op, kind=kind)


async def cancel(handle_id: str, *, force: bool = False, kind: HandleKind | None = None) -> HandleView:
    """Drop a handle. Raises CancelUnsafe mid-save unless `force`."""
    registry = get_registry()
    async with registry.step(handle_id, kind) as handle, _tagged(handle):
        if not handle.workflow.is_finished:
            handle.workflow.cancel(force=force)
        view = _view(handle)
    registry.discard(handle_id)
    logger.info(f"[ranking] closed {handle.kind} handle={handle_id} status={view.status.value}")
    return view


# ============================================================
# Workflows
# ============================================================


async def begin_batch(
    user_id: str,
    candidates: list[CandidateItem],
    *,
    store: OrderedStore | None = None,
    policy: ComparisonPolicy | None = None,
) -> HandleView:
    if not candidates:
        raise InvalidSessionState("A batch needs at least one candidate")
    workflow = SequentialInsertionWorkflow(
        store or get_ordered_store(),
        user_id,
        candidates,
        policy or get_policy(),
    )
    return await _open("batch", user_id, workflow, workflow.start)


async def begin_rebuild(
    user_id: str,
    *,
    resume: bool = False,
    items: list[CandidateItem] | None = None,
    store: OrderedStore | None = None,
    policy: ComparisonPolicy | None = None,
) -> HandleView:
    """Start (or resume) a full rebuild of the user's list.

    A fresh rebuild clears every position of the user before the first
    head-to-head; `resume=True` continues from the rows that still have one.
    """
    workflow = RebuildWorkflow(
        store or get_ordered_store(),
        user_id,
        items,
        policy or get_policy(),
    )
    workflow.add_completion_listener(
        lambda event: logger.info(f"[ranking] rebuild finished user={event.user_id} items={event.total}")
    )
    return await _open("rebuild", user_id, workflow, lambda: workflow.start(resuming=resume))


async def progress(handle_id: str, *, kind: HandleKind | None = None) -> Progress:
    async with get_registry().step(handle_id, kind) as handle:
        return handle.workflow.progress()


async def undo_last(handle_id: str, *, kind: HandleKind | None = None) -> HandleView:
    """Workflow-level undo (batch or rebuild)."""

    async def op(handle: Handle) -> None:
        workflow = handle.workflow
        if handle.kind == "insertion":
            raise InvalidSessionState("Single insertions only support comparison undo")
        if isinstance(workflow, RebuildWorkflow):
            await workflow.undo()
        else:
            await workflow.undo_last()

    return await _step(handle_id, op, kind=kind)


async def skip(handle_id: str, *, force: bool = False) -> HandleView:
    return await _step(handle_id, lambda h: h.workflow.skip(force=force), kind="batch")


async def retry(handle_id: str, *, kind: HandleKind | None = None) -> HandleView:
    """Resume a failed step against the same decision."""
    return await _step(handle_id, lambda h: h.workflow.retry(), kind=kind)


# ============================================================
# List maintenance
# ============================================================


async def list_rankings(user_id: str, *, store: OrderedStore | None = None) -> list[RankedItem]:
    store = store or get_ordered_store()
    return await with_retry("fetch", lambda: store.fetch_ranked_items(user_id))


async def remove_ranked_item(
    user_id: str,
    item_id: str,
    *,
    store: OrderedStore | None = None,
) -> list[RankedItem]:
    """Delete an item from the list and close the gap it leaves."""
    return await remove_item(store or get_ordered_store(), user_id, item_id)


async def verify_rankings(user_id: str, *, store: OrderedStore | None = None) -> list[RankedItem]:
    """The ranked list, or InvariantViolation when positions are not {1..N}."""
    return await verify_order(store or get_ordered_store(), user_id)
