"""Tests for the ranking service operations (handles over workflows)."""

import pytest

from playrank.services.errors import (
    HandleNotFound,
    InvalidSessionState,
    StoreUnavailable,
    WorkflowLevelUndoRequired,
)
from playrank.services.ranking import (
    begin_batch,
    begin_insertion,
    begin_rebuild,
    cancel,
    current_comparison,
    list_rankings,
    progress,
    remove_ranked_item,
    resolve_comparison,
    retry,
    skip,
    undo,
    undo_last,
    verify_rankings,
)
from playrank.services.types import Progress, RankedItem
from playrank.services.workflow import WorkflowStatus

USER = "user-1"


@pytest.mark.asyncio
async def test_single_insertion(store, candidate):
    store.seed_ranked(USER, ["Zelda", "Metroid", "Celeste"])

    view = await begin_insertion(USER, candidate("Hades"), store=store)
    assert view.kind == "insertion"
    assert view.status is WorkflowStatus.AWAITING_CHOICE
    assert view.comparison.opponent.title == "Metroid"
    assert not view.can_undo

    view = await resolve_comparison(view.handle_id, False)
    assert view.comparison.opponent.title == "Celeste"
    assert view.can_undo

    view = await resolve_comparison(view.handle_id, True)
    assert view.status is WorkflowStatus.COMPLETE
    assert view.comparison is None
    assert view.terminal.final_position == 3
    assert view.placed.position == 3
    assert view.progress == Progress(current=1, total=1)

    titles = [r.title for r in await list_rankings(USER, store=store)]
    assert titles == ["Zelda", "Metroid", "Hades", "Celeste"]


@pytest.mark.asyncio
async def test_insertion_into_empty_list_is_immediate(store, candidate):
    view = await begin_insertion(USER, candidate("Hades"), store=store)

    assert view.status is WorkflowStatus.COMPLETE
    assert view.terminal.final_position == 1
    assert view.placed == RankedItem(item_id="hades", position=1, title="Hades")


@pytest.mark.asyncio
async def test_insertion_undo(store, candidate):
    store.seed_ranked(USER, ["Zelda", "Metroid", "Celeste"])
    view = await begin_insertion(USER, candidate("Hades"), store=store)

    with pytest.raises(WorkflowLevelUndoRequired) as exc_info:
        await undo(view.handle_id)
    assert exc_info.value.detail == {"handle": view.handle_id}

    await resolve_comparison(view.handle_id, False)
    view = await undo(view.handle_id)
    assert view.comparison.opponent.title == "Metroid"

    with pytest.raises(InvalidSessionState):
        await undo_last(view.handle_id)


@pytest.mark.asyncio
async def test_cancel_drops_handle(store, candidate):
    store.seed_ranked(USER, ["Zelda"])
    view = await begin_insertion(USER, candidate("Hades"), store=store)

    view = await cancel(view.handle_id)

    assert view.status is WorkflowStatus.CANCELLED
    with pytest.raises(HandleNotFound):
        await current_comparison(view.handle_id)
    assert store.writes == []


@pytest.mark.asyncio
async def test_store_failure_is_tagged_and_retryable(flaky_store, candidate):
    flaky_store.seed_ranked(USER, ["Zelda"])
    view = await begin_insertion(USER, candidate("Hades"), store=flaky_store)
    flaky_store.down = True

    with pytest.raises(StoreUnavailable) as exc_info:
        await resolve_comparison(view.handle_id, True)
    assert exc_info.value.detail["handle"] == view.handle_id

    view = await current_comparison(view.handle_id)
    assert view.status is WorkflowStatus.FAILED
    assert view.error.code == "STORE_UNAVAILABLE"
    assert view.terminal.final_position == 1

    flaky_store.heal()
    view = await retry(view.handle_id)

    assert view.status is WorkflowStatus.COMPLETE
    assert view.error is None
    assert [r.title for r in await list_rankings(USER, store=flaky_store)] == ["Hades", "Zelda"]


@pytest.mark.asyncio
async def test_batch_operations(store, candidate):
    store.seed_ranked(USER, ["Zelda"])
    with pytest.raises(InvalidSessionState):
        await begin_batch(USER, [], store=store)

    view = await begin_batch(USER, [candidate("Hades"), candidate("Celeste")], store=store)
    assert view.result.total == 2
    assert await progress(view.handle_id) == Progress(current=1, total=2)

    view = await skip(view.handle_id)
    assert view.comparison.candidate.item_id == "celeste"
    assert view.result.skipped == 1

    view = await resolve_comparison(view.handle_id, False)
    assert view.status is WorkflowStatus.COMPLETE
    assert view.result.placed == 1
    assert view.can_undo

    view = await undo_last(view.handle_id)
    assert view.status is WorkflowStatus.AWAITING_CHOICE
    assert view.comparison.candidate.item_id == "celeste"
    assert [r.title for r in await list_rankings(USER, store=store)] == ["Zelda"]


@pytest.mark.asyncio
async def test_skip_is_batch_only(store, candidate):
    store.seed_ranked(USER, ["Zelda"])
    view = await begin_insertion(USER, candidate("Hades"), store=store)
    with pytest.raises(HandleNotFound):
        await skip(view.handle_id)


@pytest.mark.asyncio
async def test_rebuild_operations(store, oracle):
    store.seed_ranked(USER, ["B", "A"])
    choose = oracle(["A", "B"])

    view = await begin_rebuild(USER, store=store)
    assert view.kind == "rebuild"
    assert view.comparison.opponent.item_id in {"a", "b"}

    view = await resolve_comparison(view.handle_id, choose(view.comparison.candidate, view.comparison.opponent))

    assert view.status is WorkflowStatus.COMPLETE
    assert view.progress == Progress(current=2, total=2)
    assert [r.title for r in await list_rankings(USER, store=store)] == ["A", "B"]


@pytest.mark.asyncio
async def test_remove_and_verify(store):
    store.seed_ranked(USER, ["A", "B", "C"])

    items = await remove_ranked_item(USER, "a", store=store)

    assert [(r.title, r.position) for r in items] == [("B", 1), ("C", 2)]
    assert len(await verify_rankings(USER, store=store)) == 2
