"""Tests for the rebuild workflow."""

import random

import pytest

from playrank.services.comparison_policy import ComparisonPolicy
from playrank.services.errors import InvariantViolation, StoreUnavailable
from playrank.services.rebuild import RebuildCompleted, RebuildWorkflow
from playrank.services.types import CandidateItem, Progress, RankedItem, is_contiguous
from playrank.services.workflow import WorkflowStatus
from playrank.stores.memory import InMemoryOrderedStore

USER = "user-1"


async def _drive(workflow: RebuildWorkflow, choose) -> int:
    """Answer comparisons until the workflow stops asking. Returns how many were asked."""
    asked = 0
    while workflow.status is WorkflowStatus.AWAITING_CHOICE:
        comparison = workflow.current_comparison()
        await workflow.resolve(choose(comparison.candidate, comparison.opponent))
        asked += 1
    return asked


async def _titles(store) -> list[str]:
    return [r.title for r in await store.fetch_ranked_items(USER)]


@pytest.mark.asyncio
@pytest.mark.parametrize("seed", range(10))
async def test_bootstrap_symmetry(oracle, seed: int):
    store = InMemoryOrderedStore()
    store.seed_ranked(USER, ["B", "A"])
    workflow = RebuildWorkflow(store, USER, rng=random.Random(seed))

    await workflow.start()
    assert workflow.in_bootstrap
    asked = await _drive(workflow, oracle(["A", "B"]))

    assert asked == 1
    assert workflow.status is WorkflowStatus.COMPLETE
    assert await _titles(store) == ["A", "B"]


@pytest.mark.asyncio
@pytest.mark.parametrize("seed", range(5))
async def test_rebuild_is_idempotent(oracle, seed: int):
    titles = ["Zelda", "Metroid", "Hades", "Celeste", "Doom", "Tetris", "Portal", "Myst"]
    store = InMemoryOrderedStore()
    store.seed_ranked(USER, titles)
    policy = ComparisonPolicy()
    workflow = RebuildWorkflow(store, USER, policy=policy, rng=random.Random(seed))

    await workflow.start()
    asked = await _drive(workflow, oracle(titles))

    assert await _titles(store) == titles
    assert asked <= 1 + sum(policy.budget(k) for k in range(2, len(titles)))


@pytest.mark.asyncio
@pytest.mark.parametrize("seed", range(5))
async def test_rebuild_recovers_true_order(oracle, seed: int):
    rng = random.Random(seed)
    titles = [f"Game {i}" for i in range(12)]
    store = InMemoryOrderedStore()
    store.seed_ranked(USER, titles)
    truth = list(titles)
    rng.shuffle(truth)

    workflow = RebuildWorkflow(store, USER, rng=rng)
    await workflow.start()
    await _drive(workflow, oracle(truth))

    ranked = await store.fetch_ranked_items(USER)
    assert is_contiguous(ranked)
    assert [r.title for r in ranked] == truth
    assert workflow.progress() == Progress(current=12, total=12)


@pytest.mark.asyncio
async def test_fresh_rebuild_clears_positions(store):
    store.seed_ranked(USER, ["A", "B", "C"])
    workflow = RebuildWorkflow(store, USER, rng=random.Random(0))

    await workflow.start()

    assert store.positions(USER) == {"a": None, "b": None, "c": None}
    assert workflow.progress() == Progress(current=1, total=3)


@pytest.mark.asyncio
async def test_single_item_needs_no_comparison(store):
    store.seed_ranked(USER, ["Zelda"])
    events: list[RebuildCompleted] = []
    workflow = RebuildWorkflow(store, USER)
    workflow.add_completion_listener(events.append)

    await workflow.start()

    assert workflow.status is WorkflowStatus.COMPLETE
    assert store.positions(USER) == {"zelda": 1}
    assert events == [RebuildCompleted(user_id=USER, total=1)]


@pytest.mark.asyncio
async def test_empty_rebuild_completes(store):
    events: list[RebuildCompleted] = []
    workflow = RebuildWorkflow(store, USER)
    workflow.add_completion_listener(events.append)

    await workflow.start()

    assert workflow.status is WorkflowStatus.COMPLETE
    assert events == [RebuildCompleted(user_id=USER, total=0)]


@pytest.mark.asyncio
async def test_completion_emitted_once(store, oracle):
    store.seed_ranked(USER, ["A", "B", "C"])
    events: list[RebuildCompleted] = []
    workflow = RebuildWorkflow(store, USER, rng=random.Random(3))
    workflow.add_completion_listener(events.append)

    await workflow.start()
    await _drive(workflow, oracle(["A", "B", "C"]))
    workflow._complete()

    assert events == [RebuildCompleted(user_id=USER, total=3)]


@pytest.mark.asyncio
async def test_undo_bootstrap_unranks_both(store, oracle):
    store.seed_ranked(USER, ["A", "B", "C"])
    workflow = RebuildWorkflow(store, USER, rng=random.Random(1))
    await workflow.start()
    first = workflow.current_comparison()
    pair = (first.candidate.item_id, first.opponent.item_id)

    choose = oracle(["A", "B", "C"])
    await workflow.resolve(choose(first.candidate, first.opponent))
    assert not workflow.in_bootstrap
    assert len(await store.fetch_ranked_items(USER)) == 2

    await workflow.undo()

    assert workflow.in_bootstrap
    again = workflow.current_comparison()
    assert (again.candidate.item_id, again.opponent.item_id) == pair
    assert store.positions(USER) == {"a": None, "b": None, "c": None}
    assert not workflow.can_undo


@pytest.mark.asyncio
async def test_undo_unplaces_previous_item(store, oracle):
    store.seed_ranked(USER, ["A", "B", "C", "D"])
    choose = oracle(["A", "B", "C", "D"])
    workflow = RebuildWorkflow(store, USER, rng=random.Random(5))
    await workflow.start()
    pair = {workflow.queue[0].item_id, workflow.queue[1].item_id}
    third = workflow.queue[2]

    comparison = workflow.current_comparison()
    await workflow.resolve(choose(comparison.candidate, comparison.opponent))
    while workflow.index == 2:
        comparison = workflow.current_comparison()
        await workflow.resolve(choose(comparison.candidate, comparison.opponent))
    assert len(await store.fetch_ranked_items(USER)) == 3
    assert not workflow.session.can_undo

    await workflow.undo()

    ranked = await store.fetch_ranked_items(USER)
    assert {r.item_id for r in ranked} == pair
    assert is_contiguous(ranked)
    assert store.positions(USER)[third.item_id] is None
    assert workflow.current_comparison().candidate == third
    assert workflow.progress() == Progress(current=3, total=4)

    await _drive(workflow, choose)
    assert await _titles(store) == ["A", "B", "C", "D"]


@pytest.mark.asyncio
async def test_resume_continues_after_ranked_prefix(store, oracle):
    store.seed(
        USER,
        [
            RankedItem("a", 1, "A"),
            RankedItem("b", 2, "B"),
            CandidateItem("c", "C"),
            CandidateItem("d", "D"),
        ],
    )
    workflow = RebuildWorkflow(store, USER, rng=random.Random(2))

    await workflow.start(resuming=True)

    assert workflow.index == 2
    assert workflow.progress() == Progress(current=3, total=4)
    assert workflow.current_comparison().candidate.item_id in {"c", "d"}

    await _drive(workflow, oracle(["A", "C", "B", "D"]))
    assert await _titles(store) == ["A", "C", "B", "D"]


@pytest.mark.asyncio
async def test_resume_without_ranked_rows_starts_with_bootstrap(store):
    store.seed(USER, [CandidateItem("x", "X"), CandidateItem("y", "Y")])
    workflow = RebuildWorkflow(store, USER)

    await workflow.start(resuming=True)

    assert workflow.in_bootstrap


@pytest.mark.asyncio
async def test_resume_with_everything_ranked_completes(store):
    store.seed_ranked(USER, ["A", "B"])
    events: list[RebuildCompleted] = []
    workflow = RebuildWorkflow(store, USER)
    workflow.add_completion_listener(events.append)

    await workflow.start(resuming=True)

    assert workflow.status is WorkflowStatus.COMPLETE
    assert await _titles(store) == ["A", "B"]
    assert len(events) == 1


@pytest.mark.asyncio
async def test_resume_refuses_damaged_prefix(store):
    store.seed(USER, [RankedItem("a", 1, "A"), RankedItem("c", 3, "C")])
    workflow = RebuildWorkflow(store, USER)

    with pytest.raises(InvariantViolation):
        await workflow.start(resuming=True)


@pytest.mark.asyncio
async def test_failed_bootstrap_is_retried(flaky_store, oracle):
    flaky_store.seed_ranked(USER, ["A", "B", "C"])
    workflow = RebuildWorkflow(flaky_store, USER, rng=random.Random(4))
    await workflow.start()
    comparison = workflow.current_comparison()
    flaky_store.down = True

    with pytest.raises(StoreUnavailable):
        await workflow.resolve(oracle(["A", "B", "C"])(comparison.candidate, comparison.opponent))

    assert workflow.status is WorkflowStatus.FAILED
    assert not workflow.save_in_flight

    flaky_store.heal()
    await workflow.retry()

    assert workflow.status is WorkflowStatus.AWAITING_CHOICE
    assert len(await flaky_store.fetch_ranked_items(USER)) == 2
    await _drive(workflow, oracle(["A", "B", "C"]))
    assert [r.title for r in await flaky_store.fetch_ranked_items(USER)] == ["A", "B", "C"]


@pytest.mark.asyncio
async def test_listed_items_never_drop_stored_ones(store, oracle):
    store.seed_ranked(USER, ["A", "B", "C"])
    listed = [CandidateItem(item_id="a", title="A"), CandidateItem(item_id="b", title="B")]
    workflow = RebuildWorkflow(store, USER, listed, rng=random.Random(0))

    await workflow.start()
    await _drive(workflow, oracle(["A", "B", "C"]))

    assert workflow.status is WorkflowStatus.COMPLETE
    assert store.positions(USER) == {"a": 1, "b": 2, "c": 3}


@pytest.mark.asyncio
async def test_listed_items_add_new_rows_once(store, oracle):
    store.seed_ranked(USER, ["A"])
    new = CandidateItem(item_id="b", title="B", cover_url="https://img.example/b.jpg")
    workflow = RebuildWorkflow(store, USER, [new, new], rng=random.Random(0))

    await workflow.start()
    assert len(workflow.queue) == 2
    await _drive(workflow, oracle(["B", "A"]))

    ranked = await store.fetch_ranked_items(USER)
    assert [r.item_id for r in ranked] == ["b", "a"]
    assert ranked[0].cover_url == "https://img.example/b.jpg"
