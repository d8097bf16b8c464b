"""Batch insertion endpoints (onboarding, "rank a friend's games").

POST   /v1/batches                 - start placing a list of items, one at a time
GET    /v1/batches/{handle}        - current comparison and progress
POST   /v1/batches/{handle}/choice - answer the comparison
POST   /v1/batches/{handle}/undo   - undo the last comparison, or the last placement
POST   /v1/batches/{handle}/skip   - leave the current item unranked
POST   /v1/batches/{handle}/retry  - retry a failed save
DELETE /v1/batches/{handle}        - cancel
"""

from fastapi import APIRouter, Query

from playrank.schemas import BeginBatchRequest, ChoiceRequest, HandleOut
from playrank.services.ranking import (
    begin_batch,
    cancel,
    current_comparison,
    resolve_comparison,
    retry,
    skip,
    undo_last,
)

router = APIRouter()


@router.post("", response_model=HandleOut, status_code=201)
async def start_batch(request: BeginBatchRequest) -> HandleOut:
    view = await begin_batch(request.user_id, [item.to_candidate() for item in request.items])
    return HandleOut.from_view(view)


@router.get("/{handle}", response_model=HandleOut)
async def get_batch(handle: str) -> HandleOut:
    return HandleOut.from_view(await current_comparison(handle, kind="batch"))


@router.post("/{handle}/choice", response_model=HandleOut)
async def choose(handle: str, request: ChoiceRequest) -> HandleOut:
    return HandleOut.from_view(await resolve_comparison(handle, request.candidate_won, kind="batch"))


@router.post("/{handle}/undo", response_model=HandleOut)
async def undo_step(handle: str) -> HandleOut:
    """Undo the last comparison; with none left, un-place the previous item."""
    return HandleOut.from_view(await undo_last(handle, kind="batch"))


@router.post("/{handle}/skip", response_model=HandleOut)
async def skip_item(
    handle: str,
    force: bool = Query(default=False, description="Skip even if a save is half applied"),
) -> HandleOut:
    return HandleOut.from_view(await skip(handle, force=force))


@router.post("/{handle}/retry", response_model=HandleOut)
async def retry_save(handle: str) -> HandleOut:
    return HandleOut.from_view(await retry(handle, kind="batch"))


@router.delete("/{handle}", response_model=HandleOut)
async def cancel_batch(handle: str, force: bool = Query(default=False)) -> HandleOut:
    return HandleOut.from_view(await cancel(handle, force=force, kind="batch"))
