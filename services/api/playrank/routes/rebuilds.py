"""Rebuild endpoints: re-rank a user's whole list from scratch.

POST   /v1/rebuilds                 - start (or resume) a rebuild
GET    /v1/rebuilds/{handle}        - current comparison and progress
POST   /v1/rebuilds/{handle}/choice - answer the comparison
POST   /v1/rebuilds/{handle}/undo   - undo the last comparison, or the last placed item
POST   /v1/rebuilds/{handle}/retry  - retry a failed save
DELETE /v1/rebuilds/{handle}        - cancel (rows without a position stay unranked)

During the opening head-to-head both items are unranked, so the
comparison's `opponent.position` is null and `candidateWon` means the
first item won.
"""

from fastapi import APIRouter, Query

from playrank.schemas import BeginRebuildRequest, ChoiceRequest, HandleOut
from playrank.services.ranking import (
    begin_rebuild,
    cancel,
    current_comparison,
    resolve_comparison,
    retry,
    undo_last,
)

router = APIRouter()


@router.post("", response_model=HandleOut, status_code=201)
async def start_rebuild(request: BeginRebuildRequest) -> HandleOut:
    """Start a rebuild.

    With `resume=false` every position of the user is cleared first.
    With `resume=true` the rows that still have a position are kept as the
    rebuilt prefix and the rest are queued after them.
    """
    items = [item.to_candidate() for item in request.items] if request.items is not None else None
    view = await begin_rebuild(request.user_id, resume=request.resume, items=items)
    return HandleOut.from_view(view)


@router.get("/{handle}", response_model=HandleOut)
async def get_rebuild(handle: str) -> HandleOut:
    return HandleOut.from_view(await current_comparison(handle, kind="rebuild"))


@router.post("/{handle}/choice", response_model=HandleOut)
async def choose(handle: str, request: ChoiceRequest) -> HandleOut:
    return HandleOut.from_view(await resolve_comparison(handle, request.candidate_won, kind="rebuild"))


@router.post("/{handle}/undo", response_model=HandleOut)
async def undo_step(handle: str) -> HandleOut:
    return HandleOut.from_view(await undo_last(handle, kind="rebuild"))


@router.post("/{handle}/retry", response_model=HandleOut)
async def retry_save(handle: str) -> HandleOut:
    return HandleOut.from_view(await retry(handle, kind="rebuild"))


@router.delete("/{handle}", response_model=HandleOut)
async def cancel_rebuild(handle: str, force: bool = Query(default=False)) -> HandleOut:
    return HandleOut.from_view(await cancel(handle, force=force, kind="rebuild"))
