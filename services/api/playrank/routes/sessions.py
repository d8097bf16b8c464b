"""Single insertion endpoints.

POST   /v1/sessions                 - start placing one item
GET    /v1/sessions/{handle}        - current comparison (or final position)
POST   /v1/sessions/{handle}/choice - answer the comparison
POST   /v1/sessions/{handle}/undo   - step back one comparison
POST   /v1/sessions/{handle}/retry  - retry a failed save
DELETE /v1/sessions/{handle}        - cancel

Routers are thin: call services for business logic.
"""

from fastapi import APIRouter, Query

from playrank.schemas import BeginInsertionRequest, ChoiceRequest, HandleOut
from playrank.services.ranking import (
    begin_insertion,
    cancel,
    current_comparison,
    resolve_comparison,
    retry,
    undo,
)

router = APIRouter()


@router.post("", response_model=HandleOut, status_code=201)
async def start_session(request: BeginInsertionRequest) -> HandleOut:
    """Start placing `item` into the user's list.

    An empty list places it at #1 immediately (status "complete").
    """
    view = await begin_insertion(request.user_id, request.item.to_candidate())
    return HandleOut.from_view(view)


@router.get("/{handle}", response_model=HandleOut)
async def get_session(handle: str) -> HandleOut:
    return HandleOut.from_view(await current_comparison(handle, kind="insertion"))


@router.post("/{handle}/choice", response_model=HandleOut)
async def choose(handle: str, request: ChoiceRequest) -> HandleOut:
    """Record whether the candidate beat the opponent shown."""
    return HandleOut.from_view(await resolve_comparison(handle, request.candidate_won, kind="insertion"))


@router.post("/{handle}/undo", response_model=HandleOut)
async def undo_choice(handle: str) -> HandleOut:
    return HandleOut.from_view(await undo(handle, kind="insertion"))


@router.post("/{handle}/retry", response_model=HandleOut)
async def retry_save(handle: str) -> HandleOut:
    return HandleOut.from_view(await retry(handle, kind="insertion"))


@router.delete("/{handle}", response_model=HandleOut)
async def cancel_session(
    handle: str,
    force: bool = Query(default=False, description="Cancel even if a save is half applied"),
) -> HandleOut:
    return HandleOut.from_view(await cancel(handle, force=force, kind="insertion"))
