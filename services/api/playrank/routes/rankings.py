"""Ranked list endpoints.

GET    /v1/rankings/{user_id}                  - the user's ordered list
DELETE /v1/rankings/{user_id}/items/{item_id}  - remove an item, closing the gap
GET    /v1/rankings/{user_id}/verify           - check positions are exactly 1..N
"""

from fastapi import APIRouter, Path

from playrank.schemas import RankingListResponse, VerifyResponse
from playrank.services.errors import InvariantViolation
from playrank.services.ranking import list_rankings, remove_ranked_item, verify_rankings

router = APIRouter()


@router.get("/{user_id}", response_model=RankingListResponse)
async def get_rankings(
    user_id: str = Path(min_length=1, max_length=64, description="Owner of the list"),
) -> RankingListResponse:
    """Get the user's ranked items, #1 first."""
    items = await list_rankings(user_id)
    return RankingListResponse.from_items(user_id, items)


@router.delete("/{user_id}/items/{item_id}", response_model=RankingListResponse)
async def delete_ranked_item(
    user_id: str = Path(min_length=1, max_length=64),
    item_id: str = Path(min_length=1, max_length=100),
) -> RankingListResponse:
    """Remove an item; everything ranked below it moves up one place."""
    items = await remove_ranked_item(user_id, item_id)
    return RankingListResponse.from_items(user_id, items)


@router.get("/{user_id}/verify", response_model=VerifyResponse)
async def verify(user_id: str = Path(min_length=1, max_length=64)) -> VerifyResponse:
    """Report whether the list has gaps or duplicate positions."""
    try:
        items = await verify_rankings(user_id)
    except InvariantViolation as e:
        actual = (e.detail or {}).get("actual", [])
        return VerifyResponse(user_id=user_id, ok=False, count=len(actual), positions=actual)
    return VerifyResponse(user_id=user_id, ok=True, count=len(items), positions=[i.position for i in items])
