"""Schemas for ranking sessions, batches, rebuilds and ranked lists."""

from __future__ import annotations

from dataclasses import asdict
from typing import Literal

from pydantic import BaseModel, Field, field_validator

from playrank.schemas.common import ErrorDetail
from playrank.services.comparison_policy import Terminal
from playrank.services.ranking import HandleView
from playrank.services.types import CandidateItem, Comparison, RankedItem


class ItemIn(BaseModel):
    """An item to place (a game in the user's library)."""

    item_id: str = Field(alias="itemId", min_length=1, max_length=100)
    title: str = Field(min_length=1, max_length=300)
    cover_url: str | None = Field(alias="coverUrl", default=None)
    external_id: str | None = Field(alias="externalId", default=None, max_length=100)

    model_config = {"populate_by_name": True}

    def to_candidate(self) -> CandidateItem:
        return CandidateItem(
            item_id=self.item_id,
            title=self.title,
            cover_url=self.cover_url,
            external_id=self.external_id,
        )


def _reject_duplicate_ids(items: list[ItemIn] | None) -> list[ItemIn] | None:
    if items is None:
        return items
    seen: set[str] = set()
    for item in items:
        if item.item_id in seen:
            raise ValueError(f"duplicate itemId: {item.item_id}")
        seen.add(item.item_id)
    return items


class ItemOut(BaseModel):
    """A ranked item, or an unranked one (position null) during a rebuild bootstrap."""

    item_id: str = Field(alias="itemId")
    title: str
    cover_url: str | None = Field(alias="coverUrl", default=None)
    external_id: str | None = Field(alias="externalId", default=None)
    position: int | None = Field(default=None, ge=1)

    model_config = {"populate_by_name": True}

    @classmethod
    def from_item(cls, item: RankedItem | CandidateItem) -> ItemOut:
        return cls(
            item_id=item.item_id,
            title=item.title,
            cover_url=item.cover_url,
            external_id=item.external_id,
            position=item.position if isinstance(item, RankedItem) else None,
        )


class ComparisonOut(BaseModel):
    """The pending head-to-head: did the candidate beat the opponent?"""

    candidate: ItemOut
    opponent: ItemOut
    comparison_count: int = Field(alias="comparisonCount", ge=0)
    estimated_total: int = Field(alias="estimatedTotal", ge=1)

    model_config = {"populate_by_name": True}

    @classmethod
    def from_comparison(cls, comparison: Comparison) -> ComparisonOut:
        return cls(
            candidate=ItemOut.from_item(comparison.candidate),
            opponent=ItemOut.from_item(comparison.opponent),
            comparison_count=comparison.comparison_count,
            estimated_total=comparison.estimated_total,
        )


class TerminalOut(BaseModel):
    final_position: int = Field(alias="finalPosition", ge=1)
    approximate: bool = False

    model_config = {"populate_by_name": True}

    @classmethod
    def from_terminal(cls, terminal: Terminal) -> TerminalOut:
        return cls(final_position=terminal.final_position, approximate=terminal.approximate)


class ProgressOut(BaseModel):
    current: int = Field(ge=0)
    total: int = Field(ge=0)


class BatchResultOut(BaseModel):
    total: int
    placed: int
    skipped: int
    failed: int


class HandleOut(BaseModel):
    """State of an insertion, batch or rebuild after the last step.

    `comparison` is set while a choice is awaited. `terminal` is set once
    the item's final position is decided (being saved, or saved).
    """

    handle: str
    kind: Literal["insertion", "batch", "rebuild"]
    user_id: str = Field(alias="userId")
    status: str
    comparison: ComparisonOut | None = None
    terminal: TerminalOut | None = None
    progress: ProgressOut
    can_undo: bool = Field(alias="canUndo")
    placed: ItemOut | None = None
    result: BatchResultOut | None = None
    error: ErrorDetail | None = None

    model_config = {"populate_by_name": True}

    @classmethod
    def from_view(cls, view: HandleView) -> HandleOut:
        error = None
        if view.error is not None:
            error = ErrorDetail(code=view.error.code, message=view.error.user_message)
        return cls(
            handle=view.handle_id,
            kind=view.kind,
            user_id=view.user_id,
            status=view.status.value,
            comparison=ComparisonOut.from_comparison(view.comparison) if view.comparison else None,
            terminal=TerminalOut.from_terminal(view.terminal) if view.terminal else None,
            progress=ProgressOut(current=view.progress.current, total=view.progress.total),
            can_undo=view.can_undo,
            placed=ItemOut.from_item(view.placed) if view.placed else None,
            result=BatchResultOut(**asdict(view.result)) if view.result else None,
            error=error,
        )


class BeginInsertionRequest(BaseModel):
    user_id: str = Field(alias="userId", min_length=1, max_length=64)
    item: ItemIn

    model_config = {"populate_by_name": True}


class BeginBatchRequest(BaseModel):
    user_id: str = Field(alias="userId", min_length=1, max_length=64)
    items: list[ItemIn] = Field(min_length=1, max_length=500)

    @field_validator("items")
    @classmethod
    def _unique_items(cls, v: list[ItemIn] | None) -> list[ItemIn] | None:
        return _reject_duplicate_ids(v)

    model_config = {"populate_by_name": True}


class BeginRebuildRequest(BaseModel):
    """Start a rebuild over all of the user's items, or resume an interrupted one.

    Every item the store holds for the user is rebuilt. `items` adds new
    rows or refreshes the title and cover of stored ones.
    """

    user_id: str = Field(alias="userId", min_length=1, max_length=64)
    resume: bool = False
    items: list[ItemIn] | None = None

    @field_validator("items")
    @classmethod
    def _unique_items(cls, v: list[ItemIn] | None) -> list[ItemIn] | None:
        return _reject_duplicate_ids(v)

    model_config = {"populate_by_name": True}


class ChoiceRequest(BaseModel):
    candidate_won: bool = Field(alias="candidateWon")

    model_config = {"populate_by_name": True}


class RankingListResponse(BaseModel):
    user_id: str = Field(alias="userId")
    count: int = Field(ge=0)
    items: list[ItemOut]

    model_config = {"populate_by_name": True}

    @classmethod
    def from_items(cls, user_id: str, items: list[RankedItem]) -> RankingListResponse:
        return cls(user_id=user_id, count=len(items), items=[ItemOut.from_item(i) for i in items])


class VerifyResponse(BaseModel):
    user_id: str = Field(alias="userId")
    ok: bool
    count: int = Field(ge=0)
    positions: list[int] = Field(default_factory=list)

    model_config = {"populate_by_name": True}
