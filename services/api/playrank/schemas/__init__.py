"""Pydantic schemas for API request/response validation."""

from playrank.schemas.common import ErrorDetail, ErrorResponse, error_content
from playrank.schemas.ranking import (
    BatchResultOut,
    BeginBatchRequest,
    BeginInsertionRequest,
    BeginRebuildRequest,
    ChoiceRequest,
    ComparisonOut,
    HandleOut,
    ItemIn,
    ItemOut,
    ProgressOut,
    RankingListResponse,
    TerminalOut,
    VerifyResponse,
)

__all__ = [
    "ErrorDetail",
    "ErrorResponse",
    "error_content",
    "BatchResultOut",
    "BeginBatchRequest",
    "BeginInsertionRequest",
    "BeginRebuildRequest",
    "ChoiceRequest",
    "ComparisonOut",
    "HandleOut",
    "ItemIn",
    "ItemOut",
    "ProgressOut",
    "RankingListResponse",
    "TerminalOut",
    "VerifyResponse",
]
