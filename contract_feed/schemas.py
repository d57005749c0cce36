"""
Pydantic request / response schemas for the API layer.
Kept separate from ORM models to avoid coupling transport to storage.
"""
from datetime import datetime
from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field


# ──────────────────────────── Contracts ───────────────────────────────────

class ContractOut(BaseModel):
    id: str
    creator_id: str
    question: str
    slug: Optional[str] = None
    visibility: str
    close_time: Optional[datetime] = None
    conversion_score: float
    importance_score: float
    freshness_score: float
    view_count: int = 0
    created_time: Optional[datetime] = None

    class Config:
        from_attributes = True


class AdOut(BaseModel):
    """A sponsored placement surfaced alongside the organic feed."""
    ad_id: str
    contract: ContractOut
    topic_score: float


# ──────────────────────────── Reposts ─────────────────────────────────────

class CommentOut(BaseModel):
    comment_id: str
    contract_id: str
    user_id: str
    content: str
    likes: int
    bet_id: Optional[str] = None
    created_time: Optional[datetime] = None

    class Config:
        from_attributes = True


class BetOut(BaseModel):
    bet_id: str
    contract_id: str
    user_id: str
    amount: float
    outcome: str
    created_time: Optional[datetime] = None

    class Config:
        from_attributes = True


class RepostOut(BaseModel):
    id: str
    user_id: str
    contract_id: str
    contract_comment_id: str
    created_time: datetime

    class Config:
        from_attributes = True


# ──────────────────────────── Feed ────────────────────────────────────────

class FeedReason(str, Enum):
    """Why a contract was surfaced. Declaration order is attribution priority."""
    FOLLOWED = "followed"
    CONVERSION = "conversion"
    IMPORTANCE = "importance"
    FRESHNESS = "freshness"
    NONE = ""


class FeedResponse(BaseModel):
    contracts: list[ContractOut]
    ids_to_reason: dict[str, FeedReason]
    ads: list[AdOut]
    comments: list[CommentOut]
    bets: list[BetOut]
    reposts: list[RepostOut]


# ──────────────────────────── Views ───────────────────────────────────────

class ViewKind(str, Enum):
    CARD = "card"
    PROMOTED = "promoted"
    PAGE = "page"


class ViewEvent(BaseModel):
    user_id: Optional[str] = None     # None = logged-out viewer
    contract_id: str = Field(..., min_length=1)
    kind: ViewKind


class ViewAck(BaseModel):
    status: str = "success"
