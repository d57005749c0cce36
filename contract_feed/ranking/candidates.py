"""
Candidate retrieval — six scored query shapes over one shared base.

Base (every topical shape)
  contracts joined through the user's interest topics, open and public,
  minus the ExclusionSet. Each row carries the user's score for the topic
  it came through as `topic_score`.

  Shape       │ extra filter                 │ order (desc)
  ────────────┼──────────────────────────────┼──────────────────────────────
  conversion  │ not yet viewed               │ topic × conversion
  importance  │ not yet viewed               │ topic × importance
  freshness   │ not yet viewed               │ topic × freshness
  followed    │ creator is followed          │ conversion
  sponsored   │ in ad auction slate          │ topic × conversion × bid
  repost      │ (separate statement)         │ repost time

Reposts are not topical: they come from followed users in the last week
and skip topic weighting (topic_score is fixed at 1).
"""
import math
from dataclasses import dataclass
from datetime import datetime, timedelta
from enum import Enum
from typing import Optional

from sqlalchemy import ColumnElement, Select, exists, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from contract_feed.models import (
    Contract,
    ContractBet,
    ContractComment,
    GroupContract,
    Repost,
    UserContractView,
)
from contract_feed.ranking.ads import ad_auction_subquery
from contract_feed.ranking.filters import (
    ExclusionSet,
    by_followed_creators,
    followed_user_ids,
    in_topics,
    interest_weight,
    is_open_and_public,
    not_yet_viewed,
)
from contract_feed.ranking.interest_store import InterestProfile
from contract_feed.schemas import BetOut, CommentOut, ContractOut, RepostOut

DAY_SECONDS = 86400


class Shape(str, Enum):
    CONVERSION = "conversion"
    IMPORTANCE = "importance"
    FRESHNESS = "freshness"
    FOLLOWED = "followed"
    SPONSORED = "sponsored"
    REPOST = "repost"


DISCOVERY_ORDER = {
    Shape.CONVERSION: Contract.conversion_score,
    Shape.IMPORTANCE: Contract.importance_score,
    Shape.FRESHNESS: Contract.freshness_score,
}


@dataclass
class ScoredCandidate:
    contract: ContractOut
    topic_score: float
    shape: Shape
    ad_id: Optional[str] = None
    comment: Optional[CommentOut] = None
    bet: Optional[BetOut] = None
    repost: Optional[RepostOut] = None

    @property
    def composite_score(self) -> float:
        c = self.contract
        return (
            self.topic_score
            * c.conversion_score
            * c.importance_score
            * c.freshness_score
        )


@dataclass
class FeedWindow:
    """Per-request inputs shared by every shape."""
    profile: InterestProfile
    exclusions: ExclusionSet
    now: datetime
    limit: int
    offset: int = 0

    @property
    def user_id(self) -> str:
        return self.exclusions.user_id


class CandidateQuery:
    """Accumulates joins, predicates and ordering on top of the topical base."""

    def __init__(self, window: FeedWindow) -> None:
        self.window = window
        self.interest = interest_weight(window.profile)
        self._columns: list = [Contract, self.interest.label("topic_score")]
        self._joins: list[tuple] = []
        self._where: list[ColumnElement[bool]] = [
            in_topics(window.profile),
            is_open_and_public(window.now),
            *window.exclusions.predicates(),
        ]
        self._order_by: list = []

    def join(self, target, onclause, *columns) -> "CandidateQuery":
        self._joins.append((target, onclause))
        self._columns.extend(columns)
        return self

    def where(self, *clauses: ColumnElement[bool]) -> "CandidateQuery":
        self._where.extend(clauses)
        return self

    def order_by(self, *keys) -> "CandidateQuery":
        self._order_by.extend(keys)
        return self

    def statement(self) -> Select:
        stmt = (
            select(*self._columns)
            .select_from(GroupContract)
            .join(Contract, Contract.id == GroupContract.contract_id)
        )
        for target, onclause in self._joins:
            stmt = stmt.join(target, onclause)
        return (
            stmt.where(*self._where)
            .order_by(*self._order_by)
            .limit(self.window.limit)
            .offset(self.window.offset)
        )


# ─────────────────────────── Statements ───────────────────────────────────

def discovery_statement(window: FeedWindow, shape: Shape) -> Select:
    query = CandidateQuery(window)
    return (
        query.where(not_yet_viewed(window.user_id))
        .order_by((query.interest * DISCOVERY_ORDER[shape]).desc())
        .statement()
    )


def followed_statement(window: FeedWindow) -> Select:
    return (
        CandidateQuery(window)
        .where(by_followed_creators(window.user_id))
        .order_by(Contract.conversion_score.desc())
        .statement()
    )


def sponsored_statement(window: FeedWindow, slate_size: int) -> Select:
    ads = ad_auction_subquery(window.user_id, window.now, slate_size)
    query = CandidateQuery(window).join(
        ads, ads.c.market_id == Contract.id, ads.c.id.label("ad_id")
    )
    return query.order_by(
        (query.interest * Contract.conversion_score * ads.c.cost_per_view).desc()
    ).statement()


def repost_statement(window: FeedWindow, repost_window_days: int) -> Select:
    since = window.now - timedelta(days=repost_window_days)
    seen_since_repost = exists().where(
        UserContractView.user_id == window.user_id,
        UserContractView.contract_id == Repost.contract_id,
        or_(
            UserContractView.last_card_view_ts >= Repost.created_time,
            UserContractView.last_page_view_ts >= Repost.created_time,
        ),
    )
    return (
        select(Repost, Contract, ContractComment, ContractBet)
        .select_from(Repost)
        .join(Contract, Contract.id == Repost.contract_id)
        .join(ContractComment, ContractComment.comment_id == Repost.contract_comment_id)
        .outerjoin(ContractBet, ContractBet.bet_id == ContractComment.bet_id)
        .where(
            Repost.user_id.in_(followed_user_ids(window.user_id)),
            Repost.created_time > since,
            is_open_and_public(window.now),
            ~seen_since_repost,
            *window.exclusions.predicates(),
        )
        .order_by(Repost.created_time.desc())
        .limit(window.limit)
        .offset(window.offset)
    )


# ─────────────────────────── Execution ────────────────────────────────────

async def fetch_topical(
    session: AsyncSession, stmt: Select, shape: Shape
) -> list[ScoredCandidate]:
    rows = await session.execute(stmt)
    return [
        ScoredCandidate(
            contract=ContractOut.model_validate(row.Contract),
            topic_score=float(row.topic_score or 0.0),
            shape=shape,
            ad_id=getattr(row, "ad_id", None),
        )
        for row in rows.all()
    ]


def elapsed_days(since: datetime, now: datetime) -> int:
    """Whole days between two instants, rounded, never below 1."""
    days = (now - since).total_seconds() / DAY_SECONDS
    return max(math.floor(days + 0.5), 1)


async def fetch_reposts(
    session: AsyncSession, stmt: Select, now: datetime
) -> list[ScoredCandidate]:
    rows = await session.execute(stmt)
    candidates = []
    for repost, contract, comment, bet in rows.all():
        days = elapsed_days(repost.created_time, now)
        snapshot = ContractOut.model_validate(contract).model_copy(
            update={
                "importance_score": (contract.importance_score + comment.likes) / days,
                "freshness_score": (contract.freshness_score + 1) / days,
            }
        )
        candidates.append(
            ScoredCandidate(
                contract=snapshot,
                # TODO: rank reposts by the user's topic interest as well
                topic_score=1.0,
                shape=Shape.REPOST,
                comment=CommentOut.model_validate(comment),
                bet=BetOut.model_validate(bet) if bet is not None else None,
                repost=RepostOut.model_validate(repost),
            )
        )
    return candidates
