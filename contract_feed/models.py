"""
SQLAlchemy ORM models for TiDB.

The feed service owns none of these tables; they are written by the rest
of the platform and read here. The one exception is user_contract_views,
which the view ingestion queue upserts.

Tables:
  contracts                  — markets with precomputed ranking scores
  groups / group_contracts   — topics and their member contracts
  group_members              — topic follows
  user_follows               — user → creator follows
  user_disinterests          — "not interested" marks
  private_users              — block lists
  user_contract_views        — per (user, contract) view counters
  user_contract_interactions — engagement log (drives interest profiles)
  market_ads / txns          — sponsored placements and their redemptions
  reposts / contract_comments / contract_bets — social reposts
"""
import uuid
from datetime import datetime
from typing import Optional

from sqlalchemy import (
    JSON,
    DateTime,
    Float,
    Index,
    Integer,
    String,
    Text,
    func,
)
from sqlalchemy.orm import Mapped, mapped_column

from contract_feed.database import Base


def _uuid() -> str:
    return str(uuid.uuid4())


class Contract(Base):
    __tablename__ = "contracts"

    id: Mapped[str] = mapped_column(String(64), primary_key=True, default=_uuid)
    creator_id: Mapped[str] = mapped_column(String(64), nullable=False)
    question: Mapped[str] = mapped_column(Text, nullable=False, default="")
    slug: Mapped[Optional[str]] = mapped_column(String(255))
    visibility: Mapped[str] = mapped_column(String(20), default="public", nullable=False)
    close_time: Mapped[Optional[datetime]] = mapped_column(DateTime)
    # Scores are computed by an offline job; the feed only reads them.
    conversion_score: Mapped[float] = mapped_column(Float, default=0.0, nullable=False)
    importance_score: Mapped[float] = mapped_column(Float, default=0.0, nullable=False)
    freshness_score: Mapped[float] = mapped_column(Float, default=0.0, nullable=False)
    view_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    created_time: Mapped[datetime] = mapped_column(
        DateTime, server_default=func.now(), nullable=False
    )

    __table_args__ = (
        Index("idx_contracts_creator", "creator_id"),
        Index("idx_contracts_close", "close_time"),
    )


class Group(Base):
    __tablename__ = "groups"

    id: Mapped[str] = mapped_column(String(64), primary_key=True, default=_uuid)
    slug: Mapped[str] = mapped_column(String(255), unique=True, nullable=False)
    name: Mapped[str] = mapped_column(String(255), nullable=False, default="")


class GroupContract(Base):
    __tablename__ = "group_contracts"

    group_id: Mapped[str] = mapped_column(String(64), primary_key=True)
    contract_id: Mapped[str] = mapped_column(String(64), primary_key=True)

    __table_args__ = (Index("idx_group_contracts_contract", "contract_id"),)


class GroupMember(Base):
    __tablename__ = "group_members"

    group_id: Mapped[str] = mapped_column(String(64), primary_key=True)
    member_id: Mapped[str] = mapped_column(String(64), primary_key=True)

    __table_args__ = (Index("idx_group_members_member", "member_id"),)


class UserFollow(Base):
    __tablename__ = "user_follows"

    user_id: Mapped[str] = mapped_column(String(64), primary_key=True)
    follow_id: Mapped[str] = mapped_column(String(64), primary_key=True)
    created_time: Mapped[datetime] = mapped_column(
        DateTime, server_default=func.now(), nullable=False
    )


class UserDisinterest(Base):
    __tablename__ = "user_disinterests"

    user_id: Mapped[str] = mapped_column(String(64), primary_key=True)
    contract_id: Mapped[str] = mapped_column(String(64), primary_key=True)
    created_time: Mapped[datetime] = mapped_column(
        DateTime, server_default=func.now(), nullable=False
    )


class PrivateUser(Base):
    __tablename__ = "private_users"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    # Serialised list[str] columns
    blocked_user_ids: Mapped[list] = mapped_column(JSON, default=list, nullable=False)
    blocked_by_user_ids: Mapped[list] = mapped_column(JSON, default=list, nullable=False)
    blocked_contract_ids: Mapped[list] = mapped_column(JSON, default=list, nullable=False)
    blocked_group_slugs: Mapped[list] = mapped_column(JSON, default=list, nullable=False)


class UserContractView(Base):
    __tablename__ = "user_contract_views"

    # Anonymous views are counted under the empty-string user id.
    user_id: Mapped[str] = mapped_column(String(64), primary_key=True)
    contract_id: Mapped[str] = mapped_column(String(64), primary_key=True)
    last_card_view_ts: Mapped[Optional[datetime]] = mapped_column(DateTime)
    card_views: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    last_promoted_view_ts: Mapped[Optional[datetime]] = mapped_column(DateTime)
    promoted_views: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    last_page_view_ts: Mapped[Optional[datetime]] = mapped_column(DateTime)
    page_views: Mapped[int] = mapped_column(Integer, default=0, nullable=False)

    __table_args__ = (Index("idx_user_contract_views_contract", "contract_id"),)


class UserContractInteraction(Base):
    __tablename__ = "user_contract_interactions"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[str] = mapped_column(String(64), nullable=False)
    contract_id: Mapped[str] = mapped_column(String(64), nullable=False)
    name: Mapped[str] = mapped_column(String(50), nullable=False, default="")
    created_time: Mapped[datetime] = mapped_column(
        DateTime, server_default=func.now(), nullable=False
    )

    __table_args__ = (
        Index("idx_interactions_user_time", "user_id", "created_time"),
        Index("idx_interactions_time", "created_time"),
    )


class MarketAd(Base):
    __tablename__ = "market_ads"

    id: Mapped[str] = mapped_column(String(64), primary_key=True, default=_uuid)
    market_id: Mapped[str] = mapped_column(String(64), nullable=False)
    user_id: Mapped[Optional[str]] = mapped_column(String(64))
    funds: Mapped[float] = mapped_column(Float, default=0.0, nullable=False)
    cost_per_view: Mapped[float] = mapped_column(Float, default=0.0, nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime, server_default=func.now(), nullable=False
    )


class Txn(Base):
    __tablename__ = "txns"

    id: Mapped[str] = mapped_column(String(64), primary_key=True, default=_uuid)
    category: Mapped[str] = mapped_column(String(50), nullable=False)
    from_id: Mapped[str] = mapped_column(String(64), nullable=False)
    to_id: Mapped[str] = mapped_column(String(64), nullable=False)
    amount: Mapped[float] = mapped_column(Float, default=0.0, nullable=False)
    created_time: Mapped[datetime] = mapped_column(
        DateTime, server_default=func.now(), nullable=False
    )

    __table_args__ = (Index("idx_txns_category_to", "category", "to_id"),)


class Repost(Base):
    __tablename__ = "reposts"

    id: Mapped[str] = mapped_column(String(64), primary_key=True, default=_uuid)
    user_id: Mapped[str] = mapped_column(String(64), nullable=False)
    contract_id: Mapped[str] = mapped_column(String(64), nullable=False)
    contract_comment_id: Mapped[str] = mapped_column(String(64), nullable=False)
    created_time: Mapped[datetime] = mapped_column(
        DateTime, server_default=func.now(), nullable=False
    )

    __table_args__ = (Index("idx_reposts_user_time", "user_id", "created_time"),)


class ContractComment(Base):
    __tablename__ = "contract_comments"

    comment_id: Mapped[str] = mapped_column(String(64), primary_key=True, default=_uuid)
    contract_id: Mapped[str] = mapped_column(String(64), nullable=False)
    user_id: Mapped[str] = mapped_column(String(64), nullable=False)
    content: Mapped[str] = mapped_column(Text, nullable=False, default="")
    likes: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    bet_id: Mapped[Optional[str]] = mapped_column(String(64))
    created_time: Mapped[datetime] = mapped_column(
        DateTime, server_default=func.now(), nullable=False
    )


class ContractBet(Base):
    __tablename__ = "contract_bets"

    bet_id: Mapped[str] = mapped_column(String(64), primary_key=True, default=_uuid)
    contract_id: Mapped[str] = mapped_column(String(64), nullable=False)
    user_id: Mapped[str] = mapped_column(String(64), nullable=False)
    amount: Mapped[float] = mapped_column(Float, default=0.0, nullable=False)
    outcome: Mapped[str] = mapped_column(String(50), nullable=False, default="YES")
    created_time: Mapped[datetime] = mapped_column(
        DateTime, server_default=func.now(), nullable=False
    )
