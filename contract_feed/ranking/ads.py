"""
Ad auction: which sponsored placements may compete for this user's feed.

A placement is eligible when it can still pay for a view, its contract is
open, and the user hasn't already redeemed it. Highest cost-per-view wins.
"""
from dataclasses import dataclass
from datetime import datetime
from typing import Optional

from sqlalchemy import Subquery, exists, select
from sqlalchemy.ext.asyncio import AsyncSession

from contract_feed.config import settings
from contract_feed.database import utcnow
from contract_feed.models import Contract, MarketAd, Txn

REDEEM_CATEGORY = "MARKET_BOOST_REDEEM"


@dataclass(frozen=True)
class AdPlacement:
    ad_id: str
    contract_id: str
    funds: float
    cost_per_view: float


def ad_auction_statement(user_id: str, now: datetime, slate_size: int):
    redeemed = exists().where(
        Txn.category == REDEEM_CATEGORY,
        Txn.to_id == user_id,
        Txn.from_id == MarketAd.id,
    )
    return (
        select(
            MarketAd.id,
            MarketAd.market_id,
            MarketAd.funds,
            MarketAd.cost_per_view,
        )
        .join(Contract, Contract.id == MarketAd.market_id)
        .where(
            MarketAd.funds >= MarketAd.cost_per_view,
            Contract.close_time > now,
            ~redeemed,
        )
        .order_by(MarketAd.cost_per_view.desc())
        .limit(slate_size)
    )


def ad_auction_subquery(user_id: str, now: datetime, slate_size: int) -> Subquery:
    """Eligible placements as a derived table, for the sponsored shape to join."""
    return ad_auction_statement(user_id, now, slate_size).subquery("ma")


async def select_ads(
    session: AsyncSession,
    user_id: str,
    now: Optional[datetime] = None,
    slate_size: int = settings.ad_slate_size,
) -> list[AdPlacement]:
    """Run the auction on its own, outside the feed.

    The feed gets its ad slate from the sponsored shape, which joins
    ad_auction_subquery instead. This is the standalone entry point for
    callers that only need the eligible placements.
    """
    rows = await session.execute(
        ad_auction_statement(user_id, now or utcnow(), slate_size)
    )
    return [
        AdPlacement(
            ad_id=ad_id,
            contract_id=market_id,
            funds=funds,
            cost_per_view=cost_per_view,
        )
        for ad_id, market_id, funds, cost_per_view in rows.all()
    ]
