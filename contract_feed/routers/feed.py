"""
Feed retrieval endpoint — GET /feed?user_id=<id>

See contract_feed.ranking.engine for the pipeline. This layer only parses
parameters, records latency and shapes the response.
"""
import logging
import time

from fastapi import APIRouter, Depends, Query

from contract_feed.config import settings
from contract_feed.dependencies import get_feed_engine
from contract_feed.ranking.engine import FeedEngine
from contract_feed.schemas import FeedResponse
from contract_feed.telemetry import FEED_LATENCY

logger = logging.getLogger(__name__)
router = APIRouter()


@router.get("/", response_model=FeedResponse)
async def get_feed(
    user_id: str = Query(..., description="ID of the requesting user"),
    limit: int = Query(settings.feed_default_limit, ge=1, le=settings.feed_max_limit),
    offset: int = Query(0, ge=0),
    ignore_contract_ids: list[str] = Query(default=[]),
    engine: FeedEngine = Depends(get_feed_engine),
):
    start_time = time.time()

    feed = await engine.get_feed(
        user_id,
        limit=limit,
        offset=offset,
        ignore_contract_ids=ignore_contract_ids,
    )

    FEED_LATENCY.observe(time.time() - start_time)
    return FeedResponse(
        contracts=feed.contracts,
        ids_to_reason=feed.ids_to_reason,
        ads=feed.ads,
        comments=feed.comments,
        bets=feed.bets,
        reposts=feed.reposts,
    )
