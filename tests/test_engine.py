from datetime import timedelta

import pytest

from conftest import make_contract
from contract_feed.database import utcnow
from contract_feed.models import (
    ContractComment,
    GroupMember,
    MarketAd,
    PrivateUser,
    Repost,
    UserFollow,
)
from contract_feed.ranking import engine as engine_module
from contract_feed.ranking.engine import FeedEngine
from contract_feed.schemas import FeedReason


@pytest.fixture
def feed_engine(builder, session_factory):
    return FeedEngine(builder, session_factory)


async def test_followed_topic_surfaces_unseen_contract(feed_engine, seed):
    await seed(
        GroupMember(group_id="G", member_id="U"),
        *make_contract("C", "G", creator_id="someone", conversion_score=2.0),
    )

    feed = await feed_engine.get_feed("U", limit=10)

    assert await feed_engine.builder.store.get("U") == {"G": 1.0}
    assert [c.id for c in feed.contracts] == ["C"]
    assert feed.ids_to_reason == {"C": FeedReason.CONVERSION}
    assert feed.ads == []


async def test_feed_blends_shapes_without_duplicates(feed_engine, seed):
    now = utcnow()
    await seed(
        GroupMember(group_id="g1", member_id="U"),
        UserFollow(user_id="U", follow_id="friend"),
        *make_contract("mine", "g1", creator_id="friend", conversion_score=1.0,
                       importance_score=0.5, freshness_score=0.5),
        *make_contract("hot", "g1", conversion_score=4.0,
                       importance_score=2.0, freshness_score=2.0),
        *make_contract("promoted", "g1", conversion_score=0.5,
                       importance_score=0.1, freshness_score=0.1),
        *make_contract("also-organic", "g1", conversion_score=3.0,
                       importance_score=1.5, freshness_score=1.5),
        *make_contract("elsewhere", "g-none"),
        MarketAd(id="ad-1", market_id="promoted", funds=10, cost_per_view=1),
        MarketAd(id="ad-2", market_id="also-organic", funds=10, cost_per_view=1),
        ContractComment(comment_id="cm", contract_id="elsewhere", user_id="friend", content="!", likes=0),
        Repost(id="p", user_id="friend", contract_id="elsewhere", contract_comment_id="cm",
               created_time=now - timedelta(hours=1)),
    )

    feed = await feed_engine.get_feed("U", limit=2)

    contract_ids = [c.id for c in feed.contracts]
    assert len(contract_ids) == len(set(contract_ids))
    assert contract_ids[:2] == ["hot", "also-organic"]
    assert feed.ids_to_reason["mine"] == FeedReason.FOLLOWED
    assert feed.ids_to_reason["hot"] == FeedReason.CONVERSION
    assert feed.ids_to_reason["elsewhere"] == FeedReason.NONE
    assert [ad.ad_id for ad in feed.ads] == ["ad-1"]
    assert not {ad.contract.id for ad in feed.ads} & set(contract_ids)
    assert [r.id for r in feed.reposts] == ["p"]
    assert [c.comment_id for c in feed.comments] == ["cm"]


async def test_block_lists_and_ignore_list_apply(feed_engine, seed):
    await seed(
        GroupMember(group_id="g1", member_id="U"),
        PrivateUser(id="U", blocked_by_user_ids=["troll"], blocked_contract_ids=["bad"]),
        *make_contract("ok", "g1"),
        *make_contract("bad", "g1"),
        *make_contract("trolling", "g1", creator_id="troll"),
        *make_contract("skip-me", "g1"),
    )

    feed = await feed_engine.get_feed("U", limit=10, ignore_contract_ids=["skip-me"])

    assert [c.id for c in feed.contracts] == ["ok"]


async def test_any_failing_shape_fails_the_request(feed_engine, seed, monkeypatch):
    await seed(GroupMember(group_id="g1", member_id="U"), *make_contract("c1", "g1"))

    async def broken(*args):
        raise RuntimeError("replica down")

    monkeypatch.setattr(engine_module, "fetch_reposts", broken)

    with pytest.raises(RuntimeError, match="replica down"):
        await feed_engine.get_feed("U", limit=10)


async def test_user_with_no_signals_gets_empty_feed(feed_engine, seed):
    await seed(*make_contract("c1", "g1"))

    feed = await feed_engine.get_feed("new-user", limit=10)

    assert feed.contracts == []
    assert feed.ids_to_reason == {}
