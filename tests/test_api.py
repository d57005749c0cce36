import httpx
import pytest
from fastapi import FastAPI
from sqlalchemy import select

from conftest import make_contract
from contract_feed.dependencies import get_feed_engine, get_view_queue
from contract_feed.ingestion.view_queue import ViewQueue
from contract_feed.models import GroupMember, UserContractView
from contract_feed.ranking.engine import FeedEngine
from contract_feed.routers import feed, views


@pytest.fixture
def view_queue(session_factory):
    return ViewQueue(session_factory)


@pytest.fixture
async def client(builder, session_factory, view_queue):
    app = FastAPI()
    app.include_router(feed.router, prefix="/feed")
    app.include_router(views.router, prefix="/views")
    feed_engine = FeedEngine(builder, session_factory)
    app.dependency_overrides[get_feed_engine] = lambda: feed_engine
    app.dependency_overrides[get_view_queue] = lambda: view_queue

    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as c:
        yield c


async def test_get_feed_returns_ranked_contracts(client, seed):
    await seed(
        GroupMember(group_id="g1", member_id="U"),
        *make_contract("c1", "g1", conversion_score=2.0),
        *make_contract("c2", "g1", conversion_score=1.0),
    )

    resp = await client.get("/feed/", params={"user_id": "U", "limit": 5, "ignore_contract_ids": ["c2"]})

    assert resp.status_code == 200
    body = resp.json()
    assert [c["id"] for c in body["contracts"]] == ["c1"]
    assert body["ids_to_reason"] == {"c1": "conversion"}
    assert body["ads"] == [] and body["reposts"] == []


@pytest.mark.parametrize("params", [{}, {"user_id": "U", "limit": 0}, {"user_id": "U", "offset": -1}])
async def test_get_feed_validates_parameters(client, params):
    resp = await client.get("/feed/", params=params)
    assert resp.status_code == 422


async def test_record_view_for_own_user(client, session_factory):
    resp = await client.post(
        "/views/",
        json={"user_id": "u1", "contract_id": "c1", "kind": "page"},
        headers={"X-User-Id": "u1"},
    )

    assert resp.status_code == 200
    assert resp.json() == {"status": "success"}
    async with session_factory() as session:
        row = await session.scalar(select(UserContractView).where(UserContractView.user_id == "u1"))
    assert row.page_views == 1


async def test_record_view_for_someone_else_is_rejected(client, view_queue):
    resp = await client.post(
        "/views/",
        json={"user_id": "u1", "contract_id": "c1", "kind": "card"},
        headers={"X-User-Id": "u2"},
    )

    assert resp.status_code == 401
    assert len(view_queue) == 0


async def test_record_anonymous_view(client, session_factory):
    resp = await client.post("/views/", json={"contract_id": "c1", "kind": "card"})

    assert resp.status_code == 200
    async with session_factory() as session:
        row = await session.scalar(select(UserContractView).where(UserContractView.contract_id == "c1"))
    assert row.card_views == 1


async def test_record_view_rejects_unknown_kind(client):
    resp = await client.post("/views/", json={"contract_id": "c1", "kind": "hover"})
    assert resp.status_code == 422
