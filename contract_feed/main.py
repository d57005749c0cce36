"""
Contract Feed API — entry point.

Startup sequence:
  1. Configure OTel tracing (→ Jaeger via OTLP)
  2. Initialise DB connection pool (TiDB)
  3. Create tables if not present
  4. Connect to Redis when interest profiles are shared
  5. Warm the topic interest cache for recently active users
  6. Expose Prometheus /metrics endpoint

Shutdown flushes pending view events before closing connections.
"""
import logging

from contextlib import asynccontextmanager
from fastapi import FastAPI
from prometheus_client import make_asgi_app

from contract_feed.clients.redis_client import close_redis, init_redis
from contract_feed.config import settings
from contract_feed.database import engine, init_db
from contract_feed.dependencies import interest_builder, view_queue
from contract_feed.ranking.interest_store import RedisInterestStore
from contract_feed.routers import feed, views
from contract_feed.telemetry import instrument_app, setup_tracing

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s [%(levelname)s] %(name)s — %(message)s",
)
logger = logging.getLogger(__name__)

# Set up tracing before the app is created so all imports are instrumented
setup_tracing()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Manage startup and shutdown of all external connections."""
    logger.info("Starting Contract Feed API (env=%s)", settings.environment)

    await init_db()
    if settings.interest_store_backend == "redis":
        interest_builder.store = RedisInterestStore(await init_redis())
    if settings.interest_warm_on_startup:
        await interest_builder.warm()

    logger.info("All services connected. API ready.")
    yield

    logger.info("Shutting down...")
    await view_queue.flush()
    await close_redis()
    await engine.dispose()


app = FastAPI(
    title="Contract Feed API",
    description=(
        "Personalized contract feed: topic-weighted retrieval, "
        "sponsored placements and social reposts blended into one ranking."
    ),
    version="1.0.0",
    lifespan=lifespan,
)

# ── Routers ────────────────────────────────────────────────────────────────
app.include_router(feed.router, prefix="/feed", tags=["Feed"])
app.include_router(views.router, prefix="/views", tags=["Views"])

# ── Prometheus metrics endpoint ────────────────────────────────────────────
# Mounted at /metrics — scraped by Prometheus
metrics_app = make_asgi_app()
app.mount("/metrics", metrics_app)

# ── OTel FastAPI instrumentation ──────────────────────────────────────────
instrument_app(app)


@app.get("/health", tags=["Health"])
async def health():
    return {"status": "ok", "service": settings.service_name}
