from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.responses import Response

from clearance.activity_log import ActivityLogWriter
from clearance.config import settings
from clearance.db import PackageStore, close_pool, get_pool, init_schema
from clearance.engine import StatusTransitionEngine
from clearance.locks import RedisPackageLocks, close_redis, get_redis
from clearance.logging_setup import configure_logging
from clearance.metrics import get_metrics_bytes, get_metrics_content_type
from clearance.notifications import NotificationDispatcher, SnsSmsSender
from clearance.routes import packages
from clearance.sheets import GoogleSheetsSync


@asynccontextmanager
async def lifespan(app: FastAPI):
    configure_logging()
    pool = await get_pool()
    await init_schema(pool)
    r = await get_redis()
    store = PackageStore(pool)
    app.state.engine = StatusTransitionEngine(
        store=store,
        activity_log=ActivityLogWriter(pool),
        notifier=NotificationDispatcher(store, SnsSmsSender()),
        syncer=GoogleSheetsSync(store),
        locks=RedisPackageLocks(r),
        strict_transitions=settings.strict_transitions,
    )
    yield
    await close_redis()
    await close_pool()


app = FastAPI(title="Customs Clearance Engine", lifespan=lifespan)
app.include_router(packages.router)


@app.get("/health")
async def health() -> dict:
    return {"status": "ok"}


@app.get("/metrics")
async def metrics() -> Response:
    """Prometheus scrape endpoint: transitions, payment updates, side-effect outcomes."""
    return Response(
        content=get_metrics_bytes(),
        media_type=get_metrics_content_type(),
    )
