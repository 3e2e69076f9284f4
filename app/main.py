"""
FastAPI application with New Relic APM, CORS, lifespan, and all routers.
"""
import logging
import os

# New Relic must be initialized BEFORE any other imports that it instruments.
if os.getenv("NEW_RELIC_LICENSE_KEY"):
    import newrelic.agent
    newrelic.agent.initialize("newrelic.ini")

from contextlib import asynccontextmanager

from fastapi import FastAPI, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from app.config import get_settings
from app.database import AsyncSessionLocal, engine as db_engine
from app.redis_client import get_redis, close_redis
from app.routers import rides, drivers, share, wallets
from app.services.engine import CoordinationEngine
from app.services.exceptions import EngineError
from app.services.notifications import RedisEventEmitter
from app.services.sweeper import ShareTimeoutSweeper

settings = get_settings()
logger = logging.getLogger(__name__)

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s | %(levelname)s | %(name)s | %(message)s",
)


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info("Starting %s [%s]", settings.app_name, settings.env)
    redis = await get_redis()          # warm up connection pool
    app.state.engine = CoordinationEngine(
        AsyncSessionLocal,
        RedisEventEmitter(redis, settings.events_channel),
        settings,
    )
    sweeper = None
    if settings.sweeper_enabled:
        sweeper = ShareTimeoutSweeper(app.state.engine, redis, settings.sweep_interval_seconds)
        sweeper.start()
    yield
    if sweeper is not None:
        await sweeper.stop()
    await close_redis()
    await db_engine.dispose()
    logger.info("Shutdown complete")


app = FastAPI(
    title=settings.app_name,
    version="1.0.0",
    description="Ride matching and shared-ride coordination engine",
    lifespan=lifespan,
)

# CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(EngineError)
async def engine_error_handler(request: Request, exc: EngineError):
    if exc.status_code >= 500:
        logger.error("Engine error on %s: %s", request.url, exc, exc_info=True)
    else:
        logger.warning("%s on %s: %s", exc.code, request.url.path, exc)
    return JSONResponse(
        status_code=exc.status_code,
        content={"detail": str(exc), "code": exc.code},
    )


# Global error handler
@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    logger.error("Unhandled error on %s: %s", request.url, exc, exc_info=True)
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={"detail": "Internal server error"},
    )


# Health check (no auth)
@app.get("/health", tags=["Health"])
async def health():
    return {"status": "ok"}


# Register routers
app.include_router(rides.router)
app.include_router(drivers.router)
app.include_router(share.router)
app.include_router(wallets.router)
