"""
Shared fixtures: a coordination engine on a throwaway SQLite file, a
recording event emitter and a controllable clock.
"""
from datetime import datetime, timezone

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine

import app.models  # noqa: F401  registers every table on Base.metadata
from app.config import Settings
from app.database import Base
from app.models.enums import ApprovalStatus, OwnerType
from app.services.engine import CoordinationEngine
from app.services.geo import Point
from factories import ORIGIN, FakeClock, RecordingEmitter


@pytest.fixture
def settings():
    return Settings(sweeper_enabled=False)


@pytest.fixture
def clock():
    return FakeClock(datetime(2024, 1, 15, 9, 0, tzinfo=timezone.utc))


@pytest.fixture
def emitter():
    return RecordingEmitter()


@pytest_asyncio.fixture
async def sessions(tmp_path):
    db_engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'engine.db'}")
    async with db_engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield async_sessionmaker(db_engine, expire_on_commit=False)
    await db_engine.dispose()


@pytest.fixture
def engine(sessions, emitter, settings, clock):
    return CoordinationEngine(sessions, emitter, settings, clock)


@pytest.fixture
def seed_driver(engine):
    """Register an approved driver at `at`, online unless told otherwise."""
    counter = {"n": 0}

    async def _seed(at: Point = ORIGIN, online: bool = True, name: str = "Test Driver"):
        counter["n"] += 1
        driver = await engine.drivers.register_driver(name, f"+9198765{counter['n']:05d}")
        await engine.drivers.set_approval(driver.id, ApprovalStatus.APPROVED)
        await engine.drivers.update_location(driver.id, at.lat, at.lng)
        return await engine.drivers.set_online(driver.id, online)

    return _seed


@pytest.fixture
def fund_rider(engine):
    async def _fund(rider_id: str, amount: int):
        wallet = await engine.ledger.get_or_create_wallet(rider_id, OwnerType.RIDER)
        await engine.ledger.credit(wallet.id, amount, reference=f"seed:{rider_id}:{amount}")
        return await engine.ledger.get_wallet(wallet.id)

    return _fund
