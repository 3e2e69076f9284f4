"""
Background sweeper.

Every `sweep_interval_seconds`:
  1. Convert share groups that waited past the timeout into private rides
  2. Retry matching for rides still waiting for a driver

Several API processes may run a sweeper; a short Redis lock lets only one
of them sweep per tick.
"""
import asyncio
import logging
import uuid
from datetime import datetime
from typing import Optional

import redis.asyncio as aioredis

from app.redis_client import acquire_lock
from app.services.engine import CoordinationEngine

logger = logging.getLogger(__name__)

LOCK_KEY = "sweeper:share-timeouts"


class ShareTimeoutSweeper:
    def __init__(
        self,
        engine: CoordinationEngine,
        redis: Optional[aioredis.Redis],
        interval: float,
    ):
        self._engine = engine
        self._redis = redis
        self._interval = interval
        self._owner = str(uuid.uuid4())
        self._task: Optional[asyncio.Task] = None

    def start(self) -> None:
        if self._task is None:
            self._task = asyncio.create_task(self._run(), name="share-timeout-sweeper")
            logger.info("Sweeper started (every %ss)", self._interval)

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None
        logger.info("Sweeper stopped")

    async def run_once(self, now: Optional[datetime] = None) -> tuple[list[str], int]:
        """One sweep tick. Returns (converted group ids, rides assigned on rematch)."""
        if self._redis is not None:
            ttl_ms = int(self._interval * 1000)
            if not await acquire_lock(self._redis, LOCK_KEY, self._owner, ttl_ms):
                logger.debug("Another worker holds the sweep lock, skipping tick")
                return [], 0

        converted = await self._engine.shares.sweep_timeouts(now)
        assigned = await self._engine.rides.rematch_waiting()
        return converted, assigned

    async def _run(self) -> None:
        while True:
            try:
                await self.run_once()
            except asyncio.CancelledError:
                raise
            except Exception as exc:
                logger.error("Sweep tick failed: %s", exc, exc_info=True)
            await asyncio.sleep(self._interval)
