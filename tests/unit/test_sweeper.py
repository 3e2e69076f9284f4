"""
Unit tests for the background sweeper tick and its Redis lock.
"""
import asyncio
from unittest.mock import AsyncMock, MagicMock

import pytest

from app.services.sweeper import LOCK_KEY, ShareTimeoutSweeper


def _engine(converted=None, assigned=0):
    engine = MagicMock()
    engine.shares.sweep_timeouts = AsyncMock(return_value=converted or [])
    engine.rides.rematch_waiting = AsyncMock(return_value=assigned)
    return engine


@pytest.mark.asyncio
class TestShareTimeoutSweeper:
    async def test_tick_sweeps_then_rematches(self):
        engine = _engine(converted=["g1"], assigned=2)
        redis = AsyncMock()
        redis.set.return_value = True
        sweeper = ShareTimeoutSweeper(engine, redis, interval=30)

        result = await sweeper.run_once()

        assert result == (["g1"], 2)
        engine.shares.sweep_timeouts.assert_awaited_once()
        engine.rides.rematch_waiting.assert_awaited_once()
        key, _owner = redis.set.await_args.args
        assert key == LOCK_KEY
        assert redis.set.await_args.kwargs == {"nx": True, "px": 30_000}

    async def test_skips_tick_when_lock_held_elsewhere(self):
        engine = _engine()
        redis = AsyncMock()
        redis.set.return_value = None
        sweeper = ShareTimeoutSweeper(engine, redis, interval=30)

        assert await sweeper.run_once() == ([], 0)
        engine.shares.sweep_timeouts.assert_not_awaited()
        engine.rides.rematch_waiting.assert_not_awaited()

    async def test_runs_without_redis(self):
        engine = _engine(converted=["g1"])
        sweeper = ShareTimeoutSweeper(engine, None, interval=30)
        assert await sweeper.run_once() == (["g1"], 0)

    async def test_loop_survives_a_failing_tick(self):
        engine = _engine()
        calls = {"n": 0}

        async def flaky(now=None):
            calls["n"] += 1
            if calls["n"] == 1:
                raise RuntimeError("db down")
            return []

        engine.shares.sweep_timeouts.side_effect = flaky
        sweeper = ShareTimeoutSweeper(engine, None, interval=0.01)

        sweeper.start()
        await asyncio.sleep(0.05)
        await sweeper.stop()

        assert engine.shares.sweep_timeouts.await_count >= 2

    async def test_stop_without_start_is_noop(self):
        await ShareTimeoutSweeper(_engine(), None, interval=30).stop()
