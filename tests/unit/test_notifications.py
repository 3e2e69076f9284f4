"""
Unit tests for event payloads and the Redis emitter.
"""
import json
from unittest.mock import AsyncMock

import pytest

from app.schemas.events import (
    EventKind,
    RideCancelled,
    RideEventAdapter,
    ShareConvertedToPrivate,
    ShareMatched,
)
from app.services.notifications import EventEmitter, RedisEventEmitter


class TestEventPayloads:
    def test_discriminated_by_kind(self):
        event = ShareMatched(ride_id="r1", group_id="g1", rider_ids=["a", "b"], fare_shares={"a": 675, "b": 675})
        decoded = RideEventAdapter.validate_json(event.model_dump_json())
        assert isinstance(decoded, ShareMatched)
        assert decoded.fare_shares == {"a": 675, "b": 675}

    def test_cancel_event_carries_amounts(self):
        event = RideCancelled(
            ride_id="r1", rider_id="a", ride_cancelled=False, penalty_amount=135, refund_amount=540
        )
        body = json.loads(event.model_dump_json())
        assert body["kind"] == "RIDE_CANCELLED"
        assert body["penalty_amount"] == 135
        assert body["refund_amount"] == 540

    def test_conversion_reason_is_restricted(self):
        with pytest.raises(ValueError):
            ShareConvertedToPrivate(ride_id="r1", group_id="g1", rider_id="a", fare=1500, reason="bored")


@pytest.mark.asyncio
class TestRedisEventEmitter:
    async def test_publishes_json_to_channel(self):
        redis = AsyncMock()
        redis.publish.return_value = 1
        emitter = RedisEventEmitter(redis, "ride-events")

        await emitter.emit(ShareConvertedToPrivate(ride_id="r1", group_id="g1", rider_id="a", fare=1500, reason="timeout"))

        channel, payload = redis.publish.await_args.args
        assert channel == "ride-events"
        assert json.loads(payload)["kind"] == EventKind.SHARE_CONVERTED_TO_PRIVATE.value

    async def test_delivery_failure_is_swallowed(self):
        redis = AsyncMock()
        redis.publish.side_effect = ConnectionError("redis down")
        emitter = RedisEventEmitter(redis, "ride-events")

        # Must not raise
        await emitter.emit(RideCancelled(ride_id="r1", rider_id="a", ride_cancelled=True))
        redis.publish.assert_awaited_once()

    async def test_base_emitter_only_logs(self, caplog):
        caplog.set_level("INFO")
        await EventEmitter().emit(RideCancelled(ride_id="r1", rider_id="a", ride_cancelled=True))
        assert "RIDE_CANCELLED" in caplog.text
