"""
HTTP layer tests.
Uses pytest-asyncio + FastAPI (HTTPX async) with the engine dependency
pointed at the SQLite-backed test engine and Redis mocked out.
"""
import json
from unittest.mock import AsyncMock

import pytest
import pytest_asyncio
from httpx import AsyncClient, ASGITransport

from app.main import app
from app.middleware.auth import create_access_token
from app.services.engine import get_engine
from factories import ORIGIN, offset

RIDER_TOKEN = create_access_token({"sub": "rider-test-001", "role": "rider"})
ADMIN_TOKEN = create_access_token({"sub": "ops-001", "role": "admin"})


def _headers(token):
    return {"Authorization": f"Bearer {token}", "Content-Type": "application/json"}


@pytest.fixture
def rider_headers():
    return _headers(RIDER_TOKEN)


@pytest.fixture
def admin_headers():
    return _headers(ADMIN_TOKEN)


@pytest.fixture
def fake_redis(monkeypatch):
    redis = AsyncMock()
    redis.get.return_value = None
    monkeypatch.setattr("app.middleware.idempotency.get_redis", AsyncMock(return_value=redis))
    return redis


@pytest_asyncio.fixture
async def client(engine, fake_redis):
    app.dependency_overrides[get_engine] = lambda: engine
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as c:
        yield c
    app.dependency_overrides.clear()


def _ride_payload(**overrides):
    dropoff = offset(ORIGIN, north_km=8)
    payload = {
        "mode": "PRIVATE",
        "pickup_address": "MG Road Metro",
        "dropoff_address": "Indiranagar 100ft Road",
        "pickup_lat": ORIGIN.lat,
        "pickup_lng": ORIGIN.lng,
        "dropoff_lat": dropoff.lat,
        "dropoff_lng": dropoff.lng,
        "fare_estimate": 1000,
    }
    payload.update(overrides)
    return payload


@pytest.mark.asyncio
class TestRideAPI:
    async def test_health_check(self, client):
        resp = await client.get("/health")
        assert resp.status_code == 200
        assert resp.json()["status"] == "ok"

    async def test_create_ride_missing_auth(self, client):
        resp = await client.post("/v1/rides", json=_ride_payload())
        assert resp.status_code == 401  # No auth header

    async def test_driver_token_cannot_request_ride(self, client):
        token = create_access_token({"sub": "driver-1", "role": "driver"})
        resp = await client.post("/v1/rides", headers=_headers(token), json=_ride_payload())
        assert resp.status_code == 403

    async def test_create_private_ride(self, client, rider_headers, seed_driver):
        driver = await seed_driver()
        resp = await client.post("/v1/rides", headers=rider_headers, json=_ride_payload())
        assert resp.status_code == 201
        body = resp.json()
        assert body["status"] == "ASSIGNED"
        assert body["driver_id"] == driver.id
        assert [h["status"] for h in body["status_history"]] == ["REQUESTED", "ASSIGNED"]

    async def test_create_ride_invalid_lat(self, client, rider_headers):
        resp = await client.post("/v1/rides", headers=rider_headers, json=_ride_payload(pickup_lat=999))
        assert resp.status_code == 422
        assert resp.json()["code"] == "invalid_coordinates"

    async def test_create_ride_non_positive_fare(self, client, rider_headers):
        resp = await client.post("/v1/rides", headers=rider_headers, json=_ride_payload(fare_estimate=0))
        assert resp.status_code == 422

    async def test_second_active_ride_conflicts(self, client, rider_headers):
        await client.post("/v1/rides", headers=rider_headers, json=_ride_payload())
        resp = await client.post("/v1/rides", headers=rider_headers, json=_ride_payload())
        assert resp.status_code == 409
        assert resp.json()["code"] == "active_ride_exists"

    async def test_get_nonexistent_ride(self, client, rider_headers):
        resp = await client.get("/v1/rides/nonexistent-uuid", headers=rider_headers)
        assert resp.status_code == 404
        assert resp.json()["code"] == "ride_not_found"

    async def test_active_ride(self, client, rider_headers):
        resp = await client.get("/v1/rides/active", headers=rider_headers)
        assert resp.status_code == 404

        created = await client.post("/v1/rides", headers=rider_headers, json=_ride_payload())
        resp = await client.get("/v1/rides/active", headers=rider_headers)
        assert resp.status_code == 200
        assert resp.json()["id"] == created.json()["id"]

    async def test_trip_flow(self, client, rider_headers, seed_driver, fund_rider):
        driver = await seed_driver()
        await fund_rider("rider-test-001", 2000)
        driver_headers = _headers(create_access_token({"sub": driver.id, "role": "driver"}))

        ride_id = (await client.post("/v1/rides", headers=rider_headers, json=_ride_payload())).json()["id"]

        resp = await client.post(f"/v1/rides/{ride_id}/start", headers=driver_headers)
        assert resp.status_code == 200
        assert resp.json()["status"] == "IN_PROGRESS"

        resp = await client.post(f"/v1/rides/{ride_id}/complete", headers=driver_headers)
        assert resp.status_code == 200
        assert resp.json() == {
            "ride_id": ride_id,
            "status": "COMPLETED",
            "collected": 1000,
            "driver_payout": 850,
            "commission": 150,
        }

    async def test_start_without_funds_is_payment_required(self, client, rider_headers, seed_driver):
        driver = await seed_driver()
        driver_headers = _headers(create_access_token({"sub": driver.id, "role": "driver"}))
        ride_id = (await client.post("/v1/rides", headers=rider_headers, json=_ride_payload())).json()["id"]

        resp = await client.post(f"/v1/rides/{ride_id}/start", headers=driver_headers)
        assert resp.status_code == 402
        assert resp.json()["code"] == "insufficient_funds"

    async def test_cancel_ride(self, client, rider_headers):
        ride_id = (await client.post("/v1/rides", headers=rider_headers, json=_ride_payload())).json()["id"]

        resp = await client.post(f"/v1/rides/{ride_id}/cancel", headers=rider_headers)
        assert resp.status_code == 200
        assert resp.json()["ride_status"] == "CANCELLED"

        resp = await client.post(f"/v1/rides/{ride_id}/cancel", headers=rider_headers)
        assert resp.status_code == 409
        assert resp.json()["code"] == "invalid_state"

    async def test_share_group_view(self, client, rider_headers):
        ride = (
            await client.post("/v1/rides", headers=rider_headers, json=_ride_payload(mode="SHARE"))
        ).json()
        assert ride["status"] == "SEARCHING_SHARE"

        resp = await client.get(f"/v1/share-groups/{ride['share_group_id']}", headers=rider_headers)
        assert resp.status_code == 200
        body = resp.json()
        assert body["status"] == "OPEN"
        assert [p["rider_id"] for p in body["participants"]] == ["rider-test-001"]


@pytest.mark.asyncio
class TestIdempotency:
    async def test_create_ride_response_is_stored(self, client, rider_headers, fake_redis):
        headers = {**rider_headers, "Idempotency-Key": "abc-123"}
        resp = await client.post("/v1/rides", headers=headers, json=_ride_payload())
        assert resp.status_code == 201

        key, ttl, body = fake_redis.setex.await_args.args
        assert key == "idempotency:rides:rider-test-001:abc-123"
        assert ttl == 86400
        assert json.loads(body)["body"]["id"] == resp.json()["id"]

    async def test_replay_returns_stored_response(self, client, rider_headers, fake_redis):
        fake_redis.get.return_value = json.dumps({"status_code": 201, "body": {"id": "ride-xyz"}})
        headers = {**rider_headers, "Idempotency-Key": "abc-123"}

        resp = await client.post("/v1/rides", headers=headers, json=_ride_payload())

        assert resp.status_code == 201
        assert resp.json() == {"id": "ride-xyz"}
        assert resp.headers["X-Idempotency-Replay"] == "true"
        # Nothing new was created
        assert (await client.get("/v1/rides/active", headers=rider_headers)).status_code == 404

    async def test_no_key_skips_redis(self, client, rider_headers, fake_redis):
        await client.post("/v1/rides", headers=rider_headers, json=_ride_payload())
        fake_redis.get.assert_not_awaited()
        fake_redis.setex.assert_not_awaited()


@pytest.mark.asyncio
class TestDriverAPI:
    async def test_onboarding_flow(self, client, admin_headers, rider_headers):
        resp = await client.post("/v1/drivers", json={"name": "Test Driver", "phone": "+919876500001"})
        assert resp.status_code == 201
        driver = resp.json()
        assert driver["approval_status"] == "PENDING"
        driver_headers = _headers(create_access_token({"sub": driver["id"], "role": "driver"}))

        resp = await client.patch(
            f"/v1/drivers/{driver['id']}/approval", headers=admin_headers, json={"approval_status": "APPROVED"}
        )
        assert resp.status_code == 200

        resp = await client.post(
            f"/v1/drivers/{driver['id']}/location", headers=driver_headers, json={"lat": ORIGIN.lat, "lng": ORIGIN.lng}
        )
        assert resp.status_code == 204

        # A ride requested while the driver is offline waits...
        ride = (await client.post("/v1/rides", headers=rider_headers, json=_ride_payload())).json()
        assert ride["status"] == "REQUESTED"

        # ...and is picked up when the driver goes online
        resp = await client.patch(f"/v1/drivers/{driver['id']}/status", headers=driver_headers, json={"is_online": True})
        assert resp.status_code == 200
        assert resp.json()["is_busy"] is True

        resp = await client.get(f"/v1/rides/{ride['id']}", headers=rider_headers)
        assert resp.json()["driver_id"] == driver["id"]

    async def test_duplicate_phone_rejected(self, client):
        payload = {"name": "Test Driver", "phone": "+919876500002"}
        assert (await client.post("/v1/drivers", json=payload)).status_code == 201
        assert (await client.post("/v1/drivers", json=payload)).status_code == 422

    async def test_approval_requires_admin(self, client, rider_headers):
        driver = (await client.post("/v1/drivers", json={"name": "Test Driver", "phone": "+919876500003"})).json()
        resp = await client.patch(
            f"/v1/drivers/{driver['id']}/approval", headers=rider_headers, json={"approval_status": "APPROVED"}
        )
        assert resp.status_code == 403

    async def test_driver_cannot_update_another_driver(self, client):
        token = create_access_token({"sub": "driver-a", "role": "driver"})
        resp = await client.post("/v1/drivers/driver-b/location", headers=_headers(token), json={"lat": 12.9, "lng": 77.5})
        assert resp.status_code == 403

    async def test_eligible_drivers(self, client, admin_headers, seed_driver):
        near = await seed_driver(at=offset(ORIGIN, east_km=0.5))
        await seed_driver(at=offset(ORIGIN, north_km=2))
        await seed_driver(at=offset(ORIGIN, north_km=1), online=False)

        resp = await client.get(
            "/v1/drivers/eligible", headers=admin_headers, params={"lat": ORIGIN.lat, "lng": ORIGIN.lng}
        )
        assert resp.status_code == 200
        body = resp.json()
        assert len(body) == 2
        assert body[0]["id"] == near.id
        assert body[0]["distance_km"] == pytest.approx(0.5, abs=0.01)


@pytest.mark.asyncio
class TestWalletAPI:
    async def test_top_up_and_view(self, client, rider_headers):
        resp = await client.get("/v1/wallets/me", headers=rider_headers)
        assert resp.status_code == 200
        assert resp.json()["balance"] == 0

        for _ in range(2):
            resp = await client.post(
                "/v1/wallets/top-up", headers=rider_headers, json={"amount": 1500, "reference": "upi-42"}
            )
            assert resp.status_code == 200

        body = resp.json()
        assert body["balance"] == 1500
        assert body["available_balance"] == 1500
        assert [t["type"] for t in body["transactions"]] == ["CREDIT"]

    async def test_top_up_must_be_positive(self, client, rider_headers):
        resp = await client.post(
            "/v1/wallets/top-up", headers=rider_headers, json={"amount": -5, "reference": "upi-43"}
        )
        assert resp.status_code == 422
