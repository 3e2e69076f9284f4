import json
from typing import Optional

from fastapi import Response
from fastapi.responses import JSONResponse

from app.redis_client import cache_get, cache_set, get_redis


IDEMPOTENCY_TTL = 86400  # 24 hours


def _cache_key(scope: str, owner_id: str, key: str) -> str:
    # Scoped per caller so two riders cannot collide on the same client key
    return f"idempotency:{scope}:{owner_id}:{key}"


async def check_idempotency(scope: str, owner_id: str, key: Optional[str]) -> Optional[Response]:
    """
    Returns the stored Response if this Idempotency-Key was already used,
    otherwise None (proceed normally).
    """
    if not key:
        return None

    redis = await get_redis()
    cached = await cache_get(redis, _cache_key(scope, owner_id, key))
    if cached:
        data = json.loads(cached)
        return JSONResponse(
            content=data["body"],
            status_code=data["status_code"],
            headers={"X-Idempotency-Replay": "true"},
        )
    return None


async def store_idempotency_result(
    scope: str, owner_id: str, key: Optional[str], status_code: int, body: dict
) -> None:
    """Persist the response for the given idempotency key (24h TTL)."""
    if not key:
        return
    redis = await get_redis()
    await cache_set(
        redis,
        _cache_key(scope, owner_id, key),
        json.dumps({"status_code": status_code, "body": body}),
        IDEMPOTENCY_TTL,
    )
