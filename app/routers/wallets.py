"""
Wallets router: GET /v1/wallets/me, POST /v1/wallets/top-up
"""
import logging

from fastapi import APIRouter, Depends, Header

from app.middleware.auth import get_current_rider
from app.middleware.idempotency import check_idempotency, store_idempotency_result
from app.models.enums import OwnerType
from app.schemas.schemas import TopUpRequest, WalletResponse, WalletTransactionResponse
from app.services.engine import CoordinationEngine, get_engine

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/v1/wallets", tags=["Wallets"])


async def _wallet_response(engine: CoordinationEngine, rider_id: str) -> WalletResponse:
    wallet = await engine.ledger.get_or_create_wallet(rider_id, OwnerType.RIDER)
    transactions = await engine.ledger.transactions(wallet.id)
    return WalletResponse(
        id=wallet.id,
        owner_id=wallet.owner_id,
        balance=wallet.balance,
        locked_balance=wallet.locked_balance,
        available_balance=wallet.available_balance,
        currency=wallet.currency,
        transactions=[WalletTransactionResponse.model_validate(t) for t in transactions],
    )


@router.get("/me", response_model=WalletResponse)
async def get_my_wallet(
    engine: CoordinationEngine = Depends(get_engine),
    rider_id: str = Depends(get_current_rider),
):
    return await _wallet_response(engine, rider_id)


@router.post("/top-up", response_model=WalletResponse)
async def top_up(
    payload: TopUpRequest,
    engine: CoordinationEngine = Depends(get_engine),
    rider_id: str = Depends(get_current_rider),
    idempotency_key: str | None = Header(default=None, alias="Idempotency-Key"),
):
    """
    Credit the rider's wallet. Idempotent twice over: the Idempotency-Key
    header replays the first response, and the ledger refuses to post the
    same reference twice.
    """
    cached = await check_idempotency("top-up", rider_id, idempotency_key)
    if cached:
        return cached

    wallet = await engine.ledger.get_or_create_wallet(rider_id, OwnerType.RIDER)
    await engine.ledger.credit(
        wallet.id,
        payload.amount,
        reference=f"top-up:{rider_id}:{payload.reference}",
        description="Wallet top-up",
    )
    response = await _wallet_response(engine, rider_id)

    await store_idempotency_result("top-up", rider_id, idempotency_key, 200, response.model_dump(mode="json"))
    return response
