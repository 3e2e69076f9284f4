"""
Wallet ledger: balances, holds and the append-only transaction log.

Every operation runs in its own database transaction. Balance checks and
balance changes are single conditional UPDATE statements, so two concurrent
holds on one wallet can never overcommit it. A hold leaves HELD at most once:
the transition is itself a conditional UPDATE on the hold's status.

Balance effect per transaction type:
  CREDIT  +amount
  DEBIT   -amount
  PENALTY -amount
  HOLD / RELEASE move locked_balance only
"""
import logging
import uuid
from dataclasses import dataclass

from sqlalchemy import case, func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.database import utcnow
from app.models.enums import HoldStatus, OwnerType, TransactionType
from app.models.wallet import Wallet, WalletHold, WalletTransaction
from app.services.exceptions import (
    HoldNotFoundError,
    InsufficientFundsError,
    InvalidStateError,
    RideValidationError,
    WalletNotFoundError,
)
from app.services.pricing import penalty_split

logger = logging.getLogger(__name__)

PLATFORM_OWNER_ID = "PLATFORM"


@dataclass
class Settlement:
    hold_id: str
    retained: int
    refunded: int


class WalletLedger:
    def __init__(self, sessions: async_sessionmaker[AsyncSession], currency: str = "INR"):
        self._sessions = sessions
        self._currency = currency

    # ------------------------------------------------------------------
    # Wallets
    # ------------------------------------------------------------------

    async def get_or_create_wallet(self, owner_id: str, owner_type: OwnerType) -> Wallet:
        async with self._sessions() as db:
            wallet = await self._find_wallet(db, owner_id, owner_type)
            if wallet is not None:
                return wallet

        try:
            async with self._sessions.begin() as db:
                wallet = Wallet(
                    owner_id=owner_id,
                    owner_type=owner_type.value,
                    balance=0,
                    locked_balance=0,
                    currency=self._currency,
                )
                db.add(wallet)
            logger.info("Created %s wallet for %s", owner_type.value, owner_id)
            return wallet
        except IntegrityError:
            # Another request created it first
            async with self._sessions() as db:
                wallet = await self._find_wallet(db, owner_id, owner_type)
                if wallet is None:
                    raise
                return wallet

    async def platform_wallet(self) -> Wallet:
        return await self.get_or_create_wallet(PLATFORM_OWNER_ID, OwnerType.PLATFORM)

    async def get_wallet(self, wallet_id: str) -> Wallet:
        async with self._sessions() as db:
            wallet = await db.get(Wallet, wallet_id)
            if wallet is None:
                raise WalletNotFoundError(f"Wallet {wallet_id} not found")
            return wallet

    async def transactions(self, wallet_id: str, limit: int = 50) -> list[WalletTransaction]:
        async with self._sessions() as db:
            result = await db.execute(
                select(WalletTransaction)
                .where(WalletTransaction.wallet_id == wallet_id)
                .order_by(WalletTransaction.created_at.desc(), WalletTransaction.id)
                .limit(limit)
            )
            return list(result.scalars())

    async def holds_for_ride(
        self, ride_id: str, status: HoldStatus | None = HoldStatus.HELD
    ) -> list[WalletHold]:
        async with self._sessions() as db:
            query = select(WalletHold).where(WalletHold.ride_id == ride_id)
            if status is not None:
                query = query.where(WalletHold.status == status.value)
            result = await db.execute(query.order_by(WalletHold.created_at, WalletHold.id))
            return list(result.scalars())

    # ------------------------------------------------------------------
    # Ledger operations
    # ------------------------------------------------------------------

    async def credit(
        self,
        wallet_id: str,
        amount: int,
        reference: str,
        ride_id: str | None = None,
        description: str | None = None,
    ) -> WalletTransaction:
        """
        Adds `amount` to the wallet. A reference that was already posted
        returns the existing transaction instead of crediting twice.
        """
        if amount <= 0:
            raise RideValidationError("Credit amount must be positive")

        async with self._sessions.begin() as db:
            existing = await self._find_transaction(db, reference)
            if existing is not None:
                if existing.wallet_id != wallet_id or existing.amount != amount:
                    raise InvalidStateError(f"Duplicate transaction reference {reference}")
                logger.info("Credit replay ref=%s ignored", reference)
                return existing

            await self._adjust(db, wallet_id, balance=amount)
            txn = WalletTransaction(
                wallet_id=wallet_id,
                type=TransactionType.CREDIT.value,
                amount=amount,
                reference=reference,
                ride_id=ride_id,
                description=description or "Credit",
            )
            db.add(txn)

        logger.info("CREDIT %s to wallet=%s ref=%s", amount, wallet_id, reference)
        return txn

    async def hold(
        self,
        wallet_id: str,
        amount: int,
        reference: str,
        ride_id: str | None = None,
        participant_id: str | None = None,
    ) -> str:
        """Reserve `amount` of the available balance. Returns the hold id."""
        if amount <= 0:
            raise RideValidationError("Hold amount must be positive")

        hold_id = str(uuid.uuid4())
        async with self._sessions.begin() as db:
            result = await db.execute(
                update(Wallet)
                .where(
                    Wallet.id == wallet_id,
                    Wallet.balance - Wallet.locked_balance >= amount,
                )
                .values(
                    locked_balance=Wallet.locked_balance + amount,
                    version=Wallet.version + 1,
                )
                .execution_options(synchronize_session=False)
            )
            if result.rowcount != 1:
                wallet = await db.get(Wallet, wallet_id)
                if wallet is None:
                    raise WalletNotFoundError(f"Wallet {wallet_id} not found")
                raise InsufficientFundsError(
                    f"Insufficient funds. Available: {wallet.available_balance}, Required: {amount}"
                )

            db.add(
                WalletHold(
                    id=hold_id,
                    wallet_id=wallet_id,
                    amount=amount,
                    reference=reference,
                    ride_id=ride_id,
                    participant_id=participant_id,
                    status=HoldStatus.HELD.value,
                )
            )
            db.add(
                WalletTransaction(
                    wallet_id=wallet_id,
                    type=TransactionType.HOLD.value,
                    amount=amount,
                    reference=f"hold:{hold_id}",
                    hold_id=hold_id,
                    ride_id=ride_id,
                    description=reference,
                )
            )

        logger.info("HOLD %s on wallet=%s hold=%s ref=%s", amount, wallet_id, hold_id, reference)
        return hold_id

    async def release_hold(self, hold_id: str) -> int:
        """Return the held amount to the available balance. Returns the amount released."""
        async with self._sessions.begin() as db:
            hold = await self._resolve_hold(db, hold_id, HoldStatus.RELEASED)
            await self._adjust(db, hold.wallet_id, locked=-hold.amount)
            db.add(
                WalletTransaction(
                    wallet_id=hold.wallet_id,
                    type=TransactionType.RELEASE.value,
                    amount=hold.amount,
                    reference=f"release:{hold_id}",
                    hold_id=hold_id,
                    ride_id=hold.ride_id,
                    description="Hold released",
                )
            )

        logger.info("RELEASE %s on wallet=%s hold=%s", hold.amount, hold.wallet_id, hold_id)
        return hold.amount

    async def settle_hold(self, hold_id: str, penalty_fraction: float) -> Settlement:
        """
        Split a hold into a retained penalty (moved to the platform wallet)
        and a refund that returns to the owner's available balance.
        """
        if not 0 <= penalty_fraction <= 1:
            raise RideValidationError("penalty_fraction must be between 0 and 1")
        if penalty_fraction == 0:
            released = await self.release_hold(hold_id)
            return Settlement(hold_id=hold_id, retained=0, refunded=released)

        platform = await self.platform_wallet()
        async with self._sessions.begin() as db:
            hold = await self._resolve_hold(db, hold_id, HoldStatus.SETTLED)
            retained, refunded = penalty_split(hold.amount, penalty_fraction)

            await self._adjust(db, hold.wallet_id, balance=-retained, locked=-hold.amount)
            if retained:
                await self._adjust(db, platform.id, balance=retained)
                db.add(
                    WalletTransaction(
                        wallet_id=hold.wallet_id,
                        type=TransactionType.PENALTY.value,
                        amount=retained,
                        reference=f"penalty:{hold_id}",
                        hold_id=hold_id,
                        ride_id=hold.ride_id,
                        description=f"Cancellation penalty ({penalty_fraction:.0%})",
                    )
                )
                db.add(
                    WalletTransaction(
                        wallet_id=platform.id,
                        type=TransactionType.CREDIT.value,
                        amount=retained,
                        reference=f"penalty-income:{hold_id}",
                        hold_id=hold_id,
                        ride_id=hold.ride_id,
                        description="Cancellation penalty income",
                    )
                )
            if refunded:
                db.add(
                    WalletTransaction(
                        wallet_id=hold.wallet_id,
                        type=TransactionType.RELEASE.value,
                        amount=refunded,
                        reference=f"refund:{hold_id}",
                        hold_id=hold_id,
                        ride_id=hold.ride_id,
                        description="Cancellation refund",
                    )
                )

        logger.info(
            "SETTLE hold=%s wallet=%s retained=%s refunded=%s",
            hold_id, hold.wallet_id, retained, refunded,
        )
        return Settlement(hold_id=hold_id, retained=retained, refunded=refunded)

    async def convert_hold_to_debit(self, hold_id: str) -> int:
        """Realize the full held amount as a permanent debit. Returns the amount."""
        async with self._sessions.begin() as db:
            hold = await self._resolve_hold(db, hold_id, HoldStatus.DEBITED)
            await self._adjust(db, hold.wallet_id, balance=-hold.amount, locked=-hold.amount)
            db.add(
                WalletTransaction(
                    wallet_id=hold.wallet_id,
                    type=TransactionType.DEBIT.value,
                    amount=hold.amount,
                    reference=f"debit:{hold_id}",
                    hold_id=hold_id,
                    ride_id=hold.ride_id,
                    description="Trip fare",
                )
            )

        logger.info("DEBIT %s from wallet=%s hold=%s", hold.amount, hold.wallet_id, hold_id)
        return hold.amount

    async def reconcile(self, wallet_id: str) -> bool:
        """
        True when the signed sum of the wallet's transactions equals its
        balance and its locked balance equals the sum of its open holds.
        """
        async with self._sessions() as db:
            wallet = await db.get(Wallet, wallet_id)
            if wallet is None:
                raise WalletNotFoundError(f"Wallet {wallet_id} not found")

            signed = case(
                (WalletTransaction.type == TransactionType.CREDIT.value, WalletTransaction.amount),
                (
                    WalletTransaction.type.in_(
                        [TransactionType.DEBIT.value, TransactionType.PENALTY.value]
                    ),
                    -WalletTransaction.amount,
                ),
                else_=0,
            )
            ledger_balance = await db.scalar(
                select(func.coalesce(func.sum(signed), 0)).where(
                    WalletTransaction.wallet_id == wallet_id
                )
            )
            open_holds = await db.scalar(
                select(func.coalesce(func.sum(WalletHold.amount), 0)).where(
                    WalletHold.wallet_id == wallet_id,
                    WalletHold.status == HoldStatus.HELD.value,
                )
            )

        ok = int(ledger_balance) == wallet.balance and int(open_holds) == wallet.locked_balance
        if not ok:
            logger.warning(
                "Wallet %s does not reconcile: balance=%s ledger=%s locked=%s holds=%s",
                wallet_id, wallet.balance, ledger_balance, wallet.locked_balance, open_holds,
            )
        return ok

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    @staticmethod
    async def _find_wallet(db: AsyncSession, owner_id: str, owner_type: OwnerType) -> Wallet | None:
        result = await db.execute(
            select(Wallet).where(
                Wallet.owner_id == owner_id, Wallet.owner_type == owner_type.value
            )
        )
        return result.scalar_one_or_none()

    @staticmethod
    async def _find_transaction(db: AsyncSession, reference: str) -> WalletTransaction | None:
        result = await db.execute(
            select(WalletTransaction).where(WalletTransaction.reference == reference)
        )
        return result.scalar_one_or_none()

    @staticmethod
    async def _resolve_hold(db: AsyncSession, hold_id: str, new_status: HoldStatus) -> WalletHold:
        hold = await db.get(WalletHold, hold_id)
        if hold is None:
            raise HoldNotFoundError(f"Hold {hold_id} not found")

        result = await db.execute(
            update(WalletHold)
            .where(WalletHold.id == hold_id, WalletHold.status == HoldStatus.HELD.value)
            .values(status=new_status.value, resolved_at=utcnow())
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            await db.refresh(hold)
            raise InvalidStateError(f"Hold {hold_id} is already {hold.status}")
        return hold

    @staticmethod
    async def _adjust(db: AsyncSession, wallet_id: str, balance: int = 0, locked: int = 0) -> None:
        result = await db.execute(
            update(Wallet)
            .where(Wallet.id == wallet_id)
            .values(
                balance=Wallet.balance + balance,
                locked_balance=Wallet.locked_balance + locked,
                version=Wallet.version + 1,
            )
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            raise WalletNotFoundError(f"Wallet {wallet_id} not found")
