import uuid
from datetime import datetime
from sqlalchemy import String, Integer, BigInteger, DateTime, ForeignKey, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column
from app.database import Base, utcnow


class Wallet(Base):
    __tablename__ = "wallets"
    __table_args__ = (UniqueConstraint("owner_id", "owner_type", name="uq_wallet_owner"),)

    id: Mapped[str] = mapped_column(String, primary_key=True, default=lambda: str(uuid.uuid4()))
    owner_id: Mapped[str] = mapped_column(String, nullable=False)
    # RIDER | DRIVER | PLATFORM
    owner_type: Mapped[str] = mapped_column(String(20), nullable=False)
    # Minor currency units; available = balance - locked_balance
    balance: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)
    locked_balance: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)
    currency: Mapped[str] = mapped_column(String(5), nullable=False, default="INR")
    version: Mapped[int] = mapped_column(Integer, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, onupdate=utcnow
    )

    __mapper_args__ = {"version_id_col": version}

    @property
    def available_balance(self) -> int:
        return self.balance - self.locked_balance


class WalletHold(Base):
    __tablename__ = "wallet_holds"

    id: Mapped[str] = mapped_column(String, primary_key=True, default=lambda: str(uuid.uuid4()))
    wallet_id: Mapped[str] = mapped_column(String, ForeignKey("wallets.id"), nullable=False, index=True)
    amount: Mapped[int] = mapped_column(BigInteger, nullable=False)
    reference: Mapped[str] = mapped_column(String(255), nullable=False)
    ride_id: Mapped[str | None] = mapped_column(String, nullable=True, index=True)
    participant_id: Mapped[str | None] = mapped_column(String, nullable=True, index=True)
    # HELD | RELEASED | DEBITED | SETTLED
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="HELD", index=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)
    resolved_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)


class WalletTransaction(Base):
    __tablename__ = "wallet_transactions"

    id: Mapped[str] = mapped_column(String, primary_key=True, default=lambda: str(uuid.uuid4()))
    wallet_id: Mapped[str] = mapped_column(String, ForeignKey("wallets.id"), nullable=False, index=True)
    # HOLD | RELEASE | DEBIT | CREDIT | PENALTY
    type: Mapped[str] = mapped_column(String(20), nullable=False)
    amount: Mapped[int] = mapped_column(BigInteger, nullable=False)
    reference: Mapped[str] = mapped_column(String(255), unique=True, nullable=False)
    hold_id: Mapped[str | None] = mapped_column(String, nullable=True, index=True)
    ride_id: Mapped[str | None] = mapped_column(String, nullable=True, index=True)
    description: Mapped[str | None] = mapped_column(String(255), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, index=True
    )
