import uuid
from datetime import datetime
from sqlalchemy import String, Float, Integer, BigInteger, DateTime, ForeignKey
from sqlalchemy.orm import Mapped, mapped_column
from app.database import Base, utcnow


class ShareGroup(Base):
    __tablename__ = "share_groups"

    id: Mapped[str] = mapped_column(String, primary_key=True, default=lambda: str(uuid.uuid4()))
    # OPEN | FULL | CLOSED | CANCELLED
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="OPEN", index=True)
    capacity: Mapped[int] = mapped_column(Integer, nullable=False, default=2)
    # The single underlying ride; rides.share_group_id carries the foreign key
    ride_id: Mapped[str | None] = mapped_column(String, nullable=True, index=True)
    version: Mapped[int] = mapped_column(Integer, nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, index=True
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, onupdate=utcnow
    )

    __mapper_args__ = {"version_id_col": version}


class ShareParticipant(Base):
    __tablename__ = "share_participants"

    id: Mapped[str] = mapped_column(String, primary_key=True, default=lambda: str(uuid.uuid4()))
    group_id: Mapped[str] = mapped_column(String, ForeignKey("share_groups.id"), nullable=False, index=True)
    rider_id: Mapped[str] = mapped_column(String, nullable=False, index=True)
    booked_for_name: Mapped[str | None] = mapped_column(String(255), nullable=True)

    pickup_address: Mapped[str] = mapped_column(String(500), nullable=False)
    dropoff_address: Mapped[str] = mapped_column(String(500), nullable=False)
    pickup_lat: Mapped[float] = mapped_column(Float, nullable=False)
    pickup_lng: Mapped[float] = mapped_column(Float, nullable=False)
    dropoff_lat: Mapped[float] = mapped_column(Float, nullable=False)
    dropoff_lng: Mapped[float] = mapped_column(Float, nullable=False)

    # The rider's own undiscounted fare, charged in full if they end up riding alone
    requested_fare: Mapped[int] = mapped_column(BigInteger, nullable=False)
    fare_share_amount: Mapped[int] = mapped_column(BigInteger, nullable=False)
    # ACTIVE | CANCELLED
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="ACTIVE")
    joined_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)
