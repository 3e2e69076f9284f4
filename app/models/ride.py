import uuid
from datetime import datetime
from sqlalchemy import String, Float, Integer, BigInteger, DateTime, ForeignKey, JSON
from sqlalchemy.orm import Mapped, mapped_column
from app.database import Base, utcnow


class Ride(Base):
    __tablename__ = "rides"

    id: Mapped[str] = mapped_column(String, primary_key=True, default=lambda: str(uuid.uuid4()))
    # Account that requested the ride and pays for it
    rider_id: Mapped[str] = mapped_column(String, nullable=False, index=True)
    booked_for_name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    booked_for_phone: Mapped[str | None] = mapped_column(String(20), nullable=True)
    driver_id: Mapped[str | None] = mapped_column(String, ForeignKey("drivers.id"), nullable=True, index=True)
    share_group_id: Mapped[str | None] = mapped_column(
        String, ForeignKey("share_groups.id"), nullable=True, index=True
    )

    pickup_address: Mapped[str] = mapped_column(String(500), nullable=False)
    dropoff_address: Mapped[str] = mapped_column(String(500), nullable=False)
    pickup_lat: Mapped[float] = mapped_column(Float, nullable=False)
    pickup_lng: Mapped[float] = mapped_column(Float, nullable=False)
    dropoff_lat: Mapped[float] = mapped_column(Float, nullable=False)
    dropoff_lng: Mapped[float] = mapped_column(Float, nullable=False)

    # Minor currency units
    fare_estimate: Mapped[int] = mapped_column(BigInteger, nullable=False)
    # PRIVATE | SHARE
    mode: Mapped[str] = mapped_column(String(10), nullable=False, default="PRIVATE")
    max_passengers: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    # REQUESTED | SEARCHING_SHARE | ASSIGNED | IN_PROGRESS | COMPLETED | CANCELLED
    status: Mapped[str] = mapped_column(String(30), nullable=False, default="REQUESTED", index=True)
    status_history: Mapped[list] = mapped_column(JSON, nullable=False, default=list)
    version: Mapped[int] = mapped_column(Integer, nullable=False)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, index=True
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, onupdate=utcnow
    )

    __mapper_args__ = {"version_id_col": version}
