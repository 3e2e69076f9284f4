import uuid
from datetime import datetime
from sqlalchemy import String, Float, Boolean, Integer, DateTime
from sqlalchemy.orm import Mapped, mapped_column
from app.database import Base, utcnow


class Driver(Base):
    __tablename__ = "drivers"

    id: Mapped[str] = mapped_column(String, primary_key=True, default=lambda: str(uuid.uuid4()))
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    phone: Mapped[str] = mapped_column(String(20), unique=True, nullable=False)
    # PENDING | APPROVED | REJECTED
    approval_status: Mapped[str] = mapped_column(String(20), nullable=False, default="PENDING", index=True)
    # ACTIVE | SUSPENDED
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="ACTIVE", index=True)
    is_online: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False, index=True)
    # Set while reserved for an ASSIGNED or IN_PROGRESS ride
    is_busy: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    lat: Mapped[float | None] = mapped_column(Float, nullable=True)
    lng: Mapped[float | None] = mapped_column(Float, nullable=True)
    location_updated_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    version: Mapped[int] = mapped_column(Integer, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, onupdate=utcnow
    )

    __mapper_args__ = {"version_id_col": version}
