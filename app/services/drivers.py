"""
Driver directory: eligibility, proximity search and exclusive reservation.

A driver is eligible when approved, active, online, not reserved, and not the
driver of an IN_PROGRESS ride. Reservation is a single conditional UPDATE that
re-checks eligibility, so two concurrent matchers can never both win the same
driver.
"""
import logging

from sqlalchemy import and_, exists, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from sqlalchemy.orm.exc import StaleDataError

from app.config import Settings
from app.database import utcnow
from app.models.driver import Driver
from app.models.enums import ApprovalStatus, DriverStatus, RideStatus
from app.models.ride import Ride
from app.services.exceptions import (
    ConcurrentUpdateError,
    DriverAlreadyBusyError,
    DriverNotFoundError,
    RideValidationError,
)
from app.services.geo import Point, bounding_box, distance_km, validate_point

logger = logging.getLogger(__name__)


def _eligibility_clause():
    in_progress = exists().where(
        and_(Ride.driver_id == Driver.id, Ride.status == RideStatus.IN_PROGRESS.value)
    )
    return and_(
        Driver.approval_status == ApprovalStatus.APPROVED.value,
        Driver.status == DriverStatus.ACTIVE.value,
        Driver.is_online.is_(True),
        Driver.is_busy.is_(False),
        ~in_progress,
    )


class DriverDirectory:
    def __init__(self, sessions: async_sessionmaker[AsyncSession], settings: Settings):
        self._sessions = sessions
        self._settings = settings

    # ------------------------------------------------------------------
    # Matching
    # ------------------------------------------------------------------

    async def list_eligible_drivers(self, near: Point, limit: int | None = None) -> list[Driver]:
        """
        Eligible drivers within `matching_radius_km` of `near`, nearest first,
        ties broken by driver id.
        """
        near = validate_point(near)
        radius = self._settings.matching_radius_km
        limit = limit or self._settings.matching_max_candidates
        min_lat, max_lat, min_lng, max_lng = bounding_box(near, radius)

        async with self._sessions() as db:
            result = await db.execute(
                select(Driver).where(
                    _eligibility_clause(),
                    Driver.lat.is_not(None),
                    Driver.lng.is_not(None),
                    Driver.lat.between(min_lat, max_lat),
                    Driver.lng.between(min_lng, max_lng),
                )
            )
            drivers = list(result.scalars())

        ranked = []
        for driver in drivers:
            km = distance_km(near, Point(driver.lat, driver.lng))
            if km <= radius:
                ranked.append((km, driver.id, driver))
        ranked.sort(key=lambda row: (row[0], row[1]))
        return [driver for _, _, driver in ranked[:limit]]

    async def reserve_driver(self, driver_id: str) -> None:
        """Mark the driver unavailable. Raises DriverAlreadyBusyError if another assignment won."""
        async with self._sessions.begin() as db:
            result = await db.execute(
                update(Driver)
                .where(Driver.id == driver_id, _eligibility_clause())
                .values(is_busy=True, version=Driver.version + 1)
                .execution_options(synchronize_session=False)
            )
            if result.rowcount != 1:
                raise DriverAlreadyBusyError(f"Driver {driver_id} is no longer available")
        logger.info("Reserved driver=%s", driver_id)

    async def release_driver(self, driver_id: str) -> None:
        async with self._sessions.begin() as db:
            result = await db.execute(
                update(Driver)
                .where(Driver.id == driver_id)
                .values(is_busy=False, version=Driver.version + 1)
                .execution_options(synchronize_session=False)
            )
            if result.rowcount != 1:
                raise DriverNotFoundError(f"Driver {driver_id} not found")
        logger.info("Released driver=%s", driver_id)

    # ------------------------------------------------------------------
    # Profile and availability
    # ------------------------------------------------------------------

    async def register_driver(self, name: str, phone: str) -> Driver:
        driver = Driver(
            name=name,
            phone=phone,
            approval_status=ApprovalStatus.PENDING.value,
            status=DriverStatus.ACTIVE.value,
            is_online=False,
            is_busy=False,
        )
        try:
            async with self._sessions.begin() as db:
                db.add(driver)
        except IntegrityError:
            raise RideValidationError(f"A driver with phone {phone} already exists")
        logger.info("Registered driver=%s", driver.id)
        return driver

    async def get_driver(self, driver_id: str) -> Driver:
        async with self._sessions() as db:
            driver = await db.get(Driver, driver_id)
            if driver is None:
                raise DriverNotFoundError(f"Driver {driver_id} not found")
            return driver

    async def set_approval(self, driver_id: str, approval: ApprovalStatus) -> Driver:
        return await self._update(driver_id, approval_status=approval.value)

    async def set_status(self, driver_id: str, status: DriverStatus) -> Driver:
        return await self._update(driver_id, status=status.value)

    async def set_online(self, driver_id: str, online: bool) -> Driver:
        return await self._update(driver_id, is_online=online)

    async def update_location(self, driver_id: str, lat: float, lng: float) -> Driver:
        point = validate_point(Point(lat, lng))
        return await self._update(
            driver_id, lat=point.lat, lng=point.lng, location_updated_at=utcnow()
        )

    async def _update(self, driver_id: str, **values) -> Driver:
        # A reservation may bump the version between our read and write; re-read and retry
        for attempt in range(1, 4):
            try:
                async with self._sessions.begin() as db:
                    driver = await db.get(Driver, driver_id)
                    if driver is None:
                        raise DriverNotFoundError(f"Driver {driver_id} not found")
                    for key, value in values.items():
                        setattr(driver, key, value)
                break
            except StaleDataError:
                if attempt == 3:
                    raise ConcurrentUpdateError(f"Driver {driver_id} is being updated concurrently")
        logger.info("Driver %s updated: %s", driver_id, ", ".join(sorted(values)))
        return driver
