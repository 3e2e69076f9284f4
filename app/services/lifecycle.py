"""
Ride lifecycle manager.

Flow for a private request:
  1. Validate pickup/dropoff and fare, create the ride in REQUESTED
  2. Ask the driver directory for eligible drivers near the pickup
  3. Reserve the nearest candidate (conditional UPDATE, skip if busy)
  4. Compare-and-swap the ride REQUESTED -> ASSIGNED against the version read in step 1
  5. No candidate left -> ride stays REQUESTED and is retried on the next trigger

Share requests are handed to the share coordinator, which calls back into
`match_driver` once a group fills or converts to private.

State changes always commit before money moves; holds placed for a
transition that then loses its version race are released again.
"""
import asyncio
import logging
import uuid
import weakref
from dataclasses import dataclass
from datetime import datetime
from typing import TYPE_CHECKING, Callable, Optional

from sqlalchemy import and_, or_, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from sqlalchemy.orm.exc import StaleDataError

from app.config import Settings
from app.database import utcnow
from app.models.enums import (
    ACTIVE_RIDE_STATUSES,
    OwnerType,
    ParticipantStatus,
    RideMode,
    RideStatus,
)
from app.models.ride import Ride
from app.models.share import ShareParticipant
from app.models.wallet import WalletHold
from app.schemas.events import (
    NoDriverAvailable,
    PaymentHoldFailed,
    RideAssigned,
    RideCancelled,
    RideCompleted,
    RideRequested,
    RideStarted,
)
from app.schemas.schemas import RideCreateRequest
from app.services.drivers import DriverDirectory
from app.services.exceptions import (
    ActiveRideExistsError,
    ConcurrentUpdateError,
    DriverAlreadyBusyError,
    InsufficientFundsError,
    InvalidStateError,
    NotParticipantError,
    RideNotFoundError,
    RideValidationError,
)
from app.services.geo import Point, validate_point
from app.services.notifications import EventEmitter
from app.services.pricing import commission_split, enforce_minimum_fare
from app.services.state_machine import is_terminal, transition_ride
from app.services.wallet import WalletLedger

if TYPE_CHECKING:
    from app.services.share import ShareCoordinator

logger = logging.getLogger(__name__)

CANCEL_ATTEMPTS = 3


@dataclass
class MatchResult:
    ride: Ride
    assigned: bool
    driver_id: Optional[str] = None


@dataclass
class CancellationResult:
    ride: Ride
    rider_id: str
    ride_cancelled: bool
    penalty_amount: int = 0
    refund_amount: int = 0


@dataclass
class CompletionResult:
    ride: Ride
    collected: int
    driver_payout: int
    commission: int


class RideLifecycleManager:
    def __init__(
        self,
        sessions: async_sessionmaker[AsyncSession],
        drivers: DriverDirectory,
        ledger: WalletLedger,
        events: EventEmitter,
        settings: Settings,
        clock: Callable[[], datetime] = utcnow,
    ):
        self._sessions = sessions
        self._drivers = drivers
        self._ledger = ledger
        self._events = events
        self._settings = settings
        self._clock = clock
        self._shares: Optional["ShareCoordinator"] = None
        self._rider_locks = weakref.WeakValueDictionary()

    def bind_share_coordinator(self, shares: "ShareCoordinator") -> None:
        self._shares = shares

    @property
    def shares(self) -> "ShareCoordinator":
        if self._shares is None:
            raise RuntimeError("Share coordinator is not bound")
        return self._shares

    @property
    def ledger(self) -> WalletLedger:
        return self._ledger

    @property
    def drivers(self) -> DriverDirectory:
        return self._drivers

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    async def get_ride(self, ride_id: str) -> Ride:
        async with self._sessions() as db:
            ride = await db.get(Ride, ride_id)
            if ride is None:
                raise RideNotFoundError(f"Ride {ride_id} not found")
            return ride

    async def active_ride_for(self, rider_id: str) -> Optional[Ride]:
        """The rider's current non-terminal ride, private or shared."""
        joined_groups = select(ShareParticipant.group_id).where(
            ShareParticipant.rider_id == rider_id,
            ShareParticipant.status == ParticipantStatus.ACTIVE.value,
        )
        async with self._sessions() as db:
            result = await db.execute(
                select(Ride)
                .where(
                    Ride.status.in_([s.value for s in ACTIVE_RIDE_STATUSES]),
                    or_(
                        and_(Ride.share_group_id.is_(None), Ride.rider_id == rider_id),
                        Ride.share_group_id.in_(joined_groups),
                    ),
                )
                .order_by(Ride.created_at.desc())
                .limit(1)
            )
            return result.scalar_one_or_none()

    async def rider_ids(self, ride: Ride) -> list[str]:
        if ride.share_group_id is None:
            return [ride.rider_id]
        members = await self.shares.active_participants(ride.share_group_id)
        return [m.rider_id for m in members] or [ride.rider_id]

    # ------------------------------------------------------------------
    # Request and matching
    # ------------------------------------------------------------------

    async def request_ride(self, rider_id: str, request: RideCreateRequest) -> Ride:
        # Serialized per rider: the active-ride check and the insert must not interleave
        async with self._rider_lock(rider_id):
            return await self._request_ride(rider_id, request)

    async def _request_ride(self, rider_id: str, request: RideCreateRequest) -> Ride:
        pickup, dropoff = self._validate(request)
        fare = enforce_minimum_fare(
            request.fare_estimate,
            self._settings.commission_rate,
            self._settings.minimum_platform_take,
        )
        if fare != request.fare_estimate:
            logger.info("Fare %s raised to minimum fare %s", request.fare_estimate, fare)

        # Booking for someone else may run alongside the booker's own ride
        if request.booked_for_name is None and await self.active_ride_for(rider_id) is not None:
            raise ActiveRideExistsError("You already have an active ride")

        if request.mode == RideMode.SHARE:
            outcome = await self.shares.request_share(rider_id, request, pickup, dropoff, fare)
            return outcome.ride

        now = self._clock()
        ride = Ride(
            id=str(uuid.uuid4()),
            rider_id=rider_id,
            booked_for_name=request.booked_for_name,
            booked_for_phone=request.booked_for_phone,
            pickup_address=request.pickup_address,
            dropoff_address=request.dropoff_address,
            pickup_lat=pickup.lat,
            pickup_lng=pickup.lng,
            dropoff_lat=dropoff.lat,
            dropoff_lng=dropoff.lng,
            fare_estimate=fare,
            mode=RideMode.PRIVATE.value,
            max_passengers=1,
            status=RideStatus.REQUESTED.value,
            status_history=[
                {"status": RideStatus.REQUESTED.value, "actor": f"rider:{rider_id}", "at": now.isoformat()}
            ],
            created_at=now,
        )
        async with self._sessions.begin() as db:
            db.add(ride)
        logger.info("Ride %s requested by rider=%s fare=%s", ride.id, rider_id, fare)

        await self._events.emit(
            RideRequested(ride_id=ride.id, rider_id=rider_id, mode=ride.mode, fare_estimate=fare)
        )
        result = await self.match_driver(ride.id)
        return result.ride

    async def match_driver(self, ride_id: str, notify: bool = True) -> MatchResult:
        """
        Bind the nearest eligible driver to a REQUESTED ride.
        Returns an unassigned result (not an error) when every candidate is taken.
        """
        ride = await self.get_ride(ride_id)
        if ride.status == RideStatus.ASSIGNED.value:
            return MatchResult(ride=ride, assigned=True, driver_id=ride.driver_id)
        if ride.status != RideStatus.REQUESTED.value:
            raise InvalidStateError(f"Ride {ride_id} cannot be matched while {ride.status}")

        candidates = await self._drivers.list_eligible_drivers(Point(ride.pickup_lat, ride.pickup_lng))
        for driver in candidates:
            try:
                await self._drivers.reserve_driver(driver.id)
            except DriverAlreadyBusyError:
                logger.info("Driver %s taken by another ride, trying next candidate", driver.id)
                continue

            try:
                ride = await self._cas_ride(
                    ride.id,
                    ride.version,
                    lambda r, d=driver.id: self._assign(r, d),
                )
            except (ConcurrentUpdateError, InvalidStateError) as exc:
                await self._drivers.release_driver(driver.id)
                ride = await self.get_ride(ride_id)
                logger.warning("Assignment of ride=%s to driver=%s lost: %s", ride_id, driver.id, exc)
                if ride.status == RideStatus.REQUESTED.value:
                    continue
                return MatchResult(
                    ride=ride,
                    assigned=ride.status == RideStatus.ASSIGNED.value,
                    driver_id=ride.driver_id,
                )

            logger.info("Matched ride=%s to driver=%s", ride.id, driver.id)
            await self._events.emit(
                RideAssigned(ride_id=ride.id, driver_id=driver.id, rider_ids=await self.rider_ids(ride))
            )
            return MatchResult(ride=ride, assigned=True, driver_id=driver.id)

        logger.warning("No driver available for ride=%s (%s candidates)", ride_id, len(candidates))
        if notify:
            await self._events.emit(
                NoDriverAvailable(ride_id=ride.id, rider_ids=await self.rider_ids(ride))
            )
        return MatchResult(ride=ride, assigned=False)

    async def rematch_waiting(self, limit: Optional[int] = None) -> int:
        """Retry matching for rides still waiting for a driver. Returns how many were assigned."""
        limit = limit or self._settings.rematch_batch_size
        async with self._sessions() as db:
            result = await db.execute(
                select(Ride.id)
                .where(Ride.status == RideStatus.REQUESTED.value)
                .order_by(Ride.created_at, Ride.id)
                .limit(limit)
            )
            ride_ids = list(result.scalars())

        assigned = 0
        for ride_id in ride_ids:
            try:
                result = await self.match_driver(ride_id, notify=False)
            except (InvalidStateError, ConcurrentUpdateError) as exc:
                logger.info("Skipping rematch of ride=%s: %s", ride_id, exc)
                continue
            if result.assigned:
                assigned += 1
        if ride_ids:
            logger.info("Rematch pass: %s/%s waiting rides assigned", assigned, len(ride_ids))
        return assigned

    # ------------------------------------------------------------------
    # Trip progress
    # ------------------------------------------------------------------

    async def start_ride(self, ride_id: str, driver_id: Optional[str] = None) -> Ride:
        ride = await self.get_ride(ride_id)
        if ride.status != RideStatus.ASSIGNED.value:
            raise InvalidStateError(f"Ride {ride_id} cannot start while {ride.status}")
        if driver_id is not None and ride.driver_id != driver_id:
            raise NotParticipantError(f"Driver {driver_id} is not assigned to ride {ride_id}")

        hold_ids: list[str] = []
        held: dict[str, int] = {}
        for payer_id, amount, participant_id in await self._fare_payers(ride):
            wallet = await self._ledger.get_or_create_wallet(payer_id, OwnerType.RIDER)
            try:
                hold_id = await self._ledger.hold(
                    wallet.id,
                    amount,
                    reference=f"ride:{ride.id}",
                    ride_id=ride.id,
                    participant_id=participant_id,
                )
            except InsufficientFundsError:
                await self._release_holds(hold_ids)
                logger.warning("Ride %s not started: rider=%s cannot cover %s", ride.id, payer_id, amount)
                await self._events.emit(
                    PaymentHoldFailed(ride_id=ride.id, rider_id=payer_id, amount=amount)
                )
                raise
            hold_ids.append(hold_id)
            held[payer_id] = amount

        actor = f"driver:{ride.driver_id}"
        try:
            ride = await self._cas_ride(
                ride.id,
                ride.version,
                lambda r: transition_ride(r, RideStatus.IN_PROGRESS, actor, self._clock()),
            )
        except (ConcurrentUpdateError, InvalidStateError):
            await self._release_holds(hold_ids)
            raise

        logger.info("Ride %s started, held %s", ride.id, held)
        await self._events.emit(RideStarted(ride_id=ride.id, driver_id=ride.driver_id, held=held))
        return ride

    async def complete_ride(self, ride_id: str, driver_id: Optional[str] = None) -> CompletionResult:
        ride = await self.get_ride(ride_id)
        if driver_id is not None and ride.driver_id != driver_id:
            raise NotParticipantError(f"Driver {driver_id} is not assigned to ride {ride_id}")

        actor = f"driver:{ride.driver_id}"
        ride = await self._cas_ride(
            ride.id,
            ride.version,
            lambda r: transition_ride(r, RideStatus.COMPLETED, actor, self._clock()),
        )

        collected = 0
        for hold in await self._collectable_holds(ride):
            try:
                collected += await self._ledger.convert_hold_to_debit(hold.id)
            except InvalidStateError as exc:
                # Settled by a concurrent participant cancellation
                logger.info("Hold %s skipped at completion: %s", hold.id, exc)

        payout, commission = commission_split(collected, self._settings.commission_rate)
        if payout:
            driver_wallet = await self._ledger.get_or_create_wallet(ride.driver_id, OwnerType.DRIVER)
            await self._ledger.credit(
                driver_wallet.id,
                payout,
                reference=f"payout:{ride.id}",
                ride_id=ride.id,
                description=f"Trip {ride.id} payout",
            )
        if commission:
            platform = await self._ledger.platform_wallet()
            await self._ledger.credit(
                platform.id,
                commission,
                reference=f"commission:{ride.id}",
                ride_id=ride.id,
                description=f"Trip {ride.id} commission",
            )
        await self._drivers.release_driver(ride.driver_id)

        logger.info(
            "Ride %s completed: collected=%s payout=%s commission=%s",
            ride.id, collected, payout, commission,
        )
        await self._events.emit(
            RideCompleted(
                ride_id=ride.id,
                driver_id=ride.driver_id,
                collected=collected,
                driver_payout=payout,
                commission=commission,
            )
        )
        return CompletionResult(ride=ride, collected=collected, driver_payout=payout, commission=commission)

    # ------------------------------------------------------------------
    # Cancellation
    # ------------------------------------------------------------------

    async def cancel_ride(self, ride_id: str, rider_id: str) -> CancellationResult:
        """
        Cancel on behalf of `rider_id`. Always takes effect immediately; a
        concurrent update that wins the version race is re-read and the
        cancellation applied to the new state.
        """
        for attempt in range(1, CANCEL_ATTEMPTS + 1):
            ride = await self.get_ride(ride_id)
            if is_terminal(ride.status):
                raise InvalidStateError(f"Cannot cancel ride. Status is {ride.status}")
            try:
                if ride.mode == RideMode.SHARE.value:
                    return await self.shares.cancel_participant(ride, rider_id)
                return await self._cancel_private(ride, rider_id)
            except ConcurrentUpdateError:
                if attempt == CANCEL_ATTEMPTS:
                    raise
                logger.info("Ride %s changed during cancellation, retrying (%s)", ride_id, attempt)
        raise ConcurrentUpdateError(f"Ride {ride_id} could not be cancelled")

    async def _cancel_private(self, ride: Ride, rider_id: str) -> CancellationResult:
        if ride.rider_id != rider_id:
            raise NotParticipantError(f"Rider {rider_id} is not on ride {ride.id}")

        penalty_rate = (
            self._settings.cancellation_penalty_rate
            if ride.status == RideStatus.IN_PROGRESS.value
            else 0
        )
        now = self._clock()
        ride = await self._cas_ride(
            ride.id,
            ride.version,
            lambda r: transition_ride(r, RideStatus.CANCELLED, f"rider:{rider_id}", now),
        )
        if ride.share_group_id is not None:
            await self.shares.retire_participants(ride.share_group_id)

        penalty, refund = await self.settle_holds(
            await self._ledger.holds_for_ride(ride.id), penalty_rate
        )
        if ride.driver_id is not None:
            await self._drivers.release_driver(ride.driver_id)

        logger.info("Ride %s cancelled by rider=%s penalty=%s refund=%s", ride.id, rider_id, penalty, refund)
        result = CancellationResult(
            ride=ride,
            rider_id=rider_id,
            ride_cancelled=True,
            penalty_amount=penalty,
            refund_amount=refund,
        )
        await self.emit_cancelled(result)
        return result

    async def settle_holds(self, holds, penalty_rate: float) -> tuple[int, int]:
        penalty = refund = 0
        for hold in holds:
            try:
                settlement = await self._ledger.settle_hold(hold.id, penalty_rate)
            except InvalidStateError as exc:
                logger.info("Hold %s already resolved: %s", hold.id, exc)
                continue
            penalty += settlement.retained
            refund += settlement.refunded
        return penalty, refund

    async def emit_cancelled(self, result: CancellationResult) -> None:
        await self._events.emit(
            RideCancelled(
                ride_id=result.ride.id,
                rider_id=result.rider_id,
                ride_cancelled=result.ride_cancelled,
                penalty_amount=result.penalty_amount,
                refund_amount=result.refund_amount,
                driver_id=result.ride.driver_id,
            )
        )

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _validate(self, request: RideCreateRequest) -> tuple[Point, Point]:
        if not request.pickup_address or not request.pickup_address.strip():
            raise RideValidationError("Pickup address is required")
        if not request.dropoff_address or not request.dropoff_address.strip():
            raise RideValidationError("Dropoff address is required")
        coords = (request.pickup_lat, request.pickup_lng, request.dropoff_lat, request.dropoff_lng)
        if any(c is None for c in coords):
            raise RideValidationError("Pickup and dropoff coordinates are required")
        if request.fare_estimate is None or request.fare_estimate <= 0:
            raise RideValidationError("Fare estimate must be positive")
        pickup = validate_point(Point(request.pickup_lat, request.pickup_lng))
        dropoff = validate_point(Point(request.dropoff_lat, request.dropoff_lng))
        return pickup, dropoff

    def _rider_lock(self, rider_id: str) -> asyncio.Lock:
        lock = self._rider_locks.get(rider_id)
        if lock is None:
            lock = asyncio.Lock()
            self._rider_locks[rider_id] = lock
        return lock

    def _assign(self, ride: Ride, driver_id: str) -> None:
        transition_ride(ride, RideStatus.ASSIGNED, f"driver:{driver_id}", self._clock())
        ride.driver_id = driver_id

    async def _cas_ride(self, ride_id: str, expected_version: int, mutate: Callable[[Ride], None]) -> Ride:
        """Apply `mutate` only if the ride still has the version the caller read."""
        try:
            async with self._sessions.begin() as db:
                ride = await db.get(Ride, ride_id, with_for_update=True)
                if ride is None:
                    raise RideNotFoundError(f"Ride {ride_id} not found")
                if ride.version != expected_version:
                    raise ConcurrentUpdateError(
                        f"Ride {ride_id} changed (version {expected_version} -> {ride.version})"
                    )
                mutate(ride)
        except StaleDataError as exc:
            raise ConcurrentUpdateError(f"Ride {ride_id} was modified concurrently") from exc
        return ride

    async def _fare_payers(self, ride: Ride) -> list[tuple[str, int, Optional[str]]]:
        """(payer rider id, amount, participant id) for every fare-bearing seat."""
        if ride.mode == RideMode.SHARE.value:
            members = await self.shares.active_participants(ride.share_group_id)
            return [(m.rider_id, m.fare_share_amount, m.id) for m in members]
        return [(ride.rider_id, ride.fare_estimate, None)]

    async def _release_holds(self, hold_ids: list[str]) -> None:
        for hold_id in hold_ids:
            try:
                await self._ledger.release_hold(hold_id)
            except InvalidStateError as exc:
                # Resolved by a participant cancellation that ran meanwhile
                logger.info("Hold %s already resolved: %s", hold_id, exc)

    async def _collectable_holds(self, ride: Ride) -> list[WalletHold]:
        """Holds still owed at completion. A cancelled participant's hold belongs to the cancellation."""
        holds = await self._ledger.holds_for_ride(ride.id)
        if ride.share_group_id is None:
            return holds
        active = {m.id for m in await self.shares.active_participants(ride.share_group_id)}
        return [h for h in holds if h.participant_id is None or h.participant_id in active]
