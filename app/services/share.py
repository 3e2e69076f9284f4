"""
Share coordinator: pools two compatible riders into one ride.

Compatibility (symmetric, so the order riders arrive in never matters):
  strict tier    pickups <= 1.5 km apart and dropoffs <= 5 km apart
  fallback tier  pickups <= 1.5 km apart and dropoffs <= 10 km apart

Strict candidates always win over fallback ones; inside a tier the nearest
pickup wins, then the nearest dropoff, then the oldest group.

Joining a group and the timeout sweep both write the group row under its
version column, so when they race exactly one commits. A join that loses
moves on to the next candidate and, failing that, opens a new group.
"""
import logging
import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta
from enum import Enum
from typing import Callable, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from sqlalchemy.orm.exc import StaleDataError

from app.config import Settings
from app.database import utcnow
from app.models.enums import ParticipantStatus, RideMode, RideStatus, ShareGroupStatus
from app.models.ride import Ride
from app.models.share import ShareGroup, ShareParticipant
from app.schemas.events import RideRequested, ShareConvertedToPrivate, ShareMatched, ShareSearching
from app.schemas.schemas import RideCreateRequest
from app.services.exceptions import (
    ConcurrentUpdateError,
    NotParticipantError,
    ShareGroupNotFoundError,
)
from app.services.geo import Point, bounding_box, distance_km
from app.services.lifecycle import CancellationResult, RideLifecycleManager
from app.services.notifications import EventEmitter
from app.services.pricing import split_fare
from app.services.state_machine import transition_ride

logger = logging.getLogger(__name__)

STRICT_TIER = 0
FALLBACK_TIER = 1


class ShareRequestStatus(str, Enum):
    SEARCHING = "SEARCHING"
    MATCHED = "MATCHED"
    MATCHED_AND_ASSIGNED = "MATCHED_AND_ASSIGNED"


@dataclass
class ShareOutcome:
    status: ShareRequestStatus
    ride: Ride
    group: ShareGroup


@dataclass(frozen=True)
class Compatibility:
    tier: int
    pickup_km: float
    dropoff_km: float


@dataclass(frozen=True)
class _Candidate:
    group_id: str
    version: int
    created_at: datetime
    match: Compatibility

    def rank(self):
        return (
            self.match.tier,
            self.match.pickup_km,
            self.match.dropoff_km,
            self.created_at,
            self.group_id,
        )


def compatibility(
    pickup_a: Point,
    dropoff_a: Point,
    pickup_b: Point,
    dropoff_b: Point,
    settings: Settings,
) -> Optional[Compatibility]:
    """Match tier for two share requests, or None when they cannot pool."""
    pickup_km = distance_km(pickup_a, pickup_b)
    if pickup_km > settings.share_pickup_radius_km:
        return None
    dropoff_km = distance_km(dropoff_a, dropoff_b)
    if dropoff_km <= settings.share_dropoff_radius_km:
        return Compatibility(STRICT_TIER, pickup_km, dropoff_km)
    if dropoff_km <= settings.share_dropoff_fallback_radius_km:
        return Compatibility(FALLBACK_TIER, pickup_km, dropoff_km)
    return None


class ShareCoordinator:
    def __init__(
        self,
        sessions: async_sessionmaker[AsyncSession],
        rides: RideLifecycleManager,
        events: EventEmitter,
        settings: Settings,
        clock: Callable[[], datetime] = utcnow,
    ):
        self._sessions = sessions
        self._rides = rides
        self._events = events
        self._settings = settings
        self._clock = clock

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    async def get_group(self, group_id: str) -> tuple[ShareGroup, list[ShareParticipant]]:
        async with self._sessions() as db:
            group = await db.get(ShareGroup, group_id)
            if group is None:
                raise ShareGroupNotFoundError(f"Share group {group_id} not found")
            result = await db.execute(
                select(ShareParticipant)
                .where(ShareParticipant.group_id == group_id)
                .order_by(ShareParticipant.joined_at, ShareParticipant.id)
            )
            return group, list(result.scalars())

    async def active_participants(self, group_id: str) -> list[ShareParticipant]:
        async with self._sessions() as db:
            return await self._active_participants(db, group_id)

    # ------------------------------------------------------------------
    # Requests
    # ------------------------------------------------------------------

    async def request_share(
        self,
        rider_id: str,
        request: RideCreateRequest,
        pickup: Point,
        dropoff: Point,
        fare: int,
    ) -> ShareOutcome:
        for attempt in range(1, self._settings.share_join_max_attempts + 1):
            candidates = await self._find_compatible(rider_id, pickup, dropoff)
            if not candidates:
                break
            for candidate in candidates:
                joined = await self._try_join(candidate, rider_id, request, pickup, dropoff, fare)
                if joined is not None:
                    return await self._after_join(rider_id, fare, *joined)
            logger.info(
                "All %s share candidates for rider=%s were taken (attempt %s)",
                len(candidates), rider_id, attempt,
            )
        return await self._open_group(rider_id, request, pickup, dropoff, fare)

    async def _find_compatible(self, rider_id: str, pickup: Point, dropoff: Point) -> list[_Candidate]:
        min_lat, max_lat, min_lng, max_lng = bounding_box(pickup, self._settings.share_pickup_radius_km)
        async with self._sessions() as db:
            result = await db.execute(
                select(ShareGroup, ShareParticipant)
                .join(ShareParticipant, ShareParticipant.group_id == ShareGroup.id)
                .where(
                    ShareGroup.status == ShareGroupStatus.OPEN.value,
                    ShareParticipant.status == ParticipantStatus.ACTIVE.value,
                    ShareParticipant.pickup_lat.between(min_lat, max_lat),
                    ShareParticipant.pickup_lng.between(min_lng, max_lng),
                )
                .order_by(ShareGroup.created_at, ShareGroup.id)
                .limit(self._settings.share_scan_limit)
            )
            rows = list(result.all())

        candidates = []
        for group, member in rows:
            if member.rider_id == rider_id:
                continue
            match = compatibility(
                Point(member.pickup_lat, member.pickup_lng),
                Point(member.dropoff_lat, member.dropoff_lng),
                pickup,
                dropoff,
                self._settings,
            )
            if match is not None:
                candidates.append(_Candidate(group.id, group.version, group.created_at, match))
        candidates.sort(key=_Candidate.rank)
        return candidates

    async def _try_join(
        self,
        candidate: _Candidate,
        rider_id: str,
        request: RideCreateRequest,
        pickup: Point,
        dropoff: Point,
        fare: int,
    ) -> Optional[tuple[ShareGroup, Ride, list[ShareParticipant]]]:
        now = self._clock()
        try:
            async with self._sessions.begin() as db:
                group = await db.get(ShareGroup, candidate.group_id, with_for_update=True)
                if (
                    group is None
                    or group.status != ShareGroupStatus.OPEN.value
                    or group.version != candidate.version
                ):
                    logger.info("Share group %s changed since scan, skipping", candidate.group_id)
                    return None

                members = await self._active_participants(db, group.id)
                if len(members) >= group.capacity or any(m.rider_id == rider_id for m in members):
                    return None
                ride = await db.get(Ride, group.ride_id, with_for_update=True)
                if ride is None or ride.status != RideStatus.SEARCHING_SHARE.value:
                    return None

                joiner = ShareParticipant(
                    id=str(uuid.uuid4()),
                    group_id=group.id,
                    rider_id=rider_id,
                    booked_for_name=request.booked_for_name,
                    pickup_address=request.pickup_address,
                    dropoff_address=request.dropoff_address,
                    pickup_lat=pickup.lat,
                    pickup_lng=pickup.lng,
                    dropoff_lat=dropoff.lat,
                    dropoff_lng=dropoff.lng,
                    requested_fare=fare,
                    fare_share_amount=fare,
                    status=ParticipantStatus.ACTIVE.value,
                    joined_at=now,
                )
                db.add(joiner)
                members.append(joiner)

                total = max(m.requested_fare for m in members)
                for member, share in zip(
                    members, split_fare(total, len(members), self._settings.share_discount_rate)
                ):
                    member.fare_share_amount = share

                group.status = ShareGroupStatus.FULL.value
                ride.fare_estimate = total
                ride.max_passengers = len(members)
                transition_ride(ride, RideStatus.REQUESTED, f"rider:{rider_id}", now)
        except StaleDataError:
            logger.info("Lost race for share group %s", candidate.group_id)
            return None

        logger.info(
            "Rider %s joined share group %s (tier %s), shares=%s",
            rider_id, group.id, candidate.match.tier,
            [m.fare_share_amount for m in members],
        )
        return group, ride, members

    async def _after_join(
        self,
        rider_id: str,
        fare: int,
        group: ShareGroup,
        ride: Ride,
        members: list[ShareParticipant],
    ) -> ShareOutcome:
        await self._events.emit(
            RideRequested(ride_id=ride.id, rider_id=rider_id, mode=ride.mode, fare_estimate=fare)
        )
        await self._events.emit(
            ShareMatched(
                ride_id=ride.id,
                group_id=group.id,
                rider_ids=[m.rider_id for m in members],
                fare_shares={m.rider_id: m.fare_share_amount for m in members},
            )
        )
        result = await self._rides.match_driver(ride.id)
        status = (
            ShareRequestStatus.MATCHED_AND_ASSIGNED if result.assigned else ShareRequestStatus.MATCHED
        )
        return ShareOutcome(status=status, ride=result.ride, group=group)

    async def _open_group(
        self,
        rider_id: str,
        request: RideCreateRequest,
        pickup: Point,
        dropoff: Point,
        fare: int,
    ) -> ShareOutcome:
        now = self._clock()
        actor = f"rider:{rider_id}"
        group = ShareGroup(
            id=str(uuid.uuid4()),
            status=ShareGroupStatus.OPEN.value,
            capacity=self._settings.share_group_capacity,
            created_at=now,
        )
        ride = Ride(
            id=str(uuid.uuid4()),
            rider_id=rider_id,
            booked_for_name=request.booked_for_name,
            booked_for_phone=request.booked_for_phone,
            share_group_id=group.id,
            pickup_address=request.pickup_address,
            dropoff_address=request.dropoff_address,
            pickup_lat=pickup.lat,
            pickup_lng=pickup.lng,
            dropoff_lat=dropoff.lat,
            dropoff_lng=dropoff.lng,
            fare_estimate=fare,
            mode=RideMode.SHARE.value,
            max_passengers=1,
            status=RideStatus.REQUESTED.value,
            status_history=[{"status": RideStatus.REQUESTED.value, "actor": actor, "at": now.isoformat()}],
            created_at=now,
        )
        transition_ride(ride, RideStatus.SEARCHING_SHARE, actor, now)
        group.ride_id = ride.id
        participant = ShareParticipant(
            id=str(uuid.uuid4()),
            group_id=group.id,
            rider_id=rider_id,
            booked_for_name=request.booked_for_name,
            pickup_address=request.pickup_address,
            dropoff_address=request.dropoff_address,
            pickup_lat=pickup.lat,
            pickup_lng=pickup.lng,
            dropoff_lat=dropoff.lat,
            dropoff_lng=dropoff.lng,
            requested_fare=fare,
            fare_share_amount=fare,
            status=ParticipantStatus.ACTIVE.value,
            joined_at=now,
        )

        async with self._sessions.begin() as db:
            db.add(group)
            await db.flush()
            db.add_all([ride, participant])

        logger.info("Rider %s opened share group %s (ride %s)", rider_id, group.id, ride.id)
        await self._events.emit(
            RideRequested(ride_id=ride.id, rider_id=rider_id, mode=ride.mode, fare_estimate=fare)
        )
        await self._events.emit(ShareSearching(ride_id=ride.id, rider_id=rider_id, group_id=group.id))
        return ShareOutcome(status=ShareRequestStatus.SEARCHING, ride=ride, group=group)

    # ------------------------------------------------------------------
    # Timeout sweep
    # ------------------------------------------------------------------

    async def sweep_timeouts(self, now: Optional[datetime] = None) -> list[str]:
        """
        Convert every group left OPEN for longer than the timeout into a
        private ride at full fare. Returns the ids of the converted groups.
        """
        now = now or self._clock()
        cutoff = now - timedelta(seconds=self._settings.share_group_timeout_seconds)
        async with self._sessions() as db:
            result = await db.execute(
                select(ShareGroup.id, ShareGroup.version)
                .where(
                    ShareGroup.status == ShareGroupStatus.OPEN.value,
                    ShareGroup.created_at < cutoff,
                )
                .order_by(ShareGroup.created_at, ShareGroup.id)
                .limit(self._settings.share_scan_limit)
            )
            expired = list(result.all())

        converted = []
        for group_id, version in expired:
            outcome = await self._convert_to_private(group_id, version, now)
            if outcome is None:
                continue
            ride, lone = outcome
            converted.append(group_id)
            await self._events.emit(
                ShareConvertedToPrivate(
                    ride_id=ride.id,
                    group_id=group_id,
                    rider_id=lone.rider_id,
                    fare=lone.fare_share_amount,
                    reason="timeout",
                )
            )
            await self._rides.match_driver(ride.id)

        if converted:
            logger.info("Share sweep converted %s group(s) to private rides", len(converted))
        return converted

    async def _convert_to_private(
        self, group_id: str, expected_version: int, now: datetime
    ) -> Optional[tuple[Ride, ShareParticipant]]:
        try:
            async with self._sessions.begin() as db:
                group = await db.get(ShareGroup, group_id, with_for_update=True)
                if (
                    group is None
                    or group.status != ShareGroupStatus.OPEN.value
                    or group.version != expected_version
                ):
                    return None
                ride = await db.get(Ride, group.ride_id, with_for_update=True)
                members = await self._active_participants(db, group_id)
                if ride is None or ride.status != RideStatus.SEARCHING_SHARE.value or len(members) != 1:
                    return None

                lone = members[0]
                group.status = ShareGroupStatus.CLOSED.value
                ride.mode = RideMode.PRIVATE.value
                ride.max_passengers = 1
                ride.fare_estimate = lone.requested_fare
                lone.fare_share_amount = lone.requested_fare
                transition_ride(ride, RideStatus.REQUESTED, "system:share-timeout", now)
        except StaleDataError:
            logger.info("Share group %s changed during timeout conversion, skipping", group_id)
            return None

        logger.info("Share group %s timed out, ride %s converted to private", group_id, ride.id)
        return ride, lone

    # ------------------------------------------------------------------
    # Cancellation
    # ------------------------------------------------------------------

    async def cancel_participant(self, ride: Ride, rider_id: str) -> CancellationResult:
        """
        Cancel one rider's stake in a shared ride.

        OPEN group              whole group and ride cancelled, no penalty
        FULL, not yet started   canceller leaves, partner continues solo at full fare
        IN_PROGRESS             canceller's hold settled with the penalty, partner untouched
        """
        now = self._clock()
        was_in_progress = ride.status == RideStatus.IN_PROGRESS.value
        partner: Optional[ShareParticipant] = None

        try:
            async with self._sessions.begin() as db:
                current = await db.get(Ride, ride.id, with_for_update=True)
                if current.version != ride.version:
                    raise ConcurrentUpdateError(f"Ride {ride.id} changed before cancellation")
                group = await db.get(ShareGroup, current.share_group_id, with_for_update=True)
                members = await self._active_participants(db, group.id)
                canceller = next((m for m in members if m.rider_id == rider_id), None)
                if canceller is None:
                    raise NotParticipantError(f"Rider {rider_id} is not on ride {ride.id}")

                actor = f"rider:{rider_id}"
                canceller.status = ParticipantStatus.CANCELLED.value
                remaining = [m for m in members if m is not canceller]

                if group.status == ShareGroupStatus.OPEN.value or not remaining:
                    group.status = ShareGroupStatus.CANCELLED.value
                    transition_ride(current, RideStatus.CANCELLED, actor, now)
                    ride_cancelled = True
                elif was_in_progress:
                    current.max_passengers = len(remaining)
                    ride_cancelled = False
                else:
                    partner = remaining[0]
                    group.status = ShareGroupStatus.CLOSED.value
                    self._hand_over(current, partner)
                    ride_cancelled = False
        except StaleDataError as exc:
            raise ConcurrentUpdateError(f"Ride {ride.id} was modified concurrently") from exc

        penalty_rate = self._settings.cancellation_penalty_rate if was_in_progress else 0
        holds = [
            h for h in await self._rides.ledger.holds_for_ride(current.id)
            if ride_cancelled or h.participant_id == canceller.id
        ]
        penalty, refund = await self._rides.settle_holds(holds, penalty_rate)

        if ride_cancelled and current.driver_id is not None:
            await self._rides.drivers.release_driver(current.driver_id)

        result = CancellationResult(
            ride=current,
            rider_id=rider_id,
            ride_cancelled=ride_cancelled,
            penalty_amount=penalty,
            refund_amount=refund,
        )
        logger.info(
            "Rider %s left share ride %s (ride cancelled=%s) penalty=%s refund=%s",
            rider_id, current.id, ride_cancelled, penalty, refund,
        )
        await self._rides.emit_cancelled(result)

        if partner is not None:
            await self._events.emit(
                ShareConvertedToPrivate(
                    ride_id=current.id,
                    group_id=group.id,
                    rider_id=partner.rider_id,
                    fare=partner.fare_share_amount,
                    reason="partner_cancelled",
                )
            )
            if current.status == RideStatus.REQUESTED.value:
                result.ride = (await self._rides.match_driver(current.id)).ride
        return result

    async def retire_participants(self, group_id: str) -> None:
        """Mark every remaining participant of a group as cancelled."""
        async with self._sessions.begin() as db:
            for member in await self._active_participants(db, group_id):
                member.status = ParticipantStatus.CANCELLED.value

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    @staticmethod
    def _hand_over(ride: Ride, partner: ShareParticipant) -> None:
        """Turn a shared ride into the partner's private ride at their own full fare."""
        ride.mode = RideMode.PRIVATE.value
        ride.max_passengers = 1
        ride.rider_id = partner.rider_id
        ride.booked_for_name = partner.booked_for_name
        ride.booked_for_phone = None
        ride.pickup_address = partner.pickup_address
        ride.dropoff_address = partner.dropoff_address
        ride.pickup_lat, ride.pickup_lng = partner.pickup_lat, partner.pickup_lng
        ride.dropoff_lat, ride.dropoff_lng = partner.dropoff_lat, partner.dropoff_lng
        ride.fare_estimate = partner.requested_fare
        partner.fare_share_amount = partner.requested_fare

    @staticmethod
    async def _active_participants(db: AsyncSession, group_id: str) -> list[ShareParticipant]:
        result = await db.execute(
            select(ShareParticipant)
            .where(
                ShareParticipant.group_id == group_id,
                ShareParticipant.status == ParticipantStatus.ACTIVE.value,
            )
            .order_by(ShareParticipant.joined_at, ShareParticipant.id)
        )
        return list(result.scalars())
