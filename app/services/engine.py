"""
Wires the ledger, driver directory, lifecycle manager and share coordinator
into one engine held on `app.state` for the lifetime of the process.
"""
from datetime import datetime
from typing import Callable

from fastapi import Request
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.config import Settings
from app.database import utcnow
from app.services.drivers import DriverDirectory
from app.services.lifecycle import RideLifecycleManager
from app.services.notifications import EventEmitter
from app.services.share import ShareCoordinator
from app.services.wallet import WalletLedger


class CoordinationEngine:
    def __init__(
        self,
        sessions: async_sessionmaker[AsyncSession],
        events: EventEmitter,
        settings: Settings,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.settings = settings
        self.events = events
        self.ledger = WalletLedger(sessions, currency=settings.currency)
        self.drivers = DriverDirectory(sessions, settings)
        self.rides = RideLifecycleManager(sessions, self.drivers, self.ledger, events, settings, clock)
        self.shares = ShareCoordinator(sessions, self.rides, events, settings, clock)
        self.rides.bind_share_coordinator(self.shares)


def get_engine(request: Request) -> CoordinationEngine:
    """FastAPI dependency."""
    return request.app.state.engine
