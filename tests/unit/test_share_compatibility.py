"""
Unit tests for share compatibility tiers.
"""
import pytest

from app.config import Settings
from app.services.share import FALLBACK_TIER, STRICT_TIER, compatibility
from factories import ORIGIN, offset

SETTINGS = Settings()
DROPOFF = offset(ORIGIN, north_km=8)


class TestCompatibility:
    def test_strict_tier(self):
        match = compatibility(
            ORIGIN, DROPOFF,
            offset(ORIGIN, east_km=0.3), offset(DROPOFF, east_km=1.0),
            SETTINGS,
        )
        assert match.tier == STRICT_TIER
        assert match.pickup_km == pytest.approx(0.3, abs=1e-3)
        assert match.dropoff_km == pytest.approx(1.0, abs=1e-3)

    def test_fallback_tier(self):
        match = compatibility(
            ORIGIN, DROPOFF,
            offset(ORIGIN, east_km=0.5), offset(DROPOFF, east_km=7.0),
            SETTINGS,
        )
        assert match.tier == FALLBACK_TIER

    def test_pickups_too_far(self):
        assert compatibility(
            ORIGIN, DROPOFF,
            offset(ORIGIN, east_km=1.6), DROPOFF,
            SETTINGS,
        ) is None

    def test_dropoffs_too_far(self):
        assert compatibility(
            ORIGIN, DROPOFF,
            ORIGIN, offset(DROPOFF, east_km=10.5),
            SETTINGS,
        ) is None

    @pytest.mark.parametrize("pickup_km,dropoff_km", [(0.3, 1.0), (1.4, 4.9), (1.0, 9.0), (1.49, 11.0), (2.0, 0.5)])
    def test_symmetric(self, pickup_km, dropoff_km):
        a = (ORIGIN, DROPOFF)
        b = (offset(ORIGIN, east_km=pickup_km), offset(DROPOFF, east_km=dropoff_km))
        assert compatibility(*a, *b, SETTINGS) == compatibility(*b, *a, SETTINGS)

    def test_respects_configured_radii(self):
        tight = Settings(share_pickup_radius_km=0.2)
        assert compatibility(ORIGIN, DROPOFF, offset(ORIGIN, east_km=0.3), DROPOFF, tight) is None
