"""
Fare arithmetic in integer minor units.

Every division or percentage rounds once with ROUND_HALF_UP, and splits hand
any residual unit to the first participant so totals never drift.
"""
import math
from decimal import Decimal, ROUND_HALF_UP


def _rate(value: float | Decimal) -> Decimal:
    return value if isinstance(value, Decimal) else Decimal(str(value))


def percent_of(amount: int, rate: float | Decimal) -> int:
    """Return `amount * rate` rounded half-up to the minor unit."""
    result = Decimal(amount) * _rate(rate)
    return int(result.quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def split_fare(total_fare: int, participants: int, discount_rate: float | Decimal) -> list[int]:
    """
    Split `total_fare` across `participants` after the pooling discount.

    Shares are listed in join order; the first participant absorbs the
    rounding residual so that sum(shares) == round_half_up(total * (1 - discount)).
    """
    if participants < 1:
        raise ValueError("participants must be >= 1")
    if total_fare < 0:
        raise ValueError("total_fare must not be negative")
    if participants == 1:
        return [total_fare]

    pooled = percent_of(total_fare, Decimal(1) - _rate(discount_rate))
    base, residual = divmod(pooled, participants)
    shares = [base] * participants
    shares[0] += residual
    return shares


def commission_split(collected: int, commission_rate: float | Decimal) -> tuple[int, int]:
    """Returns (driver_payout, platform_commission); the two always sum to `collected`."""
    commission = percent_of(collected, commission_rate)
    return collected - commission, commission


def penalty_split(amount: int, penalty_rate: float | Decimal) -> tuple[int, int]:
    """Returns (retained, refunded) for a cancelled hold."""
    retained = percent_of(amount, penalty_rate)
    return retained, amount - retained


def minimum_fare(commission_rate: float | Decimal, minimum_platform_take: int) -> int:
    """
    Lowest fare at which the platform's commission still covers its per-trip
    cost. At 15% commission and a 30-unit take this is 200.
    """
    rate = _rate(commission_rate)
    if rate <= 0 or rate > 1:
        raise ValueError("Commission rate must be between 0 and 1")
    return math.ceil(Decimal(minimum_platform_take) / rate)


def enforce_minimum_fare(
    fare: int,
    commission_rate: float | Decimal,
    minimum_platform_take: int,
) -> int:
    return max(fare, minimum_fare(commission_rate, minimum_platform_take))
