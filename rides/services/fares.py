"""
Fare calculation for every ride class.

Prices are whole currency units rounded half-up, so 0.5 always rounds away
from zero the way riders expect on a receipt.
"""

from dataclasses import dataclass
from decimal import Decimal, ROUND_HALF_UP
from typing import Dict, Optional, Union

from ..exceptions import InvalidPartySize
from ..models import RideClass

Number = Union[int, float, Decimal]


@dataclass(frozen=True)
class FareRate:
    """Pricing constants of a ride class."""
    base_price: int
    price_per_km: int


RIDE_CLASS_RATES: Dict[str, FareRate] = {
    RideClass.ECONOMY: FareRate(base_price=50, price_per_km=10),
    RideClass.PREMIUM: FareRate(base_price=100, price_per_km=15),
    RideClass.ECONOMY_SHARED: FareRate(base_price=40, price_per_km=8),
    RideClass.PREMIUM_SHARED: FareRate(base_price=80, price_per_km=12),
}


def round_half_up(value: Number) -> int:
    """Round to the nearest integer, halves away from zero."""
    return int(Decimal(str(value)).quantize(Decimal('1'), rounding=ROUND_HALF_UP))


def rate_for(ride_class: str) -> FareRate:
    """Look up the pricing constants of a ride class."""
    try:
        return RIDE_CLASS_RATES[RideClass(ride_class)]
    except ValueError:
        raise ValueError(f"Unknown ride class: {ride_class}")


def quote_price(ride_class: str, distance_km: Optional[Number]) -> Optional[int]:
    """
    Price of a ride: base price plus the per-km rate times the distance.

    Returns None while the distance is unknown (no route quoted yet).
    """
    if distance_km is None:
        return None
    rate = rate_for(ride_class)
    return round_half_up(
        Decimal(rate.base_price) + Decimal(rate.price_per_km) * Decimal(str(distance_km))
    )


def split_fare(ride_class: str, distance_km: Optional[Number], party_size: int) -> Optional[int]:
    """
    Per-person price of a shared ride.

    Raises:
        InvalidPartySize: If party_size is zero or negative
    """
    if party_size is None or party_size <= 0:
        raise InvalidPartySize(f"Party size must be at least 1, got {party_size}")
    total = quote_price(ride_class, distance_km)
    if total is None:
        return None
    return round_half_up(Decimal(total) / Decimal(party_size))


def fare_table(distance_km: Optional[Number]) -> Dict[str, Optional[int]]:
    """Price of every ride class for the given distance."""
    return {
        ride_class.value: quote_price(ride_class, distance_km)
        for ride_class in RideClass
    }
