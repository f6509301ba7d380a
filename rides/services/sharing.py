"""
Shared ride offers: a rider publishes a trip and splits the fare per seat.
"""

import logging
from typing import Optional

from django.db.models import Q, QuerySet

from ..exceptions import IncompleteBookingRequest
from ..models import RideClass, SharedRide
from .fares import split_fare
from .routing import RouteResolver

logger = logging.getLogger(__name__)


async def create_shared_ride(
    resolver: RouteResolver,
    session_key: str,
    pickup: str,
    destination: str,
    departure,
    seats: int,
    ride_class: str,
    host_name: str = 'You',
) -> SharedRide:
    """
    Plan the route and build an unsaved shared ride priced per person.

    Raises:
        IncompleteBookingRequest: If the ride class is not a shared class
        InvalidPartySize: If seats is not positive
        Routing errors from RouteResolver.plan_route
    """
    if ride_class not in RideClass.shared():
        raise IncompleteBookingRequest(f"'{ride_class}' is not a shared ride class")

    quote = await resolver.plan_route(pickup, destination)
    price_per_person = split_fare(ride_class, quote.distance_km, seats)

    return SharedRide(
        session_key=session_key,
        host_name=host_name,
        pickup=pickup,
        destination=destination,
        departure=departure,
        seats=seats,
        ride_class=ride_class,
        distance_km=quote.distance_km,
        price_per_person=price_per_person,
    )


def search_shared_rides(search: Optional[str] = None) -> QuerySet:
    """Shared rides whose pickup or destination contains the search text."""
    rides = SharedRide.objects.all()
    if search:
        rides = rides.filter(Q(pickup__icontains=search) | Q(destination__icontains=search))
    return rides
