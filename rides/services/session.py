"""
Session-scoped booking context.

A BookingSession carries everything one rider's booking flow needs between
requests: the typed locations, the selected ride class, the quote in force,
the geocoding cache entries and the active ride pointer. It is stored as
plain JSON under a single key of the Django session.
"""

import logging
from dataclasses import dataclass, field
from typing import Dict, Optional

from .geocoding import GeocodingCache, MapboxGeocodingService
from .geometry import Coordinates
from .routing import Location, RouteQuote, RouteResolver

logger = logging.getLogger(__name__)

SESSION_KEY = 'booking'


@dataclass
class BookingSession:
    session_key: str
    pickup: Optional[Location] = None
    destination: Optional[Location] = None
    ride_class: Optional[str] = None
    quote: Optional[RouteQuote] = None
    active_ride_id: Optional[str] = None
    geocoding_entries: Dict[str, Coordinates] = field(default_factory=dict)

    def set_locations(self, pickup_name: str, destination_name: str) -> None:
        """Record newly typed locations; a quote for other inputs is dropped."""
        if self.quote is not None and self.quote.matches(pickup_name, destination_name):
            self.pickup = self.quote.pickup
            self.destination = self.quote.destination
            return
        self.quote = None
        self.pickup = Location(pickup_name) if pickup_name else None
        self.destination = Location(destination_name) if destination_name else None

    def accept_quote(self, quote: RouteQuote) -> bool:
        """
        Install a freshly planned quote if it is still for the current inputs.

        Returns False (and leaves the session alone) for a stale quote.
        """
        if self.pickup is None or self.destination is None:
            return False
        if not quote.matches(self.pickup.place_name, self.destination.place_name):
            logger.debug(
                f"Discarding stale quote for '{quote.pickup.place_name}' -> "
                f"'{quote.destination.place_name}'"
            )
            return False
        self.quote = quote
        self.pickup = quote.pickup
        self.destination = quote.destination
        return True

    def current_quote_for(self, pickup_name: str, destination_name: str) -> Optional[RouteQuote]:
        """The quote in force, only if it was planned for exactly these names."""
        if self.quote is not None and self.quote.matches(pickup_name, destination_name):
            return self.quote
        return None

    def route_resolver(self, geocoder=None, directions=None) -> RouteResolver:
        """A RouteResolver whose geocoding cache lives in this session."""
        cache = GeocodingCache(geocoder or MapboxGeocodingService(), self.geocoding_entries)
        return RouteResolver(cache, directions=directions)

    def reset_booking(self) -> None:
        """Forget the booking inputs, keeping the geocoding cache."""
        self.pickup = None
        self.destination = None
        self.ride_class = None
        self.quote = None

    def to_dict(self) -> dict:
        return {
            'pickup': self.pickup.to_dict() if self.pickup else None,
            'destination': self.destination.to_dict() if self.destination else None,
            'ride_class': self.ride_class,
            'quote': self.quote.to_dict() if self.quote else None,
            'active_ride_id': self.active_ride_id,
            'geocoding_entries': {
                name: list(coordinates)
                for name, coordinates in self.geocoding_entries.items()
            },
        }

    @classmethod
    def from_dict(cls, session_key: str, data: Optional[dict]) -> 'BookingSession':
        if not data:
            return cls(session_key=session_key)
        return cls(
            session_key=session_key,
            pickup=Location.from_dict(data['pickup']) if data.get('pickup') else None,
            destination=Location.from_dict(data['destination']) if data.get('destination') else None,
            ride_class=data.get('ride_class'),
            quote=RouteQuote.from_dict(data['quote']) if data.get('quote') else None,
            active_ride_id=data.get('active_ride_id'),
            geocoding_entries={
                name: tuple(coordinates)
                for name, coordinates in (data.get('geocoding_entries') or {}).items()
            },
        )


def load_booking_session(django_session) -> BookingSession:
    """Read the booking context out of a Django session, creating the key if needed."""
    if not django_session.session_key:
        django_session.save()
    return BookingSession.from_dict(django_session.session_key, django_session.get(SESSION_KEY))


def save_booking_session(django_session, booking: BookingSession) -> None:
    """Write the booking context back into the Django session."""
    django_session[SESSION_KEY] = booking.to_dict()
    django_session.save()


def _reloaded(django_session):
    """A fresh store for the same session, holding what is persisted right now."""
    if not django_session.session_key:
        django_session.save()
    return django_session.__class__(session_key=django_session.session_key)


def read_booking_session(django_session) -> BookingSession:
    """Read the latest persisted booking context, ignoring any cached copy."""
    return load_booking_session(_reloaded(django_session))


def update_booking_session(django_session, mutator):
    """
    Apply mutator to the latest persisted booking context and save it.

    Other requests may have written the session since the caller loaded it.
    Only what the mutator changes is written on top of the persisted state.
    Returns the mutator's result.
    """
    store = _reloaded(django_session)
    booking = load_booking_session(store)
    result = mutator(booking)
    save_booking_session(store, booking)
    return result
