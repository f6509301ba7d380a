"""
Core ride lifecycle operations.

RideLifecycle owns a session's ride records from booking through
completion or cancellation:

    no_active_ride --book--> ongoing --cancel--> no_active_ride
                                     --complete--> completed --clear--> no_active_ride

Records only ever move forward, and the fare is fixed from the quote in
force when the ride is booked.
"""

import enum
import logging
import random
from dataclasses import dataclass
from typing import Callable, List, Optional

import polyline
from django.conf import settings
from django.db import transaction
from django.utils import timezone

from ..exceptions import (
    IncompleteBookingRequest,
    NoActiveRide,
    PaymentDeclined,
    RatingRequired,
    RideNotCompleted,
    RideNotFound,
    RideStillOngoing,
)
from ..models import RideClass, RideRecord, RideStatus
from .chat import ChannelSimulator
from .fares import quote_price
from .payments import PaymentResult
from .session import BookingSession

logger = logging.getLogger(__name__)


class LifecycleState(str, enum.Enum):
    NO_ACTIVE_RIDE = 'no_active_ride'
    ONGOING = 'ongoing'
    COMPLETED = 'completed'
    CANCELLED = 'cancelled'


@dataclass(frozen=True)
class DriverAssignment:
    """The driver assigned to a ride; fixed for the ride's lifetime."""
    name: str
    rating: float
    vehicle: str
    plate: str

    @property
    def room_id(self) -> str:
        return f"ride-{self.name}"

    @classmethod
    def from_record(cls, record: RideRecord) -> Optional['DriverAssignment']:
        if not record.driver_name:
            return None
        return cls(
            name=record.driver_name,
            rating=record.driver_rating,
            vehicle=record.driver_vehicle,
            plate=record.driver_plate,
        )


def load_roster() -> List[DriverAssignment]:
    """Drivers available for assignment, from settings.DRIVER_ROSTER."""
    return [DriverAssignment(**entry) for entry in settings.DRIVER_ROSTER]


class RideRecordStore:
    """
    Ride records of one booking session, oldest first.

    Backed by the RideRecord table and scoped by session key.
    """

    def __init__(self, session_key: str):
        self.session_key = session_key

    def _queryset(self):
        return RideRecord.objects.filter(session_key=self.session_key).order_by('created_at', 'id')

    def append(self, record: RideRecord) -> RideRecord:
        record.session_key = self.session_key
        record.save(force_insert=True)
        return record

    def list_all(self) -> List[RideRecord]:
        return list(self._queryset())

    def latest(self) -> Optional[RideRecord]:
        return self._queryset().last()

    def get(self, ride_id: str) -> RideRecord:
        try:
            return self._queryset().get(id=ride_id)
        except RideRecord.DoesNotExist:
            raise RideNotFound(f"Ride {ride_id} not found")

    @transaction.atomic
    def update_latest(self, mutator: Callable[[RideRecord], None]) -> Optional[RideRecord]:
        """Apply mutator to the most recent record and save it; None if there are no records."""
        record = self._queryset().select_for_update().last()
        if record is None:
            return None
        mutator(record)
        record.save()
        return record

    @transaction.atomic
    def update(self, ride_id: str, mutator: Callable[[RideRecord], None]) -> RideRecord:
        """Apply mutator to one record and save it."""
        try:
            record = self._queryset().select_for_update().get(id=ride_id)
        except RideRecord.DoesNotExist:
            raise RideNotFound(f"Ride {ride_id} not found")
        mutator(record)
        record.save()
        return record


class RideLifecycle:
    """
    State machine for a session's rides.

    Args:
        session: The booking context (current quote, active ride pointer)
        store: Ride record store; defaults to the session's ORM store
        chat: Chat channel opened for the assigned driver
        roster: Drivers to pick from; defaults to settings.DRIVER_ROSTER
        rng: Random source for driver assignment
    """

    def __init__(
        self,
        session: BookingSession,
        store: Optional[RideRecordStore] = None,
        chat: Optional[ChannelSimulator] = None,
        roster: Optional[List[DriverAssignment]] = None,
        rng: Optional[random.Random] = None,
    ):
        self.session = session
        self.store = store or RideRecordStore(session.session_key)
        self.chat = chat
        self.roster = roster if roster is not None else load_roster()
        self.rng = rng or random.Random()

    @property
    def active_ride(self) -> Optional[RideRecord]:
        """
        The ride the session points at.

        Without a pointer, the most recent ride still ongoing is active and
        the pointer is restored to it.
        """
        ride_id = self.session.active_ride_id
        if ride_id is None:
            latest = self.store.latest()
            if latest is None or latest.status != RideStatus.ONGOING:
                return None
            logger.warning(f"Restoring lost active ride pointer to ride {latest.id}")
            self.session.active_ride_id = latest.id
            return latest
        try:
            return self.store.get(ride_id)
        except RideNotFound:
            logger.warning(f"Active ride {ride_id} no longer exists; clearing pointer")
            self.session.active_ride_id = None
            return None

    @property
    def state(self) -> LifecycleState:
        ride = self.active_ride
        if ride is None:
            return LifecycleState.NO_ACTIVE_RIDE
        return LifecycleState(ride.status)

    def history(self) -> List[RideRecord]:
        return self.store.list_all()

    def receipt(self, ride_id: str) -> RideRecord:
        return self.store.get(ride_id)

    # ===================== Transitions =====================

    def book(self, pickup_name: str, destination_name: str, ride_class: str) -> RideRecord:
        """
        Commit a booking at the price of the current quote.

        Raises:
            IncompleteBookingRequest: If a detail is missing, a ride is already
                active, or there is no quote for exactly these locations
        """
        missing = [
            label for label, value in (
                ('pickup', pickup_name),
                ('destination', destination_name),
                ('ride class', ride_class),
            ) if not value
        ]
        if missing:
            raise IncompleteBookingRequest(f"Please fill all details (missing {', '.join(missing)})")

        if ride_class not in RideClass.values:
            raise IncompleteBookingRequest(f"Unknown ride class '{ride_class}'")

        if self.active_ride is not None:
            raise IncompleteBookingRequest("You already have an active ride")

        quote = self.session.current_quote_for(pickup_name, destination_name)
        if quote is None:
            raise IncompleteBookingRequest("No route has been quoted for these locations yet")

        if not self.roster:
            raise IncompleteBookingRequest("No drivers are available")

        driver = self.rng.choice(self.roster)
        pickup_coords = quote.pickup.coordinates or (None, None)
        destination_coords = quote.destination.coordinates or (None, None)

        record = RideRecord(
            pickup_name=pickup_name,
            pickup_longitude=pickup_coords[0],
            pickup_latitude=pickup_coords[1],
            destination_name=destination_name,
            destination_longitude=destination_coords[0],
            destination_latitude=destination_coords[1],
            ride_class=ride_class,
            distance_km=quote.distance_km,
            cost=quote_price(ride_class, quote.distance_km),
            route_geometry=polyline.encode([(lat, lon) for lon, lat in quote.path], 5),
            status=RideStatus.ONGOING,
            driver_name=driver.name,
            driver_rating=driver.rating,
            driver_vehicle=driver.vehicle,
            driver_plate=driver.plate,
        )
        self.store.append(record)

        self.session.ride_class = ride_class
        self.session.active_ride_id = record.id

        if self.chat is not None:
            self.chat.join(driver.room_id)

        logger.info(f"Booked ride {record.id} ({ride_class}, {record.cost}) with driver {driver.name}")
        return record

    def cancel(self) -> RideRecord:
        """
        Cancel the ongoing ride.

        Raises:
            NoActiveRide: If there is no ongoing ride; nothing is changed
        """
        active = self.active_ride
        if active is None or active.status != RideStatus.ONGOING:
            raise NoActiveRide("There is no ongoing ride to cancel")

        def mark_cancelled(record):
            if record.status != RideStatus.ONGOING:
                raise NoActiveRide("There is no ongoing ride to cancel")
            record.status = RideStatus.CANCELLED
            record.cancelled_at = timezone.now()

        record = self.store.update_latest(mark_cancelled)
        if record is None:
            raise NoActiveRide("There is no ongoing ride to cancel")

        if self.chat is not None:
            self.chat.leave()
        self.session.active_ride_id = None

        logger.info(f"Cancelled ride {record.id}")
        return record

    def complete(self, payment: Optional[PaymentResult]) -> RideRecord:
        """
        Mark the ongoing ride completed after a successful payment.

        The active ride pointer is kept so the rider can still see the
        driver and chat until they clear it.

        Raises:
            NoActiveRide: If there is no ongoing ride
            PaymentDeclined: If the payment did not succeed
        """
        active = self.active_ride
        if active is None or active.status != RideStatus.ONGOING:
            raise NoActiveRide("There is no ongoing ride to complete")
        if payment is None or not payment.success:
            raise PaymentDeclined(payment.reason if payment is not None and payment.reason else None)

        def mark_completed(record):
            if record.status != RideStatus.ONGOING:
                raise NoActiveRide("There is no ongoing ride to complete")
            record.status = RideStatus.COMPLETED
            record.completed_at = timezone.now()
            record.payment_reference = payment.reference

        record = self.store.update(active.id, mark_completed)
        logger.info(f"Completed ride {record.id}")
        return record

    def settle(self, gateway, method: str) -> RideRecord:
        """Charge the ongoing ride's fare through the gateway, then complete it."""
        active = self.active_ride
        if active is None or active.status != RideStatus.ONGOING:
            raise NoActiveRide("There is no ongoing ride to pay for")
        payment = gateway.charge(active.cost, method)
        return self.complete(payment)

    def rate_and_review(self, ride_id: str, rating, feedback: str = '') -> RideRecord:
        """
        Attach a driver rating and feedback to a completed ride.

        Resubmitting overwrites the earlier rating and feedback.

        Raises:
            RatingRequired: If the rating is missing or not 1-5
            RideNotFound: If the ride is not in this session's history
            RideNotCompleted: If the ride has not been completed
        """
        if rating is None or rating == '':
            raise RatingRequired()
        try:
            rating = int(rating)
        except (TypeError, ValueError):
            raise RatingRequired("Rating must be a whole number from 1 to 5")
        if not 1 <= rating <= 5:
            raise RatingRequired("Rating must be between 1 and 5")

        def attach_feedback(record):
            if record.status != RideStatus.COMPLETED:
                raise RideNotCompleted()
            record.driver_rating_given = rating
            record.feedback = feedback or ''

        record = self.store.update(ride_id, attach_feedback)
        logger.info(f"Recorded {rating}-star feedback for ride {ride_id}")
        return record

    def clear(self) -> None:
        """
        Go back to booking once the active ride has ended.

        Raises:
            RideStillOngoing: If the active ride has not been cancelled or completed
        """
        active = self.active_ride
        if active is not None and active.status == RideStatus.ONGOING:
            raise RideStillOngoing()

        self.session.active_ride_id = None
        self.session.reset_booking()
        if self.chat is not None:
            self.chat.leave()
