"""
Ride models for the booking application.
"""

import itertools
import time

from django.core.validators import MaxValueValidator, MinValueValidator
from django.db import models
from django.utils import timezone

_ride_id_sequence = itertools.count()


def generate_ride_id() -> str:
    """Time-derived ride id: epoch milliseconds plus a 3-digit sequence."""
    return f"{time.time_ns() // 1_000_000}{next(_ride_id_sequence) % 1000:03d}"


class RideClass(models.TextChoices):
    ECONOMY = 'economy', 'Economy'
    PREMIUM = 'premium', 'Premium'
    ECONOMY_SHARED = 'economy_shared', 'Economy Shared'
    PREMIUM_SHARED = 'premium_shared', 'Premium Shared'

    @classmethod
    def shared(cls):
        return [cls.ECONOMY_SHARED, cls.PREMIUM_SHARED]


class RideStatus(models.TextChoices):
    ONGOING = 'ongoing', 'Ongoing'
    COMPLETED = 'completed', 'Completed'
    CANCELLED = 'cancelled', 'Cancelled'


class RideRecord(models.Model):
    """
    A booked ride.

    Created only when a booking is committed; the cost is fixed from the
    route quote in force at that moment. The route_geometry field stores
    the quoted path as an encoded polyline string.
    """

    id = models.CharField(
        primary_key=True,
        max_length=32,
        default=generate_ride_id,
        editable=False,
    )
    session_key = models.CharField(
        max_length=64,
        db_index=True,
        help_text="Booking session that owns this ride"
    )
    pickup_name = models.CharField(max_length=255)
    pickup_longitude = models.FloatField(null=True, blank=True)
    pickup_latitude = models.FloatField(null=True, blank=True)
    destination_name = models.CharField(max_length=255)
    destination_longitude = models.FloatField(null=True, blank=True)
    destination_latitude = models.FloatField(null=True, blank=True)
    ride_class = models.CharField(max_length=20, choices=RideClass.choices)
    distance_km = models.PositiveIntegerField()
    cost = models.PositiveIntegerField(help_text="Fare fixed at booking time")
    route_geometry = models.TextField(
        blank=True,
        default='',
        help_text="Encoded polyline of the quoted route"
    )
    status = models.CharField(
        max_length=20,
        choices=RideStatus.choices,
        default=RideStatus.ONGOING,
    )

    # Driver assignment
    driver_name = models.CharField(max_length=100, blank=True, default='')
    driver_rating = models.FloatField(null=True, blank=True)
    driver_vehicle = models.CharField(max_length=100, blank=True, default='')
    driver_plate = models.CharField(max_length=32, blank=True, default='')

    # Feedback
    feedback = models.TextField(blank=True, default='')
    driver_rating_given = models.PositiveSmallIntegerField(
        null=True,
        blank=True,
        validators=[MinValueValidator(1), MaxValueValidator(5)],
        help_text="Rider's rating of the driver (1-5)"
    )

    payment_reference = models.CharField(max_length=64, blank=True, default='')

    # Timestamps
    created_at = models.DateTimeField(default=timezone.now)
    completed_at = models.DateTimeField(null=True, blank=True)
    cancelled_at = models.DateTimeField(null=True, blank=True)

    class Meta:
        ordering = ['created_at', 'id']
        verbose_name = 'Ride'
        verbose_name_plural = 'Rides'

    def __str__(self):
        return f"Ride {self.id}: {self.pickup_name} -> {self.destination_name} ({self.status})"

    @property
    def pickup_coords(self):
        """Return pickup coordinates as (lon, lat), or None if unknown."""
        if self.pickup_longitude is None or self.pickup_latitude is None:
            return None
        return (self.pickup_longitude, self.pickup_latitude)

    @property
    def destination_coords(self):
        """Return destination coordinates as (lon, lat), or None if unknown."""
        if self.destination_longitude is None or self.destination_latitude is None:
            return None
        return (self.destination_longitude, self.destination_latitude)

    @property
    def is_terminal(self) -> bool:
        return self.status in (RideStatus.COMPLETED, RideStatus.CANCELLED)


class SharedRide(models.Model):
    """A shared ride offered by a rider, priced per person."""

    session_key = models.CharField(max_length=64, db_index=True)
    host_name = models.CharField(max_length=100, default='You')
    pickup = models.CharField(max_length=255)
    destination = models.CharField(max_length=255)
    departure = models.DateTimeField()
    seats = models.PositiveSmallIntegerField(
        validators=[MinValueValidator(1), MaxValueValidator(4)]
    )
    ride_class = models.CharField(max_length=20, choices=RideClass.choices)
    distance_km = models.PositiveIntegerField()
    price_per_person = models.PositiveIntegerField()
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        ordering = ['-created_at']
        verbose_name = 'Shared ride'
        verbose_name_plural = 'Shared rides'

    def __str__(self):
        return f"Shared ride {self.id}: {self.pickup} -> {self.destination}"
