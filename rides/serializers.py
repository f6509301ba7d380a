"""
Serializers for the rides API.
"""

from rest_framework import serializers

from .models import RideClass, RideRecord, SharedRide


class QuoteRequestSerializer(serializers.Serializer):
    """Serializer for route quote requests."""

    pickup = serializers.CharField(max_length=255)
    destination = serializers.CharField(max_length=255)


class ViewportSerializer(serializers.Serializer):
    center = serializers.ListField(child=serializers.FloatField(), min_length=2, max_length=2)
    zoom = serializers.FloatField()


class RouteQuoteSerializer(serializers.Serializer):
    """Serializer for a planned route with the fare of every ride class."""

    pickup = serializers.CharField()
    pickup_coordinates = serializers.ListField(child=serializers.FloatField())
    destination = serializers.CharField()
    destination_coordinates = serializers.ListField(child=serializers.FloatField())
    distance_km = serializers.IntegerField()
    path = serializers.ListField(child=serializers.ListField(child=serializers.FloatField()))
    viewport = ViewportSerializer()
    fares = serializers.DictField(child=serializers.IntegerField(allow_null=True))


class PlaceSuggestionSerializer(serializers.Serializer):
    place_name = serializers.CharField()
    coordinates = serializers.ListField(child=serializers.FloatField())


class DriverSerializer(serializers.Serializer):
    name = serializers.CharField(source='driver_name')
    rating = serializers.FloatField(source='driver_rating')
    vehicle = serializers.CharField(source='driver_vehicle')
    plate = serializers.CharField(source='driver_plate')


class RideRecordSerializer(serializers.ModelSerializer):
    """Serializer for RideRecord - used for the ride history list."""

    driver = DriverSerializer(source='*', read_only=True)

    class Meta:
        model = RideRecord
        fields = [
            'id',
            'pickup_name',
            'destination_name',
            'ride_class',
            'distance_km',
            'cost',
            'status',
            'created_at',
            'driver',
            'feedback',
            'driver_rating_given',
        ]
        read_only_fields = fields


class ReceiptSerializer(serializers.ModelSerializer):
    """Serializer for a single ride's receipt."""

    driver = DriverSerializer(source='*', read_only=True)
    ride_class_display = serializers.CharField(source='get_ride_class_display', read_only=True)

    class Meta:
        model = RideRecord
        fields = [
            'id',
            'pickup_name',
            'pickup_longitude',
            'pickup_latitude',
            'destination_name',
            'destination_longitude',
            'destination_latitude',
            'ride_class',
            'ride_class_display',
            'distance_km',
            'cost',
            'status',
            'driver',
            'route_geometry',
            'payment_reference',
            'created_at',
            'completed_at',
            'cancelled_at',
        ]
        read_only_fields = fields


class BookRideSerializer(serializers.Serializer):
    """Serializer for booking a ride."""

    pickup = serializers.CharField(max_length=255, required=False, allow_blank=True, default='')
    destination = serializers.CharField(max_length=255, required=False, allow_blank=True, default='')
    ride_class = serializers.CharField(max_length=20, required=False, allow_blank=True, default='')


class ActiveRideSerializer(serializers.Serializer):
    state = serializers.CharField()
    ride = RideRecordSerializer(allow_null=True)
    room_id = serializers.CharField(allow_null=True)


class CompleteRideSerializer(serializers.Serializer):
    """Serializer for paying for and completing the active ride."""

    payment_method = serializers.CharField(max_length=20, default='card')


class ReviewSerializer(serializers.Serializer):
    """Serializer for rating the driver of a completed ride."""

    rating = serializers.IntegerField(required=False, allow_null=True)
    feedback = serializers.CharField(required=False, allow_blank=True, default='')


class ChatMessageSerializer(serializers.Serializer):
    sender = serializers.CharField()
    text = serializers.CharField()


class SendMessageSerializer(serializers.Serializer):
    text = serializers.CharField(max_length=1000, trim_whitespace=True)


class SharedRideSerializer(serializers.ModelSerializer):
    """Serializer for SharedRide - used for list operations."""

    class Meta:
        model = SharedRide
        fields = [
            'id',
            'host_name',
            'pickup',
            'destination',
            'departure',
            'seats',
            'ride_class',
            'distance_km',
            'price_per_person',
            'created_at',
        ]
        read_only_fields = fields


class SharedRideCreateSerializer(serializers.Serializer):
    """Serializer for publishing a shared ride."""

    pickup = serializers.CharField(max_length=255)
    destination = serializers.CharField(max_length=255)
    departure = serializers.DateTimeField()
    seats = serializers.IntegerField(min_value=1, max_value=4, default=1)
    ride_class = serializers.ChoiceField(
        choices=[(value, RideClass(value).label) for value in RideClass.shared()],
        default=RideClass.ECONOMY_SHARED,
    )
    host_name = serializers.CharField(max_length=100, default='You')
