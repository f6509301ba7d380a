"""
API views for the rides application.
"""

import logging

from asgiref.sync import async_to_sync
from drf_spectacular.types import OpenApiTypes
from drf_spectacular.utils import OpenApiParameter, extend_schema, extend_schema_view
from rest_framework import mixins, status, viewsets
from rest_framework.decorators import action
from rest_framework.response import Response
from rest_framework.views import APIView

from .exceptions import BookingError, NotConnected
from .models import RideRecord
from .serializers import (
    ActiveRideSerializer,
    BookRideSerializer,
    ChatMessageSerializer,
    CompleteRideSerializer,
    PlaceSuggestionSerializer,
    QuoteRequestSerializer,
    ReceiptSerializer,
    ReviewSerializer,
    RideRecordSerializer,
    RouteQuoteSerializer,
    SendMessageSerializer,
    SharedRideCreateSerializer,
    SharedRideSerializer,
)
from .services.chat import find_chat_channel, get_chat_channel, release_chat_channel
from .services.fares import fare_table
from .services.lifecycle import DriverAssignment, RideLifecycle
from .services.payments import get_payment_gateway
from .services.session import load_booking_session, save_booking_session
from .services.sharing import create_shared_ride, search_shared_rides

logger = logging.getLogger(__name__)


def error_response(error: BookingError) -> Response:
    """Render a recoverable booking error for API clients."""
    return Response(
        {'error': str(error), 'code': error.code},
        status=error.status_code
    )


def quote_payload(quote) -> dict:
    """Flatten a RouteQuote and its fares for serialization."""
    return {
        'pickup': quote.pickup.place_name,
        'pickup_coordinates': list(quote.pickup.coordinates),
        'destination': quote.destination.place_name,
        'destination_coordinates': list(quote.destination.coordinates),
        'distance_km': quote.distance_km,
        'path': [list(point) for point in quote.path],
        'viewport': {
            'center': list(quote.viewport.center),
            'zoom': quote.viewport.zoom,
        },
        'fares': fare_table(quote.distance_km),
    }


def chat_payload(channel) -> dict:
    if channel is None:
        return {'room_id': None, 'connected': False, 'messages': []}
    return {
        'room_id': channel.room_id,
        'connected': channel.connected,
        'messages': ChatMessageSerializer(
            [message.to_dict() for message in channel.messages], many=True
        ).data,
    }


class BookingSessionMixin:
    """Loads and stores the rider's BookingSession around a request."""

    def get_booking(self):
        return load_booking_session(self.request.session)

    def save_booking(self, booking):
        save_booking_session(self.request.session, booking)

    def get_lifecycle(self, booking, create_chat=False):
        """
        Lifecycle for the session. Only booking opens a chat channel; other
        operations use the existing one, if any.
        """
        if create_chat:
            chat = get_chat_channel(booking.session_key)
        else:
            chat = find_chat_channel(booking.session_key)
        return RideLifecycle(booking, chat=chat)


class PlaceSuggestionView(BookingSessionMixin, APIView):
    """
    Autocomplete for the pickup and destination inputs.
    """

    @extend_schema(
        summary="Suggest places",
        description="Return geocoding candidates for a partially typed place name.",
        tags=['Booking'],
        parameters=[
            OpenApiParameter(
                name='q',
                type=OpenApiTypes.STR,
                location=OpenApiParameter.QUERY,
                required=True,
                description='Text typed so far'
            ),
        ],
        responses={200: PlaceSuggestionSerializer(many=True)},
    )
    def get(self, request):
        query = request.query_params.get('q', '')
        resolver = self.get_booking().route_resolver()
        candidates = async_to_sync(resolver.suggest_places)(query)

        data = PlaceSuggestionSerializer([
            {'place_name': c.place_name, 'coordinates': list(c.coordinates)}
            for c in candidates
        ], many=True).data
        return Response({'suggestions': data})


class RouteQuoteView(BookingSessionMixin, APIView):
    """
    Plan the route between pickup and destination and price every ride class.
    """

    @extend_schema(
        summary="Quote a route",
        description="""
        Resolve both locations, check they are in the same country and within
        the maximum distance, and return the route, its map framing and the
        fare of every ride class. The quote becomes the session's current
        quote and is the price a subsequent booking commits to.
        """,
        tags=['Booking'],
        request=QuoteRequestSerializer,
        responses={200: RouteQuoteSerializer},
    )
    def post(self, request):
        serializer = QuoteRequestSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data

        booking = self.get_booking()
        booking.set_locations(data['pickup'], data['destination'])
        resolver = booking.route_resolver()

        try:
            quote = async_to_sync(resolver.plan_route)(data['pickup'], data['destination'])
        except BookingError as e:
            self.save_booking(booking)
            return error_response(e)

        booking.accept_quote(quote)
        self.save_booking(booking)

        return Response(RouteQuoteSerializer(quote_payload(quote)).data)


@extend_schema_view(
    list=extend_schema(
        summary="Ride history",
        description="List every ride booked in this session, oldest first.",
        tags=['Rides']
    ),
    create=extend_schema(
        summary="Book a ride",
        description="Book a ride at the price of the current quote. A driver is assigned and a chat room opened.",
        tags=['Rides'],
        request=BookRideSerializer,
        responses={201: ReceiptSerializer},
    ),
)
class RideViewSet(BookingSessionMixin, mixins.ListModelMixin, viewsets.GenericViewSet):
    """
    ViewSet for the ride lifecycle.

    Endpoints:
    - GET /api/rides/ - Ride history
    - POST /api/rides/ - Book a ride
    - GET /api/rides/active/ - Active ride and lifecycle state
    - POST /api/rides/active/cancel/ - Cancel the active ride
    - POST /api/rides/active/complete/ - Pay for and complete the active ride
    - POST /api/rides/active/clear/ - Back to booking
    - GET/POST /api/rides/active/chat/ - Chat with the driver
    - GET /api/rides/{id}/receipt/ - Receipt
    - POST /api/rides/{id}/review/ - Rate the driver
    """

    serializer_class = RideRecordSerializer

    def get_queryset(self):
        booking = self.get_booking()
        return RideRecord.objects.filter(session_key=booking.session_key).order_by('created_at', 'id')

    def create(self, request, *args, **kwargs):
        """Book a ride with the session's current quote."""
        serializer = BookRideSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data

        booking = self.get_booking()
        lifecycle = self.get_lifecycle(booking, create_chat=True)
        try:
            record = lifecycle.book(data['pickup'], data['destination'], data['ride_class'])
        except BookingError as e:
            release_chat_channel(booking.session_key)
            return error_response(e)
        self.save_booking(booking)

        return Response(ReceiptSerializer(record).data, status=status.HTTP_201_CREATED)

    @extend_schema(summary="Active ride", tags=['Rides'], responses={200: ActiveRideSerializer})
    @action(detail=False, methods=['get'], url_path='active', url_name='active')
    def active(self, request):
        booking = self.get_booking()
        lifecycle = self.get_lifecycle(booking)
        ride = lifecycle.active_ride
        state = lifecycle.state
        self.save_booking(booking)

        driver = DriverAssignment.from_record(ride) if ride is not None else None
        return Response(ActiveRideSerializer({
            'state': state.value,
            'ride': ride,
            'room_id': driver.room_id if driver else None,
        }).data)

    @extend_schema(summary="Cancel the active ride", tags=['Rides'], request=None, responses={200: ReceiptSerializer})
    @action(detail=False, methods=['post'], url_path='active/cancel', url_name='cancel')
    def cancel(self, request):
        booking = self.get_booking()
        lifecycle = self.get_lifecycle(booking)
        try:
            record = lifecycle.cancel()
        except BookingError as e:
            return error_response(e)
        self.save_booking(booking)
        release_chat_channel(booking.session_key)
        return Response(ReceiptSerializer(record).data)

    @extend_schema(
        summary="Pay for and complete the active ride",
        tags=['Rides'],
        request=CompleteRideSerializer,
        responses={200: ReceiptSerializer},
    )
    @action(detail=False, methods=['post'], url_path='active/complete', url_name='complete')
    def complete(self, request):
        serializer = CompleteRideSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        booking = self.get_booking()
        lifecycle = self.get_lifecycle(booking)
        try:
            record = lifecycle.settle(get_payment_gateway(), serializer.validated_data['payment_method'])
        except BookingError as e:
            return error_response(e)
        self.save_booking(booking)
        return Response(ReceiptSerializer(record).data)

    @extend_schema(summary="Back to booking", tags=['Rides'], request=None, responses={204: None})
    @action(detail=False, methods=['post'], url_path='active/clear', url_name='clear')
    def clear(self, request):
        booking = self.get_booking()
        lifecycle = self.get_lifecycle(booking)
        try:
            lifecycle.clear()
        except BookingError as e:
            return error_response(e)
        self.save_booking(booking)
        release_chat_channel(booking.session_key)
        return Response(status=status.HTTP_204_NO_CONTENT)

    @extend_schema(summary="Chat with the driver", tags=['Chat'], request=SendMessageSerializer)
    @action(detail=False, methods=['get', 'post'], url_path='active/chat', url_name='chat')
    def chat(self, request):
        booking = self.get_booking()
        channel = find_chat_channel(booking.session_key)

        if request.method == 'GET':
            return Response(chat_payload(channel))

        serializer = SendMessageSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        try:
            if channel is None:
                raise NotConnected()
            channel.send(serializer.validated_data['text'])
        except BookingError as e:
            return error_response(e)
        return Response(chat_payload(channel), status=status.HTTP_202_ACCEPTED)

    @extend_schema(summary="Ride receipt", tags=['Rides'], responses={200: ReceiptSerializer})
    @action(detail=True, methods=['get'], url_path='receipt', url_name='receipt')
    def receipt(self, request, pk=None):
        lifecycle = self.get_lifecycle(self.get_booking())
        try:
            record = lifecycle.receipt(pk)
        except BookingError as e:
            return error_response(e)
        return Response(ReceiptSerializer(record).data)

    @extend_schema(
        summary="Rate and review a completed ride",
        tags=['Rides'],
        request=ReviewSerializer,
        responses={200: RideRecordSerializer},
    )
    @action(detail=True, methods=['post'], url_path='review', url_name='review')
    def review(self, request, pk=None):
        serializer = ReviewSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data

        lifecycle = self.get_lifecycle(self.get_booking())
        try:
            record = lifecycle.rate_and_review(pk, data.get('rating'), data.get('feedback', ''))
        except BookingError as e:
            return error_response(e)
        return Response(RideRecordSerializer(record).data)


@extend_schema_view(
    list=extend_schema(
        summary="List shared rides",
        description="List published shared rides, optionally filtered by pickup or destination text.",
        tags=['Shared rides'],
        parameters=[
            OpenApiParameter(
                name='search',
                type=OpenApiTypes.STR,
                location=OpenApiParameter.QUERY,
                required=False,
                description='Case-insensitive text matched against pickup and destination'
            ),
        ],
    ),
    create=extend_schema(
        summary="Publish a shared ride",
        description="Plan the route and publish a shared ride priced per person.",
        tags=['Shared rides'],
        request=SharedRideCreateSerializer,
        responses={201: SharedRideSerializer},
    ),
)
class SharedRideViewSet(BookingSessionMixin, mixins.ListModelMixin, viewsets.GenericViewSet):
    """
    ViewSet for shared ride offers.

    Endpoints:
    - GET /api/shared-rides/?search= - List shared rides
    - POST /api/shared-rides/ - Publish a shared ride
    """

    serializer_class = SharedRideSerializer

    def get_queryset(self):
        return search_shared_rides(self.request.query_params.get('search'))

    def create(self, request, *args, **kwargs):
        serializer = SharedRideCreateSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data

        booking = self.get_booking()
        try:
            shared_ride = async_to_sync(create_shared_ride)(
                booking.route_resolver(),
                booking.session_key,
                pickup=data['pickup'],
                destination=data['destination'],
                departure=data['departure'],
                seats=data['seats'],
                ride_class=data['ride_class'],
                host_name=data['host_name'],
            )
        except BookingError as e:
            self.save_booking(booking)
            return error_response(e)

        shared_ride.save()
        self.save_booking(booking)
        logger.info(f"Published shared ride {shared_ride.id}")

        return Response(SharedRideSerializer(shared_ride).data, status=status.HTTP_201_CREATED)
