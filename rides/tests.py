"""
Tests for the rides application.

Covers:
- Geometry, fares and payments
- Mapbox geocoding/directions services and route planning
- Ride lifecycle (book, cancel, complete, review, clear)
- Simulated driver chat
- REST API and WebSocket consumers
"""

import asyncio
import random
from io import StringIO
from unittest.mock import MagicMock, patch
from urllib.parse import unquote

import polyline
import requests
from channels.db import database_sync_to_async
from channels.testing import WebsocketCommunicator
from django.conf import settings
from django.contrib.sessions.backends.db import SessionStore
from django.core.management import CommandError, call_command
from django.test import SimpleTestCase, TestCase, override_settings
from django.urls import reverse
from rest_framework import status
from rest_framework.test import APITestCase

from .consumers import BookingPreviewConsumer, RideChatConsumer
from .exceptions import (
    CrossBorderNotAllowed,
    DistanceExceeded,
    IncompleteBookingRequest,
    InvalidLocation,
    InvalidPartySize,
    NoActiveRide,
    NoRouteAvailable,
    NotConnected,
    PaymentDeclined,
    PlaceNotFound,
    RatingRequired,
    RideNotCompleted,
    RideNotFound,
    RideStillOngoing,
)
from .models import RideClass, RideRecord, RideStatus, SharedRide, generate_ride_id
from .services.chat import (
    AsyncioScheduler,
    ChannelSimulator,
    ManualScheduler,
    discard_chat_channel,
    find_chat_channel,
    get_chat_channel,
)
from .services.debounce import Debouncer
from .services.directions import DirectionsAPIError, MapboxDirectionsService
from .services.fares import fare_table, quote_price, round_half_up, split_fare
from .services.geocoding import GeocodingAPIError, GeocodingCache, MapboxGeocodingService, PlaceCandidate
from .services.geometry import bounding_box, haversine_distance, path_length_meters, viewport_for_path
from .services.lifecycle import LifecycleState, RideLifecycle, load_roster
from .services.payments import PaymentResult, SimulatedPaymentGateway
from .services.routing import Location, RouteQuote, RouteResolver
from .services.session import BookingSession, read_booking_session
from .services.sharing import create_shared_ride


HYDERABAD = (78.4867, 17.3850)
SECUNDERABAD = (78.4983, 17.4399)
AMRITSAR = (74.8723, 31.6340)
LAHORE = (74.3587, 31.5204)

PLACES = {
    'Hyderabad': (HYDERABAD, 'India'),
    'Secunderabad': (SECUNDERABAD, 'India'),
    'Amritsar': (AMRITSAR, 'India'),
    'Lahore': (LAHORE, 'Pakistan'),
}


def mock_response(payload):
    response = MagicMock()
    response.json.return_value = payload
    response.raise_for_status = MagicMock()
    return response


def place_feature(name, coordinates, country):
    return {
        'id': f'place.{abs(hash(name)) % 10000}',
        'place_name': f'{name}, {country}',
        'text': name,
        'center': list(coordinates),
        'context': [{'id': 'country.1', 'text': country}],
    }


class FakeMapbox:
    """Answers Mapbox geocoding and directions requests made through requests.get."""

    def __init__(self, places=None, route_meters=7400, route_code='Ok'):
        self.places = places if places is not None else dict(PLACES)
        self.route_meters = route_meters
        self.route_code = route_code
        self.geocoding_queries = []
        self.directions_calls = 0

    def __call__(self, url, params=None, timeout=None):
        if url.startswith(MapboxDirectionsService.BASE_URL):
            self.directions_calls += 1
            return mock_response(self._directions(url))

        query = unquote(url[len(MapboxGeocodingService.BASE_URL) + 1:-len('.json')])
        self.geocoding_queries.append(query)
        return mock_response({'features': self._features(query)})

    def _features(self, query):
        try:
            lon, lat = (float(part) for part in query.split(','))
        except ValueError:
            return [
                place_feature(name, coordinates, country)
                for name, (coordinates, country) in self.places.items()
                if name.lower().startswith(query.lower())
            ]
        return [
            place_feature(name, coordinates, country)
            for name, (coordinates, country) in self.places.items()
            if abs(coordinates[0] - lon) < 1e-6 and abs(coordinates[1] - lat) < 1e-6
        ]

    def _directions(self, url):
        if self.route_code != 'Ok':
            return {'code': self.route_code, 'routes': []}

        origin, destination = url[len(MapboxDirectionsService.BASE_URL) + 1:].split(';')
        points = [tuple(float(v) for v in point.split(',')) for point in (origin, destination)]
        route = {'geometry': polyline.encode([(lat, lon) for lon, lat in points], 5)}
        if self.route_meters is not None:
            route['distance'] = self.route_meters
        return {'code': 'Ok', 'routes': [route]}


def make_quote(pickup='Hyderabad', destination='Secunderabad', distance_km=7):
    path = (HYDERABAD, SECUNDERABAD)
    return RouteQuote(
        pickup=Location(pickup, HYDERABAD),
        destination=Location(destination, SECUNDERABAD),
        distance_km=distance_km,
        path=path,
        viewport=viewport_for_path(path, 15),
    )


def with_session(application, session):
    """ASGI wrapper that attaches a session to the connection scope."""
    async def app(scope, receive, send):
        return await application(dict(scope, session=session), receive, send)
    return app


class GeometryTests(SimpleTestCase):
    """Tests for distance and map framing helpers."""

    def test_haversine_distance_same_point(self):
        """Test distance between same point is zero."""
        self.assertEqual(haversine_distance(HYDERABAD, HYDERABAD), 0)

    def test_haversine_distance_known_points(self):
        """Hyderabad to Secunderabad is roughly 6 km as the crow flies."""
        distance = haversine_distance(HYDERABAD, SECUNDERABAD)
        self.assertGreater(distance, 5000)
        self.assertLess(distance, 7500)

    def test_path_length_sums_segments(self):
        path = [HYDERABAD, SECUNDERABAD, HYDERABAD]
        self.assertAlmostEqual(
            path_length_meters(path),
            2 * haversine_distance(HYDERABAD, SECUNDERABAD),
            places=6
        )

    def test_bounding_box_of_empty_path(self):
        with self.assertRaises(ValueError):
            bounding_box([])

    def test_viewport_centers_on_box(self):
        viewport = viewport_for_path([(0.0, 0.0), (90.0, 10.0)], 15)
        self.assertEqual(viewport.center, (45.0, 5.0))
        self.assertAlmostEqual(viewport.zoom, 2.0)

    def test_viewport_zoom_is_capped(self):
        viewport = viewport_for_path([HYDERABAD, (78.4868, 17.3851)], 15)
        self.assertEqual(viewport.zoom, 15)

    def test_viewport_zero_width_box(self):
        """A path running due north has zero width and gets the maximum zoom."""
        viewport = viewport_for_path([(78.0, 17.0), (78.0, 18.0)], 15)
        self.assertEqual(viewport.zoom, 15)
        self.assertEqual(viewport.center, (78.0, 17.5))


class FareTests(SimpleTestCase):
    """Tests for ride class pricing."""

    def test_economy_fare(self):
        """120 km in economy costs 50 + 10 * 120."""
        self.assertEqual(quote_price(RideClass.ECONOMY, 120), 1250)

    def test_every_class_price(self):
        self.assertEqual(fare_table(10), {
            'economy': 150,
            'premium': 250,
            'economy_shared': 120,
            'premium_shared': 200,
        })

    def test_unknown_distance_has_no_price(self):
        self.assertIsNone(quote_price(RideClass.PREMIUM, None))
        self.assertEqual(set(fare_table(None).values()), {None})

    def test_half_up_rounding(self):
        self.assertEqual(round_half_up(2.5), 3)
        self.assertEqual(round_half_up(0.5), 1)
        self.assertEqual(quote_price(RideClass.ECONOMY, 2.25), 73)

    def test_price_grows_with_distance(self):
        for ride_class in RideClass:
            prices = [quote_price(ride_class, km) for km in range(0, 50)]
            self.assertEqual(prices, sorted(prices))

    def test_unknown_ride_class(self):
        with self.assertRaises(ValueError):
            quote_price('limousine', 10)

    def test_split_fare(self):
        self.assertEqual(split_fare(RideClass.PREMIUM_SHARED, 10, 4), 50)
        # 100 / 8 = 12.5
        self.assertEqual(split_fare(RideClass.ECONOMY_SHARED, 5, 8), 13)

    def test_split_fare_sums_to_total(self):
        for ride_class in RideClass:
            for distance_km in (0, 1, 3, 7, 13, 120, 499):
                total = quote_price(ride_class, distance_km)
                for party_size in range(1, 9):
                    share = split_fare(ride_class, distance_km, party_size)
                    self.assertLessEqual(
                        abs(share * party_size - total), party_size / 2,
                        msg=f"{ride_class} {distance_km} km split {party_size} ways"
                    )

    def test_split_fare_zero_party(self):
        with self.assertRaises(InvalidPartySize):
            split_fare(RideClass.ECONOMY_SHARED, 10, 0)


class MapboxDirectionsServiceTests(SimpleTestCase):
    """Tests for Mapbox Directions API service."""

    @patch('rides.services.directions.requests.get')
    def test_route_success(self, mock_get):
        """Test successful route fetch decodes the polyline to (lon, lat)."""
        geometry = polyline.encode([(17.3850, 78.4867), (17.4399, 78.4983)], 5)
        mock_get.return_value = mock_response({
            'code': 'Ok',
            'routes': [{'distance': 7400.0, 'geometry': geometry}],
        })

        service = MapboxDirectionsService(access_token='test-token')
        routes = service.route(HYDERABAD, SECUNDERABAD)

        self.assertEqual(len(routes), 1)
        self.assertEqual(routes[0].distance_meters, 7400.0)
        self.assertAlmostEqual(routes[0].coordinates[0][0], 78.4867, places=5)
        self.assertAlmostEqual(routes[0].coordinates[0][1], 17.3850, places=5)
        self.assertIn('78.4867,17.385;78.4983,17.4399', mock_get.call_args[0][0])

    @patch('rides.services.directions.requests.get')
    def test_no_route(self, mock_get):
        """Test NoRoute is an empty result, not an error."""
        mock_get.return_value = mock_response({'code': 'NoRoute', 'routes': []})

        service = MapboxDirectionsService(access_token='test-token')
        self.assertEqual(service.route(HYDERABAD, LAHORE), [])

    @patch('rides.services.directions.requests.get')
    def test_api_error(self, mock_get):
        mock_get.return_value = mock_response({'code': 'InvalidInput', 'message': 'Bad coordinates'})

        service = MapboxDirectionsService(access_token='test-token')
        with self.assertRaises(DirectionsAPIError) as context:
            service.route(HYDERABAD, SECUNDERABAD)

        self.assertIn('Bad coordinates', str(context.exception))

    @patch('rides.services.directions.requests.get')
    def test_network_failure(self, mock_get):
        mock_get.side_effect = requests.ConnectionError('connection refused')

        service = MapboxDirectionsService(access_token='test-token')
        with self.assertRaises(DirectionsAPIError):
            service.route(HYDERABAD, SECUNDERABAD)

    def test_missing_access_token(self):
        """Test handling of missing access token."""
        service = MapboxDirectionsService(access_token='')

        with self.assertRaises(DirectionsAPIError) as context:
            service.route(HYDERABAD, SECUNDERABAD)

        self.assertIn("not configured", str(context.exception))


class MapboxGeocodingServiceTests(SimpleTestCase):
    """Tests for Mapbox Geocoding API service."""

    @patch('rides.services.geocoding.requests.get')
    def test_forward_geocode(self, mock_get):
        mock_get.return_value = mock_response({
            'features': [place_feature('Hyderabad', HYDERABAD, 'India')],
        })

        service = MapboxGeocodingService(access_token='test-token')
        candidates = service.forward_geocode('Hyderabad')

        self.assertEqual(len(candidates), 1)
        self.assertEqual(candidates[0].coordinates, HYDERABAD)
        self.assertEqual(candidates[0].country, 'India')
        self.assertTrue(mock_get.call_args[0][0].endswith('/Hyderabad.json'))

    @patch('rides.services.geocoding.requests.get')
    def test_reverse_geocode_query(self, mock_get):
        mock_get.return_value = mock_response({'features': []})

        service = MapboxGeocodingService(access_token='test-token')
        self.assertEqual(service.reverse_geocode(HYDERABAD), [])
        self.assertTrue(mock_get.call_args[0][0].endswith('/78.4867,17.385.json'))

    @patch('rides.services.geocoding.requests.get')
    def test_error_response(self, mock_get):
        mock_get.return_value = mock_response({'message': 'Not Authorized - Invalid Token'})

        service = MapboxGeocodingService(access_token='bad-token')
        with self.assertRaises(GeocodingAPIError) as context:
            service.forward_geocode('Hyderabad')

        self.assertIn('Invalid Token', str(context.exception))

    def test_country_feature(self):
        candidate = PlaceCandidate(place_name='India', coordinates=(78.0, 21.0), feature_id='country.123', text='India')
        self.assertEqual(candidate.country, 'India')

    def test_place_without_country(self):
        candidate = PlaceCandidate(place_name='Open sea', coordinates=(0.0, 0.0))
        self.assertIsNone(candidate.country)


class GeocodingCacheTests(SimpleTestCase):
    """Tests for the per-session geocoding cache."""

    @patch('rides.services.geocoding.requests.get')
    async def test_cache_hit_skips_provider(self, mock_get):
        cache = GeocodingCache(
            MapboxGeocodingService(access_token='test-token'),
            {'Hyderabad': (78.4867, 17.385)}
        )

        coordinates = await cache.resolve('Hyderabad')

        self.assertEqual(coordinates, (78.4867, 17.385))
        mock_get.assert_not_called()

    @patch('rides.services.geocoding.requests.get')
    async def test_miss_is_stored(self, mock_get):
        mock_get.side_effect = FakeMapbox()
        cache = GeocodingCache(MapboxGeocodingService(access_token='test-token'))

        await cache.resolve('Secunderabad')
        await cache.resolve('Secunderabad')

        self.assertIn('Secunderabad', cache)
        self.assertEqual(cache.get('Secunderabad'), SECUNDERABAD)
        self.assertEqual(mock_get.call_count, 1)

    @patch('rides.services.geocoding.requests.get')
    async def test_failures_are_not_cached(self, mock_get):
        mock_get.side_effect = FakeMapbox()
        cache = GeocodingCache(MapboxGeocodingService(access_token='test-token'))

        with self.assertRaises(PlaceNotFound):
            await cache.resolve('Atlantis')

        self.assertNotIn('Atlantis', cache)


class RouteResolverTests(SimpleTestCase):
    """Tests for planning a route between two place names."""

    def setUp(self):
        self.mapbox = FakeMapbox()
        patcher = patch('requests.get', side_effect=self.mapbox)
        patcher.start()
        self.addCleanup(patcher.stop)

    def make_resolver(self, entries=None, **kwargs):
        cache = GeocodingCache(MapboxGeocodingService(access_token='test-token'), entries)
        return RouteResolver(
            cache,
            directions=MapboxDirectionsService(access_token='test-token'),
            max_distance_km=500,
            max_zoom=15,
            **kwargs
        )

    async def test_plan_route(self):
        quote = await self.make_resolver().plan_route('Hyderabad', 'Secunderabad')

        self.assertEqual(quote.distance_km, 7)
        self.assertEqual(quote.pickup.coordinates, HYDERABAD)
        self.assertEqual(quote.destination.coordinates, SECUNDERABAD)
        self.assertEqual(len(quote.path), 2)
        self.assertLessEqual(quote.viewport.zoom, 15)
        self.assertEqual(self.mapbox.directions_calls, 1)

    async def test_cached_coordinates_are_used(self):
        resolver = self.make_resolver({'Hyderabad': HYDERABAD})

        await resolver.plan_route('Hyderabad', 'Secunderabad')

        self.assertNotIn('Hyderabad', self.mapbox.geocoding_queries)
        self.assertIn('Secunderabad', self.mapbox.geocoding_queries)
        self.assertIn('Secunderabad', resolver.cache)

    async def test_empty_location(self):
        with self.assertRaises(InvalidLocation):
            await self.make_resolver().plan_route('', 'Secunderabad')

    async def test_unknown_location(self):
        with self.assertRaises(InvalidLocation):
            await self.make_resolver().plan_route('Atlantis', 'Secunderabad')

    async def test_cross_border(self):
        """Different countries are rejected before any route is requested."""
        with self.assertRaises(CrossBorderNotAllowed):
            await self.make_resolver().plan_route('Amritsar', 'Lahore')

        self.assertEqual(self.mapbox.directions_calls, 0)

    async def test_unknown_country(self):
        self.mapbox.places['Null Island'] = ((0.0, 0.0), '')

        with self.assertRaises(InvalidLocation):
            await self.make_resolver().plan_route('Null Island', 'Hyderabad')

    async def test_no_route(self):
        self.mapbox.route_code = 'NoRoute'

        with self.assertRaises(NoRouteAvailable):
            await self.make_resolver().plan_route('Hyderabad', 'Secunderabad')

    async def test_directions_failure(self):
        self.mapbox.route_code = 'ProfileNotFound'

        with self.assertRaises(NoRouteAvailable):
            await self.make_resolver().plan_route('Hyderabad', 'Secunderabad')

    async def test_distance_exceeded(self):
        self.mapbox.route_meters = 600000

        with self.assertRaises(DistanceExceeded) as context:
            await self.make_resolver().plan_route('Hyderabad', 'Secunderabad')

        self.assertIn('500 km', str(context.exception))

    async def test_distance_at_the_limit(self):
        self.mapbox.route_meters = 500400
        quote = await self.make_resolver().plan_route('Hyderabad', 'Secunderabad')
        self.assertEqual(quote.distance_km, 500)

        self.mapbox.route_meters = 500500
        with self.assertRaises(DistanceExceeded):
            await self.make_resolver().plan_route('Hyderabad', 'Secunderabad')

    async def test_distance_from_path_when_provider_omits_it(self):
        self.mapbox.route_meters = None

        quote = await self.make_resolver().plan_route('Hyderabad', 'Secunderabad')

        self.assertEqual(quote.distance_km, 6)

    async def test_suggest_places(self):
        candidates = await self.make_resolver().suggest_places('Hyd')

        self.assertEqual([c.place_name for c in candidates], ['Hyderabad, India'])

    async def test_suggest_places_empty_query(self):
        self.assertEqual(await self.make_resolver().suggest_places('  '), [])
        self.assertEqual(self.mapbox.geocoding_queries, [])


class BookingSessionTests(SimpleTestCase):
    """Tests for the session-scoped booking context."""

    def test_stale_quote_is_rejected(self):
        booking = BookingSession(session_key='abc')
        booking.set_locations('Hyderabad', 'Secunderabad')
        booking.set_locations('Hyderabad', 'Amritsar')

        self.assertFalse(booking.accept_quote(make_quote()))
        self.assertIsNone(booking.quote)

    def test_matching_quote_is_kept(self):
        booking = BookingSession(session_key='abc')
        booking.set_locations('Hyderabad', 'Secunderabad')
        self.assertTrue(booking.accept_quote(make_quote()))

        booking.set_locations('Hyderabad', 'Secunderabad')

        self.assertIsNotNone(booking.current_quote_for('Hyderabad', 'Secunderabad'))
        self.assertEqual(booking.pickup.coordinates, HYDERABAD)

    def test_round_trip(self):
        booking = BookingSession(
            session_key='abc',
            ride_class='economy',
            quote=make_quote(),
            active_ride_id='1700000000000001',
            geocoding_entries={'Hyderabad': HYDERABAD},
        )

        restored = BookingSession.from_dict('abc', booking.to_dict())

        self.assertEqual(restored, booking)

    def test_reset_keeps_geocoding_cache(self):
        booking = BookingSession(session_key='abc', quote=make_quote(), geocoding_entries={'Hyderabad': HYDERABAD})
        booking.reset_booking()

        self.assertIsNone(booking.quote)
        self.assertEqual(booking.geocoding_entries, {'Hyderabad': HYDERABAD})


class RideRecordModelTests(TestCase):
    """Tests for the RideRecord model."""

    def test_ride_ids_are_unique(self):
        ids = [generate_ride_id() for _ in range(50)]
        self.assertEqual(len(set(ids)), 50)

    def test_coordinate_properties(self):
        record = RideRecord(pickup_longitude=78.4867, pickup_latitude=17.385)
        self.assertEqual(record.pickup_coords, (78.4867, 17.385))
        self.assertIsNone(record.destination_coords)

    def test_string_representation(self):
        record = RideRecord.objects.create(
            session_key='abc',
            pickup_name='Hyderabad',
            destination_name='Secunderabad',
            ride_class=RideClass.ECONOMY,
            distance_km=7,
            cost=120,
        )
        self.assertIn('Hyderabad -> Secunderabad', str(record))
        self.assertFalse(record.is_terminal)


class RideLifecycleTests(TestCase):
    """Tests for booking, cancelling, completing and reviewing rides."""

    def setUp(self):
        self.booking = BookingSession(session_key='session-1')
        self.booking.set_locations('Hyderabad', 'Secunderabad')
        self.booking.accept_quote(make_quote())
        self.scheduler = ManualScheduler()
        self.chat = ChannelSimulator(scheduler=self.scheduler, welcome_delay=0.5, send_delay=0.1)
        self.lifecycle = RideLifecycle(self.booking, chat=self.chat, rng=random.Random(7))

    def book(self, ride_class=RideClass.ECONOMY):
        return self.lifecycle.book('Hyderabad', 'Secunderabad', ride_class)

    def test_book_ride(self):
        record = self.book()

        expected_driver = random.Random(7).choice(load_roster())
        self.assertEqual(record.status, RideStatus.ONGOING)
        self.assertEqual(record.cost, 120)
        self.assertEqual(record.distance_km, 7)
        self.assertEqual(record.driver_name, expected_driver.name)
        self.assertEqual(record.pickup_coords, HYDERABAD)
        self.assertEqual(self.booking.active_ride_id, record.id)
        self.assertEqual(self.lifecycle.state, LifecycleState.ONGOING)
        self.assertEqual(self.chat.room_id, f'ride-{expected_driver.name}')
        self.assertTrue(self.chat.connected)

    def test_route_geometry_is_encoded_path(self):
        record = self.book()

        decoded = polyline.decode(record.route_geometry, 5)
        self.assertAlmostEqual(decoded[-1][0], SECUNDERABAD[1], places=5)
        self.assertAlmostEqual(decoded[-1][1], SECUNDERABAD[0], places=5)

    def test_book_missing_details(self):
        with self.assertRaises(IncompleteBookingRequest):
            self.lifecycle.book('Hyderabad', 'Secunderabad', '')

        self.assertEqual(RideRecord.objects.count(), 0)

    def test_book_without_matching_quote(self):
        with self.assertRaises(IncompleteBookingRequest):
            self.lifecycle.book('Hyderabad', 'Amritsar', RideClass.ECONOMY)

    def test_double_booking(self):
        self.book()

        with self.assertRaises(IncompleteBookingRequest):
            self.book(RideClass.PREMIUM)

        self.assertEqual(RideRecord.objects.count(), 1)

    def test_cancel_ride(self):
        self.book()

        record = self.lifecycle.cancel()

        self.assertEqual(record.status, RideStatus.CANCELLED)
        self.assertIsNotNone(record.cancelled_at)
        self.assertIsNone(self.booking.active_ride_id)
        self.assertEqual(self.lifecycle.state, LifecycleState.NO_ACTIVE_RIDE)
        self.assertFalse(self.chat.connected)

    def test_book_again_after_cancel(self):
        self.book()
        self.lifecycle.cancel()

        self.book(RideClass.PREMIUM)

        history = self.lifecycle.history()
        self.assertEqual([r.status for r in history], [RideStatus.CANCELLED, RideStatus.ONGOING])
        self.assertEqual(history[1].cost, 205)

    def test_cancel_without_ride(self):
        with self.assertRaises(NoActiveRide):
            self.lifecycle.cancel()

    def test_ongoing_ride_without_pointer_is_active(self):
        record = self.book()
        self.booking.active_ride_id = None

        self.assertEqual(self.lifecycle.active_ride, record)
        self.assertEqual(self.booking.active_ride_id, record.id)

        cancelled = self.lifecycle.cancel()

        self.assertEqual(cancelled.id, record.id)
        self.assertEqual(cancelled.status, RideStatus.CANCELLED)

    def test_book_refused_while_ride_ongoing_without_pointer(self):
        self.book()
        self.booking.active_ride_id = None

        with self.assertRaises(IncompleteBookingRequest):
            self.book(RideClass.PREMIUM)

    def test_finished_ride_without_pointer_is_not_active(self):
        self.book()
        self.lifecycle.cancel()

        self.assertIsNone(self.lifecycle.active_ride)
        self.assertIsNone(self.booking.active_ride_id)

    def test_cancel_completed_ride(self):
        record = self.book()
        self.lifecycle.complete(PaymentResult(success=True, reference='pay_test'))

        with self.assertRaises(NoActiveRide):
            self.lifecycle.cancel()

        record.refresh_from_db()
        self.assertEqual(record.status, RideStatus.COMPLETED)

    def test_complete_ride(self):
        self.book()

        record = self.lifecycle.complete(PaymentResult(success=True, reference='pay_test'))

        self.assertEqual(record.status, RideStatus.COMPLETED)
        self.assertEqual(record.payment_reference, 'pay_test')
        self.assertIsNotNone(record.completed_at)
        self.assertEqual(self.lifecycle.state, LifecycleState.COMPLETED)

    def test_payment_declined(self):
        record = self.book()

        with self.assertRaises(PaymentDeclined) as context:
            self.lifecycle.complete(PaymentResult(success=False, reason='Card declined'))

        self.assertEqual(str(context.exception), 'Card declined')
        record.refresh_from_db()
        self.assertEqual(record.status, RideStatus.ONGOING)

    def test_settle_with_gateway(self):
        self.book()

        record = self.lifecycle.settle(SimulatedPaymentGateway(), 'cash')

        self.assertEqual(record.status, RideStatus.COMPLETED)
        self.assertTrue(record.payment_reference.startswith('pay_'))

    def test_settle_with_unsupported_method(self):
        self.book()

        with self.assertRaises(PaymentDeclined):
            self.lifecycle.settle(SimulatedPaymentGateway(), 'bitcoin')

    def test_rate_and_review(self):
        record = self.book()
        self.lifecycle.complete(PaymentResult(success=True))

        self.lifecycle.rate_and_review(record.id, 4, 'Smooth ride')
        reviewed = self.lifecycle.rate_and_review(record.id, 5, 'Great driver')

        self.assertEqual(reviewed.driver_rating_given, 5)
        self.assertEqual(reviewed.feedback, 'Great driver')

    def test_review_requires_rating(self):
        record = self.book()
        self.lifecycle.complete(PaymentResult(success=True))

        for rating in (None, '', 0, 6, 'five'):
            with self.assertRaises(RatingRequired):
                self.lifecycle.rate_and_review(record.id, rating, 'Nice')

    def test_review_ongoing_ride(self):
        record = self.book()

        with self.assertRaises(RideNotCompleted):
            self.lifecycle.rate_and_review(record.id, 5)

    def test_review_unknown_ride(self):
        with self.assertRaises(RideNotFound):
            self.lifecycle.rate_and_review('missing', 5)

    def test_clear_ongoing_ride(self):
        self.book()

        with self.assertRaises(RideStillOngoing):
            self.lifecycle.clear()

    def test_clear_completed_ride(self):
        self.booking.geocoding_entries['Hyderabad'] = HYDERABAD
        self.book()
        self.lifecycle.complete(PaymentResult(success=True))

        self.lifecycle.clear()

        self.assertEqual(self.lifecycle.state, LifecycleState.NO_ACTIVE_RIDE)
        self.assertIsNone(self.booking.quote)
        self.assertIn('Hyderabad', self.booking.geocoding_entries)
        self.assertFalse(self.chat.connected)

    def test_rides_are_scoped_to_session(self):
        self.book()

        other = RideLifecycle(BookingSession(session_key='session-2'))

        self.assertEqual(other.history(), [])
        with self.assertRaises(RideNotFound):
            other.receipt(self.booking.active_ride_id)


class ChannelSimulatorTests(SimpleTestCase):
    """Tests for the simulated driver chat."""

    def setUp(self):
        self.scheduler = ManualScheduler()
        self.channel = ChannelSimulator(scheduler=self.scheduler, welcome_delay=0.5, send_delay=0.1)

    def texts(self):
        return [(m.sender, m.text) for m in self.channel.messages]

    def test_join_and_send(self):
        self.channel.join('ride-Suresh')
        self.scheduler.advance(0.5)
        self.channel.send('Hi, I am at the gate')
        self.scheduler.advance(0.1)

        self.assertEqual(self.texts(), [
            ('System', 'Welcome to the chat room: ride-Suresh'),
            ('You', 'Hi, I am at the gate'),
        ])

    def test_welcome_is_delayed(self):
        self.channel.join('ride-Raju')

        self.scheduler.advance(0.4)
        self.assertEqual(self.channel.messages, [])
        self.scheduler.advance(0.1)
        self.assertEqual(len(self.channel.messages), 1)

    def test_send_when_not_connected(self):
        with self.assertRaises(NotConnected):
            self.channel.send('Hello?')

        self.assertEqual(self.scheduler.pending, 0)
        self.assertEqual(self.channel.messages, [])

    def test_messages_keep_send_order(self):
        self.channel.join('ride-Babu')
        for text in ('one', 'two', 'three'):
            self.channel.send(text)
        self.scheduler.advance()

        sent = [text for sender, text in self.texts() if sender == 'You']
        self.assertEqual(sent, ['one', 'two', 'three'])

    def test_send_right_after_join(self):
        self.channel.join('ride-Suresh')
        self.channel.send('hi')
        self.scheduler.advance()

        texts = self.texts()
        self.assertEqual(len(texts), 2)
        self.assertEqual(texts.count(('System', 'Welcome to the chat room: ride-Suresh')), 1)
        self.assertEqual(texts.count(('You', 'hi')), 1)

    def test_leave_drops_pending_messages(self):
        self.channel.join('ride-Suresh')
        self.channel.send('On my way')
        self.channel.leave()
        self.scheduler.advance()

        self.assertFalse(self.channel.connected)
        self.assertEqual(self.channel.messages, [])

    def test_rejoin_discards_previous_room(self):
        self.channel.join('ride-Suresh')
        self.channel.send('Hello Suresh')
        self.channel.join('ride-Raju')
        self.scheduler.advance()

        self.assertEqual(self.texts(), [('System', 'Welcome to the chat room: ride-Raju')])

    def test_clear_keeps_connection(self):
        self.channel.join('ride-Suresh')
        self.scheduler.advance()
        self.channel.clear()

        self.assertEqual(self.channel.messages, [])
        self.assertTrue(self.channel.connected)

    def test_listeners_are_notified(self):
        received = []

        def broken_listener(message):
            raise RuntimeError('boom')

        self.channel.add_listener(broken_listener)
        self.channel.add_listener(received.append)
        self.channel.join('ride-Suresh')
        self.scheduler.advance()

        self.assertEqual(len(received), 1)
        self.assertEqual(received[0].sender, 'System')

    async def test_asyncio_scheduler(self):
        channel = ChannelSimulator(scheduler=AsyncioScheduler(), welcome_delay=0.01, send_delay=0.01)
        channel.join('ride-Babu')
        channel.send('Hello')
        await asyncio.sleep(0.1)

        self.assertEqual(len(channel.messages), 2)

    def test_manual_scheduler_runs_ties_in_order(self):
        order = []
        for label in 'abc':
            self.scheduler.schedule(1.0, lambda label=label: order.append(label))

        self.assertEqual(self.scheduler.advance(1.0), 3)
        self.assertEqual(order, ['a', 'b', 'c'])


class PaymentGatewayTests(SimpleTestCase):
    """Tests for the simulated payment gateway."""

    def test_card_payment(self):
        result = SimulatedPaymentGateway().charge(120, 'card')
        self.assertTrue(result.success)
        self.assertTrue(result.reference.startswith('pay_'))

    def test_unsupported_method(self):
        result = SimulatedPaymentGateway().charge(120, 'cheque')
        self.assertFalse(result.success)
        self.assertEqual(result.reason, 'Unsupported payment method')

    def test_non_positive_amount(self):
        self.assertFalse(SimulatedPaymentGateway().charge(0, 'card').success)


class DebouncerTests(SimpleTestCase):
    """Tests for the keystroke debouncer."""

    async def test_only_last_call_runs(self):
        calls = []

        async def record(value):
            calls.append(value)

        debouncer = Debouncer(0.05)
        debouncer.call(lambda: record('Hyd'))
        debouncer.call(lambda: record('Hyderabad'))
        await asyncio.sleep(0.15)

        self.assertEqual(calls, ['Hyderabad'])
        self.assertFalse(debouncer.pending)

    async def test_cancel(self):
        calls = []

        async def record():
            calls.append(True)

        debouncer = Debouncer(0.05)
        debouncer.call(record)
        debouncer.cancel()
        await asyncio.sleep(0.1)

        self.assertEqual(calls, [])

    async def test_failure_is_logged(self):
        async def fail():
            raise RuntimeError('directions lookup failed')

        debouncer = Debouncer(0.01)
        with self.assertLogs('rides.services.debounce', level='ERROR') as logs:
            task = debouncer.call(fail)
            await task

        self.assertIsNone(task.exception())
        self.assertIn('Debounced call failed', logs.output[0])


class SharedRideServiceTests(SimpleTestCase):
    """Tests for publishing shared rides."""

    async def test_requires_shared_class(self):
        resolver = MagicMock()

        with self.assertRaises(IncompleteBookingRequest):
            await create_shared_ride(
                resolver, 'abc', 'Hyderabad', 'Secunderabad',
                departure=None, seats=2, ride_class=RideClass.ECONOMY
            )


@override_settings(MAPBOX_ACCESS_TOKEN='test-token')
class QuoteRouteCommandTests(SimpleTestCase):
    """Tests for the quote_route management command."""

    def setUp(self):
        patcher = patch('requests.get', side_effect=FakeMapbox())
        patcher.start()
        self.addCleanup(patcher.stop)

    def test_prints_fares(self):
        out = StringIO()
        call_command('quote_route', 'Hyderabad', 'Secunderabad', stdout=out)

        output = out.getvalue()
        self.assertIn('Distance: 7 km', output)
        self.assertIn('economy', output)
        self.assertIn('120', output)

    def test_cross_border(self):
        with self.assertRaises(CommandError) as context:
            call_command('quote_route', 'Amritsar', 'Lahore', stdout=StringIO())

        self.assertIn('cross_border_not_allowed', str(context.exception))


@override_settings(
    MAPBOX_ACCESS_TOKEN='test-token',
    CHAT_SCHEDULER_CLASS='rides.services.chat.ManualScheduler',
)
class RideAPITests(APITestCase):
    """Tests for the booking and ride lifecycle API."""

    def setUp(self):
        self.mapbox = FakeMapbox()
        patcher = patch('requests.get', side_effect=self.mapbox)
        patcher.start()
        self.addCleanup(patcher.stop)

    def tearDown(self):
        if self.client.session.session_key:
            discard_chat_channel(self.client.session.session_key)

    def quote(self, pickup='Hyderabad', destination='Secunderabad'):
        return self.client.post(
            reverse('route-quote'),
            {'pickup': pickup, 'destination': destination},
            format='json'
        )

    def book(self, ride_class='economy', pickup='Hyderabad', destination='Secunderabad'):
        return self.client.post(
            reverse('ride-list'),
            {'pickup': pickup, 'destination': destination, 'ride_class': ride_class},
            format='json'
        )

    def chat_channel(self):
        return find_chat_channel(self.client.session.session_key)

    def test_quote_route(self):
        response = self.quote()

        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data['distance_km'], 7)
        self.assertEqual(response.data['fares']['economy'], 120)
        self.assertEqual(response.data['fares']['premium'], 205)
        self.assertEqual(response.data['pickup_coordinates'], list(HYDERABAD))
        self.assertLessEqual(response.data['viewport']['zoom'], 15)

    def test_quote_cross_border(self):
        response = self.quote('Amritsar', 'Lahore')

        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertEqual(response.data['code'], 'cross_border_not_allowed')

    def test_quote_invalid_location(self):
        response = self.quote('Atlantis', 'Secunderabad')

        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertEqual(response.data['code'], 'invalid_location')

    def test_quote_missing_params(self):
        response = self.client.post(reverse('route-quote'), {'pickup': 'Hyderabad'}, format='json')
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)

    def test_geocoding_is_cached_in_session(self):
        self.quote()
        self.quote('Hyderabad', 'Amritsar')

        self.assertEqual(self.mapbox.geocoding_queries.count('Hyderabad'), 1)

    def test_place_suggestions(self):
        response = self.client.get(reverse('place-suggestions'), {'q': 'Sec'})

        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data['suggestions'], [
            {'place_name': 'Secunderabad, India', 'coordinates': list(SECUNDERABAD)}
        ])

    def test_book_without_quote(self):
        response = self.book()

        self.assertEqual(response.status_code, status.HTTP_409_CONFLICT)
        self.assertEqual(response.data['code'], 'incomplete_booking_request')

    def test_book_missing_details(self):
        self.quote()
        response = self.book(ride_class='')

        self.assertEqual(response.status_code, status.HTTP_409_CONFLICT)
        self.assertTrue(response.data['error'].startswith('Please fill all details'))

    def test_ride_lifecycle(self):
        """Quote, book, chat, complete, review and return to booking."""
        self.quote()

        response = self.book()
        self.assertEqual(response.status_code, status.HTTP_201_CREATED)
        self.assertEqual(response.data['cost'], 120)
        self.assertEqual(response.data['status'], 'ongoing')
        ride_id = response.data['id']
        driver_name = response.data['driver']['name']
        self.assertIn(driver_name, [driver.name for driver in load_roster()])

        response = self.client.get(reverse('ride-active'))
        self.assertEqual(response.data['state'], 'ongoing')
        self.assertEqual(response.data['room_id'], f'ride-{driver_name}')

        self.chat_channel().scheduler.advance()
        response = self.client.post(reverse('ride-chat'), {'text': 'Where are you?'}, format='json')
        self.assertEqual(response.status_code, status.HTTP_202_ACCEPTED)
        self.chat_channel().scheduler.advance()
        response = self.client.get(reverse('ride-chat'))
        self.assertEqual(response.data['messages'], [
            {'sender': 'System', 'text': f'Welcome to the chat room: ride-{driver_name}'},
            {'sender': 'You', 'text': 'Where are you?'},
        ])

        response = self.client.post(reverse('ride-clear'))
        self.assertEqual(response.status_code, status.HTTP_409_CONFLICT)
        self.assertEqual(response.data['code'], 'ride_still_ongoing')

        response = self.client.post(reverse('ride-complete'), {'payment_method': 'card'}, format='json')
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data['status'], 'completed')
        self.assertTrue(response.data['payment_reference'].startswith('pay_'))

        response = self.client.post(
            reverse('ride-review', kwargs={'pk': ride_id}),
            {'rating': 5, 'feedback': 'Very polite'},
            format='json'
        )
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data['driver_rating_given'], 5)

        response = self.client.post(reverse('ride-clear'))
        self.assertEqual(response.status_code, status.HTTP_204_NO_CONTENT)
        self.assertEqual(self.client.get(reverse('ride-active')).data['state'], 'no_active_ride')
        self.assertIsNone(self.chat_channel())

        response = self.client.get(reverse('ride-list'))
        self.assertEqual(response.data['count'], 1)
        self.assertEqual(response.data['results'][0]['feedback'], 'Very polite')

    def test_cancel_ride(self):
        self.quote()
        ride_id = self.book().data['id']

        response = self.client.post(reverse('ride-cancel'))

        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data['status'], 'cancelled')
        self.assertEqual(RideRecord.objects.get(id=ride_id).status, RideStatus.CANCELLED)

    def test_cancel_without_ride(self):
        response = self.client.post(reverse('ride-cancel'))

        self.assertEqual(response.status_code, status.HTTP_409_CONFLICT)

    def test_cancel_releases_chat_channel(self):
        self.quote()
        self.book()
        self.assertTrue(self.chat_channel().connected)

        self.client.post(reverse('ride-cancel'))

        self.assertIsNone(self.chat_channel())

    def test_failed_booking_opens_no_chat_channel(self):
        response = self.book()

        self.assertEqual(response.status_code, status.HTTP_409_CONFLICT)
        self.assertIsNone(self.chat_channel())

    def test_read_only_requests_open_no_chat_channel(self):
        for _ in range(5):
            client = self.client_class()
            self.assertEqual(client.get(reverse('ride-active')).data['state'], 'no_active_ride')
            response = client.get(reverse('ride-chat'))

            self.assertEqual(response.data, {'room_id': None, 'connected': False, 'messages': []})
            self.assertIsNone(find_chat_channel(client.session.session_key))
        self.assertEqual(response.data['code'], 'no_active_ride')

    def test_double_booking(self):
        self.quote()
        self.book()

        response = self.book('premium')

        self.assertEqual(response.status_code, status.HTTP_409_CONFLICT)
        self.assertEqual(RideRecord.objects.count(), 1)

    def test_payment_declined(self):
        self.quote()
        self.book()

        response = self.client.post(reverse('ride-complete'), {'payment_method': 'voucher'}, format='json')

        self.assertEqual(response.status_code, status.HTTP_402_PAYMENT_REQUIRED)
        self.assertEqual(response.data['code'], 'payment_declined')

    def test_review_ongoing_ride(self):
        self.quote()
        ride_id = self.book().data['id']

        response = self.client.post(reverse('ride-review', kwargs={'pk': ride_id}), {'rating': 4}, format='json')

        self.assertEqual(response.status_code, status.HTTP_409_CONFLICT)
        self.assertEqual(response.data['code'], 'ride_not_completed')

    def test_review_without_rating(self):
        self.quote()
        ride_id = self.book().data['id']
        self.client.post(reverse('ride-complete'), format='json')

        response = self.client.post(
            reverse('ride-review', kwargs={'pk': ride_id}),
            {'feedback': 'Nice'},
            format='json'
        )

        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertEqual(response.data['code'], 'rating_required')

    def test_receipt(self):
        self.quote()
        ride_id = self.book('premium').data['id']

        response = self.client.get(reverse('ride-receipt', kwargs={'pk': ride_id}))

        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data['cost'], 205)
        self.assertEqual(response.data['ride_class_display'], 'Premium')
        self.assertEqual(response.data['pickup_longitude'], HYDERABAD[0])

    def test_receipt_not_found(self):
        response = self.client.get(reverse('ride-receipt', kwargs={'pk': '12345'}))

        self.assertEqual(response.status_code, status.HTTP_404_NOT_FOUND)
        self.assertEqual(response.data['code'], 'ride_not_found')

    def test_chat_without_ride(self):
        response = self.client.post(reverse('ride-chat'), {'text': 'Hello'}, format='json')

        self.assertEqual(response.status_code, status.HTTP_409_CONFLICT)
        self.assertEqual(response.data['code'], 'not_connected')

    def test_schema(self):
        response = self.client.get(reverse('schema'))
        self.assertEqual(response.status_code, status.HTTP_200_OK)


@override_settings(MAPBOX_ACCESS_TOKEN='test-token')
class SharedRideAPITests(APITestCase):
    """Tests for the shared ride API."""

    def setUp(self):
        patcher = patch('requests.get', side_effect=FakeMapbox())
        patcher.start()
        self.addCleanup(patcher.stop)

    def publish(self, **overrides):
        data = {
            'pickup': 'Hyderabad',
            'destination': 'Secunderabad',
            'departure': '2026-11-01T09:00:00Z',
            'seats': 3,
            'ride_class': 'economy_shared',
        }
        data.update(overrides)
        return self.client.post(reverse('shared-ride-list'), data, format='json')

    def test_publish_shared_ride(self):
        response = self.publish()

        self.assertEqual(response.status_code, status.HTTP_201_CREATED)
        # (40 + 8 * 7) / 3
        self.assertEqual(response.data['price_per_person'], 32)
        self.assertEqual(response.data['distance_km'], 7)
        self.assertEqual(SharedRide.objects.count(), 1)

    def test_publish_requires_shared_class(self):
        response = self.publish(ride_class='economy')

        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertEqual(SharedRide.objects.count(), 0)

    def test_publish_cross_border(self):
        response = self.publish(pickup='Amritsar', destination='Lahore')

        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertEqual(response.data['code'], 'cross_border_not_allowed')

    def test_search_shared_rides(self):
        self.publish()

        self.assertEqual(self.client.get(reverse('shared-ride-list'), {'search': 'hyder'}).data['count'], 1)
        self.assertEqual(self.client.get(reverse('shared-ride-list'), {'search': 'Goa'}).data['count'], 0)


@override_settings(
    MAPBOX_ACCESS_TOKEN='test-token',
    ROUTE_DEBOUNCE_SECONDS=0.2,
    SUGGEST_DEBOUNCE_SECONDS=0,
    CHAT_SCHEDULER_CLASS='rides.services.chat.ManualScheduler',
)
class BookingPreviewConsumerTests(TestCase):
    """Tests for the live booking preview WebSocket."""

    def setUp(self):
        self.mapbox = FakeMapbox()
        patcher = patch('requests.get', side_effect=self.mapbox)
        patcher.start()
        self.addCleanup(patcher.stop)

        self.session = SessionStore()
        self.session.save()
        self.addCleanup(discard_chat_channel, self.session.session_key)

    async def connect(self):
        communicator = WebsocketCommunicator(
            with_session(BookingPreviewConsumer.as_asgi(), self.session),
            '/ws/booking/'
        )
        connected, _ = await communicator.connect()
        self.assertTrue(connected)
        return communicator

    async def test_route_quote(self):
        communicator = await self.connect()

        await communicator.send_json_to({
            'type': 'SET_LOCATIONS',
            'data': {'pickup': 'Hyderabad', 'destination': 'Secunderabad'}
        })
        response = await communicator.receive_json_from(timeout=5)

        self.assertEqual(response['type'], 'ROUTE_QUOTE')
        self.assertEqual(response['data']['distance_km'], 7)
        self.assertEqual(response['data']['fares']['economy'], 120)

        await communicator.disconnect()

    async def test_typing_after_booking_over_http_keeps_the_ride(self):
        communicator = await self.connect()
        await communicator.send_json_to({
            'type': 'SET_LOCATIONS',
            'data': {'pickup': 'Hyderabad', 'destination': 'Secunderabad'}
        })
        self.assertEqual((await communicator.receive_json_from(timeout=5))['type'], 'ROUTE_QUOTE')

        self.async_client.cookies[settings.SESSION_COOKIE_NAME] = self.session.session_key
        response = await self.async_client.post(
            reverse('ride-list'),
            {'pickup': 'Hyderabad', 'destination': 'Secunderabad', 'ride_class': 'economy'},
            content_type='application/json',
        )
        self.assertEqual(response.status_code, status.HTTP_201_CREATED)
        ride_id = response.json()['id']

        await communicator.send_json_to({
            'type': 'SET_LOCATIONS',
            'data': {'pickup': 'Hyderabad', 'destination': 'Amritsar'}
        })
        self.assertEqual((await communicator.receive_json_from(timeout=5))['type'], 'ROUTE_QUOTE')
        await communicator.disconnect()

        stored = await database_sync_to_async(read_booking_session)(self.session)
        self.assertEqual(stored.active_ride_id, ride_id)

        response = await self.async_client.post(reverse('ride-list'), {
            'pickup': 'Hyderabad', 'destination': 'Amritsar', 'ride_class': 'economy'
        }, content_type='application/json')
        self.assertEqual(response.status_code, status.HTTP_409_CONFLICT)

        response = await self.async_client.post(reverse('ride-cancel'))
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.json()['id'], ride_id)

    async def test_newer_locations_supersede_pending_lookup(self):
        communicator = await self.connect()

        await communicator.send_json_to({
            'type': 'SET_LOCATIONS',
            'data': {'pickup': 'Hyderabad', 'destination': 'Amritsar'}
        })
        await communicator.send_json_to({
            'type': 'SET_LOCATIONS',
            'data': {'pickup': 'Hyderabad', 'destination': 'Secunderabad'}
        })
        response = await communicator.receive_json_from(timeout=5)

        self.assertEqual(response['type'], 'ROUTE_QUOTE')
        self.assertEqual(response['data']['destination'], 'Secunderabad')
        self.assertTrue(await communicator.receive_nothing(timeout=0.3))

        await communicator.disconnect()

    async def test_cross_border_error(self):
        communicator = await self.connect()

        await communicator.send_json_to({
            'type': 'SET_LOCATIONS',
            'data': {'pickup': 'Amritsar', 'destination': 'Lahore'}
        })
        response = await communicator.receive_json_from(timeout=5)

        self.assertEqual(response['type'], 'ERROR')
        self.assertEqual(response['data']['code'], 'cross_border_not_allowed')
        self.assertEqual(self.mapbox.directions_calls, 0)

        await communicator.disconnect()

    async def test_place_suggestions(self):
        communicator = await self.connect()

        await communicator.send_json_to({
            'type': 'SUGGEST_PLACES',
            'data': {'field': 'destination', 'query': 'Lah'}
        })
        response = await communicator.receive_json_from(timeout=5)

        self.assertEqual(response['type'], 'PLACE_SUGGESTIONS')
        self.assertEqual(response['data']['field'], 'destination')
        self.assertEqual(response['data']['suggestions'][0]['place_name'], 'Lahore, Pakistan')

        await communicator.disconnect()

    async def test_unknown_message_type(self):
        communicator = await self.connect()

        await communicator.send_json_to({'type': 'TELEPORT', 'data': {}})
        response = await communicator.receive_json_from()

        self.assertEqual(response['type'], 'ERROR')
        self.assertIn('TELEPORT', response['data']['message'])

        await communicator.disconnect()


@override_settings(CHAT_SCHEDULER_CLASS='rides.services.chat.ManualScheduler')
class RideChatConsumerTests(TestCase):
    """Tests for the driver chat WebSocket."""

    def setUp(self):
        self.session = SessionStore()
        self.session.save()
        self.session_key = self.session.session_key
        self.addCleanup(discard_chat_channel, self.session_key)

    async def connect(self, session=None):
        communicator = WebsocketCommunicator(
            with_session(RideChatConsumer.as_asgi(), session if session is not None else self.session),
            '/ws/rides/chat/'
        )
        connected, _ = await communicator.connect()
        self.assertTrue(connected)
        return communicator

    async def test_history_and_new_messages(self):
        channel = get_chat_channel(self.session_key)
        channel.join('ride-Suresh')
        channel.scheduler.advance()

        communicator = await self.connect()
        history = await communicator.receive_json_from()
        self.assertEqual(history['type'], 'CHAT_HISTORY')
        self.assertEqual(history['data']['room_id'], 'ride-Suresh')
        self.assertEqual(len(history['data']['messages']), 1)

        await communicator.send_json_to({'type': 'SEND_MESSAGE', 'data': {'text': 'Hello'}})
        self.assertTrue(await communicator.receive_nothing(timeout=0.1))
        channel.scheduler.advance()

        message = await communicator.receive_json_from()
        self.assertEqual(message, {'type': 'CHAT_MESSAGE', 'data': {'sender': 'You', 'text': 'Hello'}})

        await communicator.disconnect()
        self.assertIs(find_chat_channel(self.session_key), channel)

    async def test_send_while_not_connected(self):
        communicator = await self.connect()
        await communicator.receive_json_from()

        await communicator.send_json_to({'type': 'SEND_MESSAGE', 'data': {'text': 'Hello'}})
        response = await communicator.receive_json_from()

        self.assertEqual(response['type'], 'ERROR')
        self.assertEqual(response['data']['code'], 'not_connected')

        await communicator.disconnect()
        self.assertIsNone(find_chat_channel(self.session_key))

    async def test_clear_messages(self):
        channel = get_chat_channel(self.session_key)
        channel.join('ride-Raju')
        channel.scheduler.advance()

        communicator = await self.connect()
        await communicator.receive_json_from()
        await communicator.send_json_to({'type': 'CLEAR_MESSAGES'})
        self.assertTrue(await communicator.receive_nothing(timeout=0.1))

        self.assertEqual(channel.messages, [])
        self.assertTrue(channel.connected)

        await communicator.disconnect()

    async def test_connect_without_session(self):
        communicator = WebsocketCommunicator(RideChatConsumer.as_asgi(), '/ws/rides/chat/')
        connected, _ = await communicator.connect()
        self.assertTrue(connected)

        response = await communicator.receive_json_from()
        self.assertEqual(response['data']['code'], 'no_session')

        closed = await communicator.receive_output()
        self.assertEqual(closed['type'], 'websocket.close')
