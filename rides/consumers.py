"""
WebSocket consumers for the live booking preview and the driver chat.
"""

import asyncio
import logging

from channels.db import database_sync_to_async
from channels.generic.websocket import AsyncJsonWebsocketConsumer
from django.conf import settings

from .exceptions import BookingError
from .services.chat import RIDER_SENDER, get_chat_channel, release_chat_channel
from .services.debounce import Debouncer
from .services.session import read_booking_session, update_booking_session
from .views import quote_payload

logger = logging.getLogger(__name__)

LOCATION_FIELDS = ('pickup', 'destination')


class SessionConsumerMixin:
    """Access to the Django session attached by the session middleware."""

    def get_session(self):
        return self.scope.get('session')

    def get_session_key(self):
        return getattr(self.get_session(), 'session_key', None)

    async def send_error(self, message, code='error'):
        await self.send_json({
            'type': 'ERROR',
            'data': {'message': message, 'code': code}
        })


class BookingPreviewConsumer(SessionConsumerMixin, AsyncJsonWebsocketConsumer):
    """
    WebSocket consumer for the live route preview while the rider types.

    Message Types:
    - SUGGEST_PLACES: Autocomplete a location input (debounced per input)
    - SET_LOCATIONS: Pickup/destination changed; re-plan the route (debounced)

    Server Messages:
    - PLACE_SUGGESTIONS: Candidates for one input
    - ROUTE_QUOTE: The route, map framing and fares for the current inputs
    - ERROR: A recoverable problem, e.g. an invalid location

    A new keystroke supersedes a pending lookup. Results computed for inputs
    that have since changed are dropped.
    """

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self.route_debouncer = None
        self.suggest_debouncers = {}

    async def connect(self):
        """Handle WebSocket connection."""
        await self.accept()
        self.route_debouncer = Debouncer(settings.ROUTE_DEBOUNCE_SECONDS)
        self.suggest_debouncers = {
            field: Debouncer(settings.SUGGEST_DEBOUNCE_SECONDS)
            for field in LOCATION_FIELDS
        }
        logger.info(f"Booking preview connected: {self.channel_name}")

    async def disconnect(self, close_code):
        """Handle WebSocket disconnection."""
        if self.route_debouncer:
            self.route_debouncer.cancel()
        for debouncer in self.suggest_debouncers.values():
            debouncer.cancel()
        logger.info(f"Booking preview disconnected: {self.channel_name}, code: {close_code}")

    async def receive_json(self, content):
        """Handle incoming JSON messages."""
        message_type = content.get('type')
        data = content.get('data', {})

        handlers = {
            'SUGGEST_PLACES': self._handle_suggest_places,
            'SET_LOCATIONS': self._handle_set_locations,
        }

        handler = handlers.get(message_type)
        if handler:
            await handler(data)
        else:
            await self.send_error(f'Unknown message type: {message_type}')

    async def _handle_suggest_places(self, data):
        """Handle SUGGEST_PLACES message."""
        if self.get_session() is None:
            await self.send_error('No session available', code='no_session')
            return

        field = data.get('field')
        query = data.get('query', '')

        if field not in self.suggest_debouncers:
            await self.send_error('field must be one of: pickup, destination')
            return

        self.suggest_debouncers[field].call(lambda: self._send_suggestions(field, query))

    async def _handle_set_locations(self, data):
        """Handle SET_LOCATIONS message."""
        if self.get_session() is None:
            await self.send_error('No session available', code='no_session')
            return

        pickup = data.get('pickup', '')
        destination = data.get('destination', '')

        await self._update_booking(lambda booking: booking.set_locations(pickup, destination))

        if not pickup or not destination:
            self.route_debouncer.cancel()
            return

        self.route_debouncer.call(lambda: self._send_route_quote(pickup, destination))

    async def _send_suggestions(self, field, query):
        booking = await self._read_booking()
        candidates = await booking.route_resolver().suggest_places(query)
        await self.send_json({
            'type': 'PLACE_SUGGESTIONS',
            'data': {
                'field': field,
                'query': query,
                'suggestions': [
                    {'place_name': c.place_name, 'coordinates': list(c.coordinates)}
                    for c in candidates
                ],
            }
        })

    async def _send_route_quote(self, pickup, destination):
        booking = await self._read_booking()
        resolved = booking.geocoding_entries

        def merge_geocoding(current):
            current.geocoding_entries.update(resolved)
            return current

        try:
            quote = await booking.route_resolver().plan_route(pickup, destination)
        except BookingError as e:
            current = await self._update_booking(merge_geocoding)
            if self._inputs_match(current, pickup, destination):
                await self.send_error(str(e), code=e.code)
            return

        accepted = await self._update_booking(
            lambda current: merge_geocoding(current).accept_quote(quote)
        )

        if not accepted:
            logger.debug(f"Dropped stale quote for '{pickup}' -> '{destination}'")
            return

        await self.send_json({
            'type': 'ROUTE_QUOTE',
            'data': quote_payload(quote),
        })

    @staticmethod
    def _inputs_match(booking, pickup, destination):
        return (
            booking.pickup is not None and booking.destination is not None
            and booking.pickup.place_name == pickup
            and booking.destination.place_name == destination
        )

    async def _read_booking(self):
        session = self.get_session()
        if session is None:
            raise BookingError('No session available')
        return await database_sync_to_async(read_booking_session)(session)

    async def _update_booking(self, mutator):
        """Apply mutator to the stored booking context; only inputs and quotes are touched here."""
        return await database_sync_to_async(update_booking_session)(self.get_session(), mutator)


class RideChatConsumer(SessionConsumerMixin, AsyncJsonWebsocketConsumer):
    """
    WebSocket consumer for chatting with the assigned driver.

    The room itself is opened when the ride is booked; this consumer attaches
    to the session's chat channel and pushes every delivered message.

    Message Types:
    - SEND_MESSAGE: Send a message as the rider
    - CLEAR_MESSAGES: Empty the message log

    Server Messages:
    - CHAT_HISTORY: Messages already in the room, sent on connect
    - CHAT_MESSAGE: A newly delivered message
    - ERROR: e.g. sending while the room is not connected
    """

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self.channel = None
        self.loop = None

    async def connect(self):
        """Handle WebSocket connection."""
        await self.accept()

        session_key = self.get_session_key()
        if not session_key:
            await self.send_error('No session available', code='no_session')
            await self.close()
            return

        self.loop = asyncio.get_running_loop()
        self.channel = get_chat_channel(session_key)
        self.channel.add_listener(self._on_message)

        await self.send_json({
            'type': 'CHAT_HISTORY',
            'data': {
                'room_id': self.channel.room_id,
                'connected': self.channel.connected,
                'messages': [message.to_dict() for message in self.channel.messages],
            }
        })
        logger.info(f"Chat connected: {self.channel_name}, room: {self.channel.room_id}")

    async def disconnect(self, close_code):
        """Handle WebSocket disconnection."""
        if self.channel:
            self.channel.remove_listener(self._on_message)
            release_chat_channel(self.get_session_key())
        logger.info(f"Chat disconnected: {self.channel_name}, code: {close_code}")

    async def receive_json(self, content):
        """Handle incoming JSON messages."""
        message_type = content.get('type')
        data = content.get('data', {})

        handlers = {
            'SEND_MESSAGE': self._handle_send_message,
            'CLEAR_MESSAGES': self._handle_clear_messages,
        }

        if self.channel is None:
            await self.send_error('No session available', code='no_session')
            return

        handler = handlers.get(message_type)
        if handler:
            await handler(data)
        else:
            await self.send_error(f'Unknown message type: {message_type}')

    async def _handle_send_message(self, data):
        """Handle SEND_MESSAGE message."""
        text = (data.get('text') or '').strip()
        if not text:
            await self.send_error('Missing text')
            return

        try:
            self.channel.send(text, RIDER_SENDER)
        except BookingError as e:
            await self.send_error(str(e), code=e.code)

    async def _handle_clear_messages(self, data):
        """Handle CLEAR_MESSAGES message."""
        self.channel.clear()

    def _on_message(self, message):
        """Push a delivered message; may be called from a timer thread."""
        asyncio.run_coroutine_threadsafe(
            self.send_json({'type': 'CHAT_MESSAGE', 'data': message.to_dict()}),
            self.loop,
        )
