"""Services module for booking, routing and ride lifecycle logic."""

from .chat import ChannelSimulator, find_chat_channel, get_chat_channel
from .directions import MapboxDirectionsService
from .geocoding import GeocodingCache, MapboxGeocodingService
from .lifecycle import RideLifecycle, RideRecordStore
from .routing import RouteResolver

__all__ = [
    'ChannelSimulator',
    'GeocodingCache',
    'MapboxDirectionsService',
    'MapboxGeocodingService',
    'RideLifecycle',
    'RideRecordStore',
    'RouteResolver',
    'find_chat_channel',
    'get_chat_channel',
]
