"""
WebSocket URL routing for the rides app.
"""

from django.urls import re_path
from .consumers import BookingPreviewConsumer, RideChatConsumer

websocket_urlpatterns = [
    re_path(r'ws/booking/$', BookingPreviewConsumer.as_asgi()),
    re_path(r'ws/rides/chat/$', RideChatConsumer.as_asgi()),
]
