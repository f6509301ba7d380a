"""
URL configuration for the rides app.
"""

from django.urls import path, include
from rest_framework.routers import DefaultRouter

from .views import PlaceSuggestionView, RideViewSet, RouteQuoteView, SharedRideViewSet

router = DefaultRouter()
router.register(r'rides', RideViewSet, basename='ride')
router.register(r'shared-rides', SharedRideViewSet, basename='shared-ride')

urlpatterns = [
    path('places/suggestions/', PlaceSuggestionView.as_view(), name='place-suggestions'),
    path('quotes/', RouteQuoteView.as_view(), name='route-quote'),
    path('', include(router.urls)),
]
