"""
Admin configuration for the rides app.
"""

from django.contrib import admin
from .models import RideRecord, SharedRide


@admin.register(RideRecord)
class RideRecordAdmin(admin.ModelAdmin):
    list_display = [
        'id',
        'pickup_name',
        'destination_name',
        'ride_class',
        'distance_km',
        'cost',
        'status',
        'driver_name',
        'created_at',
    ]
    list_filter = ['status', 'ride_class', 'created_at']
    search_fields = ['id', 'pickup_name', 'destination_name', 'driver_name']
    readonly_fields = ['id', 'session_key', 'cost', 'route_geometry', 'created_at', 'completed_at', 'cancelled_at']
    ordering = ['-created_at']


@admin.register(SharedRide)
class SharedRideAdmin(admin.ModelAdmin):
    list_display = ['id', 'host_name', 'pickup', 'destination', 'departure', 'seats', 'ride_class', 'price_per_person']
    list_filter = ['ride_class', 'departure']
    search_fields = ['pickup', 'destination', 'host_name']
    ordering = ['-created_at']
