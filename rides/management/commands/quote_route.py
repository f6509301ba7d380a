"""
Management command to plan a route and print the fare of every ride class.
"""

import asyncio

from django.core.management.base import BaseCommand, CommandError

from rides.exceptions import BookingError
from rides.services.fares import fare_table
from rides.services.session import BookingSession


class Command(BaseCommand):
    help = 'Plan the route between two places and print the fare for each ride class'

    def add_arguments(self, parser):
        parser.add_argument('pickup', help='Pickup place name')
        parser.add_argument('destination', help='Destination place name')

    def handle(self, *args, **options):
        pickup = options['pickup']
        destination = options['destination']
        self.stdout.write(f"Planning route '{pickup}' -> '{destination}'...")

        resolver = BookingSession(session_key='cli').route_resolver()
        loop = asyncio.new_event_loop()
        try:
            quote = loop.run_until_complete(resolver.plan_route(pickup, destination))
        except BookingError as e:
            raise CommandError(f"{e} ({e.code})")
        finally:
            loop.close()

        self.stdout.write(self.style.SUCCESS(f"Distance: {quote.distance_km} km"))
        self.stdout.write(
            f"Map center: {quote.viewport.center[0]:.5f}, {quote.viewport.center[1]:.5f} "
            f"(zoom {quote.viewport.zoom:.2f})"
        )
        for ride_class, price in fare_table(quote.distance_km).items():
            self.stdout.write(f"  {ride_class:<16} {price}")
