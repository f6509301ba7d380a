"""Custom exceptions for booking, routing and ride management."""


class BookingError(Exception):
    """
    Base class for recoverable, user-facing booking errors.

    Every subclass carries a stable ``code`` that API clients can switch on
    and the HTTP status the views respond with.
    """

    code = 'booking_error'
    status_code = 400
    default_message = 'The request could not be completed'

    def __init__(self, message=None):
        super().__init__(message or self.default_message)


class PlaceNotFound(BookingError):
    """Raised when the geocoding provider returns no candidates."""

    code = 'place_not_found'
    status_code = 404
    default_message = 'No place matches the given name'


class InvalidLocation(BookingError):
    """Raised when pickup or destination cannot be resolved."""

    code = 'invalid_location'
    default_message = 'Please enter valid locations'


class CrossBorderNotAllowed(BookingError):
    """Raised when pickup and destination lie in different countries."""

    code = 'cross_border_not_allowed'
    default_message = 'Pickup and destination must be in the same country'


class NoRouteAvailable(BookingError):
    """Raised when no driving route exists between the two locations."""

    code = 'no_route_available'
    default_message = 'No available route'


class DistanceExceeded(BookingError):
    """Raised when the route is longer than the allowed maximum."""

    code = 'distance_exceeded'
    default_message = 'The route is too long'


class InvalidPartySize(BookingError):
    """Raised when a fare is split between zero or fewer riders."""

    code = 'invalid_party_size'
    default_message = 'Party size must be at least 1'


class IncompleteBookingRequest(BookingError):
    """Raised when a booking is attempted without all required details."""

    code = 'incomplete_booking_request'
    status_code = 409
    default_message = 'Please fill all details'


class NoActiveRide(BookingError):
    """Raised when an operation needs an ongoing ride and there is none."""

    code = 'no_active_ride'
    status_code = 409
    default_message = 'There is no active ride'


class RideStillOngoing(BookingError):
    """Raised when the active ride is cleared before it has ended."""

    code = 'ride_still_ongoing'
    status_code = 409
    default_message = 'Cancel or complete the ride first'


class PaymentDeclined(BookingError):
    """Raised when the payment capability reports a failed charge."""

    code = 'payment_declined'
    status_code = 402
    default_message = 'Payment failed'


class RideNotFound(BookingError):
    """Raised when a ride cannot be found in the session's history."""

    code = 'ride_not_found'
    status_code = 404
    default_message = 'Ride not found'


class RideNotCompleted(BookingError):
    """Raised when feedback is left for a ride that has not been completed."""

    code = 'ride_not_completed'
    status_code = 409
    default_message = 'Only completed rides can be reviewed'


class RatingRequired(BookingError):
    """Raised when feedback is submitted without a valid driver rating."""

    code = 'rating_required'
    default_message = 'Please provide a rating for the driver before submitting feedback'


class NotConnected(BookingError):
    """Raised when a chat message is sent while the room is disconnected."""

    code = 'not_connected'
    status_code = 409
    default_message = 'Chat is not connected. Unable to send message.'
