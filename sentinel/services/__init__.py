from sentinel.services.availability import AvailabilityScanner
from sentinel.services.reservations import ReservationProcessor, resolve_transition

__all__ = [
    "AvailabilityScanner",
    "ReservationProcessor",
    "resolve_transition",
]
