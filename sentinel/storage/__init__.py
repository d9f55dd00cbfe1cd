from sentinel.storage.base import (
    NO_OVERLAP_CONSTRAINT,
    ConstraintViolated,
    NewReservation,
    ReservationStore,
    Stored,
    StoreTransaction,
)
from sentinel.storage.memory import InMemoryReservationStore

__all__ = [
    "NO_OVERLAP_CONSTRAINT",
    "ConstraintViolated",
    "NewReservation",
    "ReservationStore",
    "Stored",
    "StoreTransaction",
    "InMemoryReservationStore",
]
