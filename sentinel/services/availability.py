"""
Conflict-aware slot search.

Given a desired start and duration, finds the earliest start at or after
it that sits on the slot grid, fits inside the day's opening window and
does not intersect any active reservation. Days are resolved in the
configured business timezone; a day-level override either blocks the day
or replaces the default opening hours.
"""

import asyncio
import logging
from datetime import date, datetime, time, timedelta, timezone
from typing import Iterable, Optional, Sequence

from sentinel.config import SchedulingConfig
from sentinel.schemas.reservation import AvailabilityOverride, Interval, Reservation
from sentinel.storage.base import ReservationStore
from sentinel.utils import overlaps, round_up_to_boundary

logger = logging.getLogger(__name__)


class AvailabilityScanner:
    """First-fit search for the next free interval within a horizon."""

    def __init__(self, store: ReservationStore, config: SchedulingConfig) -> None:
        self._store = store
        self._config = config
        self._tz = config.tzinfo

    async def get_next_available(
        self,
        requested_start: datetime,
        duration_minutes: int,
        exclude_id: Optional[str] = None,
        horizon_days: Optional[int] = None,
    ) -> Optional[datetime]:
        """Return the first free start at or after ``requested_start``, or None.

        ``exclude_id`` leaves one reservation out of the busy set so that a
        reservation being moved does not collide with itself.
        """
        horizon = horizon_days if horizon_days is not None else self._config.horizon_days
        first_day = requested_start.astimezone(self._tz).date()
        last_day = first_day + timedelta(days=horizon)
        # Busy intervals must cover every day the scan can reach, not just
        # requested_start + horizon.
        load_end = datetime.combine(last_day + timedelta(days=1), time(0), tzinfo=self._tz)

        busy, overrides = await asyncio.gather(
            self._store.list_active_between(requested_start, load_end, exclude_id),
            self._store.list_overrides(first_day, last_day),
        )
        proposed = self.scan_for_slot(requested_start, duration_minutes, busy, overrides, horizon)
        logger.debug(
            "Next available after %s (%dmin, %d busy): %s",
            requested_start.isoformat(), duration_minutes, len(busy),
            proposed.isoformat() if proposed else None,
        )
        return proposed

    def scan_for_slot(
        self,
        requested_start: datetime,
        duration_minutes: int,
        busy: Sequence[Reservation],
        overrides: Iterable[AvailabilityOverride],
        horizon_days: int,
    ) -> Optional[datetime]:
        by_day = {o.override_date: o for o in overrides}
        busy_intervals = [r.interval for r in busy]
        duration = timedelta(minutes=duration_minutes)
        slot = timedelta(minutes=self._config.slot_minutes)
        local_start = requested_start.astimezone(self._tz)
        first_day = local_start.date()

        for offset in range(horizon_days + 1):
            day = first_day + timedelta(days=offset)
            window = self.window_for_day(day, by_day.get(day))
            if window is None:
                continue
            window_start, window_end = window
            if offset == 0:
                window_start = max(window_start, local_start)

            cursor = round_up_to_boundary(window_start, self._config.slot_minutes)
            cursor = cursor.astimezone(timezone.utc)
            window_end = window_end.astimezone(timezone.utc)

            while cursor + duration <= window_end:
                if self._is_free(cursor, cursor + duration, busy_intervals):
                    return cursor
                cursor += slot

        return None

    def window_for_day(
        self, day: date, override: Optional[AvailabilityOverride]
    ) -> Optional[tuple[datetime, datetime]]:
        """Opening window for ``day`` in the business timezone; None when blocked."""
        if override is not None and override.is_blocked:
            return None
        open_time, close_time = self._config.open_time, self._config.close_time
        if override is not None and override.custom_start_time and override.custom_end_time:
            open_time, close_time = override.custom_start_time, override.custom_end_time
        return (
            datetime.combine(day, open_time, tzinfo=self._tz),
            datetime.combine(day, close_time, tzinfo=self._tz),
        )

    @staticmethod
    def _is_free(start: datetime, end: datetime, busy: Sequence[Interval]) -> bool:
        for interval in busy:
            if interval.end <= start or interval.start >= end:
                continue
            if overlaps(start, end, interval.start, interval.end):
                return False
        return True
