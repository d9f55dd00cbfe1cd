"""Tests for the slot-grid availability scanner."""

from datetime import date, datetime, time
from zoneinfo import ZoneInfo

import pytest

from sentinel.config import SchedulingConfig
from sentinel.schemas.reservation import AvailabilityOverride, ReservationStatus
from sentinel.services.availability import AvailabilityScanner
from sentinel.storage.memory import InMemoryReservationStore
from tests.conftest import make_reservation, utc


class TestScanForSlot:
    def setup_method(self):
        self.scanner = AvailabilityScanner(InMemoryReservationStore(), SchedulingConfig())

    def scan(self, start, minutes=60, busy=(), overrides=(), horizon=30):
        return self.scanner.scan_for_slot(start, minutes, list(busy), list(overrides), horizon)

    def test_free_requested_slot_is_returned(self):
        assert self.scan(utc(2026, 3, 2, 10, 0)) == utc(2026, 3, 2, 10, 0)

    def test_before_opening_moves_to_open(self):
        assert self.scan(utc(2026, 3, 2, 6, 0)) == utc(2026, 3, 2, 9, 30)

    def test_off_grid_request_rounds_up(self):
        assert self.scan(utc(2026, 3, 2, 10, 10)) == utc(2026, 3, 2, 10, 30)

    def test_skips_busy_intervals(self):
        busy = [make_reservation(utc(2026, 3, 2, 10, 0), 90)]
        assert self.scan(utc(2026, 3, 2, 10, 0), busy=busy) == utc(2026, 3, 2, 11, 30)

    def test_must_fit_before_close(self):
        # 17:30 + 60 min runs past 18:00, so the next day's opening is used.
        assert self.scan(utc(2026, 3, 2, 17, 30)) == utc(2026, 3, 3, 9, 30)

    def test_exact_fit_at_close(self):
        assert self.scan(utc(2026, 3, 2, 17, 30), minutes=30) == utc(2026, 3, 2, 17, 30)

    def test_after_close_rolls_to_next_day(self):
        assert self.scan(utc(2026, 3, 2, 19, 0)) == utc(2026, 3, 3, 9, 30)

    def test_blocked_day_is_skipped(self):
        overrides = [AvailabilityOverride(override_date=date(2026, 3, 3), is_blocked=True)]
        assert self.scan(utc(2026, 3, 2, 19, 0), overrides=overrides) == utc(2026, 3, 4, 9, 30)

    def test_custom_hours_replace_defaults(self):
        overrides = [AvailabilityOverride(
            override_date=date(2026, 3, 2), custom_start_time=time(12, 0), custom_end_time=time(14, 0),
        )]
        assert self.scan(utc(2026, 3, 2, 9, 0), overrides=overrides) == utc(2026, 3, 2, 12, 0)
        assert self.scan(utc(2026, 3, 2, 13, 30), overrides=overrides) == utc(2026, 3, 3, 9, 30)

    def test_partial_custom_hours_fall_back_to_defaults(self):
        overrides = [AvailabilityOverride(override_date=date(2026, 3, 2), custom_start_time=time(12, 0))]
        assert self.scan(utc(2026, 3, 2, 9, 0), overrides=overrides) == utc(2026, 3, 2, 9, 30)

    def test_nothing_within_horizon(self):
        overrides = [
            AvailabilityOverride(override_date=date(2026, 3, day), is_blocked=True)
            for day in range(2, 5)
        ]
        assert self.scan(utc(2026, 3, 2, 9, 0), overrides=overrides, horizon=2) is None

    def test_horizon_zero_searches_only_the_first_day(self):
        assert self.scan(utc(2026, 3, 2, 17, 45), horizon=0) is None

    def test_results_are_grid_aligned_and_inside_hours(self):
        busy = [
            make_reservation(utc(2026, 3, 2, 9, 30), 45),
            make_reservation(utc(2026, 3, 2, 10, 30), 60),
        ]
        result = self.scan(utc(2026, 3, 2, 9, 40), minutes=30, busy=busy)
        assert result == utc(2026, 3, 2, 11, 30)
        assert result.minute % 30 == 0
        assert time(9, 30) <= result.time() and result.time() <= time(17, 30)


class TestBusinessTimezone:
    def test_hours_and_grid_use_local_wall_clock(self):
        tz = ZoneInfo("America/New_York")
        scanner = AvailabilityScanner(InMemoryReservationStore(), SchedulingConfig(timezone="America/New_York"))
        # 12:00Z on 2026-03-02 is 07:00 EST, before the 09:30 opening.
        result = scanner.scan_for_slot(utc(2026, 3, 2, 12, 0), 60, [], [], 30)
        assert result == datetime(2026, 3, 2, 9, 30, tzinfo=tz)
        assert result.tzinfo is not None

    def test_local_day_decides_overrides(self):
        scanner = AvailabilityScanner(InMemoryReservationStore(), SchedulingConfig(timezone="Asia/Tokyo"))
        # 2026-03-01T20:00Z is already 2026-03-02 05:00 in Tokyo.
        blocked = [AvailabilityOverride(override_date=date(2026, 3, 2), is_blocked=True)]
        result = scanner.scan_for_slot(utc(2026, 3, 1, 20, 0), 60, [], blocked, 30)
        assert result == datetime(2026, 3, 3, 9, 30, tzinfo=ZoneInfo("Asia/Tokyo"))


class TestGetNextAvailable:
    @pytest.mark.asyncio
    async def test_reads_busy_rows_from_store(self, store, scanner):
        store.add_reservation(make_reservation(utc(2026, 3, 2, 10, 0)))
        assert await scanner.get_next_available(utc(2026, 3, 2, 10, 0), 60) == utc(2026, 3, 2, 11, 0)

    @pytest.mark.asyncio
    async def test_inactive_rows_are_ignored(self, store, scanner):
        store.add_reservation(make_reservation(utc(2026, 3, 2, 10, 0), status=ReservationStatus.CANCELLED))
        assert await scanner.get_next_available(utc(2026, 3, 2, 10, 0), 60) == utc(2026, 3, 2, 10, 0)

    @pytest.mark.asyncio
    async def test_exclude_id_ignores_own_reservation(self, store, scanner):
        own = make_reservation(utc(2026, 3, 2, 10, 0))
        store.add_reservation(own)
        result = await scanner.get_next_available(utc(2026, 3, 2, 10, 30), 60, exclude_id=own.id)
        assert result == utc(2026, 3, 2, 10, 30)

    @pytest.mark.asyncio
    async def test_overrides_from_store(self, store, scanner):
        store.set_override(AvailabilityOverride(override_date=date(2026, 3, 2), is_blocked=True))
        assert await scanner.get_next_available(utc(2026, 3, 2, 10, 0), 60) == utc(2026, 3, 3, 9, 30)

    @pytest.mark.asyncio
    async def test_busy_rows_on_last_scanned_day_are_seen(self, store):
        scanner = AvailabilityScanner(store, SchedulingConfig(horizon_days=1))
        for day in (2, 3):
            store.set_override(AvailabilityOverride(
                override_date=date(2026, 3, day), custom_start_time=time(16, 0), custom_end_time=time(18, 0),
            ))
        # The 2026-03-03 evening row lies beyond requested_start + 1 day.
        store.add_reservation(make_reservation(utc(2026, 3, 2, 16, 0), 120))
        store.add_reservation(make_reservation(utc(2026, 3, 3, 16, 0), 60))

        result = await scanner.get_next_available(utc(2026, 3, 2, 10, 0), 60, horizon_days=1)

        assert result == utc(2026, 3, 3, 17, 0)
