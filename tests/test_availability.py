"""
Tests for day and slot availability through the booking engine.
"""

import asyncio

import pendulum
import pytest

from salonbooking.adapters.memory_store import InMemoryAppointmentStore
from salonbooking.domain.exceptions import ServiceNotFound, StoreUnavailable
from salonbooking.domain.models import AvailabilityRules, DayStatus
from salonbooking.domain.slot_generator import REASON_BOOKED
from salonbooking.services.availability import date_range, merge_slots

TZ = "Africa/Kigali"


class CountingStore(InMemoryAppointmentStore):
    """In-memory store that records how often it is read."""

    def __init__(self, appointments=None):
        super().__init__(appointments)
        self.reads = 0

    async def find_in_range(self, employee_id, start, end):
        self.reads += 1
        return await super().find_in_range(employee_id, start, end)


class SlowStore(InMemoryAppointmentStore):
    async def find_in_range(self, employee_id, start, end):
        await asyncio.sleep(1)
        return []


class BrokenStore(InMemoryAppointmentStore):
    async def find_in_range(self, employee_id, start, end):
        raise ConnectionRefusedError("store is down")


def _starts(slots):
    return [slot.start.format("HH:mm") for slot in slots]


class TestDayAvailability:
    """Tests for BookingEngine.get_day_availability."""

    def test_week_for_one_employee(self, build_engine, monday):
        engine = build_engine()

        days = asyncio.run(
            engine.get_day_availability("salon-1", monday, monday.add(days=6), "cut", "alice")
        )

        assert [day.date for day in days] == date_range(monday, monday.add(days=6))
        assert [day.status for day in days] == [DayStatus.AVAILABLE] * 5 + [DayStatus.UNAVAILABLE] * 2
        assert days[0].total_slots == 18
        assert days[0].available_slots == 18

    def test_partially_and_fully_booked(self, build_engine, appointment_factory, monday):
        store = InMemoryAppointmentStore(
            [
                appointment_factory("alice", "10:00", "10:30"),
                appointment_factory("alice", "09:00", "18:00", day="2024-11-26"),
            ]
        )
        engine = build_engine(store=store)

        days = asyncio.run(
            engine.get_day_availability("salon-1", monday, monday.add(days=1), "cut", "alice")
        )

        assert days[0].status == DayStatus.PARTIALLY_BOOKED
        assert days[0].available_slots == 17
        assert days[1].status == DayStatus.FULLY_BOOKED
        assert days[1].available_slots == 0

    def test_single_fetch_per_call(self, build_engine, monday):
        store = CountingStore()
        engine = build_engine(store=store)

        asyncio.run(
            engine.get_day_availability("salon-1", monday, monday.add(days=6), "cut", "alice")
        )

        assert store.reads == 1

    def test_employee_without_hours_falls_back_to_salon(self, build_engine, directory_factory, monday):
        directory = directory_factory(
            hours={
                "salon-1": {"monday": {"open": "09:00", "close": "18:00"}},
                "alice": {"monday": {"open": "12:00", "close": "14:00"}},
            }
        )
        engine = build_engine(directory_override=directory)

        alice = asyncio.run(engine.get_day_availability("salon-1", monday, monday, "cut", "alice"))
        bob = asyncio.run(engine.get_day_availability("salon-1", monday, monday, "cut", "bob"))

        assert alice[0].total_slots == 4
        assert bob[0].total_slots == 18

    def test_no_configuration_means_closed(self, build_engine, directory_factory, monday):
        engine = build_engine(directory_override=directory_factory(hours={}))

        days = asyncio.run(engine.get_day_availability("salon-1", monday, monday, "cut", "alice"))

        assert days[0].status == DayStatus.UNAVAILABLE

    def test_blackout_from_salon_rules(self, build_engine, directory_factory, monday):
        directory = directory_factory(
            rules={"salon-1": AvailabilityRules(blackout_dates=frozenset({monday}))}
        )
        engine = build_engine(directory_override=directory)

        days = asyncio.run(
            engine.get_day_availability("salon-1", monday, monday.add(days=1), "cut", "alice")
        )

        assert days[0].status == DayStatus.UNAVAILABLE
        assert days[1].status == DayStatus.AVAILABLE

    def test_unknown_service(self, build_engine, monday):
        engine = build_engine()

        with pytest.raises(ServiceNotFound):
            asyncio.run(engine.get_day_availability("salon-1", monday, monday, "perm", "alice"))

    def test_end_before_start(self, build_engine, monday):
        engine = build_engine()

        with pytest.raises(ValueError):
            asyncio.run(
                engine.get_day_availability("salon-1", monday, monday.subtract(days=1), "cut", "alice")
            )


class TestAnyEmployee:
    """Aggregation across the salon's staff."""

    def test_one_free_employee_keeps_day_available(self, build_engine, appointment_factory, monday):
        store = InMemoryAppointmentStore([appointment_factory("alice", "09:00", "18:00")])
        engine = build_engine(store=store)

        days = asyncio.run(engine.get_day_availability("salon-1", monday, monday, "cut"))

        assert days[0].status == DayStatus.AVAILABLE
        assert days[0].available_slots == 18

    def test_everyone_booked(self, build_engine, appointment_factory, monday):
        store = InMemoryAppointmentStore(
            [
                appointment_factory("alice", "09:00", "18:00"),
                appointment_factory("bob", "09:00", "18:00"),
            ]
        )
        engine = build_engine(store=store)

        days = asyncio.run(engine.get_day_availability("salon-1", monday, monday, "cut", "any"))

        assert days[0].status == DayStatus.FULLY_BOOKED

    def test_max_merge_does_not_sum(self, build_engine, appointment_factory, monday):
        store = InMemoryAppointmentStore(
            [
                appointment_factory("alice", "09:00", "10:00"),
                appointment_factory("bob", "10:00", "11:00"),
            ]
        )
        engine = build_engine(store=store)

        days = asyncio.run(engine.get_day_availability("salon-1", monday, monday, "cut"))

        assert days[0].total_slots == 18
        assert days[0].available_slots == 16
        assert days[0].status == DayStatus.PARTIALLY_BOOKED

    def test_union_merge(self, build_engine, appointment_factory, monday):
        store = InMemoryAppointmentStore(
            [
                appointment_factory("alice", "09:00", "10:00"),
                appointment_factory("bob", "10:00", "11:00"),
            ]
        )
        engine = build_engine(store=store, any_employee_merge="union")

        days = asyncio.run(engine.get_day_availability("salon-1", monday, monday, "cut"))

        assert days[0].total_slots == 18
        assert days[0].available_slots == 18
        assert days[0].status == DayStatus.AVAILABLE

    def test_no_staff_uses_salon_hours(self, build_engine, directory_factory, monday):
        engine = build_engine(directory_override=directory_factory(roster={}))

        days = asyncio.run(
            engine.get_day_availability("salon-1", monday, monday.add(days=6), "cut")
        )

        assert [day.status for day in days] == [DayStatus.AVAILABLE] * 5 + [DayStatus.UNAVAILABLE] * 2

    def test_roster_is_capped(self, build_engine, directory_factory, monday):
        store = CountingStore()
        directory = directory_factory(roster={"salon-1": [f"stylist-{i}" for i in range(10)]})
        engine = build_engine(store=store, directory_override=directory, any_employee_cap=3)

        asyncio.run(engine.get_day_availability("salon-1", monday, monday, "cut"))

        assert store.reads == 3

    def test_slots_name_the_employee(self, build_engine, appointment_factory, monday):
        store = InMemoryAppointmentStore([appointment_factory("alice", "10:00", "10:30")])
        engine = build_engine(store=store)

        slots = asyncio.run(engine.get_slots_for_date("salon-1", monday, "cut"))
        by_start = {slot.start.format("HH:mm"): slot for slot in slots}

        assert len(slots) == 18
        assert by_start["09:30"].employee_id == "alice"
        assert by_start["10:00"].employee_id == "bob"
        assert by_start["10:00"].available

    def test_merge_slots_prefers_available(self, build_engine, appointment_factory, monday):
        store = InMemoryAppointmentStore([appointment_factory("alice", "10:00", "10:30")])
        engine = build_engine(store=store)

        alice = asyncio.run(engine.get_slots_for_date("salon-1", monday, "cut", "alice"))
        bob = asyncio.run(engine.get_slots_for_date("salon-1", monday, "cut", "bob"))
        merged = merge_slots([alice, bob])

        assert all(slot.available for slot in merged)
        assert _starts(merged) == _starts(alice)


class TestSlotsForDate:
    def test_full_list_with_reasons(self, build_engine, appointment_factory, monday):
        store = InMemoryAppointmentStore([appointment_factory("alice", "10:00", "10:30")])
        engine = build_engine(store=store)

        slots = asyncio.run(engine.get_slots_for_date("salon-1", monday, "cut", "alice"))

        assert len(slots) == 18
        assert [slot.reason for slot in slots if not slot.available] == [REASON_BOOKED]
        assert {slot.employee_id for slot in slots} == {"alice"}

    def test_appointment_of_other_employee_ignored(self, build_engine, appointment_factory, monday):
        store = InMemoryAppointmentStore([appointment_factory("bob", "10:00", "10:30")])
        engine = build_engine(store=store)

        slots = asyncio.run(engine.get_slots_for_date("salon-1", monday, "cut", "alice"))

        assert all(slot.available for slot in slots)

    def test_booked_slot_disappears_after_booking(self, build_engine, monday):
        engine = build_engine()
        start = pendulum.datetime(2024, 11, 25, 11, 0, tz=TZ)

        async def scenario():
            outcome = await engine.book_appointment("alice", "color", start, salon_id="salon-1")
            slots = await engine.get_slots_for_date("salon-1", monday, "cut", "alice")
            return outcome, slots

        outcome, slots = asyncio.run(scenario())
        unavailable = [slot.start.format("HH:mm") for slot in slots if not slot.available]

        assert outcome.booked
        assert unavailable == ["11:00", "11:30"]


class TestFailClosed:
    """A store that cannot be read never produces bookable slots."""

    def test_timeout(self, build_engine, monday):
        engine = build_engine(store=SlowStore(), store_timeout_seconds=0.05)

        with pytest.raises(StoreUnavailable) as exc_info:
            asyncio.run(engine.get_slots_for_date("salon-1", monday, "cut", "alice"))

        assert exc_info.value.retryable

    def test_connection_failure(self, build_engine, monday):
        engine = build_engine(store=BrokenStore())

        with pytest.raises(StoreUnavailable):
            asyncio.run(engine.get_day_availability("salon-1", monday, monday, "cut"))
