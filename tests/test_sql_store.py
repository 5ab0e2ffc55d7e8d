"""
Tests for the SQLAlchemy appointment store against in-memory SQLite.
"""

import asyncio

import pendulum
import pytest

pytest.importorskip("aiosqlite")

from sqlalchemy.exc import DBAPIError, IntegrityError  # noqa: E402

from salonbooking.adapters.sql_store import (  # noqa: E402
    SqlAppointmentStore,
    _store_errors,
    create_store_engine,
)
from salonbooking.domain.exceptions import ConflictOnCommit, StoreUnavailable  # noqa: E402
from salonbooking.domain.models import AppointmentStatus  # noqa: E402

TZ = "Africa/Kigali"


def _run(scenario, database_url="sqlite://"):
    """Run ``scenario(store)`` against a fresh schema."""

    async def main():
        store = SqlAppointmentStore.from_url(database_url)
        await store.create_schema()
        try:
            return await scenario(store)
        finally:
            await store.dispose()

    return asyncio.run(main())


def test_engine_url_mapping():
    engine = create_store_engine("sqlite://")

    assert engine.url.drivername == "sqlite+aiosqlite"
    asyncio.run(engine.dispose())


def test_create_and_find(appointment_factory):
    appointment = appointment_factory("alice", "10:00", "10:30")

    async def scenario(store):
        await store.create_if_no_conflict(appointment)
        return await store.find_in_range(
            "alice",
            pendulum.datetime(2024, 11, 25, tz=TZ),
            pendulum.datetime(2024, 11, 26, tz=TZ),
        )

    found = _run(scenario)

    assert [a.id for a in found] == [appointment.id]
    assert found[0].scheduled_start == appointment.scheduled_start
    assert found[0].scheduled_end == appointment.scheduled_end
    assert found[0].status == AppointmentStatus.CONFIRMED


def test_overlap_is_refused(appointment_factory):
    first = appointment_factory("alice", "10:00", "10:30")
    second = appointment_factory("alice", "10:15", "10:45")

    async def scenario(store):
        await store.create_if_no_conflict(first)
        with pytest.raises(ConflictOnCommit) as exc_info:
            await store.create_if_no_conflict(second)
        return exc_info.value

    error = _run(scenario)

    assert error.conflicting_id == first.id


def test_adjacent_and_other_employee_allowed(appointment_factory):
    async def scenario(store):
        await store.create_if_no_conflict(appointment_factory("alice", "10:00", "10:30"))
        await store.create_if_no_conflict(appointment_factory("alice", "10:30", "11:00"))
        await store.create_if_no_conflict(appointment_factory("bob", "10:00", "10:30"))
        return await store.find_overlapping(
            "alice",
            pendulum.datetime(2024, 11, 25, 9, 0, tz=TZ),
            pendulum.datetime(2024, 11, 25, 12, 0, tz=TZ),
        )

    found = _run(scenario)

    assert [a.scheduled_start.in_timezone(TZ).format("HH:mm") for a in found] == ["10:00", "10:30"]


def test_cancelling_frees_the_window(appointment_factory):
    booked = appointment_factory("alice", "10:00", "10:30")
    replacement = appointment_factory("alice", "10:00", "10:30")

    async def scenario(store):
        await store.create_if_no_conflict(booked)
        await store.update_status(booked.id, AppointmentStatus.CANCELLED)
        return await store.create_if_no_conflict(replacement)

    created = _run(scenario)

    assert created.id == replacement.id


def test_update_unknown_appointment():
    async def scenario(store):
        with pytest.raises(KeyError):
            await store.update_status("missing", AppointmentStatus.CANCELLED)

    _run(scenario)


def test_timezones_are_compared_as_instants(appointment_factory):
    local = appointment_factory("alice", "10:00", "10:30")

    async def scenario(store):
        await store.create_if_no_conflict(local)
        return await store.find_overlapping(
            "alice",
            pendulum.datetime(2024, 11, 25, 8, 15, tz="UTC"),
            pendulum.datetime(2024, 11, 25, 8, 45, tz="UTC"),
        )

    found = _run(scenario)

    assert [a.id for a in found] == [local.id]


def test_naive_utc_columns_round_trip(appointment_factory):
    """Stored as naive UTC, read back as aware instants."""
    appointment = appointment_factory("alice", "23:30", "23:59", day="2024-11-25")

    async def scenario(store):
        created = await store.create_if_no_conflict(appointment)
        found = await store.find_overlapping(
            "alice",
            pendulum.datetime(2024, 11, 25, 21, 0, tz="UTC"),
            pendulum.datetime(2024, 11, 25, 22, 0, tz="UTC"),
        )
        return created, found

    created, found = _run(scenario)

    assert created.scheduled_start.timezone_name == "UTC"
    assert created.scheduled_start == appointment.scheduled_start
    assert [a.id for a in found] == [appointment.id]


@pytest.mark.parametrize("in_memory", [True, False])
def test_concurrent_overlapping_inserts(appointment_factory, tmp_path, in_memory):
    first = appointment_factory("alice", "10:00", "10:30")
    second = appointment_factory("alice", "10:15", "10:45")
    url = "sqlite://" if in_memory else f"sqlite:///{tmp_path / 'salon.db'}"

    async def scenario(store):
        results = await asyncio.gather(
            store.create_if_no_conflict(first),
            store.create_if_no_conflict(second),
            return_exceptions=True,
        )
        stored = await store.find_in_range(
            "alice",
            pendulum.datetime(2024, 11, 25, tz=TZ),
            pendulum.datetime(2024, 11, 26, tz=TZ),
        )
        return results, stored

    results, stored = _run(scenario, url)

    assert [type(r) for r in results].count(ConflictOnCommit) == 1
    assert len(stored) == 1


def test_two_engines_on_one_database(appointment_factory, tmp_path):
    """Separate engines (as separate workers would have) still book a window once."""
    url = f"sqlite:///{tmp_path / 'salon.db'}"
    first = appointment_factory("alice", "10:00", "10:30")
    second = appointment_factory("alice", "10:00", "10:30")

    async def main():
        worker_a = SqlAppointmentStore.from_url(url)
        worker_b = SqlAppointmentStore.from_url(url)
        await worker_a.create_schema()
        try:
            results = await asyncio.gather(
                worker_a.create_if_no_conflict(first),
                worker_b.create_if_no_conflict(second),
                return_exceptions=True,
            )
            stored = await worker_a.find_in_range(
                "alice",
                pendulum.datetime(2024, 11, 25, tz=TZ),
                pendulum.datetime(2024, 11, 26, tz=TZ),
            )
            return results, stored
        finally:
            await worker_a.dispose()
            await worker_b.dispose()

    results, stored = asyncio.run(main())

    assert [type(r) for r in results].count(ConflictOnCommit) == 1
    assert len(stored) == 1


class _DriverError(Exception):
    def __init__(self, pgcode=None):
        super().__init__("driver error")
        self.pgcode = pgcode


class TestStoreErrors:
    """Driver failures are translated into the booking error taxonomy."""

    def test_integrity_error_is_a_conflict(self):
        with pytest.raises(ConflictOnCommit):
            with _store_errors("Creating appointment"):
                raise IntegrityError("INSERT INTO appointments", {}, _DriverError())

    def test_serialization_failure_is_a_conflict(self):
        with pytest.raises(ConflictOnCommit):
            with _store_errors("Creating appointment"):
                raise DBAPIError("INSERT INTO appointments", {}, _DriverError(pgcode="40001"))

    def test_other_driver_errors_are_unavailable(self):
        with pytest.raises(StoreUnavailable) as exc_info:
            with _store_errors("Loading appointments"):
                raise DBAPIError("SELECT", {}, _DriverError(pgcode="08006"))

        assert exc_info.value.retryable

    def test_constraint_violation_on_insert(self, appointment_factory):
        """A constraint the database enforces on insert surfaces as a conflict."""
        existing = appointment_factory("alice", "10:00", "10:30", appointment_id="taken")
        clash = appointment_factory("bob", "14:00", "14:30", appointment_id="taken")

        async def scenario(store):
            await store.create_if_no_conflict(existing)
            with pytest.raises(ConflictOnCommit):
                await store.create_if_no_conflict(clash)

        _run(scenario)
