"""
Shared fixtures: a stub salon directory and helpers for building appointments.
"""

import itertools
from typing import Any, Dict, List, Optional

import pendulum
import pytest

from salonbooking.adapters.memory_store import InMemoryAppointmentStore
from salonbooking.config import BookingRulesConfig
from salonbooking.domain.clock import FixedClock
from salonbooking.domain.models import Appointment, AppointmentStatus, AvailabilityRules, Service
from salonbooking.services.engine import BookingEngine

TZ = "Africa/Kigali"

WEEKDAY_HOURS = {"isOpen": True, "startTime": "09:00", "endTime": "18:00"}

STANDARD_HOURS = {
    "monday": WEEKDAY_HOURS,
    "tuesday": WEEKDAY_HOURS,
    "wednesday": WEEKDAY_HOURS,
    "thursday": WEEKDAY_HOURS,
    "friday": WEEKDAY_HOURS,
    "saturday": {"isOpen": False},
    "sunday": {"isOpen": False},
}


class StubDirectory:
    """Minimal stub matching the SalonDirectory, EmployeeRoster and ServiceCatalog protocols."""

    def __init__(
        self,
        hours: Optional[Dict[str, Any]] = None,
        rules: Optional[Dict[str, AvailabilityRules]] = None,
        roster: Optional[Dict[str, List[str]]] = None,
        services: Optional[List[Service]] = None,
    ):
        self.hours = hours if hours is not None else {"salon-1": STANDARD_HOURS}
        self.rules = rules or {}
        self.roster = roster if roster is not None else {"salon-1": ["alice", "bob"]}
        self.services = {
            service.id: service
            for service in (
                services
                or [
                    Service(id="cut", duration_minutes=30, name="Haircut"),
                    Service(id="color", duration_minutes=60, name="Coloring"),
                ]
            )
        }

    async def working_hours_for(self, owner_id):
        return self.hours.get(owner_id)

    async def availability_rules_for(self, owner_id):
        return self.rules.get(owner_id)

    async def active_employees_for(self, salon_id):
        return self.roster.get(salon_id, [])

    async def service_for(self, service_id):
        return self.services.get(service_id)


_ids = itertools.count(1)


def make_appointment(
    employee_id: str,
    start: str,
    end: str,
    status: AppointmentStatus = AppointmentStatus.CONFIRMED,
    day: str = "2024-11-25",
    appointment_id: Optional[str] = None,
) -> Appointment:
    """Appointment on ``day`` (a Monday by default) between two HH:mm times."""
    return Appointment(
        id=appointment_id or f"apt-{next(_ids)}",
        employee_id=employee_id,
        service_id="cut",
        scheduled_start=pendulum.parse(f"{day} {start}", tz=TZ),
        scheduled_end=pendulum.parse(f"{day} {end}", tz=TZ),
        status=status,
        salon_id="salon-1",
    )


@pytest.fixture
def monday():
    return pendulum.date(2024, 11, 25)


@pytest.fixture
def clock():
    """Frozen on the Wednesday before the Monday most tests book on."""
    return FixedClock(pendulum.datetime(2024, 11, 20, 8, 0, tz=TZ))


@pytest.fixture
def appointment_factory():
    return make_appointment


@pytest.fixture
def directory():
    return StubDirectory()


@pytest.fixture
def build_engine(clock, directory):
    """Build an engine over an in-memory store; keyword arguments override settings."""

    def _build(store=None, directory_override=None, **settings):
        target = directory_override or directory
        return BookingEngine(
            store or InMemoryAppointmentStore(),
            target,
            target,
            target,
            clock=clock,
            timezone=TZ,
            settings=BookingRulesConfig(**settings),
        )

    return _build


@pytest.fixture
def directory_factory():
    return StubDirectory
