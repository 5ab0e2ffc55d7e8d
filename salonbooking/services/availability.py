"""
Day-level availability summaries for calendar display.

The aggregator coordinates the directory, the roster and the appointment store
and delegates all slot arithmetic to the domain-level ``SlotGenerator``. Each
call reads the appointments it needs exactly once and reuses that list for the
whole day grid; nothing is kept between calls.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import replace
from datetime import date
from typing import Dict, List, Optional, Sequence

import pendulum
from pendulum import DateTime

from ..config import BookingRulesConfig
from ..domain.exceptions import ServiceNotFound
from ..domain.models import (
    DayAvailability,
    DayStatus,
    Service,
    TimeSlot,
    WeeklyHours,
    as_date,
)
from ..domain.slot_generator import SlotGenerator
from .calendar import WorkingHoursCalendar
from .ports import AppointmentStore, EmployeeRoster, ServiceCatalog, guarded

logger = logging.getLogger(__name__)

SlotsByDay = Dict[pendulum.Date, List[TimeSlot]]


def date_range(start_date: date, end_date: date) -> List[pendulum.Date]:
    """Inclusive list of days between two dates."""
    start, end = as_date(start_date), as_date(end_date)
    if end < start:
        raise ValueError(f"End date {end} is before start date {start}")

    days: List[pendulum.Date] = []
    current = start
    while current <= end:
        days.append(current)
        current = current.add(days=1)
    return days


def merge_max(per_employee: Sequence[Sequence[DayAvailability]]) -> List[DayAvailability]:
    """
    Merge per-employee summaries of the same days.

    A day is bookable if at least one employee has a free slot. The merged
    ``available_slots`` is the maximum over employees, not the sum: slots of
    different employees are alternatives for a single booking.
    """
    merged: List[DayAvailability] = []
    for days in zip(*per_employee):
        total = max(day.total_slots for day in days)
        available = max(day.available_slots for day in days)

        if total == 0:
            status = DayStatus.UNAVAILABLE
        elif available == 0:
            status = DayStatus.FULLY_BOOKED
        elif any(day.status == DayStatus.AVAILABLE for day in days):
            status = DayStatus.AVAILABLE
        else:
            status = DayStatus.PARTIALLY_BOOKED

        merged.append(
            DayAvailability(
                date=days[0].date,
                status=status,
                total_slots=total,
                available_slots=available,
            )
        )
    return merged


def merge_slots(per_employee: Sequence[Sequence[TimeSlot]]) -> List[TimeSlot]:
    """
    Union of several employees' slots for one day, keyed by start time.

    A merged slot is available if any employee has it free; it then carries
    the first such employee's id (roster order).
    """
    by_start: Dict[DateTime, TimeSlot] = {}
    for slots in per_employee:
        for slot in slots:
            current = by_start.get(slot.start)
            if current is None or (slot.available and not current.available):
                by_start[slot.start] = slot
    return [by_start[start] for start in sorted(by_start)]


class AvailabilityAggregator:
    """
    Computes slot lists and day summaries for one employee or for a whole salon.
    """

    def __init__(
        self,
        store: AppointmentStore,
        calendar: WorkingHoursCalendar,
        catalog: ServiceCatalog,
        roster: EmployeeRoster,
        slot_generator: SlotGenerator,
        settings: Optional[BookingRulesConfig] = None,
    ) -> None:
        self._store = store
        self._calendar = calendar
        self._catalog = catalog
        self._roster = roster
        self._slot_generator = slot_generator
        self._settings = settings or BookingRulesConfig()

    @property
    def timezone(self) -> str:
        return self._slot_generator.timezone

    async def load_service(self, service_id: str) -> Service:
        """Resolve a service through the catalog."""
        service = await guarded(
            "Loading service",
            self._catalog.service_for(service_id),
            self._settings.store_timeout_seconds,
        )
        if service is None:
            raise ServiceNotFound(f"Unknown service: {service_id}")
        return service

    async def roster(self, salon_id: str) -> List[str]:
        """Active employees considered in "any employee" mode, capped to bound fan-out."""
        employees = await guarded(
            "Loading employee roster",
            self._roster.active_employees_for(salon_id),
            self._settings.store_timeout_seconds,
        )
        return list(employees)[: self._settings.any_employee_cap]

    async def summarize(
        self,
        employee_id: str,
        start_date: date,
        end_date: date,
        service_id: str,
        salon_id: Optional[str] = None,
    ) -> List[DayAvailability]:
        """Summarise each day of the range for one employee."""
        days = date_range(start_date, end_date)
        service = await self.load_service(service_id)
        slots_by_day = await self.employee_slots(
            employee_id,
            days,
            service,
            salon_id=salon_id,
            now=self._slot_generator.clock.now(),
        )
        return [DayAvailability.from_slots(day, slots_by_day[day]) for day in days]

    async def slots_for_date(
        self,
        employee_id: str,
        day: date,
        service_id: str,
        salon_id: Optional[str] = None,
    ) -> List[TimeSlot]:
        """Full slot list (available and unavailable) of one employee for one day."""
        service = await self.load_service(service_id)
        target = as_date(day)
        slots_by_day = await self.employee_slots(
            employee_id,
            [target],
            service,
            salon_id=salon_id,
            now=self._slot_generator.clock.now(),
        )
        return slots_by_day[target]

    async def summarize_any(
        self,
        salon_id: str,
        start_date: date,
        end_date: date,
        service_id: str,
    ) -> List[DayAvailability]:
        """
        Summarise each day of the range across the salon's staff.

        With no staff records, the salon's own working hours are used as a
        single generic slot pool instead of reporting every day unavailable.
        """
        days = date_range(start_date, end_date)
        service = await self.load_service(service_id)
        now = self._slot_generator.clock.now()
        employees = await self.roster(salon_id)

        if not employees:
            logger.debug("Salon %s has no active employees, using salon hours", salon_id)
            slots_by_day = await self.salon_pool_slots(salon_id, days, service, now)
            return [DayAvailability.from_slots(day, slots_by_day[day]) for day in days]

        per_employee = await asyncio.gather(
            *(
                self.employee_slots(employee_id, days, service, salon_id=salon_id, now=now)
                for employee_id in employees
            )
        )

        if self._settings.any_employee_merge == "union":
            return [
                DayAvailability.from_slots(
                    day,
                    merge_slots([slots_by_day[day] for slots_by_day in per_employee]),
                )
                for day in days
            ]

        return merge_max(
            [
                [DayAvailability.from_slots(day, slots_by_day[day]) for day in days]
                for slots_by_day in per_employee
            ]
        )

    async def slots_for_date_any(
        self,
        salon_id: str,
        day: date,
        service_id: str,
    ) -> List[TimeSlot]:
        """
        Merged slot list of the salon's staff for one day.

        Every available slot names the employee the booking would go to.
        """
        service = await self.load_service(service_id)
        target = as_date(day)
        now = self._slot_generator.clock.now()
        employees = await self.roster(salon_id)

        if not employees:
            slots_by_day = await self.salon_pool_slots(salon_id, [target], service, now)
            return slots_by_day[target]

        per_employee = await asyncio.gather(
            *(
                self.employee_slots(employee_id, [target], service, salon_id=salon_id, now=now)
                for employee_id in employees
            )
        )
        return merge_slots([slots_by_day[target] for slots_by_day in per_employee])

    async def employee_slots(
        self,
        employee_id: str,
        days: List[pendulum.Date],
        service: Service,
        *,
        salon_id: Optional[str],
        now: DateTime,
    ) -> SlotsByDay:
        """
        Slot lists of one employee for consecutive days.

        Appointments are fetched once for the whole period.
        """
        weekly = await self._calendar.weekly_hours(employee_id, salon_id)
        if weekly is None:
            logger.debug("No working hours for employee %s, treating as closed", employee_id)
            return {day: [] for day in days}

        rules = await self._calendar.rules_for(employee_id, salon_id)
        period_start = pendulum.datetime(days[0].year, days[0].month, days[0].day, tz=self.timezone)
        last = days[-1].add(days=1)
        period_end = pendulum.datetime(last.year, last.month, last.day, tz=self.timezone)

        appointments = await guarded(
            "Loading appointments",
            self._store.find_in_range(employee_id, period_start, period_end),
            self._settings.store_timeout_seconds,
        )

        slots_by_day: SlotsByDay = {}
        for day in days:
            slots = self._slot_generator.generate_slots(
                day,
                weekly.for_date(day),
                appointments,
                service.duration_minutes,
                granularity_minutes=self._settings.granularity_minutes,
                now=now,
                rules=rules,
                price=service.base_price,
            )
            slots_by_day[day] = [replace(slot, employee_id=employee_id) for slot in slots]
        return slots_by_day

    async def salon_pool_slots(
        self,
        salon_id: str,
        days: List[pendulum.Date],
        service: Service,
        now: DateTime,
    ) -> SlotsByDay:
        """Slots derived from the salon's opening hours alone, with no bookings."""
        weekly: Optional[WeeklyHours] = await self._calendar.weekly_hours(salon_id)
        rules = await self._calendar.rules_for(salon_id)
        slots_by_day: SlotsByDay = {}
        for day in days:
            slots_by_day[day] = self._slot_generator.generate_slots(
                day,
                weekly.for_date(day) if weekly else None,
                [],
                service.duration_minutes,
                granularity_minutes=self._settings.granularity_minutes,
                now=now,
                rules=rules,
                price=service.base_price,
            )
        return slots_by_day
