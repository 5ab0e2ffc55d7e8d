"""
Last-instant validation of a booking request.

The slot list a customer picked from may be stale by the time they submit.
``BookingValidator`` re-derives everything from the store and the directory
right before the insert and explains a rejection precisely enough for the UI
to render each case differently. It is a fast, friendly check; the atomic
insert of the store remains the actual guard against double booking.
"""

from __future__ import annotations

import logging
from dataclasses import replace
from datetime import datetime
from typing import List, Optional, Tuple

import pendulum
from pendulum import DateTime

from ..config import BookingRulesConfig
from ..domain.clock import Clock
from ..domain.exceptions import EmployeeNotResolved, ServiceNotFound
from ..domain.models import (
    ANY_EMPLOYEE,
    Appointment,
    AvailabilityRules,
    Service,
    TimeRange,
    TimeSlot,
    ValidationFailure,
    ValidationResult,
    to_local,
)
from ..domain.slot_generator import SlotGenerator
from .calendar import WorkingHoursCalendar
from .ports import AppointmentStore, EmployeeRoster, ServiceCatalog, guarded

logger = logging.getLogger(__name__)

REASON_EMPLOYEE_UNAVAILABLE = "Employee not found or inactive"
REASON_NO_CONFIGURATION = "No working hours are configured"
REASON_CLOSED = "Closed on this day"
REASON_BLACKOUT = "Unavailable on this date"
REASON_OUTSIDE_HOURS = "Time is outside operating hours"
REASON_BREAK = "Time overlaps a break"
REASON_IN_PAST = "This time is in the past"
REASON_DOUBLE_BOOKED = "This time slot is no longer available"
REASON_BUFFER = "Buffer time required between appointments"


def ensure_concrete_employee(employee_id: Optional[str]) -> str:
    """
    Reject the "any employee" placeholder.

    Validating against no real employee would always pass; the employee a
    booking is assigned to must be resolved before validation.
    """
    if not employee_id or employee_id == ANY_EMPLOYEE:
        raise EmployeeNotResolved(
            "Booking must be validated against a specific employee, "
            f"got {employee_id!r}"
        )
    return employee_id


class BookingValidator:
    """Re-checks one requested window immediately before commit."""

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
    def clock(self) -> Clock:
        return self._slot_generator.clock

    @property
    def timezone(self) -> str:
        return self._slot_generator.timezone

    async def validate(
        self,
        employee_id: str,
        service_id: str,
        requested_start: datetime,
        requested_end: datetime,
        salon_id: Optional[str] = None,
        exclude_appointment_id: Optional[str] = None,
    ) -> ValidationResult:
        """
        Check a requested window for one employee.

        Args:
            employee_id: Concrete employee the booking will be assigned to
            service_id: Service being booked, used for alternative suggestions
            requested_start: Requested start (aware datetime)
            requested_end: Requested end (aware datetime)
            salon_id: Salon whose hours apply when the employee has none; when
                given, the employee must be one of its active employees
            exclude_appointment_id: Appointment being rescheduled, ignored in
                conflict checks

        Returns:
            ValidationResult, with nearest alternatives on double booking

        Raises:
            EmployeeNotResolved: If employee_id is the "any" placeholder
            ServiceNotFound: If the service is unknown
            StoreUnavailable: If the store cannot be read in time
        """
        employee_id = ensure_concrete_employee(employee_id)
        requested = TimeRange(
            start=to_local(requested_start, self.timezone),
            end=to_local(requested_end, self.timezone),
        )
        service = await self._load_service(service_id)
        now = self.clock.now()
        day = requested.start.date()

        if salon_id and not await self._is_active_employee(employee_id, salon_id):
            logger.info("Rejecting booking for %s: not an active employee of %s", employee_id, salon_id)
            return ValidationResult.rejected(
                ValidationFailure.EMPLOYEE_UNAVAILABLE, REASON_EMPLOYEE_UNAVAILABLE
            )

        weekly = await self._calendar.weekly_hours(employee_id, salon_id)
        if weekly is None:
            return ValidationResult.rejected(
                ValidationFailure.CONFIGURATION_MISSING, REASON_NO_CONFIGURATION
            )

        rules = await self._calendar.rules_for(employee_id, salon_id)

        day_hours = weekly.for_date(day)
        if day_hours is None:
            return ValidationResult.rejected(ValidationFailure.OUTSIDE_OPERATING_HOURS, REASON_CLOSED)
        if rules.is_blackout(day):
            return ValidationResult.rejected(ValidationFailure.OUTSIDE_OPERATING_HOURS, REASON_BLACKOUT)
        if not day_hours.window_on(day, self.timezone).contains(requested):
            return ValidationResult.rejected(
                ValidationFailure.OUTSIDE_OPERATING_HOURS, REASON_OUTSIDE_HOURS
            )
        if any(requested.overlaps(period) for period in day_hours.break_ranges_on(day, self.timezone)):
            return ValidationResult.rejected(ValidationFailure.OUTSIDE_OPERATING_HOURS, REASON_BREAK)

        if requested.start <= now:
            return ValidationResult.rejected(ValidationFailure.PAST_TIME_WINDOW, REASON_IN_PAST)
        cutoff = self._slot_generator.booking_cutoff(now, rules)
        if requested.start <= cutoff:
            lead = max(self._slot_generator.lead_time_minutes, rules.min_lead_time_minutes)
            return ValidationResult.rejected(
                ValidationFailure.PAST_TIME_WINDOW,
                f"Bookings require at least {lead} minutes advance notice",
            )

        if rules.beyond_horizon(day, now.in_timezone(self.timezone).date()):
            return ValidationResult.rejected(
                ValidationFailure.BEYOND_BOOKING_WINDOW,
                f"Bookings can only be made {rules.advance_booking_days} days in advance",
            )

        conflicts, buffer_conflicts = await self._conflicts(
            employee_id, requested, rules, exclude_appointment_id
        )
        if conflicts or buffer_conflicts:
            logger.info(
                "Rejecting %s for employee %s: %d conflicting appointment(s)",
                requested,
                employee_id,
                len(conflicts) + len(buffer_conflicts),
            )
            suggestions = await self.suggest_alternatives(
                employee_id,
                service,
                requested.start,
                salon_id=salon_id,
                exclude_appointment_id=exclude_appointment_id,
            )
            reason = REASON_DOUBLE_BOOKED if conflicts else REASON_BUFFER
            return ValidationResult.rejected(ValidationFailure.DOUBLE_BOOKED, reason, tuple(suggestions))

        return ValidationResult.ok()

    async def suggest_alternatives(
        self,
        employee_id: str,
        service: Service,
        around: DateTime,
        salon_id: Optional[str] = None,
        exclude_appointment_id: Optional[str] = None,
    ) -> List[TimeSlot]:
        """Nearest available slots on the same day, closest to ``around`` first."""
        around = to_local(around, self.timezone)
        day = around.date()
        weekly = await self._calendar.weekly_hours(employee_id, salon_id)
        if weekly is None:
            return []

        rules = await self._calendar.rules_for(employee_id, salon_id)
        day_start = pendulum.datetime(day.year, day.month, day.day, tz=self.timezone)
        appointments = await guarded(
            "Loading appointments",
            self._store.find_in_range(employee_id, day_start, day_start.add(days=1)),
            self._settings.store_timeout_seconds,
        )
        appointments = [a for a in appointments if a.id != exclude_appointment_id]

        slots = self._slot_generator.generate_slots(
            day,
            weekly.for_date(day),
            appointments,
            service.duration_minutes,
            granularity_minutes=self._settings.granularity_minutes,
            rules=rules,
            price=service.base_price,
        )
        nearest = SlotGenerator.nearest_available(slots, around, self._settings.suggestion_count)
        return [replace(slot, employee_id=employee_id) for slot in nearest]

    async def _conflicts(
        self,
        employee_id: str,
        requested: TimeRange,
        rules: AvailabilityRules,
        exclude_appointment_id: Optional[str],
    ) -> Tuple[List[Appointment], List[Appointment]]:
        """Split fresh store data into direct overlaps and buffer violations."""
        window = requested.padded(rules.buffer_minutes)
        found = await guarded(
            "Checking for overlapping appointments",
            self._store.find_overlapping(employee_id, window.start, window.end),
            self._settings.store_timeout_seconds,
        )

        direct: List[Appointment] = []
        buffered: List[Appointment] = []
        for appointment in found:
            if appointment.id == exclude_appointment_id or not appointment.occupies_time:
                continue
            if appointment.time_range.overlaps(requested):
                direct.append(appointment)
            elif appointment.time_range.overlaps(window):
                buffered.append(appointment)
        return direct, buffered

    async def _is_active_employee(self, employee_id: str, salon_id: str) -> bool:
        employees = await guarded(
            "Loading employee roster",
            self._roster.active_employees_for(salon_id),
            self._settings.store_timeout_seconds,
        )
        return employee_id in employees

    async def _load_service(self, service_id: str) -> Service:
        service = await guarded(
            "Loading service",
            self._catalog.service_for(service_id),
            self._settings.store_timeout_seconds,
        )
        if service is None:
            raise ServiceNotFound(f"Unknown service: {service_id}")
        return service
