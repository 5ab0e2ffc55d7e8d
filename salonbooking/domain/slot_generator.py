"""
Core business logic for generating bookable time slots.

Pure domain logic: no store access, no I/O. Given one day's opening hours and
the appointments already on an employee's calendar, it lays a fixed grid of
candidate start times over the day and marks each candidate as available or
not.
"""

from datetime import date
from decimal import Decimal
from typing import Iterable, List, Optional

from pendulum import DateTime

from .clock import Clock
from .models import NO_RULES, Appointment, AvailabilityRules, DayHours, TimeRange, TimeSlot

REASON_PAST = "Past time slot"
REASON_BREAK = "Break time"
REASON_BOOKED = "Already booked"
REASON_BUFFER = "Buffer time required"

DEFAULT_LEAD_TIME_MINUTES = 15
DEFAULT_GRANULARITY_MINUTES = 30


class SlotGenerator:
    """
    Generates the slot grid for a single day.

    Algorithm:
    1. Closed day, blackout date or date beyond the booking horizon -> no slots
    2. Starting at opening time, step by the granularity while the full service
       duration still fits before closing time
    3. Mark each candidate, first matching reason wins:
       past/too soon -> break -> overlapping appointment -> buffer
    4. Return every candidate in chronological order, available or not
    """

    def __init__(
        self,
        clock: Clock,
        timezone: str = "UTC",
        lead_time_minutes: int = DEFAULT_LEAD_TIME_MINUTES,
    ):
        self.clock = clock
        self.timezone = timezone
        self.lead_time_minutes = lead_time_minutes

    def booking_cutoff(self, now: DateTime, rules: AvailabilityRules = NO_RULES) -> DateTime:
        """
        Latest start time that is too soon to book.

        A slot is bookable only if it starts strictly after this instant.
        """
        lead = max(self.lead_time_minutes, rules.min_lead_time_minutes)
        return now.add(minutes=lead)

    def generate_slots(
        self,
        day: date,
        day_hours: Optional[DayHours],
        existing_appointments: Iterable[Appointment],
        service_duration_minutes: int,
        granularity_minutes: int = DEFAULT_GRANULARITY_MINUTES,
        now: Optional[DateTime] = None,
        rules: Optional[AvailabilityRules] = None,
        price: Optional[Decimal] = None,
    ) -> List[TimeSlot]:
        """
        Produce the ordered slot list for one day.

        Args:
            day: Calendar day in the salon's timezone
            day_hours: Opening hours for that day, None if closed
            existing_appointments: Appointments of the employee; non-occupying
                statuses and appointments on other days are ignored
            service_duration_minutes: Length of every produced slot
            granularity_minutes: Step between candidate start times
            now: Current time, defaults to the injected clock
            rules: Optional per-owner rules (buffer, lead time, blackouts)
            price: Price to attach to every slot

        Returns:
            List of TimeSlot objects in chronological order
        """
        if service_duration_minutes <= 0:
            raise ValueError(f"Service duration must be positive, got {service_duration_minutes}")
        if granularity_minutes <= 0:
            raise ValueError(f"Granularity must be positive, got {granularity_minutes}")

        if day_hours is None:
            return []

        rules = rules or NO_RULES
        now = now or self.clock.now()
        today = now.in_timezone(self.timezone).date()

        if rules.is_blackout(day) or rules.beyond_horizon(day, today):
            return []

        window = day_hours.window_on(day, self.timezone)
        breaks = day_hours.break_ranges_on(day, self.timezone)
        busy = sorted(
            (
                appointment.time_range
                for appointment in existing_appointments
                if appointment.occupies_time
                and appointment.time_range.overlaps(window.padded(rules.buffer_minutes))
            ),
            key=lambda r: r.start,
        )
        cutoff = self.booking_cutoff(now, rules)

        slots: List[TimeSlot] = []
        current = window.start

        while current.add(minutes=service_duration_minutes) <= window.end:
            candidate = TimeRange(start=current, end=current.add(minutes=service_duration_minutes))
            reason = self._unavailable_reason(candidate, cutoff, breaks, busy, rules.buffer_minutes)

            slots.append(
                TimeSlot(
                    time_range=candidate,
                    available=reason is None,
                    reason=reason,
                    price=price,
                )
            )
            current = current.add(minutes=granularity_minutes)

        return slots

    @staticmethod
    def _unavailable_reason(
        candidate: TimeRange,
        cutoff: DateTime,
        breaks: List[TimeRange],
        busy: List[TimeRange],
        buffer_minutes: int,
    ) -> Optional[str]:
        if candidate.start <= cutoff:
            return REASON_PAST
        if any(candidate.overlaps(period) for period in breaks):
            return REASON_BREAK
        if any(candidate.overlaps(booked) for booked in busy):
            return REASON_BOOKED
        if buffer_minutes > 0:
            padded = candidate.padded(buffer_minutes)
            if any(padded.overlaps(booked) for booked in busy):
                return REASON_BUFFER
        return None

    @staticmethod
    def nearest_available(
        slots: Iterable[TimeSlot],
        target: DateTime,
        limit: int,
    ) -> List[TimeSlot]:
        """
        Pick the ``limit`` available slots closest to ``target``.

        Ties are broken by the earlier start time.
        """
        candidates = [slot for slot in slots if slot.available]
        candidates.sort(
            key=lambda slot: (abs(slot.start.timestamp() - target.timestamp()), slot.start)
        )
        return candidates[:limit]
