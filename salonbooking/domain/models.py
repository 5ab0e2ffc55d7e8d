"""
Domain models for working hours, appointments and computed availability.
"""

from dataclasses import dataclass, field
from datetime import date, datetime, time
from decimal import Decimal
from enum import Enum
from typing import Dict, FrozenSet, List, Optional, Tuple

import pendulum
from pendulum import DateTime

# Placeholder employee id used by booking flows where the customer has no
# staff preference. Never a real employee.
ANY_EMPLOYEE = "any"


def to_local(value: datetime, timezone: str) -> DateTime:
    """Convert any aware (or naive UTC) datetime to a pendulum DateTime in ``timezone``."""
    return pendulum.instance(value).in_timezone(timezone)


def as_date(value: date) -> pendulum.Date:
    """Normalise a ``date`` (or datetime) to a pendulum Date."""
    return pendulum.date(value.year, value.month, value.day)


def at_time(day: date, at: time, timezone: str) -> DateTime:
    """Combine a calendar day and a wall-clock time in ``timezone``."""
    return pendulum.datetime(day.year, day.month, day.day, at.hour, at.minute, tz=timezone)


@dataclass(frozen=True)
class TimeRange:
    """
    Represents an immutable time range with start and end datetime.

    Half-open: ``start`` is inside the range, ``end`` is not.
    Invariant: start must be before end.
    """
    start: DateTime
    end: DateTime

    def __post_init__(self):
        if self.start >= self.end:
            raise ValueError(f"Start time {self.start} must be before end time {self.end}")

    def duration_minutes(self) -> int:
        """Return the duration in minutes."""
        return int((self.end - self.start).total_seconds() / 60)

    def overlaps(self, other: "TimeRange") -> bool:
        """Check if this range overlaps with another. Touching ends do not overlap."""
        return self.start < other.end and other.start < self.end

    def contains(self, other: "TimeRange") -> bool:
        """Check if ``other`` lies completely inside this range."""
        return self.start <= other.start and other.end <= self.end

    def padded(self, minutes: int) -> "TimeRange":
        """Return the range widened by ``minutes`` on both sides."""
        return TimeRange(
            start=self.start.subtract(minutes=minutes),
            end=self.end.add(minutes=minutes),
        )

    def __str__(self) -> str:
        return f"{self.start.format('DD.MM.YYYY HH:mm')} - {self.end.format('HH:mm')}"


@dataclass(frozen=True)
class BreakPeriod:
    """A recurring break inside a working day (local wall-clock times)."""
    start_time: time
    end_time: time

    def __post_init__(self):
        if self.start_time >= self.end_time:
            raise ValueError(
                f"Break start {self.start_time} must be before break end {self.end_time}"
            )


@dataclass(frozen=True)
class DayHours:
    """
    Opening window for one weekday.

    Invariant: start_time must be before end_time.
    """
    start_time: time
    end_time: time
    breaks: Tuple[BreakPeriod, ...] = ()

    def __post_init__(self):
        if self.start_time >= self.end_time:
            raise ValueError(
                f"Opening time {self.start_time} must be before closing time {self.end_time}"
            )

    def window_on(self, day: date, timezone: str) -> TimeRange:
        """Get the concrete opening window for ``day``."""
        return TimeRange(
            start=at_time(day, self.start_time, timezone),
            end=at_time(day, self.end_time, timezone),
        )

    def break_ranges_on(self, day: date, timezone: str) -> List[TimeRange]:
        return [
            TimeRange(
                start=at_time(day, period.start_time, timezone),
                end=at_time(day, period.end_time, timezone),
            )
            for period in self.breaks
        ]


@dataclass(frozen=True)
class WeeklyHours:
    """
    Normalised weekly schedule of a salon or employee.

    Keys are weekdays, 0=Monday ... 6=Sunday. A weekday without an entry is closed.
    """
    days: Dict[int, DayHours] = field(default_factory=dict)

    def for_date(self, day: date) -> Optional[DayHours]:
        """Get the opening hours for a date, or None if closed."""
        return self.days.get(day.weekday())

    def is_open_on(self, day: date) -> bool:
        return day.weekday() in self.days


@dataclass(frozen=True)
class AvailabilityRules:
    """Per-owner booking restrictions layered on top of working hours."""
    buffer_minutes: int = 0
    min_lead_time_minutes: int = 0
    advance_booking_days: Optional[int] = None
    blackout_dates: FrozenSet[date] = frozenset()

    def is_blackout(self, day: date) -> bool:
        return as_date(day) in {as_date(d) for d in self.blackout_dates}

    def beyond_horizon(self, day: date, today: date) -> bool:
        """True if ``day`` is further ahead than bookings are accepted."""
        if self.advance_booking_days is None:
            return False
        return as_date(day) > as_date(today).add(days=self.advance_booking_days)


NO_RULES = AvailabilityRules()


@dataclass(frozen=True)
class Service:
    """A bookable service. Only its duration matters for slot computation."""
    id: str
    duration_minutes: int
    base_price: Optional[Decimal] = None
    name: str = ""

    def __post_init__(self):
        if self.duration_minutes <= 0:
            raise ValueError(
                f"Service duration must be positive, got {self.duration_minutes}"
            )


class AppointmentStatus(str, Enum):
    PENDING = "pending"
    CONFIRMED = "confirmed"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    NO_SHOW = "no_show"

    @property
    def occupies_time(self) -> bool:
        """Cancelled and no-show appointments free their window."""
        return self not in (AppointmentStatus.CANCELLED, AppointmentStatus.NO_SHOW)


OCCUPYING_STATUSES = tuple(status for status in AppointmentStatus if status.occupies_time)


@dataclass(frozen=True)
class Appointment:
    """
    A persisted appointment as returned by an AppointmentStore.

    Invariant: scheduled_start must be before scheduled_end.
    """
    id: str
    employee_id: str
    service_id: str
    scheduled_start: DateTime
    scheduled_end: DateTime
    status: AppointmentStatus = AppointmentStatus.PENDING
    salon_id: Optional[str] = None
    customer_id: Optional[str] = None

    def __post_init__(self):
        if self.scheduled_start >= self.scheduled_end:
            raise ValueError(
                f"Appointment {self.id} starts at {self.scheduled_start} "
                f"but ends at {self.scheduled_end}"
            )

    @property
    def time_range(self) -> TimeRange:
        return TimeRange(start=self.scheduled_start, end=self.scheduled_end)

    @property
    def occupies_time(self) -> bool:
        return AppointmentStatus(self.status).occupies_time

    def conflicts_with(self, time_range: TimeRange) -> bool:
        """True if this appointment blocks ``time_range`` for its employee."""
        return self.occupies_time and self.time_range.overlaps(time_range)


@dataclass(frozen=True)
class TimeSlot:
    """
    A candidate appointment window on the granularity grid.

    Computed fresh on every query, never persisted.
    """
    time_range: TimeRange
    available: bool
    reason: Optional[str] = None
    price: Optional[Decimal] = None
    employee_id: Optional[str] = None

    @property
    def start(self) -> DateTime:
        return self.time_range.start

    @property
    def end(self) -> DateTime:
        return self.time_range.end

    def format_display(self) -> str:
        """
        Format the slot for display.
        Format: Weekday, DD.MM.YYYY | HH:mm - HH:mm
        """
        start = self.time_range.start
        text = (
            f"{start.format('dddd, DD.MM.YYYY')} | "
            f"{start.format('HH:mm')} - {self.time_range.end.format('HH:mm')}"
        )
        if not self.available and self.reason:
            text += f" ({self.reason})"
        return text


class DayStatus(str, Enum):
    AVAILABLE = "available"
    PARTIALLY_BOOKED = "partially_booked"
    FULLY_BOOKED = "fully_booked"
    UNAVAILABLE = "unavailable"

    @classmethod
    def derive(cls, total_slots: int, available_slots: int) -> "DayStatus":
        if total_slots == 0:
            return cls.UNAVAILABLE
        if available_slots == 0:
            return cls.FULLY_BOOKED
        if available_slots == total_slots:
            return cls.AVAILABLE
        return cls.PARTIALLY_BOOKED


@dataclass(frozen=True)
class DayAvailability:
    """Occupancy summary of one calendar day for calendar display."""
    date: pendulum.Date
    status: DayStatus
    total_slots: int
    available_slots: int

    @classmethod
    def from_slots(cls, day: date, slots: List[TimeSlot]) -> "DayAvailability":
        total = len(slots)
        available = sum(1 for slot in slots if slot.available)
        return cls(
            date=as_date(day),
            status=DayStatus.derive(total, available),
            total_slots=total,
            available_slots=available,
        )

    @classmethod
    def closed(cls, day: date) -> "DayAvailability":
        return cls(date=as_date(day), status=DayStatus.UNAVAILABLE, total_slots=0, available_slots=0)


class ValidationFailure(str, Enum):
    EMPLOYEE_UNAVAILABLE = "employee_unavailable"
    CONFIGURATION_MISSING = "configuration_missing"
    OUTSIDE_OPERATING_HOURS = "outside_operating_hours"
    PAST_TIME_WINDOW = "past_time_window"
    BEYOND_BOOKING_WINDOW = "beyond_booking_window"
    DOUBLE_BOOKED = "double_booked"


@dataclass(frozen=True)
class ValidationResult:
    """Outcome of a pre-commit booking check."""
    valid: bool
    failure: Optional[ValidationFailure] = None
    reason: Optional[str] = None
    suggestions: Tuple[TimeSlot, ...] = ()

    @classmethod
    def ok(cls) -> "ValidationResult":
        return cls(valid=True)

    @classmethod
    def rejected(
        cls,
        failure: ValidationFailure,
        reason: str,
        suggestions: Tuple[TimeSlot, ...] = (),
    ) -> "ValidationResult":
        return cls(valid=False, failure=failure, reason=reason, suggestions=tuple(suggestions))
