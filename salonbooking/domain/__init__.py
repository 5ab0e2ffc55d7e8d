"""
Domain layer - Pure business logic without external dependencies.
"""

from .clock import Clock, FixedClock, SystemClock
from .models import (
    ANY_EMPLOYEE,
    Appointment,
    AppointmentStatus,
    AvailabilityRules,
    BreakPeriod,
    DayAvailability,
    DayHours,
    DayStatus,
    Service,
    TimeRange,
    TimeSlot,
    ValidationFailure,
    ValidationResult,
    WeeklyHours,
)
from .slot_generator import SlotGenerator
from .working_hours import normalize_working_hours

__all__ = [
    "ANY_EMPLOYEE",
    "Appointment",
    "AppointmentStatus",
    "AvailabilityRules",
    "BreakPeriod",
    "Clock",
    "DayAvailability",
    "DayHours",
    "DayStatus",
    "FixedClock",
    "Service",
    "SlotGenerator",
    "SystemClock",
    "TimeRange",
    "TimeSlot",
    "ValidationFailure",
    "ValidationResult",
    "WeeklyHours",
    "normalize_working_hours",
]
