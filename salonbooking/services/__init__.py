"""
Service layer helpers that orchestrate the store, the directory and domain logic.
"""

from .availability import AvailabilityAggregator
from .booking import BookingValidator
from .calendar import WorkingHoursCalendar
from .engine import BookingEngine, BookingOutcome
from .ports import AppointmentStore, EmployeeRoster, SalonDirectory, ServiceCatalog

__all__ = [
    "AppointmentStore",
    "AvailabilityAggregator",
    "BookingEngine",
    "BookingOutcome",
    "BookingValidator",
    "EmployeeRoster",
    "SalonDirectory",
    "ServiceCatalog",
    "WorkingHoursCalendar",
]
