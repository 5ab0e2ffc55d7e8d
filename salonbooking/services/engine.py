"""
Single entry point over availability, validation and booking.

Every booking flow (calendar view, slot picker, quick booking) goes through
the same ``BookingEngine`` so that they cannot drift apart.
"""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass
from datetime import date, datetime
from typing import List, Optional

from pendulum import DateTime

from ..config import AppConfig, BookingRulesConfig
from ..domain.clock import Clock, SystemClock
from ..domain.exceptions import ConflictOnCommit
from ..domain.models import (
    ANY_EMPLOYEE,
    Appointment,
    AppointmentStatus,
    DayAvailability,
    TimeSlot,
    ValidationFailure,
    ValidationResult,
    to_local,
)
from ..domain.slot_generator import SlotGenerator
from .availability import AvailabilityAggregator
from .booking import BookingValidator
from .calendar import WorkingHoursCalendar
from .ports import AppointmentStore, EmployeeRoster, SalonDirectory, ServiceCatalog, guarded

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class BookingOutcome:
    """Result of a booking attempt that passed or failed validation."""
    validation: ValidationResult
    appointment: Optional[Appointment] = None

    @property
    def booked(self) -> bool:
        return self.appointment is not None


class BookingEngine:
    """
    Facade used by API and UI layers.

    Dependency inversion toward protocols makes it easy to plug in a database
    store or the in-memory implementation in tests.
    """

    def __init__(
        self,
        store: AppointmentStore,
        directory: SalonDirectory,
        roster: EmployeeRoster,
        catalog: ServiceCatalog,
        *,
        clock: Optional[Clock] = None,
        timezone: str = "UTC",
        settings: Optional[BookingRulesConfig] = None,
    ) -> None:
        self.settings = settings or BookingRulesConfig()
        self.timezone = timezone
        self.clock = clock or SystemClock(timezone)
        self._store = store

        self.slot_generator = SlotGenerator(
            clock=self.clock,
            timezone=timezone,
            lead_time_minutes=self.settings.lead_time_minutes,
        )
        calendar = WorkingHoursCalendar(directory, timeout=self.settings.store_timeout_seconds)
        self.aggregator = AvailabilityAggregator(
            store, calendar, catalog, roster, self.slot_generator, self.settings
        )
        self.validator = BookingValidator(
            store, calendar, catalog, roster, self.slot_generator, self.settings
        )

    @classmethod
    def from_config(
        cls,
        config: AppConfig,
        store: AppointmentStore,
        clock: Optional[Clock] = None,
    ) -> "BookingEngine":
        """Wire an engine whose directory, roster and catalog come from the YAML config."""
        from ..adapters.config_directory import ConfigDirectory

        directory = ConfigDirectory(config)
        return cls(
            store,
            directory,
            directory,
            directory,
            clock=clock,
            timezone=config.timezone,
            settings=config.booking,
        )

    async def get_day_availability(
        self,
        salon_id: str,
        start_date: date,
        end_date: date,
        service_id: str,
        employee_id: Optional[str] = None,
    ) -> List[DayAvailability]:
        """Calendar summary; without an employee (or with "any") staff is aggregated."""
        if not employee_id or employee_id == ANY_EMPLOYEE:
            return await self.aggregator.summarize_any(salon_id, start_date, end_date, service_id)
        return await self.aggregator.summarize(
            employee_id, start_date, end_date, service_id, salon_id=salon_id
        )

    async def get_slots_for_date(
        self,
        salon_id: str,
        day: date,
        service_id: str,
        employee_id: Optional[str] = None,
    ) -> List[TimeSlot]:
        """Slot picker data for one day."""
        if not employee_id or employee_id == ANY_EMPLOYEE:
            return await self.aggregator.slots_for_date_any(salon_id, day, service_id)
        return await self.aggregator.slots_for_date(employee_id, day, service_id, salon_id=salon_id)

    async def validate_booking(
        self,
        employee_id: str,
        service_id: str,
        requested_start: datetime,
        requested_end: datetime,
        salon_id: Optional[str] = None,
        exclude_appointment_id: Optional[str] = None,
    ) -> ValidationResult:
        return await self.validator.validate(
            employee_id,
            service_id,
            requested_start,
            requested_end,
            salon_id=salon_id,
            exclude_appointment_id=exclude_appointment_id,
        )

    async def resolve_employee(
        self,
        salon_id: str,
        service_id: str,
        requested_start: datetime,
    ) -> Optional[str]:
        """Pick the employee an "any employee" booking at ``requested_start`` goes to."""
        start = to_local(requested_start, self.timezone)
        slots = await self.aggregator.slots_for_date_any(salon_id, start.date(), service_id)
        for slot in slots:
            if slot.start == start and slot.available:
                return slot.employee_id
        return None

    async def book_appointment(
        self,
        employee_id: str,
        service_id: str,
        requested_start: datetime,
        *,
        salon_id: Optional[str] = None,
        customer_id: Optional[str] = None,
        appointment_id: Optional[str] = None,
    ) -> BookingOutcome:
        """
        Validate and atomically create an appointment.

        The end is always start + service duration. Expected rejections are
        returned in the outcome.

        Raises:
            ConflictOnCommit: If another booking won the race after validation;
                carries the nearest alternatives
            StoreUnavailable: If the store cannot be reached in time
            EmployeeNotResolved: If employee_id is the "any" placeholder
        """
        service = await self.aggregator.load_service(service_id)
        start: DateTime = to_local(requested_start, self.timezone)
        end = start.add(minutes=service.duration_minutes)

        validation = await self.validator.validate(
            employee_id, service_id, start, end, salon_id=salon_id
        )
        if not validation.valid:
            return BookingOutcome(validation=validation)

        appointment = Appointment(
            id=appointment_id or str(uuid.uuid4()),
            employee_id=employee_id,
            service_id=service_id,
            scheduled_start=start,
            scheduled_end=end,
            status=AppointmentStatus.PENDING,
            salon_id=salon_id,
            customer_id=customer_id,
        )

        try:
            created = await guarded(
                "Creating appointment",
                self._store.create_if_no_conflict(appointment),
                self.settings.store_timeout_seconds,
            )
        except ConflictOnCommit as exc:
            logger.warning(
                "Lost booking race for employee %s at %s", employee_id, start.to_iso8601_string()
            )
            suggestions = await self.validator.suggest_alternatives(
                employee_id, service, start, salon_id=salon_id
            )
            raise ConflictOnCommit(
                str(exc),
                conflicting_id=exc.conflicting_id,
                suggestions=suggestions,
            ) from exc

        logger.info(
            "Booked %s for employee %s at %s",
            created.id,
            employee_id,
            start.to_iso8601_string(),
        )
        return BookingOutcome(validation=validation, appointment=created)

    async def book_any_employee(
        self,
        salon_id: str,
        service_id: str,
        requested_start: datetime,
        *,
        customer_id: Optional[str] = None,
    ) -> BookingOutcome:
        """Resolve a concrete employee for the requested start, then book with them."""
        employee_id = await self.resolve_employee(salon_id, service_id, requested_start)
        if employee_id is None:
            start = to_local(requested_start, self.timezone)
            slots = await self.aggregator.slots_for_date_any(salon_id, start.date(), service_id)
            suggestions = SlotGenerator.nearest_available(
                slots, start, self.settings.suggestion_count
            )
            return BookingOutcome(
                validation=ValidationResult.rejected(
                    ValidationFailure.DOUBLE_BOOKED,
                    "No employee is available at this time",
                    tuple(suggestions),
                )
            )

        return await self.book_appointment(
            employee_id,
            service_id,
            requested_start,
            salon_id=salon_id,
            customer_id=customer_id,
        )
