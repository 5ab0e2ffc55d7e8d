"""
In-memory appointment store.

Used by the CLI with a JSON seed file and by the test-suite. Check-and-insert
runs under one ``asyncio.Lock`` so that concurrent bookings for overlapping
windows serialise and exactly one of them wins.
"""

import asyncio
import json
import logging
from dataclasses import replace
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional

import pendulum
from pendulum import DateTime

from ..domain.exceptions import ConflictOnCommit
from ..domain.models import Appointment, AppointmentStatus, TimeRange

logger = logging.getLogger(__name__)


class InMemoryAppointmentStore:
    """
    Appointment store kept in a plain list.

    It holds no state beyond the appointments themselves.
    """

    def __init__(self, appointments: Optional[Iterable[Appointment]] = None):
        self._appointments: List[Appointment] = list(appointments or [])
        self._lock = asyncio.Lock()

    @classmethod
    def load_from_json(cls, data_file: Path, timezone: str = "UTC") -> "InMemoryAppointmentStore":
        """
        Load appointments from a JSON file.

        Expected format: a list of objects with ``id``, ``employeeId``,
        ``serviceId``, ``start``, ``end`` and optional ``status``,
        ``salonId``, ``customerId``. Times without an offset are read in
        ``timezone``. Invalid entries are skipped.
        """
        if not data_file.exists():
            raise FileNotFoundError(f"Appointments file not found: {data_file}")

        with open(data_file, "r", encoding="utf-8") as f:
            records = json.load(f)

        appointments: List[Appointment] = []
        for record in records:
            try:
                appointments.append(
                    Appointment(
                        id=str(record["id"]),
                        employee_id=str(record["employeeId"]),
                        service_id=str(record["serviceId"]),
                        scheduled_start=pendulum.parse(record["start"], tz=timezone),
                        scheduled_end=pendulum.parse(record["end"], tz=timezone),
                        status=AppointmentStatus(record.get("status", "confirmed")),
                        salon_id=record.get("salonId"),
                        customer_id=record.get("customerId"),
                    )
                )
            except (KeyError, ValueError) as e:
                logger.warning("Skipping invalid appointment record %r: %s", record, e)
                continue

        return cls(appointments)

    def dump_to_json(self, data_file: Path) -> None:
        """Write all appointments back in the format read by ``load_from_json``."""
        records: List[Dict[str, Any]] = [
            {
                "id": appointment.id,
                "employeeId": appointment.employee_id,
                "serviceId": appointment.service_id,
                "start": appointment.scheduled_start.to_iso8601_string(),
                "end": appointment.scheduled_end.to_iso8601_string(),
                "status": AppointmentStatus(appointment.status).value,
                "salonId": appointment.salon_id,
                "customerId": appointment.customer_id,
            }
            for appointment in self._appointments
        ]
        with open(data_file, "w", encoding="utf-8") as f:
            json.dump(records, f, indent=2)

    def all(self) -> List[Appointment]:
        return list(self._appointments)

    def _matching(self, employee_id: str, start: DateTime, end: DateTime) -> List[Appointment]:
        window = TimeRange(start=start, end=end)
        return [
            appointment
            for appointment in self._appointments
            if appointment.employee_id == employee_id and appointment.time_range.overlaps(window)
        ]

    async def find_overlapping(
        self,
        employee_id: str,
        start: DateTime,
        end: DateTime,
    ) -> List[Appointment]:
        return self._matching(employee_id, start, end)

    async def find_in_range(
        self,
        employee_id: str,
        start: DateTime,
        end: DateTime,
    ) -> List[Appointment]:
        found = self._matching(employee_id, start, end)
        return sorted(found, key=lambda appointment: appointment.scheduled_start)

    async def create_if_no_conflict(self, appointment: Appointment) -> Appointment:
        async with self._lock:
            existing = self._matching(
                appointment.employee_id,
                appointment.scheduled_start,
                appointment.scheduled_end,
            )
            # Yield while holding the lock: competing inserts must wait here.
            await asyncio.sleep(0)

            blocking = [other for other in existing if other.occupies_time]
            if blocking:
                raise ConflictOnCommit(conflicting_id=blocking[0].id)
            if any(other.id == appointment.id for other in self._appointments):
                raise ValueError(f"Appointment id {appointment.id} already exists")

            self._appointments.append(appointment)
            return appointment

    async def update_status(self, appointment_id: str, status: AppointmentStatus) -> Appointment:
        """Change the status of an appointment, e.g. to cancel it."""
        async with self._lock:
            for index, appointment in enumerate(self._appointments):
                if appointment.id == appointment_id:
                    updated = replace(appointment, status=AppointmentStatus(status))
                    self._appointments[index] = updated
                    return updated
        raise KeyError(f"Unknown appointment: {appointment_id}")
