"""
Protocols for the external collaborators the engine reads from and writes to.

The engine never owns appointment storage; it reaches the store and the salon
directory only through these narrow async contracts, so a database-backed
implementation and the in-memory one used in tests are interchangeable.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Awaitable, List, Optional, Protocol, TypeVar

from pendulum import DateTime

from ..domain.exceptions import StoreUnavailable
from ..domain.models import Appointment, AvailabilityRules, Service

logger = logging.getLogger(__name__)

T = TypeVar("T")


class AppointmentStore(Protocol):
    """Persistence of appointments."""

    async def find_overlapping(
        self,
        employee_id: str,
        start: DateTime,
        end: DateTime,
    ) -> List[Appointment]:
        """Return the employee's appointments intersecting ``[start, end)``."""

    async def find_in_range(
        self,
        employee_id: str,
        start: DateTime,
        end: DateTime,
    ) -> List[Appointment]:
        """Return the employee's appointments touching the period, ordered by start."""

    async def create_if_no_conflict(self, appointment: Appointment) -> Appointment:
        """
        Atomically insert ``appointment`` unless an occupying appointment of the
        same employee overlaps it.

        Raises:
            ConflictOnCommit: If the window was taken in the meantime
        """


class SalonDirectory(Protocol):
    """Salon and employee configuration owned by the salon management system."""

    async def working_hours_for(self, owner_id: str) -> Optional[Any]:
        """Return the raw weekly working hours of a salon or employee, if configured."""

    async def availability_rules_for(self, owner_id: str) -> Optional[AvailabilityRules]:
        """Return booking restrictions of a salon or employee, if configured."""


class EmployeeRoster(Protocol):
    """Staff listing of a salon."""

    async def active_employees_for(self, salon_id: str) -> List[str]:
        """Return ids of the salon's active employees in display order."""


class ServiceCatalog(Protocol):
    """Service definitions of the salon management system."""

    async def service_for(self, service_id: str) -> Optional[Service]:
        """Return the service, or None if unknown."""


async def guarded(operation: str, awaitable: Awaitable[T], timeout: float) -> T:
    """
    Await a collaborator call with a timeout.

    Timeouts and connection failures fail closed as ``StoreUnavailable``:
    a window that cannot be verified is never reported as bookable.
    """
    try:
        return await asyncio.wait_for(awaitable, timeout=timeout)
    except asyncio.TimeoutError as exc:
        logger.error("%s timed out after %.1fs", operation, timeout)
        raise StoreUnavailable(f"{operation} timed out, cannot confirm availability") from exc
    except OSError as exc:
        logger.error("%s failed: %s", operation, exc)
        raise StoreUnavailable(f"{operation} failed, cannot confirm availability: {exc}") from exc
