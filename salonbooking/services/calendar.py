"""
Working-hours lookups for salons and employees.
"""

from __future__ import annotations

import logging
from datetime import date
from typing import Optional

from ..domain.models import NO_RULES, AvailabilityRules, DayHours, WeeklyHours
from ..domain.working_hours import normalize_working_hours
from .ports import SalonDirectory, guarded

logger = logging.getLogger(__name__)


class WorkingHoursCalendar:
    """
    Turns directory configuration into queryable day definitions.

    Several owner ids may be given in priority order (typically the employee,
    then the employee's salon); the first one with a configuration wins.
    Missing configuration always means "closed".
    """

    def __init__(self, directory: SalonDirectory, timeout: float = 5.0) -> None:
        self._directory = directory
        self._timeout = timeout

    async def weekly_hours(self, *owner_ids: Optional[str]) -> Optional[WeeklyHours]:
        """Return the first configured weekly schedule among ``owner_ids``."""
        for owner_id in owner_ids:
            if not owner_id:
                continue
            raw = await guarded(
                "Loading working hours",
                self._directory.working_hours_for(owner_id),
                self._timeout,
            )
            weekly = normalize_working_hours(raw)
            if weekly is not None:
                return weekly
            logger.debug("No working hours configured for %s", owner_id)
        return None

    async def hours_for(self, owner_id: str, day: date, *fallback_ids: Optional[str]) -> Optional[DayHours]:
        """Return the opening hours of ``owner_id`` on ``day``, or None if closed."""
        weekly = await self.weekly_hours(owner_id, *fallback_ids)
        if weekly is None:
            return None
        return weekly.for_date(day)

    async def rules_for(self, *owner_ids: Optional[str]) -> AvailabilityRules:
        """Return the first configured availability rules among ``owner_ids``."""
        for owner_id in owner_ids:
            if not owner_id:
                continue
            rules = await guarded(
                "Loading availability rules",
                self._directory.availability_rules_for(owner_id),
                self._timeout,
            )
            if rules is not None:
                return rules
        return NO_RULES
