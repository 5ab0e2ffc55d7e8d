"""
Salon directory, roster and service catalog backed by the YAML configuration.
"""

from typing import Any, List, Optional

from ..config import AppConfig
from ..domain.models import AvailabilityRules, Service


class ConfigDirectory:
    """
    Serves salon, employee and service data from an ``AppConfig``.

    Implements the SalonDirectory, EmployeeRoster and ServiceCatalog protocols.
    Owner ids may name either a salon or an employee.
    """

    def __init__(self, config: AppConfig):
        self.config = config

    async def working_hours_for(self, owner_id: str) -> Optional[Any]:
        employee = self.config.find_employee(owner_id)
        if employee is not None:
            return employee.working_hours

        salon = self.config.find_salon(owner_id)
        if salon is not None:
            return salon.working_hours
        return None

    async def availability_rules_for(self, owner_id: str) -> Optional[AvailabilityRules]:
        employee = self.config.find_employee(owner_id)
        owner = employee if employee is not None else self.config.find_salon(owner_id)
        if owner is None or owner.rules is None:
            return None
        return owner.rules.to_rules()

    async def active_employees_for(self, salon_id: str) -> List[str]:
        salon = self.config.find_salon(salon_id)
        if salon is None:
            return []
        return [employee.id for employee in salon.active_employees()]

    async def service_for(self, service_id: str) -> Optional[Service]:
        service = self.config.find_service(service_id)
        if service is None:
            return None
        return service.to_service()
