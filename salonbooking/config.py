"""
Configuration management using Pydantic models loaded from YAML.
"""

from datetime import date
from decimal import Decimal
from pathlib import Path
from typing import Any, List, Literal, Optional

import pendulum
import yaml
from pydantic import BaseModel, Field, field_validator, model_validator

from .domain.models import AvailabilityRules, Service


class BookingRulesConfig(BaseModel):
    """Engine-wide booking settings."""
    granularity_minutes: int = 30
    lead_time_minutes: int = 15
    suggestion_count: int = 5
    any_employee_cap: int = 5
    any_employee_merge: Literal["max", "union"] = "max"
    store_timeout_seconds: float = 5.0
    default_horizon_days: int = 30

    @field_validator("granularity_minutes", "suggestion_count", "any_employee_cap", "default_horizon_days")
    @classmethod
    def validate_positive(cls, value: int) -> int:
        if value <= 0:
            raise ValueError(f"Value must be greater than zero, got {value}")
        return value

    @field_validator("lead_time_minutes")
    @classmethod
    def validate_lead_time(cls, value: int) -> int:
        if value < 0:
            raise ValueError(f"lead_time_minutes cannot be negative, got {value}")
        return value

    @field_validator("store_timeout_seconds")
    @classmethod
    def validate_timeout(cls, value: float) -> float:
        if value <= 0:
            raise ValueError("store_timeout_seconds must be greater than zero")
        return value


class AvailabilityRulesConfig(BaseModel):
    """Optional per-salon or per-employee restrictions."""
    buffer_minutes: int = 0
    min_lead_time_minutes: int = 0
    advance_booking_days: Optional[int] = None
    blackout_dates: List[date] = Field(default_factory=list)

    @field_validator("buffer_minutes", "min_lead_time_minutes")
    @classmethod
    def validate_not_negative(cls, value: int) -> int:
        if value < 0:
            raise ValueError(f"Value cannot be negative, got {value}")
        return value

    def to_rules(self) -> AvailabilityRules:
        return AvailabilityRules(
            buffer_minutes=self.buffer_minutes,
            min_lead_time_minutes=self.min_lead_time_minutes,
            advance_booking_days=self.advance_booking_days,
            blackout_dates=frozenset(self.blackout_dates),
        )


class ServiceConfig(BaseModel):
    """Bookable service offered by a salon."""
    id: str
    name: str = ""
    duration_minutes: int
    base_price: Optional[Decimal] = None

    @field_validator("duration_minutes")
    @classmethod
    def validate_duration(cls, value: int) -> int:
        """Ensure service duration is positive."""
        if value <= 0:
            raise ValueError("duration_minutes must be greater than zero")
        return value

    def to_service(self) -> Service:
        return Service(
            id=self.id,
            name=self.name,
            duration_minutes=self.duration_minutes,
            base_price=self.base_price,
        )


class EmployeeConfig(BaseModel):
    """Salon employee. Working hours fall back to the salon's when omitted."""
    id: str
    name: str
    active: bool = True
    # Raw upstream shape, normalised by the domain layer
    working_hours: Optional[Any] = None
    rules: Optional[AvailabilityRulesConfig] = None

    def display_name(self) -> str:
        return self.name


class SalonConfig(BaseModel):
    """Salon with its opening hours, staff and services."""
    id: str
    name: str = ""
    working_hours: Optional[Any] = None
    rules: Optional[AvailabilityRulesConfig] = None
    employees: List[EmployeeConfig] = Field(default_factory=list)
    services: List[ServiceConfig] = Field(default_factory=list)

    @model_validator(mode="after")
    def validate_unique_ids(self) -> "SalonConfig":
        """Ensure employee and service ids are unique within the salon."""
        for label, ids in (
            ("employee", [employee.id for employee in self.employees]),
            ("service", [service.id for service in self.services]),
        ):
            seen: set[str] = set()
            for item_id in ids:
                if item_id in seen:
                    raise ValueError(f"Duplicate {label} id detected in salon {self.id}: {item_id}")
                seen.add(item_id)
        return self

    def active_employees(self) -> List[EmployeeConfig]:
        return [employee for employee in self.employees if employee.active]


class AppConfig(BaseModel):
    """Application configuration."""
    timezone: str = "Africa/Kigali"
    booking: BookingRulesConfig = Field(default_factory=BookingRulesConfig)
    salons: List[SalonConfig] = Field(default_factory=list)

    @field_validator("timezone")
    @classmethod
    def validate_timezone(cls, value: str) -> str:
        """Ensure the timezone is a known IANA name."""
        try:
            pendulum.timezone(value)
        except Exception as exc:
            raise ValueError(f"Unknown timezone: {value}") from exc
        return value

    @field_validator("salons")
    @classmethod
    def validate_salons(cls, value: List[SalonConfig]) -> List[SalonConfig]:
        """Ensure salon ids are unique and employees belong to one salon only."""
        seen_salons: set[str] = set()
        seen_employees: set[str] = set()
        for salon in value:
            if salon.id in seen_salons:
                raise ValueError(f"Duplicate salon id detected: {salon.id}")
            seen_salons.add(salon.id)
            for employee in salon.employees:
                if employee.id in seen_employees:
                    raise ValueError(f"Employee {employee.id} is listed in more than one salon")
                seen_employees.add(employee.id)
        return value

    @classmethod
    def load_from_yaml(cls, config_path: Path) -> "AppConfig":
        """
        Load configuration from YAML file.

        Args:
            config_path: Path to the YAML config file

        Returns:
            AppConfig instance

        Raises:
            FileNotFoundError: If config file doesn't exist
            ValueError: If config is invalid
        """
        if not config_path.exists():
            raise FileNotFoundError(
                f"Config file not found: {config_path}\n"
                f"Please create a config.yaml file. See config.example.yaml for reference."
            )

        try:
            with open(config_path, "r", encoding="utf-8") as f:
                data = yaml.safe_load(f) or {}
        except yaml.YAMLError as exc:
            raise ValueError(f"Invalid YAML in {config_path}: {exc}") from exc

        if not isinstance(data, dict):
            raise ValueError("Config file must contain a mapping at the root level.")

        return cls(**data)

    def find_salon(self, salon_id: str) -> SalonConfig | None:
        for salon in self.salons:
            if salon.id == salon_id:
                return salon
        return None

    def find_employee(self, employee_id: str) -> EmployeeConfig | None:
        for salon in self.salons:
            for employee in salon.employees:
                if employee.id == employee_id:
                    return employee
        return None

    def find_service(self, service_id: str) -> ServiceConfig | None:
        for salon in self.salons:
            for service in salon.services:
                if service.id == service_id:
                    return service
        return None

    def resolve_employee(self, salon_id: str, identifier: str) -> str:
        """
        Resolve an employee identifier (id or name) within a salon to an id.

        Raises:
            ValueError: If identifier cannot be resolved
        """
        salon = self.find_salon(salon_id)
        if salon is None:
            raise ValueError(f"Unknown salon: '{salon_id}'")

        for employee in salon.employees:
            if employee.id == identifier or employee.name.lower() == identifier.lower():
                return employee.id

        raise ValueError(
            f"Unknown employee '{identifier}' in salon '{salon_id}'. "
            "Use an employee id or a configured name."
        )


def get_default_config_path() -> Path:
    """Get the default configuration file path."""
    # Look for config.yaml in current directory
    current_dir = Path.cwd()
    config_path = current_dir / "config.yaml"

    if not config_path.exists():
        # Try in the project root (parent of the package)
        project_root = Path(__file__).parent.parent
        config_path = project_root / "config.yaml"

    return config_path
