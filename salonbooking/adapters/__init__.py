"""
Adapters layer - Appointment stores and configuration-backed directories.
"""

from .config_directory import ConfigDirectory
from .memory_store import InMemoryAppointmentStore
from .sql_store import SqlAppointmentStore, create_store_engine

__all__ = ["ConfigDirectory", "InMemoryAppointmentStore", "SqlAppointmentStore", "create_store_engine"]
