"""
Backends that run and install versioning triggers.

Provides:
- VersioningBackend / TriggerInstaller: Protocols
- InMemoryDatabase: in-memory backend for tests and local development
- PostgresInstaller: installs generated triggers through SQLAlchemy
"""

from .base import TriggerInstaller, VersioningBackend
from .memory import InMemoryDatabase, current_period
from .postgres import PostgresInstaller

__all__ = [
    "TriggerInstaller",
    "VersioningBackend",
    "InMemoryDatabase",
    "current_period",
    "PostgresInstaller",
]
