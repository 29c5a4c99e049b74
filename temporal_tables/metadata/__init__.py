"""
Persistent versioning configuration.

Provides:
- VersioningConfig: one table's stored configuration
- VersioningConfigStore: SQLAlchemy-backed store
- versioning_tables_metadata: the store's table definition
"""

from .store import (
    DEFAULT_TABLE_NAME,
    VersioningConfig,
    VersioningConfigStore,
    versioning_tables_metadata,
)

__all__ = [
    "DEFAULT_TABLE_NAME",
    "VersioningConfig",
    "VersioningConfigStore",
    "versioning_tables_metadata",
]
