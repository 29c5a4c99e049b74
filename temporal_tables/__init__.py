"""
temporal_tables - System-versioned tables for PostgreSQL.

Every versioned table carries a validity period (tstzrange) and has a
history table next to it. Writes to the versioned table archive the
previous row image into the history table with a closed period, so the
table's state at any past instant can be reconstructed.

Architecture:
    ┌──────────────┐  trigger args   ┌──────────────────────┐
    │  Versioned   │────────────────▶│ VersioningTrigger    │ dynamic
    │  table       │                 │ (catalog per row)    │
    └──────┬───────┘                 └──────────┬───────────┘
           │ ALTER TABLE                        │ same protocol
           ▼                                    ▼
    ┌──────────────┐   lookup   ┌──────────┐  ┌──────────────────────┐
    │ SchemaChange │──────────▶│ Config   │  │ Static generator     │
    │ Listener     │           │ store    │  │ (PL/pgSQL + compiled │
    └──────┬───────┘           └──────────┘  │  procedure)          │
           │ regenerate                      └──────────┬───────────┘
           └───────────────────────────────────────────▶│ install
                                                        ▼
                                                ┌──────────────┐
                                                │ History table│
                                                └──────────────┘

Invariants:
    - Per row, period lower bounds strictly increase over time
    - Every UPDATE/DELETE archives exactly one closed history row, except
      for unchanged-value updates and rows already versioned in the same
      transaction
    - The dynamic and the static engine implement the same protocol

How to change safely:
    - Behavioral changes go to versioning.engine first and are mirrored in
      codegen.generator; both are exercised by the same integration tests
    - Error classes and their SQLSTATE codes are part of the public API

Version: see _version.py.
"""

from ._version import __version__
from .catalog import ColumnInfo, SchemaCatalog, TableRef
from .clock import Clock, SystemClock, SystemTime, set_session_system_time
from .codegen import (
    GeneratedTrigger,
    build_static_versioning_trigger,
    generate_static_versioning_trigger,
    render_versioning_trigger,
)
from .errors import (
    ConfigurationNotFoundError,
    DataInvariantError,
    DatatypeMismatchError,
    FeatureLimitationError,
    InvalidParameterError,
    InvalidPeriodError,
    InvalidSystemTimeError,
    MisconfigurationError,
    NullValueError,
    SchemaMismatchError,
    TemporalTablesError,
    TriggerProtocolError,
    UndefinedColumnError,
    UndefinedTableError,
    UnsupportedComparisonError,
    UpdateConflictError,
)
from .events import EventBus, SchemaAltered
from .listener import SchemaChangeListener, watch_engine
from .metadata import VersioningConfig, VersioningConfigStore
from .storage import InMemoryDatabase, PostgresInstaller
from .versioning import (
    CompiledVersioningTrigger,
    Period,
    TriggerEvent,
    VersioningOptions,
    VersioningTrigger,
    versioning,
)

__all__ = [
    "__version__",
    # Engines
    "VersioningTrigger",
    "CompiledVersioningTrigger",
    "versioning",
    "VersioningOptions",
    "TriggerEvent",
    "Period",
    # Static generation
    "GeneratedTrigger",
    "build_static_versioning_trigger",
    "generate_static_versioning_trigger",
    "render_versioning_trigger",
    # Schema changes
    "EventBus",
    "SchemaAltered",
    "SchemaChangeListener",
    "watch_engine",
    "VersioningConfig",
    "VersioningConfigStore",
    # Clock
    "Clock",
    "SystemClock",
    "SystemTime",
    "set_session_system_time",
    # Backends and catalog
    "InMemoryDatabase",
    "PostgresInstaller",
    "SchemaCatalog",
    "TableRef",
    "ColumnInfo",
    # Errors
    "TemporalTablesError",
    "MisconfigurationError",
    "TriggerProtocolError",
    "InvalidParameterError",
    "SchemaMismatchError",
    "UndefinedTableError",
    "UndefinedColumnError",
    "DatatypeMismatchError",
    "DataInvariantError",
    "NullValueError",
    "InvalidPeriodError",
    "UpdateConflictError",
    "FeatureLimitationError",
    "UnsupportedComparisonError",
    "InvalidSystemTimeError",
    "ConfigurationNotFoundError",
]
