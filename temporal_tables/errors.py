"""
Error types for temporal_tables.

Every failure the versioning engines can raise is a distinct class so that
callers can tell a misconfigured trigger apart from corrupted data and from
a concurrent-writer conflict:

- MisconfigurationError: the trigger or its tables are set up wrong
    - TriggerProtocolError: wrong timing, level or operation
    - InvalidParameterError: wrong argument count or malformed argument
    - SchemaMismatchError: missing relation, missing column, wrong type
- DataInvariantError: a stored row violates a versioning invariant
- UpdateConflictError: validity intervals would stop being monotonic
- FeatureLimitationError: a documented limitation was hit
- InvalidSystemTimeError: a malformed clock override

Invariants:
    - All errors inherit from TemporalTablesError
    - ``code`` mirrors the PostgreSQL SQLSTATE the trigger would raise
    - Messages name the offending table, relation or column

How to change safely:
    - Never reuse a class for a different category of failure
    - Keep codes aligned with the generated PL/pgSQL (codegen.generator)
"""

from __future__ import annotations

from typing import Any, Dict, Optional


class TemporalTablesError(Exception):
    """Base exception for all temporal_tables errors.

    Attributes:
        message: Error message
        code: SQLSTATE-style error code for programmatic handling
        details: Additional error context
        hint: Optional remediation hint
    """

    code = "XX000"

    def __init__(
        self,
        message: str,
        code: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
        hint: Optional[str] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.code = code or type(self).code
        self.details = details or {}
        self.hint = hint

    def __str__(self) -> str:
        if self.hint:
            return f"{self.message} (hint: {self.hint})"
        return self.message


class MisconfigurationError(TemporalTablesError):
    """The trigger, its arguments or its tables are configured wrong."""
    pass


class TriggerProtocolError(MisconfigurationError):
    """Trigger fired with the wrong timing, level or operation."""

    code = "39P01"


class InvalidParameterError(MisconfigurationError):
    """Wrong number of trigger arguments, or an unparseable argument."""

    code = "22023"


class SchemaMismatchError(MisconfigurationError):
    """Table structure does not satisfy the versioning requirements."""
    pass


class UndefinedTableError(SchemaMismatchError):
    """Relation does not exist."""

    code = "42P01"

    def __init__(self, relation: str, message: Optional[str] = None) -> None:
        super().__init__(
            message or f'relation "{relation}" does not exist',
            details={"relation": relation},
        )
        self.relation = relation


class UndefinedColumnError(SchemaMismatchError):
    """Column does not exist on a relation."""

    code = "42703"

    def __init__(
        self,
        message: str,
        column: str,
        relation: str,
        hint: Optional[str] = None,
    ) -> None:
        super().__init__(
            message,
            details={"column": column, "relation": relation},
            hint=hint,
        )
        self.column = column
        self.relation = relation


class DatatypeMismatchError(SchemaMismatchError):
    """Column exists but has the wrong data type."""

    code = "42804"

    def __init__(
        self,
        message: str,
        column: str,
        relation: str,
        type_name: Optional[str] = None,
    ) -> None:
        super().__init__(
            message,
            details={"column": column, "relation": relation, "type": type_name},
        )
        self.column = column
        self.relation = relation
        self.type_name = type_name


class DataInvariantError(TemporalTablesError):
    """A stored row violates a versioning invariant.

    Raised when:
    - The validity interval of an existing row is NULL
    - The validity interval is empty or closed on the high side
    - The version counter of an existing row is NULL

    These indicate a previously corrupted or manually edited row.
    """

    code = "22000"


class NullValueError(DataInvariantError):
    """A column the engine relies on is NULL."""

    code = "22004"


class InvalidPeriodError(DataInvariantError):
    """A validity interval is empty or not open-ended."""
    pass


class UpdateConflictError(TemporalTablesError):
    """The new effective time is not after the row's current lower bound.

    Usually two transactions raced on the same row, or the clock moved
    backwards. Enable conflict mitigation to nudge the timestamp forward
    instead.
    """

    code = "22000"


class FeatureLimitationError(TemporalTablesError):
    """A documented limitation of the versioning protocol was hit."""
    pass


class UnsupportedComparisonError(FeatureLimitationError):
    """Change detection over a column type without an equality operator."""

    code = "42883"

    def __init__(self, column: str, type_name: str, relation: str) -> None:
        super().__init__(
            f'could not identify an equality operator for type {type_name} '
            f'(column "{column}" of relation "{relation}")',
            details={"column": column, "type": type_name, "relation": relation},
            hint="disable ignore_unchanged_values or change the column type",
        )
        self.column = column
        self.type_name = type_name


class InvalidSystemTimeError(TemporalTablesError):
    """Clock override is not in YYYY-MM-DD HH:MM:SS[.ffffff] format."""

    code = "22007"


class ConfigurationNotFoundError(TemporalTablesError):
    """No versioning configuration is stored for a table."""

    code = "42704"
