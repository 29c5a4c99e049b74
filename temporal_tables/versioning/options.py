"""
Versioning options and trigger-argument parsing.

One canonical option set drives both engines. The dynamic trigger receives
it as positional text arguments; the static generator and the
configuration store use the named form.

Positional order:
    sys_period, history_table, mitigate_update_conflicts,
    ignore_unchanged_values, include_current_version_in_history,
    enable_migration_mode, increment_version, version_column_name
"""

from __future__ import annotations

from dataclasses import asdict, dataclass, fields
from typing import Any, Dict, Sequence, Tuple

from ..errors import InvalidParameterError

MIN_TRIGGER_ARGS = 2
MAX_TRIGGER_ARGS = 8

DEFAULT_SYS_PERIOD = "sys_period"
DEFAULT_VERSION_COLUMN = "version"

_TRUE = {"true", "t", "yes", "y", "on", "1"}
_FALSE = {"false", "f", "no", "n", "off", "0"}


def parse_bool(value: Any, name: str) -> bool:
    """Interpret a PostgreSQL boolean literal.

    Raises:
        InvalidParameterError: If the value is not a boolean literal
    """
    if isinstance(value, bool):
        return value
    text = str(value).strip().lower()
    if text in _TRUE:
        return True
    if text in _FALSE:
        return False
    raise InvalidParameterError(
        f'invalid input syntax for type boolean: "{value}"',
        details={"parameter": name, "value": value},
    )


@dataclass(frozen=True)
class VersioningOptions:
    """Full option set of the versioning protocol.

    Attributes:
        sys_period: Name of the validity-interval column
        history_table: History relation, optionally schema-qualified
        mitigate_update_conflicts: Nudge colliding timestamps forward by 1µs
        ignore_unchanged_values: Skip UPDATEs that change no compared column
        include_current_version_in_history: Keep an open history row for the
            current version too
        enable_migration_mode: Backfill a missing open history row on first
            write (only meaningful with include_current_version_in_history)
        increment_version: Maintain an integer version counter
        version_column_name: Name of the version counter column
    """
    sys_period: str = DEFAULT_SYS_PERIOD
    history_table: str = ""
    mitigate_update_conflicts: bool = False
    ignore_unchanged_values: bool = False
    include_current_version_in_history: bool = False
    enable_migration_mode: bool = False
    increment_version: bool = False
    version_column_name: str = DEFAULT_VERSION_COLUMN

    @classmethod
    def from_trigger_args(
        cls,
        args: Sequence[str],
        function_name: str = "versioning",
    ) -> VersioningOptions:
        """Build options from positional trigger arguments.

        Raises:
            InvalidParameterError: On a wrong argument count or a
                non-boolean flag
        """
        count = len(args)
        if count < MIN_TRIGGER_ARGS or count > MAX_TRIGGER_ARGS:
            raise InvalidParameterError(
                f'wrong number of parameters for function "{function_name}"',
                details={"expected_min": MIN_TRIGGER_ARGS, "expected_max": MAX_TRIGGER_ARGS, "actual": count},
                hint=f"expected {MIN_TRIGGER_ARGS} to {MAX_TRIGGER_ARGS} parameters but got {count}",
            )
        names = [f.name for f in fields(cls)]
        values: Dict[str, Any] = {}
        for name, raw in zip(names, args):
            default = getattr(cls, name)
            values[name] = parse_bool(raw, name) if isinstance(default, bool) else str(raw)
        return cls(**values)

    def to_trigger_args(self) -> Tuple[str, ...]:
        """Full positional argument list for the dynamic trigger."""
        result = []
        for name, value in asdict(self).items():
            result.append(("true" if value else "false") if isinstance(value, bool) else value)
        return tuple(result)

    @property
    def migrates(self) -> bool:
        return self.enable_migration_mode and self.include_current_version_in_history

    def describe(self) -> Dict[str, Any]:
        return asdict(self)
