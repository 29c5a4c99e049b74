"""
Row-versioning protocol.

Provides:
- VersioningTrigger: dynamic per-row trigger procedure
- CompiledVersioningTrigger: the same protocol with a fixed plan
- VersioningOptions: canonical option set and trigger-argument parsing
- Period: half-open validity interval
- TriggerEvent: trigger invocation context
"""

from .checks import HistoryTarget
from .engine import (
    CompiledVersioningTrigger,
    VersioningPlan,
    VersioningProcedure,
    VersioningTrigger,
    versioning,
)
from .options import VersioningOptions, parse_bool
from .period import Period
from .statements import ClosePeriod, HistoryRowExists, InsertHistoryRow, Param
from .trigger import TriggerEvent, TriggerLevel, TriggerOperation, TriggerTiming

__all__ = [
    "HistoryTarget",
    "CompiledVersioningTrigger",
    "VersioningPlan",
    "VersioningProcedure",
    "VersioningTrigger",
    "versioning",
    "VersioningOptions",
    "parse_bool",
    "Period",
    "ClosePeriod",
    "HistoryRowExists",
    "InsertHistoryRow",
    "Param",
    "TriggerEvent",
    "TriggerLevel",
    "TriggerOperation",
    "TriggerTiming",
]
