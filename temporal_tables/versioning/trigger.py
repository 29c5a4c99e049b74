"""
Trigger invocation context.

A TriggerEvent carries what a database hands a row trigger: timing, level,
operation, the target table, the trigger's text arguments, the OLD/NEW row
images, and enough transaction state to detect same-transaction writes.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import TYPE_CHECKING, Any, Dict, Mapping, Optional, Tuple

from ..catalog.base import TableRef

if TYPE_CHECKING:
    from ..storage.base import VersioningBackend

Row = Dict[str, Any]


class TriggerTiming(str, Enum):
    BEFORE = "BEFORE"
    AFTER = "AFTER"
    INSTEAD_OF = "INSTEAD OF"


class TriggerLevel(str, Enum):
    ROW = "ROW"
    STATEMENT = "STATEMENT"


class TriggerOperation(str, Enum):
    INSERT = "INSERT"
    UPDATE = "UPDATE"
    DELETE = "DELETE"
    TRUNCATE = "TRUNCATE"


ROW_OPERATIONS = frozenset(
    {TriggerOperation.INSERT, TriggerOperation.UPDATE, TriggerOperation.DELETE}
)


@dataclass(frozen=True)
class TriggerEvent:
    """One trigger invocation.

    Attributes:
        timing: BEFORE / AFTER / INSTEAD OF
        level: ROW / STATEMENT
        operation: INSERT / UPDATE / DELETE / TRUNCATE
        table: Table the trigger fired on
        backend: Database the procedure reads and writes through
        transaction_timestamp: Start time of the writing transaction
        args: Text arguments given at CREATE TRIGGER time
        old: Row image before the write (UPDATE, DELETE)
        new: Proposed row image (INSERT, UPDATE)
        old_xmin: Id of the transaction that wrote ``old``
        trigger_name: Name of the firing trigger
    """
    timing: TriggerTiming
    level: TriggerLevel
    operation: TriggerOperation
    table: TableRef
    backend: "VersioningBackend"
    transaction_timestamp: datetime
    args: Tuple[str, ...] = ()
    old: Optional[Mapping[str, Any]] = None
    new: Optional[Mapping[str, Any]] = None
    old_xmin: Optional[int] = None
    trigger_name: str = ""

    @property
    def is_insert(self) -> bool:
        return self.operation is TriggerOperation.INSERT

    @property
    def is_update(self) -> bool:
        return self.operation is TriggerOperation.UPDATE

    @property
    def is_delete(self) -> bool:
        return self.operation is TriggerOperation.DELETE
