"""
Backend protocols for running and installing versioning triggers.

Two roles:
- VersioningBackend: what a firing trigger needs from its database
  (catalog reads, the current transaction id, history statements)
- TriggerInstaller: what the static generator needs to install its output

Invariants:
    - A backend's catalog reflects the schema visible to the firing
      transaction
    - current_transaction_id() is comparable with TriggerEvent.old_xmin
    - install_generated_trigger() replaces any previous procedure and
      trigger of the same name as one step

How to change safely:
    - Protocol changes require updating all implementations
      (storage.memory, storage.postgres, versioning.plpython)
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any, Protocol, runtime_checkable

from ..catalog.base import SchemaCatalog

if TYPE_CHECKING:
    from ..codegen.generator import GeneratedTrigger
    from ..versioning.statements import HistoryStatement


@runtime_checkable
class VersioningBackend(Protocol):
    """Database access for a firing versioning trigger."""

    @property
    def catalog(self) -> SchemaCatalog:
        ...

    def current_transaction_id(self) -> int:
        """Id of the running transaction, truncated to 32 bits like xmin."""
        ...

    def execute(self, statement: HistoryStatement) -> Any:
        """Run a history statement.

        Returns:
            bool for HistoryRowExists, otherwise the affected row count
        """
        ...


@runtime_checkable
class TriggerInstaller(Protocol):
    """Target that generated triggers are installed into."""

    @property
    def catalog(self) -> SchemaCatalog:
        ...

    def install_generated_trigger(self, generated: GeneratedTrigger) -> None:
        ...
