"""
Schema-change listener.

Keeps generated versioning triggers in step with table structure. When a
SchemaAltered event arrives for a configured table, or for the history
table of one, the trigger is generated again from the stored
configuration and installed in place of the old one.

States:
    UNREGISTERED -> REGISTERED -> FIRING -> IDLE -> FIRING ...
    unregister() returns to UNREGISTERED from any state

Invariants:
    - Tables without a stored configuration are ignored
    - Altering a shared history table regenerates every table archiving
      into it
    - A failed regeneration leaves the previously installed procedure in
      place and propagates the error to the publisher
    - watch_engine() publishes only after the altering transaction
      committed and its connection went back to the pool; a rollback
      discards the pending events

How to change safely:
    - Keep handle() free of side effects other than the install, it may run
      once per ALTER TABLE statement
    - Events published from inside handle() (an installer that alters
      tables) are delivered synchronously; avoid installers that do so
"""

from __future__ import annotations

from enum import Enum
from typing import Callable, List, Optional, Set
import logging
import re

from sqlalchemy import event
from sqlalchemy.engine import Engine

from .catalog.base import TableRef, quote_ident, resolve_table, split_table_name
from .codegen.generator import GeneratedTrigger, render_versioning_trigger
from .events import EventBus, SchemaAltered
from .metadata.store import VersioningConfig, VersioningConfigStore
from .storage.base import TriggerInstaller

logger = logging.getLogger(__name__)

ALTER_TABLE_RE = re.compile(
    r"^\s*ALTER\s+TABLE\s+(?:IF\s+EXISTS\s+)?(?:ONLY\s+)?"
    r"((?:\"(?:[^\"]|\"\")+\"|[\w$]+)(?:\s*\.\s*(?:\"(?:[^\"]|\"\")+\"|[\w$]+))?)",
    re.IGNORECASE,
)

_PENDING_KEY = "temporal_tables_pending_alters"
_COMMITTED_KEY = "temporal_tables_committed_alters"


class ListenerState(Enum):
    UNREGISTERED = "unregistered"
    REGISTERED = "registered"
    FIRING = "firing"
    IDLE = "idle"


class SchemaChangeListener:
    """Regenerates versioning triggers after ALTER TABLE.

    Example:
        >>> listener = SchemaChangeListener(store, PostgresInstaller(engine))
        >>> listener.register(bus)
        >>> bus.publish(SchemaAltered(TableRef("public", "users")))
    """

    def __init__(self, store: VersioningConfigStore, installer: TriggerInstaller) -> None:
        self.store = store
        self.installer = installer
        self.state = ListenerState.UNREGISTERED
        self._unsubscribe: Optional[Callable[[], None]] = None

    def register(self, bus: EventBus) -> None:
        """Subscribe to SchemaAltered on ``bus``. Re-registering moves the subscription."""
        self.unregister()
        self._unsubscribe = bus.subscribe(SchemaAltered, self.handle)
        self.state = ListenerState.REGISTERED
        logger.info("Schema change listener registered")

    def unregister(self) -> None:
        if self._unsubscribe is not None:
            self._unsubscribe()
            self._unsubscribe = None
            logger.info("Schema change listener unregistered")
        self.state = ListenerState.UNREGISTERED

    def handle(self, altered: SchemaAltered) -> List[GeneratedTrigger]:
        """React to one structural change.

        The altered table's own configuration is regenerated first, then
        every configuration whose history table it is, in table order.

        Returns:
            The newly installed triggers, empty when the table is not
            versioned

        Raises:
            TemporalTablesError: If a stored configuration no longer
                matches the schema; its previous trigger stays installed
        """
        self.state = ListenerState.FIRING
        try:
            table = resolve_table(self.installer.catalog, altered.table)
            configs = self._affected(table)
            if not configs:
                logger.debug(f"Ignoring {altered.command_tag} on unversioned {table}")
                return []
            generated = []
            for config in configs:
                logger.info(
                    f"{altered.command_tag} on {table}, regenerating trigger of {config.table}",
                    extra={"table": str(table), "versioned_table": str(config.table)},
                )
                generated.append(self._render(config))
            return generated
        finally:
            self.state = ListenerState.IDLE if self._unsubscribe is not None else ListenerState.UNREGISTERED

    def rerender_all(self) -> List[GeneratedTrigger]:
        """Regenerate the trigger of every stored configuration."""
        return [self._render(config) for config in self.store.list()]

    def _affected(self, table: TableRef) -> List[VersioningConfig]:
        own = self.store.get(table)
        configs = [own] if own is not None else []
        configs.extend(c for c in self.store.find_by_history(table) if c.table != table)
        return configs

    def _render(self, config: VersioningConfig) -> GeneratedTrigger:
        try:
            return render_versioning_trigger(self.installer, **config.generator_kwargs())
        except Exception:
            logger.error(
                f"Failed to regenerate versioning trigger of {config.table}",
                exc_info=True,
                extra={"table": str(config.table), "history": str(config.history)},
            )
            raise


def altered_table(statement: str) -> Optional[str]:
    """Table named by an ALTER TABLE statement, as written, or None.

    Example:
        >>> altered_table('ALTER TABLE ONLY public."Users" ADD COLUMN x int')
        'public."Users"'
    """
    match = ALTER_TABLE_RE.match(statement)
    if match is None:
        return None
    schema, name = split_table_name(match.group(1))
    return TableRef(schema, name).qualified if schema else quote_ident(name)


def watch_engine(engine: Engine, bus: EventBus) -> Callable[[], None]:
    """Publish SchemaAltered for every ALTER TABLE committed through ``engine``.

    Returns:
        A callable that removes the engine hooks
    """

    def after_cursor_execute(conn, cursor, statement, parameters, context, executemany):
        table = altered_table(statement)
        if table is not None:
            conn.info.setdefault(_PENDING_KEY, set()).add(table)

    def on_commit(conn):
        # Fires before the DBAPI commit; publishing waits for checkin
        pending: Set[str] = conn.info.pop(_PENDING_KEY, set())
        conn.info.setdefault(_COMMITTED_KEY, set()).update(pending)

    def on_rollback(conn):
        dropped = conn.info.pop(_PENDING_KEY, None)
        if dropped:
            logger.debug(f"Discarding {len(dropped)} schema change(s) after rollback")

    def on_checkin(dbapi_connection, connection_record):
        if connection_record is None:
            return
        committed: Set[str] = connection_record.info.pop(_COMMITTED_KEY, set())
        connection_record.info.pop(_PENDING_KEY, None)
        for table in sorted(committed):
            bus.publish(SchemaAltered(table))

    hooks = (
        ("after_cursor_execute", after_cursor_execute),
        ("commit", on_commit),
        ("rollback", on_rollback),
        ("checkin", on_checkin),
    )
    for name, hook in hooks:
        event.listen(engine, name, hook)

    def remove() -> None:
        for name, hook in hooks:
            if event.contains(engine, name, hook):
                event.remove(engine, name, hook)

    return remove
