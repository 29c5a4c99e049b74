"""
PostgreSQL trigger installer.

Installs generated versioning triggers into a live database through a
SQLAlchemy engine. The function definition, DROP TRIGGER and CREATE
TRIGGER run in one transaction, so concurrent writers either see the old
procedure or the new one.
"""

from __future__ import annotations

from typing import TYPE_CHECKING
import logging

from sqlalchemy.engine import Engine

from ..catalog.postgres import PostgresCatalog, SqlAlchemyRunner

if TYPE_CHECKING:
    from ..codegen.generator import GeneratedTrigger

logger = logging.getLogger(__name__)


class PostgresInstaller:
    """TriggerInstaller for a PostgreSQL database.

    Example:
        >>> installer = PostgresInstaller(create_engine(settings.database_url))
        >>> render_versioning_trigger(installer, "users", "users_history")
    """

    def __init__(self, engine: Engine) -> None:
        self.engine = engine
        self._catalog = PostgresCatalog(SqlAlchemyRunner(engine))

    @property
    def catalog(self) -> PostgresCatalog:
        return self._catalog

    def install_generated_trigger(self, generated: GeneratedTrigger) -> None:
        sql = generated.sql
        with self.engine.begin() as conn:
            # The body contains literal "%" (RAISE formats, modulo); keep the
            # driver from treating them as parameter markers
            conn.execution_options(no_parameters=True).exec_driver_sql(sql)
        logger.info(
            f"Installed {generated.function_name} on {generated.table}",
            extra={"table": str(generated.table), "function": str(generated.function_name)},
        )
