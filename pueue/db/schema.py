"""
Schema version management.

Brings the database to the latest Alembic revision before workers start.
Alembic's version table is the ledger of applied migrations.
"""

import logging
from pathlib import Path

from alembic import command
from alembic.config import Config
from alembic.runtime.migration import MigrationContext
from alembic.script import ScriptDirectory
from sqlalchemy.engine import Connection
from sqlalchemy.ext.asyncio import AsyncEngine

from pueue.constants import SCHEMA_VERSION_TABLE
from pueue.errors import SchemaError

logger = logging.getLogger(__name__)

MIGRATIONS_PATH = Path(__file__).resolve().parent.parent / "migrations"


class SchemaManager:
    """
    Runs and verifies schema migrations.

    Running against a schema that is not at the expected revision is
    unsafe, so every failure is raised as SchemaError and is meant to
    abort startup.
    """

    def __init__(self, engine: AsyncEngine, script_location: str | Path | None = None):
        """
        Args:
            engine: Engine for the database to migrate.
            script_location: Alembic script directory. Defaults to the
                migrations shipped with the package.
        """
        self._engine = engine
        self._config = Config()
        self._config.set_main_option(
            "script_location", str(script_location or MIGRATIONS_PATH)
        )

    def head_version(self) -> str | None:
        """Latest revision known to the script directory."""
        return ScriptDirectory.from_config(self._config).get_current_head()

    async def current_version(self) -> str | None:
        """Revision recorded in the database, or None if never migrated."""
        async with self._engine.connect() as connection:
            return await connection.run_sync(self._read_version)

    async def migrate(self) -> str | None:
        """
        Apply pending migrations up to head in a single transaction.

        Returns:
            The revision the database is at afterwards.
        """
        try:
            logger.info("Running schema migrations", extra={"head": self.head_version()})
            async with self._engine.begin() as connection:
                await connection.run_sync(self._upgrade)
        except Exception as e:
            raise SchemaError(f"Schema migration failed: {e}") from e

        version = await self.current_version()
        logger.info("Schema is up to date", extra={"version": version})
        return version

    async def ensure_latest(self, migrate: bool = True) -> None:
        """
        Make sure the database is at the head revision.

        Args:
            migrate: Apply pending migrations first. When False, only verify.

        Raises:
            SchemaError: If migrating fails or the recorded revision is not head.
        """
        if migrate:
            await self.migrate()

        try:
            current = await self.current_version()
        except Exception as e:
            raise SchemaError(f"Could not read schema version: {e}") from e

        try:
            head = self.head_version()
        except Exception as e:
            raise SchemaError(f"Could not read migration scripts: {e}") from e
        if current != head:
            raise SchemaError(
                f"Schema version mismatch: database is at {current}, expected {head}"
            )

    def _upgrade(self, connection: Connection) -> None:
        self._config.attributes["connection"] = connection
        try:
            command.upgrade(self._config, "head")
        finally:
            self._config.attributes.pop("connection", None)

    @staticmethod
    def _read_version(connection: Connection) -> str | None:
        context = MigrationContext.configure(
            connection,
            opts={"version_table": SCHEMA_VERSION_TABLE},
        )
        return context.get_current_revision()
