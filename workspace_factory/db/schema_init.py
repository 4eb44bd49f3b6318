"""
Schema initialization: bring a relational database to a ready state before any handle is used.

    UNKNOWN -> NOT_EXISTS          -> create            -> READY
            -> EXISTS_COMPATIBLE                        -> READY
            -> EXISTS_INCOMPATIBLE -> recreate | migrate -> READY

Recreate drops all data and only happens with allow_destructive_recreate (development use).
After READY the ledger's highest version is published as settings.current_db_version.
"""

from __future__ import annotations

import logging
from enum import Enum
from typing import Optional

from sqlalchemy.exc import SQLAlchemyError

from workspace_factory.config import LocalSettings
from workspace_factory.core.descriptor import redact_connection_string
from workspace_factory.core.errors import SchemaInitializationError
from workspace_factory.store.backend import RelationalDatabase

from . import ledger
from .migrations import MigrationRunner

logger = logging.getLogger(__name__)


class SchemaState(str, Enum):
    UNKNOWN = "unknown"
    NOT_EXISTS = "not_exists"
    EXISTS_COMPATIBLE = "exists_compatible"
    EXISTS_INCOMPATIBLE = "exists_incompatible"
    READY = "ready"


class SchemaInitializer:
    """One initializer per database; state records the last transition taken."""

    def __init__(
        self,
        settings: LocalSettings,
        migration_runner: Optional[MigrationRunner] = None,
        *,
        allow_destructive_recreate: Optional[bool] = None,
    ) -> None:
        self.settings = settings
        self.migration_runner = migration_runner or MigrationRunner.from_settings(settings)
        if allow_destructive_recreate is None:
            allow_destructive_recreate = settings.allow_destructive_recreate
        self.allow_destructive_recreate = allow_destructive_recreate
        self.state = SchemaState.UNKNOWN

    def probe(self, database: RelationalDatabase) -> SchemaState:
        if not database.exists():
            return SchemaState.NOT_EXISTS
        if database.is_compatible():
            return SchemaState.EXISTS_COMPATIBLE
        return SchemaState.EXISTS_INCOMPATIBLE

    def initialize(self, database: RelationalDatabase) -> int:
        """Run the state machine; return and publish the current schema version."""
        self.state = self.probe(database)
        target = redact_connection_string(database.connection_string)
        logger.info("Database %s: %s", target, self.state.value)

        if self.state is SchemaState.NOT_EXISTS:
            self._create(database)
        elif self.state is SchemaState.EXISTS_INCOMPATIBLE:
            if self.allow_destructive_recreate:
                logger.warning(
                    "Schema of %s does not match the model; dropping and recreating it (all data is lost)",
                    target,
                )
                database.delete()
                self._create(database)
            else:
                self.migration_runner.run(database.connection_string, database.flavor)

        self.state = SchemaState.READY
        try:
            version = ledger.max_version(database.engine)
        except SQLAlchemyError as e:
            raise SchemaInitializationError(f"Could not read schema version from {target}: {e}") from e
        self.settings.current_db_version = version
        logger.info("Schema ready at version %d (expected %d)", version, self.settings.db_version)
        return version

    def _create(self, database: RelationalDatabase) -> None:
        database.create()
        try:
            with database.engine.begin() as conn:
                ledger.create_ledger(conn)
                ledger.populate_ledger(conn, self.settings.db_version)
        except SQLAlchemyError as e:
            raise SchemaInitializationError(f"Could not write the version ledger: {e}") from e
        self.settings.current_db_version = self.settings.db_version
