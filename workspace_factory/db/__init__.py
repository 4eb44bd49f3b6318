"""
Database layer: version ledger, schema initialization, and marker-gated migrations.
"""

from __future__ import annotations

from .migrations import (
    MigrationContext,
    MigrationEngine,
    MigrationRunner,
    MigrationStep,
    ScriptMigrationEngine,
    load_migration_steps,
)
from .schema_init import SchemaInitializer, SchemaState

__all__ = [
    "MigrationContext",
    "MigrationEngine",
    "MigrationRunner",
    "MigrationStep",
    "SchemaInitializer",
    "SchemaState",
    "ScriptMigrationEngine",
    "load_migration_steps",
]
