"""Fake backends and helpers for factory, schema and migration tests (no live database server)."""

from .backends import (
    FailingMigrationEngine,
    FakeDocumentWorkspace,
    RecordingMigrationEngine,
    SqliteStandIn,
    make_settings,
    model_with,
    write_marker,
    write_model_module,
    write_step,
)

__all__ = [
    "FailingMigrationEngine",
    "FakeDocumentWorkspace",
    "RecordingMigrationEngine",
    "SqliteStandIn",
    "make_settings",
    "model_with",
    "write_marker",
    "write_model_module",
    "write_step",
]
