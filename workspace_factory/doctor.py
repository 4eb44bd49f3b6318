"""
Doctor: preflight checks for settings, backend selection, migration marker, and database state.
Run: python -m workspace_factory doctor
Exit: 0 all OK, 2 settings/configuration, 3 database.
Read-only: never creates, migrates, or deletes anything.
"""
from __future__ import annotations

import sys
from typing import Optional, Tuple

from sqlalchemy import MetaData

from .config import LocalSettings, load_model, load_settings
from .core.descriptor import BackendKind, ConnectionDescriptor, redact_connection_string, resolve_descriptor
from .core.errors import ConfigurationError
from .store.sql_backend import sql_database_for

EXIT_OK = 0
EXIT_CONFIG = 2
EXIT_DB = 3


def check_settings(**overrides) -> Optional[Tuple[LocalSettings, MetaData]]:
    """Return settings and the expected model, or None after printing the configuration error."""
    try:
        settings = load_settings(**overrides)
        model = load_model(settings.model)
    except ConfigurationError as e:
        print(f"[FAIL] settings  {e}")
        print("  Fix: check workspace.yaml and WORKSPACE_* environment variables")
        return None
    print(f"[OK] settings  db_version={settings.db_version} data_path={settings.data_path}")
    if settings.model:
        print(f"[OK] model  {settings.model} ({len(model.tables)} tables)")
    return settings, model


def check_descriptor(settings: LocalSettings) -> ConnectionDescriptor:
    descriptor = resolve_descriptor(settings.connection_string)
    shown = redact_connection_string(descriptor.normalized) or "(empty)"
    print(f"[OK] backend  {descriptor.kind.value}  {shown}")
    if descriptor.kind is BackendKind.FLAT_FILE and not descriptor.raw:
        print(f"  flat file: {settings.flat_file_name()}")
    return descriptor


def check_marker(settings: LocalSettings) -> None:
    """Informational: report whether migrations are pending."""
    if settings.marker_path.is_file():
        print(f"[OK] migration marker present  {settings.marker_path}")
        if not settings.migrations_path.is_dir():
            print(f"  Warning: migrations directory not found: {settings.migrations_path}")
    else:
        print("[OK] no migration marker")


def check_database(settings: LocalSettings, descriptor: ConnectionDescriptor, model: MetaData) -> bool:
    """For relational kinds: report existence and compatibility. True if no problem found."""
    if not descriptor.kind.is_relational:
        return True
    database = None
    try:
        database = sql_database_for(descriptor, settings, model)
        if not database.exists():
            print("[OK] database absent; it will be created on first use")
            return True
        if database.is_compatible():
            print("[OK] database exists and matches the model")
        else:
            print("[FAIL] database exists but does not match the model")
            if settings.allow_destructive_recreate:
                print("  allow_destructive_recreate is on: it will be DROPPED and recreated")
            else:
                print(f"  Fix: provide migrations and create {settings.marker_path}")
            return False
    except Exception as e:
        print(f"[FAIL] database error: {e}")
        return False
    finally:
        if database is not None:
            database.dispose()
    return True


def main(**overrides) -> int:
    checked = check_settings(**overrides)
    if checked is None:
        return EXIT_CONFIG
    settings, model = checked
    descriptor = check_descriptor(settings)
    check_marker(settings)
    if not check_database(settings, descriptor, model):
        return EXIT_DB
    return EXIT_OK


if __name__ == "__main__":
    sys.exit(main())
