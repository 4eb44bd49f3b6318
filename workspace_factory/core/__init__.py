"""
Core: descriptor resolution and shared exceptions.
No imports from store, db, or cli.
"""

from __future__ import annotations

from .descriptor import (
    BackendKind,
    ConnectionDescriptor,
    EngineFlavor,
    engine_flavor,
    normalize_server_connection_string,
    parse_connection_string,
    redact_connection_string,
    resolve_descriptor,
)
from .errors import ConfigurationError, MigrationError, SchemaInitializationError, WorkspaceFactoryError

__all__ = [
    "BackendKind",
    "ConfigurationError",
    "ConnectionDescriptor",
    "EngineFlavor",
    "MigrationError",
    "SchemaInitializationError",
    "WorkspaceFactoryError",
    "engine_flavor",
    "normalize_server_connection_string",
    "parse_connection_string",
    "redact_connection_string",
    "resolve_descriptor",
]
