"""
Shared exception types for workspace_factory.
Stable surface; extend only.
"""

from __future__ import annotations


class WorkspaceFactoryError(Exception):
    """Base exception for workspace_factory; catch this for any package-raised error."""

    pass


class ConfigurationError(WorkspaceFactoryError):
    """A settings value could not be parsed or is out of range."""


class SchemaInitializationError(WorkspaceFactoryError):
    """The relational database could not be brought to a ready state."""


class MigrationError(WorkspaceFactoryError):
    """Loading or executing a migration step failed; the marker is kept."""


__all__ = [
    "ConfigurationError",
    "MigrationError",
    "SchemaInitializationError",
    "WorkspaceFactoryError",
]
