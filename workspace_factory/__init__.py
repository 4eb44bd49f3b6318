"""
Top-level public API surface.
Canonical entrypoint: build one WorkspaceFactory at startup and pass it by reference.
Does not import cli.
"""

from __future__ import annotations

from ._version import __version__
from .config import LocalSettings, load_settings
from .core import BackendKind, ConnectionDescriptor, WorkspaceFactoryError, resolve_descriptor
from .factory import BackendConstructors, WorkspaceFactory, get_workspace_factory, set_workspace_factory
from .store import ReadOnlyWorkspace, Workspace

# Do not add exports without updating __all__.
__all__ = [
    "__version__",
    "BackendConstructors",
    "BackendKind",
    "ConnectionDescriptor",
    "LocalSettings",
    "ReadOnlyWorkspace",
    "Workspace",
    "WorkspaceFactory",
    "WorkspaceFactoryError",
    "get_workspace_factory",
    "load_settings",
    "resolve_descriptor",
    "set_workspace_factory",
]
