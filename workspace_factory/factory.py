"""
Workspace factory: select the storage backend once, then hand out workspaces.

Flat-file and document-store backends are built once and shared for the factory's lifetime.
Relational backends get their schema initialized (and migrated) during the one-time
initialization; every create() after that returns a fresh handle.
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, Optional

from sqlalchemy import MetaData

from workspace_factory.config import LocalSettings, load_model, load_settings
from workspace_factory.core.descriptor import (
    BackendKind,
    ConnectionDescriptor,
    FLAT_FILE_EXTENSION,
    redact_connection_string,
    resolve_descriptor,
)
from workspace_factory.db.migrations import MigrationEngine, MigrationRunner, ScriptMigrationEngine
from workspace_factory.db.schema_init import SchemaInitializer
from workspace_factory.store.backend import ReadOnlyWorkspace, RelationalDatabase, Workspace
from workspace_factory.store.mongo_backend import MongoWorkspace
from workspace_factory.store.sql_backend import sql_database_for
from workspace_factory.store.text_backend import TextFileWorkspace

logger = logging.getLogger(__name__)


@dataclass
class BackendConstructors:
    """Collaborator constructors; replace any of them to inject fakes."""

    flat_file: Callable[[Path], Workspace] = TextFileWorkspace
    document_store: Callable[[str], Workspace] = MongoWorkspace
    relational: Callable[[ConnectionDescriptor, LocalSettings, MetaData], RelationalDatabase] = sql_database_for
    migration_engine: MigrationEngine = field(default_factory=ScriptMigrationEngine)


class WorkspaceFactory:
    """
    Process-wide backend selection. Build one at startup and pass it to consumers.

    Usage:
        factory = WorkspaceFactory(load_settings(), model=app_metadata)
        with factory.create() as ws:
            ws.add("tickets", {"id": 1})
            ws.commit_changes()

    Without model=, the schema named by settings.model ("package.module:metadata") is imported.
    """

    def __init__(
        self,
        settings: LocalSettings,
        *,
        model: Optional[MetaData] = None,
        backends: Optional[BackendConstructors] = None,
    ) -> None:
        self.settings = settings
        self.model = model if model is not None else load_model(settings.model)
        self.backends = backends or BackendConstructors()
        self._lock = threading.Lock()
        self._initialized = False
        self._init_error: Optional[BaseException] = None
        self._descriptor: Optional[ConnectionDescriptor] = None
        self._flat_file_workspace: Optional[Workspace] = None
        self._document_workspace: Optional[Workspace] = None
        self._database: Optional[RelationalDatabase] = None
        self.schema_initializer: Optional[SchemaInitializer] = None

    @property
    def descriptor(self) -> ConnectionDescriptor:
        self._ensure_initialized()
        assert self._descriptor is not None
        return self._descriptor

    @property
    def database(self) -> Optional[RelationalDatabase]:
        """The relational collaborator, or None for flat-file/document-store selections."""
        self._ensure_initialized()
        return self._database

    @property
    def current_db_version(self) -> int:
        return self.settings.current_db_version

    def _ensure_initialized(self) -> None:
        if self._initialized:
            return
        with self._lock:
            if self._initialized:
                return
            if self._init_error is not None:
                raise self._init_error
            try:
                self._initialize()
            except BaseException as e:
                self._init_error = e
                raise
            self._initialized = True

    def _initialize(self) -> None:
        descriptor = resolve_descriptor(self.settings.connection_string)
        logger.info(
            "Selected %s backend for %r",
            descriptor.kind.value,
            redact_connection_string(descriptor.raw),
        )
        if descriptor.kind is BackendKind.FLAT_FILE:
            self._flat_file_workspace = self._build_flat_file(descriptor)
        elif descriptor.kind is BackendKind.DOCUMENT_STORE:
            self._document_workspace = self.backends.document_store(descriptor.normalized)
        elif descriptor.kind in (BackendKind.RELATIONAL_FILE, BackendKind.RELATIONAL_SERVER):
            database = self.backends.relational(descriptor, self.settings, self.model)
            runner = MigrationRunner.from_settings(self.settings, self.backends.migration_engine)
            self.schema_initializer = SchemaInitializer(self.settings, runner)
            self.schema_initializer.initialize(database)
            self._database = database
        else:
            raise AssertionError(f"unhandled backend kind {descriptor.kind}")
        self._descriptor = descriptor

    def _build_flat_file(self, descriptor: ConnectionDescriptor) -> Workspace:
        if descriptor.raw.endswith(FLAT_FILE_EXTENSION):
            path = Path(descriptor.raw)
        else:
            path = self.settings.flat_file_name()
        logger.info("Flat-file data at %s", path)
        return self.backends.flat_file(path)

    def create(self) -> Workspace:
        """Shared instance for document-store/flat-file; a fresh handle per call for relational."""
        self._ensure_initialized()
        if self._document_workspace is not None:
            return self._document_workspace
        if self._flat_file_workspace is not None:
            return self._flat_file_workspace
        assert self._database is not None
        ws = self._database.open_workspace(read_only=False)
        assert isinstance(ws, Workspace)
        return ws

    def create_read_only(self) -> ReadOnlyWorkspace:
        """Like create(); relational handles are opened without write intent."""
        self._ensure_initialized()
        if self._document_workspace is not None:
            return self._document_workspace
        if self._flat_file_workspace is not None:
            return self._flat_file_workspace
        assert self._database is not None
        return self._database.open_workspace(read_only=True)

    def set_connection_string(self, connection_string: str) -> None:
        """
        Switch the connection string at runtime (test isolation).

        Before initialization this only changes what initialization will select. Afterwards the
        string is re-resolved and a flat-file result re-primes the shared text backend, which
        create() then prefers over a relational database. An active document store keeps
        precedence, and document-store or relational targets are never re-selected here.
        """
        with self._lock:
            self.settings.connection_string = connection_string
            if not self._initialized:
                return
            descriptor = resolve_descriptor(connection_string)
            if descriptor.kind is BackendKind.FLAT_FILE:
                self._flat_file_workspace = self._build_flat_file(descriptor)
                if self._document_workspace is None:
                    self._descriptor = descriptor
            else:
                logger.info(
                    "Connection string changed to a %s target; active %s selection unchanged",
                    descriptor.kind.value,
                    self._descriptor.kind.value if self._descriptor else "unknown",
                )


_default_factory: Optional[WorkspaceFactory] = None
_default_lock = threading.Lock()


def get_workspace_factory() -> WorkspaceFactory:
    """Process default factory built from load_settings() on first use."""
    global _default_factory
    if _default_factory is None:
        with _default_lock:
            if _default_factory is None:
                _default_factory = WorkspaceFactory(load_settings())
    return _default_factory


def set_workspace_factory(factory: Optional[WorkspaceFactory]) -> None:
    """Replace (or with None, reset) the process default factory."""
    global _default_factory
    with _default_lock:
        _default_factory = factory
