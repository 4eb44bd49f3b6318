"""
Relational backend on SQLAlchemy: SQLite files and SQL Server (mssql+pyodbc).

SqlDatabase is the collaborator schema initialization talks to (existence, create, delete,
compatibility). Each open_workspace() call opens its own Connection and holds it until the
handle is closed. Engines use NullPool: closing a handle closes its connection.
"""

from __future__ import annotations

import logging
import threading
from pathlib import Path
from urllib.parse import quote
from typing import Any, Dict, List, Optional, Union

import pandas as pd
from sqlalchemy import MetaData, Table, create_engine, func, inspect, select, text
from sqlalchemy.engine import URL, Connection, Engine, make_url
from sqlalchemy.pool import NullPool

from workspace_factory.config import LocalSettings
from workspace_factory.core.descriptor import (
    BackendKind,
    ConnectionDescriptor,
    EngineFlavor,
    engine_flavor,
    parse_connection_string,
    redact_connection_string,
)
from workspace_factory.core.errors import ConfigurationError

from .backend import ReadOnlyWorkspace, RelationalDatabase, Workspace

logger = logging.getLogger(__name__)

_ODBC_KEYS = {
    "server": "Server",
    "data source": "Server",
    "address": "Server",
    "database": "Database",
    "initial catalog": "Database",
    "user id": "UID",
    "uid": "UID",
    "password": "PWD",
    "pwd": "PWD",
    "driver": "Driver",
}
_ODBC_BOOL_KEYS = {
    "integrated security": "Trusted_Connection",
    "trusted_connection": "Trusted_Connection",
    "multipleactiveresultsets": "MARS_Connection",
    "mars_connection": "MARS_Connection",
}
# No ODBC equivalent
_ODBC_DROPPED = {"persist security info"}
_TRUTHY = {"true", "yes", "sspi", "1"}


def to_odbc_connection_string(cs: str, driver: str, extra: Optional[Dict[str, str]] = None) -> str:
    """Translate an ADO-style `key=value;` string to ODBC keywords, adding Driver when missing."""
    params: Dict[str, str] = {}
    for key, value in parse_connection_string(cs).items():
        if key in _ODBC_DROPPED:
            continue
        if key in _ODBC_BOOL_KEYS:
            params[_ODBC_BOOL_KEYS[key]] = "yes" if value.lower() in _TRUTHY else "no"
        else:
            params[_ODBC_KEYS.get(key, key)] = value
    params.update(extra or {})
    if "Driver" not in params:
        params = {"Driver": "{" + driver + "}", **params}
    return ";".join(f"{k}={v}" for k, v in params.items()) + ";"


def _odbc_url(odbc: str) -> URL:
    return URL.create("mssql+pyodbc", query={"odbc_connect": odbc})


class ReadOnlySqlWorkspace(ReadOnlyWorkspace):
    """Read capability over one Connection. Tables are reflected on first use."""

    def __init__(self, conn: Connection) -> None:
        self._conn = conn
        self._metadata = MetaData()

    def _table(self, name: str) -> Table:
        if name in self._metadata.tables:
            return self._metadata.tables[name]
        return Table(name, self._metadata, autoload_with=self._conn)

    def read_table(
        self,
        table: str,
        *,
        columns: Optional[List[str]] = None,
        limit: Optional[int] = None,
    ) -> pd.DataFrame:
        t = self._table(table)
        stmt = select(*[t.c[c] for c in columns]) if columns else select(t)
        if limit is not None:
            stmt = stmt.limit(limit)
        return pd.read_sql_query(stmt, self._conn)

    def count(self, table: str) -> int:
        t = self._table(table)
        return int(self._conn.execute(select(func.count()).select_from(t)).scalar_one())

    def close(self) -> None:
        self._conn.close()


class SqlWorkspace(ReadOnlySqlWorkspace, Workspace):
    """Read/write capability; changes are visible to other handles after commit_changes()."""

    def add(self, table: str, row: Dict[str, Any]) -> None:
        self._conn.execute(self._table(table).insert(), [dict(row)])

    def delete(self, table: str, where: Dict[str, Any]) -> int:
        t = self._table(table)
        stmt = t.delete()
        for key, value in where.items():
            stmt = stmt.where(t.c[key] == value)
        return int(self._conn.execute(stmt).rowcount)

    def commit_changes(self) -> None:
        self._conn.commit()


class SqlDatabase(RelationalDatabase):
    """
    SQLAlchemy-backed relational collaborator.
    model is the expected schema (SQLAlchemy MetaData); it is created on create() and
    compared against the live schema by is_compatible().
    """

    def __init__(
        self,
        url: Union[str, URL],
        *,
        read_only_url: Union[str, URL, None] = None,
        server_url: Union[str, URL, None] = None,
        database_name: Optional[str] = None,
        model: Optional[MetaData] = None,
        flavor: Optional[EngineFlavor] = None,
    ) -> None:
        self.url = make_url(url)
        self.read_only_url = make_url(read_only_url) if read_only_url is not None else None
        self.server_url = make_url(server_url) if server_url is not None else None
        self.database_name = database_name
        self.model = model if model is not None else MetaData()
        if flavor is None:
            flavor = EngineFlavor.SQLITE if self.url.get_backend_name() == "sqlite" else EngineFlavor.MSSQL
        self.flavor = flavor
        self._lock = threading.Lock()
        self._engine: Optional[Engine] = None
        self._read_only_engine: Optional[Engine] = None

    @classmethod
    def for_sqlite_file(
        cls,
        path: Union[str, Path],
        model: Optional[MetaData] = None,
        flavor: Optional[EngineFlavor] = None,
    ) -> "SqlDatabase":
        path = Path(path).resolve()
        # ?, # and % are URI syntax in SQLite file: names
        uri_path = quote(path.as_posix(), safe="/:")
        read_only_url = URL.create("sqlite", database=f"file:{uri_path}", query={"mode": "ro", "uri": "true"})
        return cls(URL.create("sqlite", database=str(path)), read_only_url=read_only_url, model=model, flavor=flavor)

    @property
    def _is_sqlite(self) -> bool:
        return self.url.get_backend_name() == "sqlite"

    @property
    def _sqlite_path(self) -> Optional[Path]:
        db = self.url.database
        if not db or db == ":memory:":
            return None
        return Path(db)

    def _make_engine(self, url: URL, **kwargs: Any) -> Engine:
        if url.get_backend_name() == "sqlite":
            kwargs.setdefault("connect_args", {"check_same_thread": False})
        kwargs.setdefault("poolclass", NullPool)
        return create_engine(url, **kwargs)

    @property
    def engine(self) -> Engine:
        if self._engine is None:
            with self._lock:
                if self._engine is None:
                    self._engine = self._make_engine(self.url)
        return self._engine

    @property
    def read_only_engine(self) -> Engine:
        if self.read_only_url is None:
            return self.engine
        if self._read_only_engine is None:
            with self._lock:
                if self._read_only_engine is None:
                    self._read_only_engine = self._make_engine(self.read_only_url)
        return self._read_only_engine

    @property
    def connection_string(self) -> str:
        return self.url.render_as_string(hide_password=False)

    def _server_engine(self) -> Engine:
        if self.server_url is None or not self.database_name:
            raise ConfigurationError(f"{redact_connection_string(str(self.url))} has no server-level connection")
        return self._make_engine(self.server_url, isolation_level="AUTOCOMMIT")

    def dispose(self) -> None:
        """Close pooled connections; engines are rebuilt on next use."""
        with self._lock:
            for eng in (self._engine, self._read_only_engine):
                if eng is not None:
                    eng.dispose()
            self._engine = None
            self._read_only_engine = None

    def exists(self) -> bool:
        if self._is_sqlite:
            path = self._sqlite_path
            return path is None or path.is_file()
        server = self._server_engine()
        try:
            with server.connect() as conn:
                row = conn.execute(
                    text("SELECT 1 FROM sys.databases WHERE name = :name"),
                    {"name": self.database_name},
                ).first()
            return row is not None
        finally:
            server.dispose()

    def create(self) -> None:
        if self._is_sqlite:
            path = self._sqlite_path
            if path is not None:
                path.parent.mkdir(parents=True, exist_ok=True)
        else:
            server = self._server_engine()
            try:
                with server.connect() as conn:
                    conn.execute(text(f"CREATE DATABASE [{self.database_name}]"))
            finally:
                server.dispose()
        with self.engine.begin() as conn:
            self.model.create_all(conn)
        logger.info("Created database %s", redact_connection_string(self.connection_string))

    def delete(self) -> None:
        self.dispose()
        if self._is_sqlite:
            path = self._sqlite_path
            if path is not None:
                path.unlink(missing_ok=True)
        else:
            server = self._server_engine()
            try:
                with server.connect() as conn:
                    conn.execute(text(f"ALTER DATABASE [{self.database_name}] SET SINGLE_USER WITH ROLLBACK IMMEDIATE"))
                    conn.execute(text(f"DROP DATABASE [{self.database_name}]"))
            finally:
                server.dispose()
        logger.warning("Deleted database %s", redact_connection_string(self.connection_string))

    def is_compatible(self) -> bool:
        insp = inspect(self.engine)
        live_tables = set(insp.get_table_names())
        for table in self.model.sorted_tables:
            if table.name not in live_tables:
                logger.info("Schema mismatch: table %s missing", table.name)
                return False
            live_cols = {c["name"].lower() for c in insp.get_columns(table.name)}
            missing = [c.name for c in table.columns if c.name.lower() not in live_cols]
            if missing:
                logger.info("Schema mismatch: %s missing columns %s", table.name, missing)
                return False
        return True

    def open_workspace(self, read_only: bool = False) -> ReadOnlyWorkspace:
        if read_only:
            return ReadOnlySqlWorkspace(self.read_only_engine.connect())
        return SqlWorkspace(self.engine.connect())


def sql_database_for(
    descriptor: ConnectionDescriptor,
    settings: LocalSettings,
    model: Optional[MetaData] = None,
) -> SqlDatabase:
    """Default relational constructor: map a relational descriptor to a SqlDatabase."""
    flavor = engine_flavor(descriptor)
    if descriptor.kind is BackendKind.RELATIONAL_FILE:
        return SqlDatabase.for_sqlite_file(descriptor.normalized, model=model, flavor=flavor)
    params = parse_connection_string(descriptor.normalized)
    name = params.get("database") or params.get("initial catalog")
    if not name:
        raise ConfigurationError(
            f"Connection string {redact_connection_string(descriptor.raw)!r} names no database"
        )
    driver = settings.odbc_driver
    return SqlDatabase(
        _odbc_url(to_odbc_connection_string(descriptor.normalized, driver)),
        read_only_url=_odbc_url(to_odbc_connection_string(descriptor.normalized, driver, {"ApplicationIntent": "ReadOnly"})),
        server_url=_odbc_url(to_odbc_connection_string(descriptor.normalized, driver, {"Database": "master"})),
        database_name=name,
        model=model,
        flavor=flavor,
    )
