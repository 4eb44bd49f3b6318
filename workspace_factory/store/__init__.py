"""
Store: backend collaborators behind the workspace capability handles.
No schema-lifecycle logic; that lives in workspace_factory.db.
"""

from __future__ import annotations

from .backend import ReadOnlyWorkspace, RelationalDatabase, Workspace
from .mongo_backend import MongoWorkspace
from .sql_backend import ReadOnlySqlWorkspace, SqlDatabase, SqlWorkspace, sql_database_for, to_odbc_connection_string
from .text_backend import TextFileWorkspace

__all__ = [
    "MongoWorkspace",
    "ReadOnlySqlWorkspace",
    "ReadOnlyWorkspace",
    "RelationalDatabase",
    "SqlDatabase",
    "SqlWorkspace",
    "TextFileWorkspace",
    "Workspace",
    "sql_database_for",
    "to_odbc_connection_string",
]
