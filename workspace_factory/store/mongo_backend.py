"""
Document-store backend on MongoDB via pymongo.
The client is thread-safe and connects lazily, so one instance serves the whole process.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional

import pandas as pd

from workspace_factory.core.descriptor import redact_connection_string

from .backend import Workspace

logger = logging.getLogger(__name__)


class MongoWorkspace(Workspace):
    """One collection per table. Writes are immediate; commit_changes is a no-op."""

    def __init__(self, uri: str, default_database: str = "workspace", client: Any = None) -> None:
        if client is None:
            import pymongo

            client = pymongo.MongoClient(uri)
        self.uri = uri
        self._client = client
        self._db = client.get_default_database(default=default_database)
        logger.info("Document store %s (database %s)", redact_connection_string(uri), self._db.name)

    @property
    def database_name(self) -> str:
        return self._db.name

    def read_table(
        self,
        table: str,
        *,
        columns: Optional[List[str]] = None,
        limit: Optional[int] = None,
    ) -> pd.DataFrame:
        projection: Dict[str, Any] = {"_id": False}
        if columns:
            projection.update({c: True for c in columns})
        cursor = self._db[table].find({}, projection)
        if limit is not None:
            cursor = cursor.limit(limit)
        df = pd.DataFrame(list(cursor))
        if columns:
            df = df.reindex(columns=columns)
        return df

    def count(self, table: str) -> int:
        return int(self._db[table].count_documents({}))

    def add(self, table: str, row: Dict[str, Any]) -> None:
        # insert_one mutates its argument (adds _id)
        self._db[table].insert_one(dict(row))

    def delete(self, table: str, where: Dict[str, Any]) -> int:
        return int(self._db[table].delete_many(dict(where)).deleted_count)

    def commit_changes(self) -> None:
        return None

    def shutdown(self) -> None:
        """Close the shared client. Only the owner of the process-wide instance should call this."""
        self._client.close()
