"""
Flat-file backend: all tables held in memory, persisted as one JSON document in a .txt file.
One instance is shared for the whole process, so every operation holds the instance lock.
"""

from __future__ import annotations

import json
import logging
import threading
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

import pandas as pd

from .backend import Workspace

logger = logging.getLogger(__name__)


class TextFileWorkspace(Workspace):
    """In-memory tables of dict rows. persist=False keeps everything in memory (tests, scratch)."""

    def __init__(self, path: Union[str, Path], persist: bool = True) -> None:
        self.path = Path(path)
        self.persist = persist
        self._lock = threading.RLock()
        self._tables: Dict[str, List[Dict[str, Any]]] = {}
        if persist and self.path.is_file():
            self._load()

    def _load(self) -> None:
        text = self.path.read_text(encoding="utf-8")
        if not text.strip():
            return
        data = json.loads(text)
        if not isinstance(data, dict):
            raise ValueError(f"{self.path} does not hold a table mapping")
        self._tables = {name: list(rows) for name, rows in data.items()}
        logger.debug("Loaded %d tables from %s", len(self._tables), self.path)

    def read_table(
        self,
        table: str,
        *,
        columns: Optional[List[str]] = None,
        limit: Optional[int] = None,
    ) -> pd.DataFrame:
        with self._lock:
            rows = [dict(r) for r in self._tables.get(table, [])]
        if limit is not None:
            rows = rows[:limit]
        df = pd.DataFrame(rows)
        if columns:
            df = df.reindex(columns=columns)
        return df

    def count(self, table: str) -> int:
        with self._lock:
            return len(self._tables.get(table, []))

    def add(self, table: str, row: Dict[str, Any]) -> None:
        with self._lock:
            self._tables.setdefault(table, []).append(dict(row))

    def delete(self, table: str, where: Dict[str, Any]) -> int:
        with self._lock:
            rows = self._tables.get(table, [])
            kept = [r for r in rows if any(r.get(k) != v for k, v in where.items())]
            removed = len(rows) - len(kept)
            if table in self._tables:
                self._tables[table] = kept
            return removed

    def commit_changes(self) -> None:
        if not self.persist:
            return
        with self._lock:
            payload = json.dumps(self._tables, indent=2, sort_keys=True, default=str)
            self.path.parent.mkdir(parents=True, exist_ok=True)
            tmp = self.path.with_name(self.path.name + ".tmp")
            tmp.write_text(payload, encoding="utf-8")
            tmp.replace(self.path)
        logger.debug("Saved %s", self.path)
