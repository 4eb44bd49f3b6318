"""
Backend interface: capability handles (read-only and mutable) and the relational collaborator.

Handles expose tables of plain-dict rows; reads come back as DataFrames.
No schema definition or query language lives here.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional

import pandas as pd
from sqlalchemy.engine import Engine

from workspace_factory.core.descriptor import EngineFlavor


class ReadOnlyWorkspace(ABC):
    """Read capability over the selected backend."""

    @abstractmethod
    def read_table(
        self,
        table: str,
        *,
        columns: Optional[List[str]] = None,
        limit: Optional[int] = None,
    ) -> pd.DataFrame:
        """Read table as DataFrame. Unknown tables read as an empty frame where the backend allows it."""
        ...

    @abstractmethod
    def count(self, table: str) -> int:
        ...

    def close(self) -> None:
        """Release per-handle resources. Shared backends keep their state."""
        return None

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()


class Workspace(ReadOnlyWorkspace):
    """Read/write capability over the selected backend."""

    @abstractmethod
    def add(self, table: str, row: Dict[str, Any]) -> None:
        ...

    @abstractmethod
    def delete(self, table: str, where: Dict[str, Any]) -> int:
        """Delete rows whose fields equal every item of `where`. Returns the number removed."""
        ...

    @abstractmethod
    def commit_changes(self) -> None:
        ...


class RelationalDatabase(ABC):
    """
    Relational collaborator consumed by schema initialization.
    Owns the physical database lifecycle and the compatibility oracle; hands out fresh handles.
    """

    flavor: EngineFlavor

    @property
    @abstractmethod
    def connection_string(self) -> str:
        """Live connection target passed to the migration engine."""
        ...

    @property
    @abstractmethod
    def engine(self) -> Engine:
        ...

    @abstractmethod
    def exists(self) -> bool:
        ...

    @abstractmethod
    def create(self) -> None:
        """Create the physical database and the expected model's tables."""
        ...

    @abstractmethod
    def delete(self) -> None:
        ...

    @abstractmethod
    def is_compatible(self) -> bool:
        """True if the live schema structurally matches the expected model."""
        ...

    @abstractmethod
    def open_workspace(self, read_only: bool = False) -> ReadOnlyWorkspace:
        """Fresh handle per call; read_only handles are opened without write intent."""
        ...
