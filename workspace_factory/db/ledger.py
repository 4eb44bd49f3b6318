"""
Version ledger: VersionInfo table, one BIGINT row per applied schema version.
Used as an existence/count record only; no migration names or timestamps.
"""

from __future__ import annotations

import logging
from typing import List, Union

from sqlalchemy import BigInteger, Column, MetaData, Table, func, inspect, select
from sqlalchemy.engine import Connection, Engine

logger = logging.getLogger(__name__)

LEDGER_TABLE = "VersionInfo"

_ledger_metadata = MetaData()
version_info = Table(
    LEDGER_TABLE,
    _ledger_metadata,
    Column("Version", BigInteger, nullable=False),
)


def ledger_exists(bind: Union[Engine, Connection]) -> bool:
    return inspect(bind).has_table(LEDGER_TABLE)


def create_ledger(conn: Connection) -> None:
    version_info.create(conn, checkfirst=True)


def record_version(conn: Connection, version: int) -> None:
    conn.execute(version_info.insert(), [{"Version": int(version)}])


def populate_ledger(conn: Connection, db_version: int) -> None:
    """Insert one row per version 1..db_version."""
    if db_version <= 0:
        return
    conn.execute(version_info.insert(), [{"Version": v} for v in range(1, db_version + 1)])
    logger.debug("Recorded schema versions 1..%d", db_version)


def max_version(bind: Union[Engine, Connection]) -> int:
    """Highest recorded version; 0 when the ledger is empty or missing."""
    if isinstance(bind, Engine):
        with bind.connect() as conn:
            return max_version(conn)
    if not ledger_exists(bind):
        logger.warning("%s table not found; reporting schema version 0", LEDGER_TABLE)
        return 0
    value = bind.execute(select(func.max(version_info.c.Version))).scalar()
    return int(value) if value is not None else 0


def applied_versions(bind: Union[Engine, Connection]) -> List[int]:
    """All recorded versions in ascending order."""
    if isinstance(bind, Engine):
        with bind.connect() as conn:
            return applied_versions(conn)
    if not ledger_exists(bind):
        return []
    rows = bind.execute(select(version_info.c.Version).order_by(version_info.c.Version)).all()
    return [int(r[0]) for r in rows]
