"""
Connection descriptor: turn the raw connection string into a typed backend selection.

Resolution is purely string based and deterministic. Unrecognized strings fall
through to the relational server kind (logged, never raised).
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from enum import Enum
from typing import Dict, Optional

logger = logging.getLogger(__name__)

FLAT_FILE_EXTENSION = ".txt"
RELATIONAL_FILE_EXTENSIONS = (".sqlite", ".sqlite3", ".db")
DOCUMENT_STORE_PREFIXES = ("mongodb://", "mongodb+srv://")

_PASSWORD_RE = re.compile(r"(?i)\b(password|pwd)\s*=\s*[^;]*")


class BackendKind(str, Enum):
    RELATIONAL_FILE = "relational_file"
    RELATIONAL_SERVER = "relational_server"
    DOCUMENT_STORE = "document_store"
    FLAT_FILE = "flat_file"

    @property
    def is_relational(self) -> bool:
        return self in (BackendKind.RELATIONAL_FILE, BackendKind.RELATIONAL_SERVER)


class EngineFlavor(str, Enum):
    """Relational engine name handed to the migration engine."""

    SQLITE = "sqlite"
    MSSQL = "mssql"


@dataclass(frozen=True)
class ConnectionDescriptor:
    """Resolved backend selection. `normalized` differs from `raw` only for relational servers."""

    kind: BackendKind
    raw: str
    normalized: str


def normalize_server_connection_string(cs: str) -> str:
    """
    Make a relational server connection string request MARS and an authentication mode.

    Idempotent: options already present (case-insensitive) are never appended twice.
    """
    if not cs.strip().endswith(";"):
        cs += ";"
    lower = cs.lower()
    if "multipleactiveresultsets" not in lower:
        cs += " MultipleActiveResultSets=True;"
    has_user = "user id" in lower
    if not has_user and "integrated security" not in lower:
        cs += " Integrated Security=True;"
    if has_user and "persist security info" not in lower:
        cs += " Persist Security Info=True;"
    return cs


def resolve_descriptor(raw: Optional[str]) -> ConnectionDescriptor:
    """
    Select the backend kind for a raw connection string.

    Order: empty or *.txt -> flat file; single-file relational extension -> relational file;
    mongodb scheme -> document store; anything else -> relational server.
    """
    raw = raw or ""
    if not raw or raw.endswith(FLAT_FILE_EXTENSION):
        return ConnectionDescriptor(BackendKind.FLAT_FILE, raw, raw)
    if raw.endswith(RELATIONAL_FILE_EXTENSIONS):
        return ConnectionDescriptor(BackendKind.RELATIONAL_FILE, raw, raw)
    if raw.startswith(DOCUMENT_STORE_PREFIXES):
        return ConnectionDescriptor(BackendKind.DOCUMENT_STORE, raw, raw)
    if "=" not in raw:
        logger.warning(
            "Connection string %r matches no known backend; treating it as a relational server",
            redact_connection_string(raw),
        )
    return ConnectionDescriptor(BackendKind.RELATIONAL_SERVER, raw, normalize_server_connection_string(raw))


def engine_flavor(descriptor: ConnectionDescriptor) -> EngineFlavor:
    """Relational engine flavor for a descriptor. Raises ValueError for non-relational kinds."""
    if descriptor.kind is BackendKind.RELATIONAL_FILE:
        return EngineFlavor.SQLITE
    if descriptor.kind is BackendKind.RELATIONAL_SERVER:
        return EngineFlavor.MSSQL
    raise ValueError(f"{descriptor.kind.value} has no relational engine flavor")


def parse_connection_string(cs: str) -> Dict[str, str]:
    """Split `key=value;` pairs. Keys are lower-cased and stripped; later keys win."""
    out: Dict[str, str] = {}
    for part in cs.split(";"):
        if "=" not in part:
            continue
        key, value = part.split("=", 1)
        key = key.strip().lower()
        if key:
            out[key] = value.strip()
    return out


def redact_connection_string(cs: str) -> str:
    """Mask password values so connection strings can be logged."""
    return _PASSWORD_RE.sub(lambda m: f"{m.group(1)}=***", cs)
