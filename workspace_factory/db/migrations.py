"""
Marker-gated migrations. Runs only when <data_path>/migrate.txt exists; deletes the marker
after every pending step succeeded and keeps it on failure so the next start retries.

Step definitions are Python files named NNN_description.py in the migrations directory,
each defining upgrade(conn). Steps above the ledger's highest version run in ascending order.
"""

from __future__ import annotations

import importlib.util
import logging
import re
from abc import ABC, abstractmethod
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, List, Optional, Union

from sqlalchemy import create_engine
from sqlalchemy.engine import Connection

from workspace_factory.config import LocalSettings
from workspace_factory.core.descriptor import EngineFlavor, redact_connection_string
from workspace_factory.core.errors import MigrationError

from . import ledger

logger = logging.getLogger(__name__)

_STEP_FILE_RE = re.compile(r"^(\d+)_(\w+)\.py$")


@dataclass(frozen=True)
class MigrationStep:
    version: int
    name: str
    apply: Callable[[Connection], None]


@dataclass(frozen=True)
class MigrationContext:
    """What the engine needs: live connection target, engine flavor, step definitions location."""

    connection: str
    flavor: EngineFlavor
    target: Path


class MigrationEngine(ABC):
    """Runs every pending step for a context; raises if any step fails."""

    @abstractmethod
    def execute(self, context: MigrationContext) -> None:
        ...


def load_step_from_file(step_file: Path) -> MigrationStep:
    """Import one step file. Raises MigrationError if the name or upgrade() is wrong."""
    m = _STEP_FILE_RE.match(step_file.name)
    if m is None:
        raise MigrationError(f"Migration file name must look like 001_name.py: {step_file.name}")
    version, name = int(m.group(1)), m.group(2)
    spec = importlib.util.spec_from_file_location(f"workspace_migration_{step_file.stem}", step_file)
    if spec is None or spec.loader is None:
        raise MigrationError(f"Cannot load migration from {step_file}")
    module = importlib.util.module_from_spec(spec)
    try:
        spec.loader.exec_module(module)
    except Exception as e:
        raise MigrationError(f"Failed to import migration {step_file.name}: {e}") from e
    upgrade = getattr(module, "upgrade", None)
    if not callable(upgrade):
        raise MigrationError(f"Migration {step_file.name} defines no upgrade(conn)")
    return MigrationStep(version=version, name=name, apply=upgrade)


def load_migration_steps(migrations_dir: Union[str, Path]) -> List[MigrationStep]:
    """All steps in a directory, ascending by version. Duplicate versions are an error."""
    migrations_dir = Path(migrations_dir)
    if not migrations_dir.is_dir():
        raise MigrationError(f"Migrations directory does not exist: {migrations_dir}")
    steps = [
        load_step_from_file(p)
        for p in sorted(migrations_dir.glob("*.py"))
        if not p.name.startswith("__")
    ]
    steps.sort(key=lambda s: s.version)
    seen = set()
    for step in steps:
        if step.version in seen:
            raise MigrationError(f"Duplicate migration version {step.version} in {migrations_dir}")
        seen.add(step.version)
    return steps


class ScriptMigrationEngine(MigrationEngine):
    """Default engine: step files from context.target, one transaction per step."""

    def execute(self, context: MigrationContext) -> None:
        steps = load_migration_steps(context.target)
        engine = create_engine(context.connection)
        try:
            applied = ledger.max_version(engine)
            pending = [s for s in steps if s.version > applied]
            if not pending:
                logger.info("No pending migrations above version %d", applied)
                return
            for step in pending:
                logger.info("Applying migration %03d_%s (%s)", step.version, step.name, context.flavor.value)
                try:
                    with engine.begin() as conn:
                        ledger.create_ledger(conn)
                        step.apply(conn)
                        ledger.record_version(conn, step.version)
                except Exception as e:
                    raise MigrationError(f"Migration {step.version:03d}_{step.name} failed: {e}") from e
            logger.info("Applied %d migrations; schema now at version %d", len(pending), pending[-1].version)
        finally:
            engine.dispose()


class MigrationRunner:
    """Runs the engine when the marker is present; consumes the marker on success only."""

    def __init__(
        self,
        marker_path: Union[str, Path],
        target: Union[str, Path],
        engine: Optional[MigrationEngine] = None,
    ) -> None:
        self.marker_path = Path(marker_path)
        self.target = Path(target)
        self.engine = engine if engine is not None else ScriptMigrationEngine()

    @classmethod
    def from_settings(cls, settings: LocalSettings, engine: Optional[MigrationEngine] = None) -> "MigrationRunner":
        return cls(settings.marker_path, settings.migrations_path, engine)

    @property
    def pending(self) -> bool:
        return self.marker_path.is_file()

    def run(self, connection: str, flavor: EngineFlavor) -> bool:
        """Return True if migrations ran, False if no marker was present."""
        if not self.pending:
            logger.debug("No migration marker at %s", self.marker_path)
            return False
        context = MigrationContext(connection=connection, flavor=flavor, target=self.target)
        logger.info(
            "Migration marker found; migrating %s from %s",
            redact_connection_string(connection),
            self.target,
        )
        try:
            self.engine.execute(context)
        except Exception:
            logger.error("Migration failed; keeping %s so the next start retries", self.marker_path)
            raise
        self.marker_path.unlink()
        logger.info("Migrations complete; removed %s", self.marker_path)
        return True
