"""Workspace factory: backend selection, shared vs per-call handles, one-time initialization."""

from __future__ import annotations

import threading
from pathlib import Path

import pytest

from tests.fakes import (
    FakeDocumentWorkspace,
    RecordingMigrationEngine,
    SqliteStandIn,
    make_settings,
    model_with,
    write_marker,
)
from workspace_factory.core.descriptor import BackendKind, EngineFlavor
from workspace_factory.db import ledger
from workspace_factory.factory import (
    BackendConstructors,
    WorkspaceFactory,
    get_workspace_factory,
    set_workspace_factory,
)
from workspace_factory.store.sql_backend import ReadOnlySqlWorkspace, SqlWorkspace
from workspace_factory.store.text_backend import TextFileWorkspace


@pytest.fixture(autouse=True)
def _reset_fake_counts():
    FakeDocumentWorkspace.instances = 0
    yield


def test_empty_connection_string_uses_shared_text_backend(tmp_path):
    """"" -> flat file SambaData.txt; create() and create_read_only() share one instance."""
    factory = WorkspaceFactory(make_settings(tmp_path, ""))
    ws = factory.create()
    assert isinstance(ws, TextFileWorkspace)
    assert ws.path == tmp_path / "docs" / "SambaData.txt"
    assert factory.create_read_only() is ws
    assert factory.create() is ws
    assert factory.descriptor.kind is BackendKind.FLAT_FILE
    assert factory.database is None


def test_language_override_changes_flat_file_name(tmp_path):
    settings = make_settings(tmp_path, "", override_language=True, current_language="de")
    ws = WorkspaceFactory(settings).create()
    assert ws.path.name == "SambaData_de.txt"


def test_txt_connection_string_is_the_file(tmp_path):
    target = tmp_path / "TestData.txt"
    ws = WorkspaceFactory(make_settings(tmp_path, str(target))).create()
    assert ws.path == target


def test_document_store_handle_is_shared(tmp_path):
    """mongodb://localhost/db -> one document-store instance no matter how many calls."""
    backends = BackendConstructors(document_store=FakeDocumentWorkspace)
    factory = WorkspaceFactory(make_settings(tmp_path, "mongodb://localhost/db"), backends=backends)
    handles = [factory.create() for _ in range(5)] + [factory.create_read_only() for _ in range(5)]
    assert all(h is handles[0] for h in handles)
    assert handles[0].uri == "mongodb://localhost/db"
    assert FakeDocumentWorkspace.instances == 1
    assert factory.descriptor.kind is BackendKind.DOCUMENT_STORE


def test_relational_server_fresh_create(tmp_path):
    """Server=X;Database=Y; with version 3 and no database: ledger [1,2,3], marker untouched."""
    settings = make_settings(tmp_path, "Server=X;Database=Y;", db_version=3)
    stand_in = SqliteStandIn(tmp_path / "y.sqlite")
    engine = RecordingMigrationEngine()
    marker = write_marker(settings)
    factory = WorkspaceFactory(
        settings,
        model=model_with("tickets"),
        backends=BackendConstructors(relational=stand_in, migration_engine=engine),
    )
    w1 = factory.create()
    w2 = factory.create()
    try:
        assert isinstance(w1, SqlWorkspace) and isinstance(w2, SqlWorkspace)
        assert w1 is not w2
        assert factory.current_db_version == 3
        assert settings.current_db_version == 3
        assert ledger.applied_versions(factory.database.engine) == [1, 2, 3]
        assert marker.exists()
        assert engine.contexts == []
        assert len(stand_in.databases) == 1
        assert stand_in.descriptors[0].normalized.endswith("Integrated Security=True;")
        assert factory.database.flavor is EngineFlavor.MSSQL
    finally:
        w1.close()
        w2.close()


def test_relational_read_only_handles(tmp_path):
    factory = WorkspaceFactory(
        make_settings(tmp_path, str(tmp_path / "app.sqlite")),
        model=model_with("tickets"),
    )
    with factory.create() as ws:
        ws.add("tickets", {"id": 1})
        ws.commit_changes()
    ro1 = factory.create_read_only()
    ro2 = factory.create_read_only()
    try:
        assert isinstance(ro1, ReadOnlySqlWorkspace) and ro1 is not ro2
        assert ro1.count("tickets") == 1
    finally:
        ro1.close()
        ro2.close()
    assert factory.descriptor.kind is BackendKind.RELATIONAL_FILE
    assert factory.database.flavor is EngineFlavor.SQLITE


def test_relational_existing_incompatible_runs_migration_once(tmp_path):
    settings = make_settings(tmp_path, "Server=X;Database=Y;", db_version=1)
    first = WorkspaceFactory(
        settings,
        model=model_with("tickets"),
        backends=BackendConstructors(relational=SqliteStandIn(tmp_path / "y.sqlite")),
    )
    first.create().close()
    first.database.engine.dispose()

    marker = write_marker(settings)
    engine = RecordingMigrationEngine()
    second = WorkspaceFactory(
        settings,
        model=model_with("tickets", "users"),
        backends=BackendConstructors(relational=SqliteStandIn(tmp_path / "y.sqlite"), migration_engine=engine),
    )
    for _ in range(3):
        second.create().close()
    assert len(engine.contexts) == 1
    assert engine.contexts[0].flavor is EngineFlavor.MSSQL
    assert not marker.exists()


def test_concurrent_first_access_initializes_once(tmp_path):
    stand_in = SqliteStandIn(tmp_path / "y.sqlite")
    factory = WorkspaceFactory(
        make_settings(tmp_path, "Server=X;Database=Y;", db_version=2),
        backends=BackendConstructors(relational=stand_in),
    )
    barrier = threading.Barrier(8)
    handles = []
    errors = []
    lock = threading.Lock()

    def worker():
        barrier.wait()
        try:
            ws = factory.create()
            with lock:
                handles.append(ws)
        except Exception as e:  # surfaced below
            errors.append(e)

    threads = [threading.Thread(target=worker) for _ in range(8)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()
    try:
        assert errors == []
        assert len(stand_in.databases) == 1
        assert len({id(h) for h in handles}) == 8
        assert ledger.applied_versions(factory.database.engine) == [1, 2]
    finally:
        for h in handles:
            h.close()


def test_initialization_failure_is_remembered(tmp_path):
    calls = []

    def broken(descriptor, settings, model):
        calls.append(descriptor)
        raise RuntimeError("server unreachable")

    factory = WorkspaceFactory(
        make_settings(tmp_path, "Server=X;Database=Y;"),
        backends=BackendConstructors(relational=broken),
    )
    with pytest.raises(RuntimeError, match="unreachable"):
        factory.create()
    with pytest.raises(RuntimeError, match="unreachable"):
        factory.create_read_only()
    assert len(calls) == 1


def test_set_connection_string_before_init_changes_selection(tmp_path):
    factory = WorkspaceFactory(
        make_settings(tmp_path, "mongodb://localhost/db"),
        backends=BackendConstructors(document_store=FakeDocumentWorkspace),
    )
    factory.set_connection_string(str(tmp_path / "Test.txt"))
    ws = factory.create()
    assert isinstance(ws, TextFileWorkspace)
    assert FakeDocumentWorkspace.instances == 0


def test_set_connection_string_reprimes_text_backend(tmp_path):
    factory = WorkspaceFactory(make_settings(tmp_path, ""))
    first = factory.create()
    factory.set_connection_string(str(tmp_path / "Other.txt"))
    second = factory.create()
    assert second is not first
    assert second.path == tmp_path / "Other.txt"
    assert factory.create_read_only() is second


def test_set_connection_string_keeps_document_store(tmp_path):
    factory = WorkspaceFactory(
        make_settings(tmp_path, "mongodb://localhost/db"),
        backends=BackendConstructors(document_store=FakeDocumentWorkspace),
    )
    doc = factory.create()
    factory.set_connection_string(str(tmp_path / "Test.txt"))
    assert factory.create() is doc
    factory.set_connection_string("Server=X;Database=Y;")
    assert factory.create() is doc
    assert factory.descriptor.kind is BackendKind.DOCUMENT_STORE


def test_set_connection_string_to_relational_after_init_does_not_reselect(tmp_path):
    stand_in = SqliteStandIn(tmp_path / "y.sqlite")
    factory = WorkspaceFactory(make_settings(tmp_path, ""), backends=BackendConstructors(relational=stand_in))
    text_ws = factory.create()
    factory.set_connection_string("Server=X;Database=Y;")
    assert factory.create() is text_ws
    assert stand_in.databases == []


def test_default_factory_is_built_once_from_settings(tmp_path, monkeypatch):
    monkeypatch.setenv("WORKSPACE_DOCUMENT_PATH", str(tmp_path / "docs"))
    f1 = get_workspace_factory()
    assert get_workspace_factory() is f1
    assert f1.create().path == Path(tmp_path / "docs" / "SambaData.txt")
    replacement = WorkspaceFactory(make_settings(tmp_path, ""))
    set_workspace_factory(replacement)
    assert get_workspace_factory() is replacement
