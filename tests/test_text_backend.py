"""Flat-file backend: in-memory tables, JSON persistence in the .txt file, shared-instance locking."""

from __future__ import annotations

import json
import threading

from workspace_factory.store.text_backend import TextFileWorkspace


def test_add_read_count_delete(tmp_path):
    ws = TextFileWorkspace(tmp_path / "data.txt")
    ws.add("tickets", {"id": 1, "name": "a"})
    ws.add("tickets", {"id": 2, "name": "b"})
    assert ws.count("tickets") == 2
    df = ws.read_table("tickets", columns=["name"])
    assert list(df.columns) == ["name"]
    assert list(df["name"]) == ["a", "b"]
    assert ws.delete("tickets", {"id": 1}) == 1
    assert ws.count("tickets") == 1


def test_unknown_table_reads_empty(tmp_path):
    ws = TextFileWorkspace(tmp_path / "data.txt")
    assert ws.read_table("nothing").empty
    assert ws.count("nothing") == 0
    assert ws.delete("nothing", {"id": 1}) == 0


def test_commit_persists_and_reload(tmp_path):
    path = tmp_path / "sub" / "data.txt"
    ws = TextFileWorkspace(path)
    ws.add("users", {"id": 1})
    assert not path.exists()
    ws.commit_changes()
    assert json.loads(path.read_text(encoding="utf-8")) == {"users": [{"id": 1}]}
    again = TextFileWorkspace(path)
    assert again.count("users") == 1


def test_persist_false_never_writes(tmp_path):
    path = tmp_path / "data.txt"
    ws = TextFileWorkspace(path, persist=False)
    ws.add("users", {"id": 1})
    ws.commit_changes()
    assert not path.exists()


def test_limit(tmp_path):
    ws = TextFileWorkspace(tmp_path / "data.txt", persist=False)
    for i in range(5):
        ws.add("t", {"i": i})
    assert len(ws.read_table("t", limit=2)) == 2


def test_concurrent_adds_are_not_lost(tmp_path):
    ws = TextFileWorkspace(tmp_path / "data.txt", persist=False)

    def work(n):
        for i in range(200):
            ws.add("t", {"n": n, "i": i})

    threads = [threading.Thread(target=work, args=(n,)) for n in range(8)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()
    assert ws.count("t") == 1600


def test_close_keeps_shared_state(tmp_path):
    ws = TextFileWorkspace(tmp_path / "data.txt", persist=False)
    with ws as handle:
        handle.add("t", {"x": 1})
    assert ws.count("t") == 1
