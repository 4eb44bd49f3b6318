"""Isolate every test from WORKSPACE_* environment variables and any local workspace.yaml."""

from __future__ import annotations

import os

import pytest

from workspace_factory.factory import set_workspace_factory


@pytest.fixture(autouse=True)
def _isolated_workspace_env(tmp_path, monkeypatch):
    for name in list(os.environ):
        if name.startswith("WORKSPACE_"):
            monkeypatch.delenv(name, raising=False)
    monkeypatch.setenv("WORKSPACE_CONFIG", str(tmp_path / "no-such-workspace.yaml"))
    yield
    set_workspace_factory(None)
