"""Pytest configuration helpers for the test suite."""

from __future__ import annotations

import os
from pathlib import Path

import pytest


@pytest.fixture(autouse=True)
def isolated_environment(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Path:
    """Drop ambient ``DKRON_*`` variables and point the config file at a missing path."""
    for key in list(os.environ):
        if key.startswith("DKRON_"):
            monkeypatch.delenv(key, raising=False)
    missing = tmp_path / "absent" / "dkron.yml"
    monkeypatch.setenv("DKRON_CONFIG_FILE", str(missing))
    return missing


@pytest.fixture
def fixed_hostname() -> str:
    """Host name injected into configs built by the tests."""
    return "node-a.example"
