"""Shared fixtures for shell tests."""

from __future__ import annotations

import subprocess
from pathlib import Path

import pytest

from envseal.activation.declared import SecretBinding


@pytest.fixture
def home(tmp_path: Path, monkeypatch) -> Path:
    """An empty home directory with no shell-related env overrides."""
    h = tmp_path / "home"
    h.mkdir()
    monkeypatch.delenv("XDG_CONFIG_HOME", raising=False)
    monkeypatch.delenv("ZDOTDIR", raising=False)
    return h


@pytest.fixture
def cache_dir(tmp_path: Path) -> Path:
    return tmp_path / "cache"


@pytest.fixture
def openai_binding(home: Path) -> SecretBinding:
    return SecretBinding(
        logical_name="openai_key",
        bundle_id="ai",
        field_name="OPENAI_API_KEY",
        runtime_path=home / ".secrets" / "openai_key",
        env_names=("OPENAI_API_KEY",),
    )


class FakeRunner:
    """Stands in for subprocess.run; records argv and returns canned output."""

    def __init__(self, stdout: str = "", returncode: int = 0, stderr: str = ""):
        self.stdout = stdout
        self.returncode = returncode
        self.stderr = stderr
        self.calls: list[list[str]] = []

    def __call__(self, argv, **kwargs):
        self.calls.append(list(argv))
        return subprocess.CompletedProcess(argv, self.returncode, self.stdout, self.stderr)


@pytest.fixture
def fake_runner():
    return FakeRunner
