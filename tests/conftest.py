"""Fixtures for CLI and end-to-end tests: one simulated host per fixture call."""

from __future__ import annotations

import io
import sys
from dataclasses import dataclass
from pathlib import Path

import pytest

from envseal.cli import main
from envseal.config import reset_config
from envseal.vault.identity import reset_identity_cache


@dataclass
class Host:
    """A simulated machine: its own HOME and identity, a shared secrets repo."""

    name: str
    home: Path
    bundles_dir: Path

    @property
    def identity_file(self) -> Path:
        return self.home / ".local" / "share" / "envseal" / "identity.txt"

    @property
    def host_config(self) -> Path:
        return self.home / ".config" / "envseal" / "host.yaml"

    @property
    def policy_file(self) -> Path:
        return self.bundles_dir / ".envseal.yaml"


@pytest.fixture
def secrets_repo(tmp_path: Path) -> Path:
    d = tmp_path / "secrets-repo"
    d.mkdir()
    return d


@pytest.fixture
def use_host(tmp_path: Path, secrets_repo: Path, monkeypatch):
    """Switch the process to ``name``'s HOME and ENVSEAL_* settings."""

    def _use(name: str) -> Host:
        home = tmp_path / name
        home.mkdir(exist_ok=True)
        monkeypatch.setenv("HOME", str(home))
        monkeypatch.delenv("XDG_CONFIG_HOME", raising=False)
        monkeypatch.delenv("ZDOTDIR", raising=False)
        monkeypatch.setenv("ENVSEAL_HOST", name)
        monkeypatch.setenv("ENVSEAL_BUNDLES_DIR", str(secrets_repo))
        reset_config()
        reset_identity_cache()
        return Host(name=name, home=home, bundles_dir=secrets_repo)

    return _use


@pytest.fixture
def run_cli(monkeypatch, capsys):
    """Run ``envseal`` with argv; returns (exit_code, stdout, stderr)."""

    def _run(*argv: str, stdin: str | None = None) -> tuple[int, str, str]:
        if stdin is not None:
            monkeypatch.setattr(sys, "stdin", io.StringIO(stdin))
        rc = main(list(argv))
        out, err = capsys.readouterr()
        return rc, out, err

    return _run
