"""Shared fixtures for vault tests."""

from __future__ import annotations

from pathlib import Path

import pytest
import yaml

from envseal.vault.identity import Identity, init_identity, reset_identity_cache


@pytest.fixture(autouse=True)
def _clear_identity_cache():
    reset_identity_cache()
    yield
    reset_identity_cache()


def _make_identity(root: Path, label: str) -> Identity:
    return init_identity(root / label / "identity.txt", label)


@pytest.fixture
def host_a(tmp_path: Path) -> Identity:
    return _make_identity(tmp_path / "identities", "host-a")


@pytest.fixture
def host_b(tmp_path: Path) -> Identity:
    return _make_identity(tmp_path / "identities", "host-b")


@pytest.fixture
def host_c(tmp_path: Path) -> Identity:
    return _make_identity(tmp_path / "identities", "host-c")


@pytest.fixture
def bundles_dir(tmp_path: Path) -> Path:
    d = tmp_path / "secrets"
    d.mkdir()
    return d


@pytest.fixture
def write_policy(bundles_dir: Path):
    """Write ``.envseal.yaml`` into the bundles dir and return its path."""

    def _write(hosts: dict[str, str], rules: list[dict]) -> Path:
        path = bundles_dir / ".envseal.yaml"
        path.write_text(yaml.safe_dump({"hosts": hosts, "rules": rules}, sort_keys=False))
        return path

    return _write
