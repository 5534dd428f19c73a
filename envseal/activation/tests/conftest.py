"""Shared fixtures for activation tests."""

from __future__ import annotations

import subprocess
from dataclasses import replace
from pathlib import Path

import pytest

from envseal.activation.declared import ActivationPlan, SecretBinding
from envseal.shell.dialects import ShellKind
from envseal.vault.bundle import bundle_path, save_bundle, seal_bundle
from envseal.vault.identity import Identity, init_identity, reset_identity_cache


@pytest.fixture(autouse=True)
def _clear_identity_cache():
    reset_identity_cache()
    yield
    reset_identity_cache()


@pytest.fixture
def home(tmp_path: Path, monkeypatch) -> Path:
    h = tmp_path / "home"
    h.mkdir()
    monkeypatch.setenv("HOME", str(h))
    monkeypatch.delenv("XDG_CONFIG_HOME", raising=False)
    monkeypatch.delenv("ZDOTDIR", raising=False)
    return h


@pytest.fixture
def host_a(tmp_path: Path) -> Identity:
    return init_identity(tmp_path / "host-a" / "identity.txt", "host-a")


@pytest.fixture
def host_b(tmp_path: Path) -> Identity:
    return init_identity(tmp_path / "host-b" / "identity.txt", "host-b")


@pytest.fixture
def bundles_dir(tmp_path: Path) -> Path:
    d = tmp_path / "secrets"
    d.mkdir()
    return d


@pytest.fixture
def seal(bundles_dir: Path):
    """Seal ``values`` into bundle ``bundle_id`` for the given identities."""

    def _seal(bundle_id: str, values: dict[str, str], *identities: Identity) -> Path:
        bundle = seal_bundle(bundle_id, values, [i.public_key for i in identities])
        return save_bundle(bundle, bundle_path(bundles_dir, bundle_id))

    return _seal


@pytest.fixture
def binding(home: Path):
    def _binding(name: str, bundle_id: str, field_name: str, *env: str) -> SecretBinding:
        return SecretBinding(
            logical_name=name,
            bundle_id=bundle_id,
            field_name=field_name,
            runtime_path=home / ".secrets" / name,
            env_names=env or (field_name,),
        )

    return _binding


@pytest.fixture
def make_plan(home: Path, tmp_path: Path, bundles_dir: Path, host_a: Identity):
    """ActivationPlan rooted in tmp_path; host A's identity unless overridden."""

    def _make(**overrides) -> ActivationPlan:
        plan = ActivationPlan(
            host="host-a",
            home=home,
            identity_file=host_a.private_key_path,
            bundles_dir=bundles_dir,
            policy_file=bundles_dir / ".envseal.yaml",
            runtime_dir=home / ".secrets",
            cache_dir=home / ".cache" / "envseal",
            shells=(ShellKind.FISH,),
        )
        return replace(plan, **overrides)

    return _make


@pytest.fixture
def no_subprocess():
    """A runner that fails the test if anything is executed."""

    def _runner(argv, **kwargs):
        raise AssertionError(f"unexpected subprocess: {argv}")

    return _runner


@pytest.fixture
def ok_runner():
    def _runner(argv, **kwargs):
        return subprocess.CompletedProcess(argv, 0, "", "")

    return _runner
