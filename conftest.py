"""
Root-level shared test fixtures.

Inherited by every test suite under the repo root (envseal/*/tests and
tests/). Keeps the developer's real ENVSEAL_* settings and cached identities
from leaking into tests.
"""

from __future__ import annotations

import os

import pytest

from envseal.config import reset_config
from envseal.vault.identity import reset_identity_cache


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    """Remove envseal env vars and reset module-level caches."""
    for key in [k for k in os.environ if k.startswith("ENVSEAL_")]:
        monkeypatch.delenv(key, raising=False)
    reset_config()
    reset_identity_cache()
    yield
    reset_config()
    reset_identity_cache()
