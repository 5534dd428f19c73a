"""
envseal vault — per-host identities, encrypted bundles, recipient policy.

Public API:
    init_identity(path, host)          → Identity (idempotent)
    load_identity(path)                → Identity
    load_bundle(path)                  → SecretBundle
    decrypt_field(bundle, field, id)   → plaintext (DecryptionError if not a recipient)
    RecipientPolicy.load(file, dir)    → resolve / check / plan_reseal / reseal / set_field
"""

from __future__ import annotations

from envseal.vault.bundle import (
    SecretBundle,
    bundle_path,
    decrypt_all,
    decrypt_field,
    load_bundle,
    save_bundle,
    seal_bundle,
)
from envseal.vault.identity import Identity, init_identity, load_identity
from envseal.vault.policy import DriftReport, RecipientPolicy

__all__ = [
    "DriftReport",
    "Identity",
    "RecipientPolicy",
    "SecretBundle",
    "bundle_path",
    "decrypt_all",
    "decrypt_field",
    "init_identity",
    "load_bundle",
    "load_identity",
    "save_bundle",
    "seal_bundle",
]
