"""
Secret bundles — one encrypted YAML document per logical domain.

    fields:
      OPENAI_API_KEY: ENC[AES256_GCM,data:...,iv:...,tag:...,type:str]
    metadata:
      version: 1
      bundle_id: ai
      recipients:
        - recipient: x25519:...
          ephemeral: ...
          wrapped: ...
      mac: 9f2c...
      lastmodified: '2026-10-19T09:12:44+00:00'

A bundle is never edited in place: every change produces a new SecretBundle
that is written whole, atomically.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable
from dataclasses import dataclass, replace
from datetime import UTC, datetime
from pathlib import Path

import yaml
from cryptography.exceptions import InvalidTag
from pydantic import ValidationError

from envseal.errors import DecryptionError, MissingBundleError, MissingFieldError, PolicyError
from envseal.fsutil import atomic_write
from envseal.vault.crypto import (
    Stanza,
    compute_mac,
    decrypt_value,
    encrypt_value,
    generate_data_key,
    normalize_public_key,
    unwrap_key,
    verify_mac,
    wrap_key,
)
from envseal.vault.identity import Identity
from envseal.vault.models import BundleFile, BundleMetadata, StanzaModel

logger = logging.getLogger(__name__)

BUNDLE_SUFFIX = ".yaml"


@dataclass(frozen=True)
class SecretBundle:
    bundle_id: str
    fields: dict[str, str]
    stanzas: tuple[Stanza, ...]
    mac: str
    lastmodified: datetime | None = None

    @property
    def recipients_used(self) -> frozenset[str]:
        return frozenset(s.recipient for s in self.stanzas)

    @property
    def field_names(self) -> list[str]:
        return list(self.fields)


def _aad(bundle_id: str, field_name: str) -> str:
    return f"{bundle_id}:{field_name}"


def _now() -> datetime:
    return datetime.now(UTC).replace(microsecond=0)


def bundle_path(bundles_dir: Path, bundle_id: str) -> Path:
    return Path(bundles_dir) / f"{bundle_id}{BUNDLE_SUFFIX}"


def bundle_id_for(bundles_dir: Path, path: Path) -> str:
    """Bundle id of ``path``: its location under ``bundles_dir`` without the suffix."""
    rel = Path(path).relative_to(bundles_dir)
    return rel.with_suffix("").as_posix()


def iter_bundle_paths(bundles_dir: Path) -> list[Path]:
    """All bundle files under ``bundles_dir`` (dotfiles such as the policy are skipped)."""
    bundles_dir = Path(bundles_dir)
    if not bundles_dir.is_dir():
        return []
    return sorted(
        p
        for p in bundles_dir.rglob(f"*{BUNDLE_SUFFIX}")
        if p.is_file() and not any(part.startswith(".") for part in p.relative_to(bundles_dir).parts)
    )


# ── Persistence ─────────────────────────────────────────────────────────


def load_bundle(path: Path, bundle_id: str | None = None) -> SecretBundle:
    """Read and validate a bundle file.

    ``bundle_id`` names the bundle in errors when the file is missing.
    """
    path = Path(path)
    label = bundle_id or path.stem
    try:
        with open(path) as f:
            raw = yaml.safe_load(f)
    except FileNotFoundError:
        raise MissingBundleError(label, path) from None
    except (OSError, yaml.YAMLError) as e:
        raise DecryptionError(label, f"unreadable bundle file {path}: {e}") from e

    if not isinstance(raw, dict):
        raise DecryptionError(label, f"bundle file {path} is not a mapping")
    try:
        doc = BundleFile.model_validate(raw)
    except ValidationError as e:
        raise DecryptionError(label, f"invalid bundle file {path}: {e}") from e

    meta = doc.metadata
    if bundle_id is not None and meta.bundle_id != bundle_id:
        logger.warning(
            "Bundle file %s declares id '%s' but was resolved as '%s'",
            path, meta.bundle_id, bundle_id,
        )
    return SecretBundle(
        bundle_id=meta.bundle_id,
        fields=dict(doc.fields),
        stanzas=tuple(Stanza(**s.model_dump()) for s in meta.recipients),
        mac=meta.mac,
        lastmodified=meta.lastmodified,
    )


def dump_bundle(bundle: SecretBundle) -> str:
    doc = BundleFile(
        fields=bundle.fields,
        metadata=BundleMetadata(
            bundle_id=bundle.bundle_id,
            recipients=[
                StanzaModel(recipient=s.recipient, ephemeral=s.ephemeral, wrapped=s.wrapped)
                for s in bundle.stanzas
            ],
            mac=bundle.mac,
            lastmodified=bundle.lastmodified,
        ),
    )
    return yaml.safe_dump(doc.model_dump(mode="json"), sort_keys=False, width=4096)


def save_bundle(bundle: SecretBundle, path: Path) -> Path:
    """Write the whole bundle atomically."""
    atomic_write(Path(path), dump_bundle(bundle), mode=0o644)
    logger.info("Wrote bundle '%s' (%d fields) to %s", bundle.bundle_id, len(bundle.fields), path)
    return Path(path)


# ── Sealing / opening ───────────────────────────────────────────────────


def seal_bundle(
    bundle_id: str,
    values: dict[str, str],
    recipients: Iterable[str],
) -> SecretBundle:
    """Encrypt ``values`` under a fresh data key sealed for ``recipients``."""
    keys = sorted({normalize_public_key(r) for r in recipients})
    if not keys:
        raise PolicyError(f"Refusing to seal bundle '{bundle_id}' for zero recipients")

    data_key = generate_data_key()
    fields = {
        name: encrypt_value(value, data_key, _aad(bundle_id, name))
        for name, value in values.items()
    }
    return SecretBundle(
        bundle_id=bundle_id,
        fields=fields,
        stanzas=tuple(wrap_key(data_key, k) for k in keys),
        mac=compute_mac(data_key, bundle_id, fields),
        lastmodified=_now(),
    )


def open_bundle(bundle: SecretBundle, identity: Identity) -> bytes:
    """Recover the bundle's data key with the local identity and verify the MAC."""
    data_key = unwrap_key(list(bundle.stanzas), identity.private_key)
    if data_key is None:
        raise DecryptionError(
            bundle.bundle_id,
            f"host '{identity.host_label}' ({identity.public_key}) is not among its recipients",
        )
    if not verify_mac(data_key, bundle.bundle_id, bundle.fields, bundle.mac):
        raise DecryptionError(bundle.bundle_id, "MAC mismatch, bundle was modified after sealing")
    return data_key


def decrypt_field(bundle: SecretBundle, field_name: str, identity: Identity) -> str:
    if field_name not in bundle.fields:
        raise MissingFieldError(bundle.bundle_id, field_name)
    data_key = open_bundle(bundle, identity)
    return _decrypt(bundle, field_name, data_key)


def decrypt_all(bundle: SecretBundle, identity: Identity) -> dict[str, str]:
    data_key = open_bundle(bundle, identity)
    return {name: _decrypt(bundle, name, data_key) for name in bundle.fields}


def _decrypt(bundle: SecretBundle, field_name: str, data_key: bytes) -> str:
    try:
        return decrypt_value(
            bundle.fields[field_name], data_key, _aad(bundle.bundle_id, field_name)
        )
    except (InvalidTag, ValueError) as e:
        raise DecryptionError(
            bundle.bundle_id, "authentication tag check failed", field_name
        ) from e


def with_field(
    bundle: SecretBundle, field_name: str, value: str, identity: Identity
) -> SecretBundle:
    """New bundle with ``field_name`` set, sealed for the same recipients."""
    data_key = open_bundle(bundle, identity)
    fields = dict(bundle.fields)
    fields[field_name] = encrypt_value(value, data_key, _aad(bundle.bundle_id, field_name))
    return replace(
        bundle,
        fields=fields,
        mac=compute_mac(data_key, bundle.bundle_id, fields),
        lastmodified=_now(),
    )
