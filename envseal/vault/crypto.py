"""
Envelope encryption for secret bundles.

Each bundle has one random 32-byte data key. Field values are encrypted with
AES-256-GCM under the data key, with ``bundle_id:field_name`` as associated
data so a ciphertext cannot be moved to another field or bundle.

The data key is wrapped once per recipient: a fresh ephemeral X25519 key is
agreed with the recipient's public key, HKDF-SHA256 derives a key-encryption
key, and AES-256-GCM seals the data key. Unwrapping tries every stanza with
the local private key; a GCM tag failure means "not sealed for us". Recipient
labels stored beside the stanzas are informational only.

Encrypted values use the sops text form:
    ENC[AES256_GCM,data:<b64>,iv:<b64>,tag:<b64>,type:str]
"""

from __future__ import annotations

import base64
import hashlib
import hmac
import json
import re
import secrets
from dataclasses import dataclass

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.asymmetric.x25519 import X25519PrivateKey, X25519PublicKey
from cryptography.hazmat.primitives.ciphers.aead import AESGCM
from cryptography.hazmat.primitives.kdf.hkdf import HKDF

PUBLIC_KEY_PREFIX = "x25519:"
SECRET_KEY_PREFIX = "ENVSEAL-X25519-SECRET-KEY-"

DATA_KEY_SIZE = 32
NONCE_SIZE = 12
TAG_SIZE = 16

_WRAP_INFO = b"envseal/v1 key-wrap"
_MAC_INFO = b"envseal/v1 bundle-mac"
# Every key-encryption key is derived from a fresh ephemeral share and used once.
_WRAP_NONCE = b"\x00" * NONCE_SIZE

_ENC_RE = re.compile(
    r"^ENC\[AES256_GCM,data:(?P<data>[A-Za-z0-9+/=]*),iv:(?P<iv>[A-Za-z0-9+/=]+),"
    r"tag:(?P<tag>[A-Za-z0-9+/=]+),type:(?P<type>\w+)\]$"
)


def _b64e(raw: bytes) -> str:
    return base64.urlsafe_b64encode(raw).rstrip(b"=").decode("ascii")


def _b64d(text: str) -> bytes:
    return base64.urlsafe_b64decode(text + "=" * (-len(text) % 4))


# ── Keys ────────────────────────────────────────────────────────────────


def generate_private_key() -> X25519PrivateKey:
    return X25519PrivateKey.generate()


def public_key_text(public_key: X25519PublicKey) -> str:
    """Render a public key as ``x25519:<base64url>``."""
    return PUBLIC_KEY_PREFIX + _b64e(public_key.public_bytes_raw())


def parse_public_key(text: str) -> X25519PublicKey:
    """Parse ``x25519:<base64url>``. Raises ValueError on malformed input."""
    text = text.strip()
    if not text.startswith(PUBLIC_KEY_PREFIX):
        raise ValueError(f"Not an envseal public key: {text[:24]!r}")
    raw = _b64d(text[len(PUBLIC_KEY_PREFIX):])
    if len(raw) != 32:
        raise ValueError(f"Public key must be 32 bytes, got {len(raw)}")
    return X25519PublicKey.from_public_bytes(raw)


def private_key_text(private_key: X25519PrivateKey) -> str:
    return SECRET_KEY_PREFIX + _b64e(private_key.private_bytes_raw())


def parse_private_key(text: str) -> X25519PrivateKey:
    text = text.strip()
    if not text.startswith(SECRET_KEY_PREFIX):
        raise ValueError("Not an envseal secret key line")
    raw = _b64d(text[len(SECRET_KEY_PREFIX):])
    if len(raw) != 32:
        raise ValueError(f"Secret key must be 32 bytes, got {len(raw)}")
    return X25519PrivateKey.from_private_bytes(raw)


def normalize_public_key(text: str) -> str:
    """Canonical text form of a public key (validates it on the way)."""
    return public_key_text(parse_public_key(text))


# ── Data key wrapping ───────────────────────────────────────────────────


@dataclass(frozen=True)
class Stanza:
    """The data key sealed for one recipient."""

    recipient: str
    ephemeral: str
    wrapped: str


def generate_data_key() -> bytes:
    return secrets.token_bytes(DATA_KEY_SIZE)


def _derive_kek(shared: bytes, ephemeral_raw: bytes, recipient_raw: bytes) -> bytes:
    return HKDF(
        algorithm=hashes.SHA256(),
        length=32,
        salt=ephemeral_raw + recipient_raw,
        info=_WRAP_INFO,
    ).derive(shared)


def wrap_key(data_key: bytes, recipient: str) -> Stanza:
    """Seal ``data_key`` for the holder of ``recipient``'s private key."""
    recipient_pub = parse_public_key(recipient)
    recipient_raw = recipient_pub.public_bytes_raw()

    ephemeral = X25519PrivateKey.generate()
    ephemeral_raw = ephemeral.public_key().public_bytes_raw()
    kek = _derive_kek(ephemeral.exchange(recipient_pub), ephemeral_raw, recipient_raw)

    wrapped = AESGCM(kek).encrypt(_WRAP_NONCE, data_key, None)
    return Stanza(
        recipient=public_key_text(recipient_pub),
        ephemeral=_b64e(ephemeral_raw),
        wrapped=_b64e(wrapped),
    )


def unwrap_key(stanzas: list[Stanza], private_key: X25519PrivateKey) -> bytes | None:
    """Recover the data key from whichever stanza opens with ``private_key``.

    Returns None when no stanza authenticates; callers turn that into a
    DecryptionError.
    """
    own_raw = private_key.public_key().public_bytes_raw()
    for stanza in stanzas:
        try:
            ephemeral_raw = _b64d(stanza.ephemeral)
            shared = private_key.exchange(X25519PublicKey.from_public_bytes(ephemeral_raw))
            kek = _derive_kek(shared, ephemeral_raw, own_raw)
            data_key = AESGCM(kek).decrypt(_WRAP_NONCE, _b64d(stanza.wrapped), None)
        except (InvalidTag, ValueError):
            continue
        if len(data_key) == DATA_KEY_SIZE:
            return data_key
    return None


# ── Values ──────────────────────────────────────────────────────────────


def is_encrypted(value: object) -> bool:
    return isinstance(value, str) and _ENC_RE.match(value) is not None


def encrypt_value(value: str, data_key: bytes, aad: str) -> str:
    """Encrypt a field value. A fresh IV is drawn for every call."""
    iv = secrets.token_bytes(NONCE_SIZE)
    sealed = AESGCM(data_key).encrypt(iv, value.encode("utf-8"), aad.encode("utf-8"))
    data, tag = sealed[:-TAG_SIZE], sealed[-TAG_SIZE:]
    return "ENC[AES256_GCM,data:{},iv:{},tag:{},type:str]".format(
        base64.b64encode(data).decode("ascii"),
        base64.b64encode(iv).decode("ascii"),
        base64.b64encode(tag).decode("ascii"),
    )


def decrypt_value(enc: str, data_key: bytes, aad: str) -> str:
    """Decrypt an ``ENC[...]`` value.

    Raises ValueError for a malformed value and InvalidTag when authentication
    fails (wrong key, wrong field, tampered ciphertext).
    """
    m = _ENC_RE.match(enc.strip())
    if not m:
        raise ValueError("Value is not in ENC[AES256_GCM,...] form")
    data = base64.b64decode(m.group("data"))
    iv = base64.b64decode(m.group("iv"))
    tag = base64.b64decode(m.group("tag"))
    if len(iv) != NONCE_SIZE or len(tag) != TAG_SIZE:
        raise ValueError("Encrypted value has a bad iv or tag length")
    plaintext = AESGCM(data_key).decrypt(iv, data + tag, aad.encode("utf-8"))
    return plaintext.decode("utf-8")


# ── Integrity ───────────────────────────────────────────────────────────


def compute_mac(data_key: bytes, bundle_id: str, fields: dict[str, str]) -> str:
    """HMAC-SHA256 over the bundle id and every (name, ciphertext) pair."""
    mac_key = HKDF(
        algorithm=hashes.SHA256(), length=32, salt=None, info=_MAC_INFO
    ).derive(data_key)
    payload = json.dumps(
        {"bundle": bundle_id, "fields": sorted(fields.items())},
        separators=(",", ":"),
    ).encode("utf-8")
    return hmac.new(mac_key, payload, hashlib.sha256).hexdigest()


def verify_mac(data_key: bytes, bundle_id: str, fields: dict[str, str], mac: str) -> bool:
    return hmac.compare_digest(compute_mac(data_key, bundle_id, fields), mac)
