"""
Per-host X25519 identity.

The private key lives in a single file (chmod 600) that never leaves the
host and is never referenced from versioned state:

    # host: work-mp-m3-max
    # public key: x25519:3q2-7w...
    ENVSEAL-X25519-SECRET-KEY-Zm9v...
"""

from __future__ import annotations

import logging
import stat
from dataclasses import dataclass, field
from datetime import UTC, datetime
from pathlib import Path

from cryptography.hazmat.primitives.asymmetric.x25519 import X25519PrivateKey

from envseal.errors import IdentityError
from envseal.fsutil import atomic_write
from envseal.vault.crypto import (
    generate_private_key,
    parse_private_key,
    private_key_text,
    public_key_text,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Identity:
    """A host keypair. ``private_key`` is excluded from repr and comparisons."""

    host_label: str
    public_key: str
    private_key_path: Path
    private_key: X25519PrivateKey = field(repr=False, compare=False)


_cache: dict[Path, Identity] = {}


def init_identity(path: Path | str, host_label: str) -> Identity:
    """Generate a new identity file. Idempotent — loads the existing one if present."""
    path = Path(path).expanduser()
    if path.exists():
        logger.info("Identity already exists at %s", path)
        return load_identity(path)

    private_key = generate_private_key()
    public = public_key_text(private_key.public_key())
    created = datetime.now(UTC).replace(microsecond=0).isoformat()
    content = (
        f"# created: {created}\n"
        f"# host: {host_label}\n"
        f"# public key: {public}\n"
        f"{private_key_text(private_key)}\n"
    )
    try:
        atomic_write(path, content, mode=0o600, dir_mode=0o700)
    except OSError as e:
        raise IdentityError(f"Cannot write identity file {path}: {e}") from e
    logger.info("Generated identity for host %s at %s", host_label, path)

    identity = Identity(
        host_label=host_label,
        public_key=public,
        private_key_path=path,
        private_key=private_key,
    )
    _cache[path] = identity
    return identity


def load_identity(path: Path | str) -> Identity:
    """Load the identity file (cached per path after first read)."""
    path = Path(path).expanduser()
    cached = _cache.get(path)
    if cached is not None:
        return cached

    if not path.exists():
        raise IdentityError(
            f"Identity file not found at {path}. "
            "Run 'envseal identity init' to generate one for this host."
        )
    try:
        mode = path.stat().st_mode
        text = path.read_text()
    except OSError as e:
        raise IdentityError(f"Cannot read identity file {path}: {e}") from e

    if mode & (stat.S_IRWXG | stat.S_IRWXO):
        logger.warning("Identity file %s is accessible by group/others; chmod 600 it", path)

    host_label = ""
    private_key: X25519PrivateKey | None = None
    for line in text.splitlines():
        line = line.strip()
        if not line:
            continue
        if line.startswith("#"):
            key, _, value = line.lstrip("# ").partition(":")
            if key.strip() == "host":
                host_label = value.strip()
            continue
        try:
            private_key = parse_private_key(line)
        except ValueError as e:
            raise IdentityError(f"Malformed identity file {path}: {e}") from e
        break

    if private_key is None:
        raise IdentityError(f"Identity file {path} contains no secret key")

    identity = Identity(
        host_label=host_label or path.stem,
        public_key=public_key_text(private_key.public_key()),
        private_key_path=path,
        private_key=private_key,
    )
    _cache[path] = identity
    return identity


def reset_identity_cache() -> None:
    """Clear cached identities (for testing)."""
    _cache.clear()
