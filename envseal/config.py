"""
Centralized configuration for envseal.

All configuration is loaded from environment variables with sensible defaults.
The host declaration file (host.yaml) may override any of the paths below;
see envseal.activation.declared.

Usage:
    from envseal.config import get_config
    cfg = get_config()
    print(cfg.identity_file)   # ~/.local/share/envseal/identity.txt
    print(cfg.runtime_dir)     # ~/.secrets or $ENVSEAL_RUNTIME_DIR
"""

from __future__ import annotations

import os
import socket
from dataclasses import dataclass, field
from pathlib import Path


def _env_path(name: str, default: Path) -> Path:
    value = os.environ.get(name)
    return Path(value).expanduser() if value else default


def _default_host() -> str:
    return socket.gethostname().split(".")[0] or "localhost"


@dataclass(frozen=True)
class Config:
    """Top-level envseal configuration."""

    host: str = field(default_factory=_default_host)

    # Declared state
    home: Path = field(default_factory=lambda: Path.home() / ".config" / "envseal")
    host_config: Path = field(
        default_factory=lambda: Path.home() / ".config" / "envseal" / "host.yaml"
    )

    # Identity (private half never leaves the host)
    identity_file: Path = field(
        default_factory=lambda: Path.home() / ".local" / "share" / "envseal" / "identity.txt"
    )

    # Versioned encrypted state
    bundles_dir: Path = field(default_factory=lambda: Path.home() / ".config" / "secrets")
    policy_file: Path = field(
        default_factory=lambda: Path.home() / ".config" / "secrets" / ".envseal.yaml"
    )

    # Ephemeral, regenerated on every activation
    runtime_dir: Path = field(default_factory=lambda: Path.home() / ".secrets")
    cache_dir: Path = field(default_factory=lambda: Path.home() / ".cache" / "envseal")

    log_level: str = "INFO"


# Singleton
_config: Config | None = None


def get_config() -> Config:
    """Get or create the singleton config from environment variables."""
    global _config
    if _config is not None:
        return _config
    _config = _load_from_env()
    return _config


def _load_from_env() -> Config:
    """Load configuration from environment variables."""
    home = _env_path("ENVSEAL_HOME", Path.home() / ".config" / "envseal")
    bundles_dir = _env_path("ENVSEAL_BUNDLES_DIR", Path.home() / ".config" / "secrets")

    return Config(
        host=os.environ.get("ENVSEAL_HOST") or _default_host(),
        home=home,
        host_config=_env_path("ENVSEAL_HOST_CONFIG", home / "host.yaml"),
        identity_file=_env_path(
            "ENVSEAL_IDENTITY_FILE",
            Path.home() / ".local" / "share" / "envseal" / "identity.txt",
        ),
        bundles_dir=bundles_dir,
        policy_file=_env_path("ENVSEAL_POLICY_FILE", bundles_dir / ".envseal.yaml"),
        runtime_dir=_env_path("ENVSEAL_RUNTIME_DIR", Path.home() / ".secrets"),
        cache_dir=_env_path("ENVSEAL_CACHE_DIR", Path.home() / ".cache" / "envseal"),
        log_level=os.environ.get("ENVSEAL_LOG_LEVEL", "INFO").upper(),
    )


def reset_config() -> None:
    """Reset the singleton config (for testing)."""
    global _config
    _config = None
