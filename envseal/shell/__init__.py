"""
envseal shell — per-dialect snippet generation and entrypoint wiring.

Public API:
    get_dialect(kind)                          → ShellDialect (fish, nushell, zsh, bash)
    integrate(dialect, bindings, hooks, cache) → ShellIntegrationArtifact
"""

from __future__ import annotations

from envseal.shell.dialects import DIALECTS, ShellDialect, ShellKind, get_dialect
from envseal.shell.hooks import HookSet, InitIntegration, builtin_integration
from envseal.shell.integrator import (
    ShellIntegrationArtifact,
    ensure_reference,
    integrate,
    render_snippet,
)

__all__ = [
    "DIALECTS",
    "HookSet",
    "InitIntegration",
    "ShellDialect",
    "ShellIntegrationArtifact",
    "ShellKind",
    "builtin_integration",
    "ensure_reference",
    "get_dialect",
    "integrate",
    "render_snippet",
]
