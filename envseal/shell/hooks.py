"""
Derived shell hooks beyond secrets: static env vars, PATH prepends, aliases,
wrapper functions, and cached init scripts for prompt/navigation tools.

Tools like starship and zoxide print an init script that embeds absolute
paths to their binary. Their output is cached under the envseal cache dir on
each activation and the snippet sources the cache file, so opening a shell
never forks the tool just to configure itself.
"""

from __future__ import annotations

import logging
import shlex
import shutil
import subprocess
from collections.abc import Callable
from dataclasses import dataclass
from pathlib import Path

from envseal.errors import IntegrationWriteError
from envseal.fsutil import write_if_changed
from envseal.shell.dialects import ShellDialect, ShellKind

logger = logging.getLogger(__name__)

INIT_TIMEOUT_SECONDS = 30

F, N, Z, B = ShellKind.FISH, ShellKind.NUSHELL, ShellKind.ZSH, ShellKind.BASH

BUILTIN_INTEGRATIONS: dict[str, dict[ShellKind, str]] = {
    "starship": {
        F: "starship init fish",
        N: "starship init nu",
        Z: "starship init zsh",
        B: "starship init bash",
    },
    "zoxide": {
        F: "zoxide init fish",
        N: "zoxide init nushell",
        Z: "zoxide init zsh",
        B: "zoxide init bash",
    },
    "direnv": {
        F: "direnv hook fish",
        Z: "direnv hook zsh",
        B: "direnv hook bash",
    },
    "atuin": {
        F: "atuin init fish",
        N: "atuin init nu",
        Z: "atuin init zsh",
        B: "atuin init bash",
    },
}

_YAZI_POSIX = """\
function y() {
    local tmp="$(mktemp -t "yazi-cwd.XXXXXX")" cwd
    yazi "$@" --cwd-file="$tmp"
    IFS= read -r -d "" cwd < "$tmp"
    test -n "$cwd" && test "$cwd" != "$PWD" && builtin cd -- "$cwd"
    rm -f -- "$tmp"
}"""

BUILTIN_FUNCTIONS: dict[str, dict[ShellKind, str]] = {
    # cd into yazi's last directory on exit
    "yazi": {
        F: """\
function y
    set tmp (mktemp -t "yazi-cwd.XXXXXX")
    yazi $argv --cwd-file="$tmp"
    if read -z cwd < "$tmp"; and test -n "$cwd"; and test "$cwd" != "$PWD"
        builtin cd -- "$cwd"
    end
    rm -f -- "$tmp"
end""",
        N: """\
def --env y [...args] {
    let tmp = (mktemp -t "yazi-cwd.XXXXXX")
    yazi ...$args --cwd-file $tmp
    let cwd = (open $tmp)
    if $cwd != "" and $cwd != $env.PWD {
        cd $cwd
    }
    rm -fp $tmp
}""",
        Z: _YAZI_POSIX,
        B: _YAZI_POSIX,
    },
}


@dataclass(frozen=True)
class InitIntegration:
    """A tool whose ``init``/``hook`` output is cached per dialect."""

    name: str
    commands: dict[ShellKind, str]

    def command_for(self, kind: ShellKind) -> str | None:
        return self.commands.get(kind)

    def cache_path(self, cache_dir: Path, dialect: ShellDialect) -> Path:
        return Path(cache_dir) / f"{self.name}.{dialect.extension}"


@dataclass(frozen=True)
class HookSet:
    """Everything besides secrets that goes into a generated snippet."""

    env: tuple[tuple[str, str], ...] = ()
    path: tuple[Path, ...] = ()
    aliases: tuple[tuple[str, str], ...] = ()
    functions: tuple[str, ...] = ()
    integrations: tuple[InitIntegration, ...] = ()


def builtin_integration(name: str) -> InitIntegration:
    """Look up a known integration (KeyError if unknown)."""
    return InitIntegration(name=name, commands=dict(BUILTIN_INTEGRATIONS[name]))


def function_body(name: str, kind: ShellKind) -> str | None:
    return BUILTIN_FUNCTIONS.get(name, {}).get(kind)


Runner = Callable[..., subprocess.CompletedProcess]


def refresh_integration(
    integration: InitIntegration,
    dialect: ShellDialect,
    cache_dir: Path,
    *,
    runner: Runner = subprocess.run,
) -> Path | None:
    """Regenerate the cached init script for one dialect.

    Returns the cache path, or None when the integration has no command for
    this dialect. A tool that is not installed yields an empty placeholder;
    a tool that fails keeps its previous cache and raises IntegrationWriteError.
    """
    command = integration.command_for(dialect.kind)
    if command is None:
        return None

    cache = integration.cache_path(cache_dir, dialect)
    try:
        argv = shlex.split(command)
    except ValueError as e:
        raise IntegrationWriteError(f"{dialect.kind}: cannot parse '{command}': {e}") from e
    if not argv:
        raise IntegrationWriteError(f"{dialect.kind}: empty init command for {integration.name}")

    if shutil.which(argv[0]) is None:
        logger.debug("%s not installed; writing empty placeholder %s", argv[0], cache)
        _write(cache, "", integration.name, dialect)
        return cache

    try:
        proc = runner(argv, capture_output=True, text=True, timeout=INIT_TIMEOUT_SECONDS)
    except (OSError, subprocess.TimeoutExpired) as e:
        if not cache.exists():
            _write(cache, "", integration.name, dialect)
        raise IntegrationWriteError(
            f"{dialect.kind}: '{command}' could not run: {e}"
        ) from e
    if proc.returncode != 0:
        if not cache.exists():
            _write(cache, "", integration.name, dialect)
        stderr = (proc.stderr or "").strip()
        raise IntegrationWriteError(
            f"{dialect.kind}: '{command}' exited {proc.returncode}: {stderr[:200]}"
        )

    _write(cache, proc.stdout, integration.name, dialect)
    return cache


def _write(cache: Path, content: str, name: str, dialect: ShellDialect) -> None:
    try:
        if write_if_changed(cache, content):
            logger.info("Cached %s init for %s at %s", name, dialect.kind, cache)
    except OSError as e:
        raise IntegrationWriteError(f"{dialect.kind}: cannot write {cache}: {e}") from e
