"""
Shell dialects.

Each dialect knows where its user-owned entrypoint lives, what line sources
the generated snippet, and how to spell the handful of statements a snippet
needs. Everything a dialect emits is a pure function of its inputs, so the
generated files are byte-identical across runs.
"""

from __future__ import annotations

import os
from abc import ABC, abstractmethod
from enum import StrEnum
from pathlib import Path


class ShellKind(StrEnum):
    FISH = "fish"
    NUSHELL = "nushell"
    ZSH = "zsh"
    BASH = "bash"


class ShellDialect(ABC):
    kind: ShellKind
    extension: str

    def __init__(self, home: Path | None = None, entrypoint: Path | None = None):
        self.home = Path(home) if home is not None else Path.home()
        self._entrypoint = Path(entrypoint).expanduser() if entrypoint is not None else None

    def __repr__(self) -> str:
        return f"{type(self).__name__}(entrypoint={self.entrypoint_path()})"

    def _config_home(self) -> Path:
        xdg = os.environ.get("XDG_CONFIG_HOME")
        return Path(xdg) if xdg else self.home / ".config"

    # ── Entrypoint ──────────────────────────────────────────────────────

    def entrypoint_path(self) -> Path:
        """The user's own config file for this shell."""
        if self._entrypoint is not None:
            return self._entrypoint
        return self._default_entrypoint()

    @abstractmethod
    def _default_entrypoint(self) -> Path: ...

    @abstractmethod
    def reference_line(self, snippet: Path) -> str:
        """The single line that sources ``snippet`` from the entrypoint."""

    def stub(self) -> str:
        """Content for an entrypoint that did not exist at all."""
        return self.comment(f"{self.kind} configuration (created by envseal; edit freely)") + "\n"

    # ── Snippet syntax ──────────────────────────────────────────────────

    def comment(self, text: str) -> str:
        return f"# {text}"

    @abstractmethod
    def quote(self, value: str) -> str: ...

    @abstractmethod
    def export_from_file(self, name: str, path: Path) -> str:
        """Export ``name`` from the contents of ``path``, read at shell start."""

    @abstractmethod
    def set_env(self, name: str, value: str) -> str: ...

    @abstractmethod
    def prepend_path(self, dirs: list[Path]) -> str: ...

    @abstractmethod
    def alias(self, name: str, command: str) -> str: ...

    @abstractmethod
    def source_if_exists(self, path: Path) -> str: ...


class _PosixDialect(ShellDialect):
    """Shared syntax for bash and zsh."""

    def quote(self, value: str) -> str:
        return "'" + value.replace("'", "'\\''") + "'"

    def reference_line(self, snippet: Path) -> str:
        q = self.quote(str(snippet))
        return f"if [ -f {q} ]; then . {q}; fi"

    def export_from_file(self, name: str, path: Path) -> str:
        q = self.quote(str(path))
        return f'if [ -r {q} ]; then export {name}="$(cat {q})"; fi'

    def set_env(self, name: str, value: str) -> str:
        return f"export {name}={self.quote(value)}"

    def prepend_path(self, dirs: list[Path]) -> str:
        joined = ":".join(self.quote(str(d)) for d in dirs)
        return f'export PATH={joined}:"$PATH"'

    def alias(self, name: str, command: str) -> str:
        return f"alias {name}={self.quote(command)}"

    def source_if_exists(self, path: Path) -> str:
        q = self.quote(str(path))
        return f"if [ -f {q} ]; then . {q}; fi"


class Bash(_PosixDialect):
    kind = ShellKind.BASH
    extension = "bash"

    def _default_entrypoint(self) -> Path:
        return self.home / ".bashrc"


class Zsh(_PosixDialect):
    kind = ShellKind.ZSH
    extension = "zsh"

    def _default_entrypoint(self) -> Path:
        zdotdir = os.environ.get("ZDOTDIR")
        return (Path(zdotdir) if zdotdir else self.home) / ".zshrc"


class Fish(ShellDialect):
    kind = ShellKind.FISH
    extension = "fish"

    def _default_entrypoint(self) -> Path:
        return self._config_home() / "fish" / "config.fish"

    def quote(self, value: str) -> str:
        return "'" + value.replace("\\", "\\\\").replace("'", "\\'") + "'"

    def reference_line(self, snippet: Path) -> str:
        q = self.quote(str(snippet))
        return f"test -f {q}; and source {q}"

    def export_from_file(self, name: str, path: Path) -> str:
        q = self.quote(str(path))
        return f"if test -r {q}; set -gx {name} (cat {q} | string collect); end"

    def set_env(self, name: str, value: str) -> str:
        return f"set -gx {name} {self.quote(value)}"

    def prepend_path(self, dirs: list[Path]) -> str:
        quoted = " ".join(self.quote(str(d)) for d in dirs)
        return f"set -gx PATH {quoted} $PATH"

    def alias(self, name: str, command: str) -> str:
        return f"alias {name} {self.quote(command)}"

    def source_if_exists(self, path: Path) -> str:
        q = self.quote(str(path))
        return f"test -f {q}; and source {q}"


class Nushell(ShellDialect):
    """Nushell resolves ``source`` at parse time, so sourced files must exist."""

    kind = ShellKind.NUSHELL
    extension = "nu"

    def _default_entrypoint(self) -> Path:
        return self._config_home() / "nushell" / "config.nu"

    def quote(self, value: str) -> str:
        escaped = value.replace("\\", "\\\\").replace('"', '\\"').replace("\n", "\\n")
        return f'"{escaped}"'

    def reference_line(self, snippet: Path) -> str:
        return f"source {self.quote(str(snippet))}"

    def export_from_file(self, name: str, path: Path) -> str:
        q = self.quote(str(path))
        return (
            f"load-env (if ({q} | path exists) "
            f"{{ {{{name}: (open --raw {q} | str trim)}} }} else {{ {{}} }})"
        )

    def set_env(self, name: str, value: str) -> str:
        return f"$env.{name} = {self.quote(value)}"

    def prepend_path(self, dirs: list[Path]) -> str:
        quoted = " ".join(self.quote(str(d)) for d in dirs)
        return f"$env.PATH = ($env.PATH | split row (char esep) | prepend [{quoted}])"

    def alias(self, name: str, command: str) -> str:
        return f"alias {name} = {command}"

    def source_if_exists(self, path: Path) -> str:
        return f"source {self.quote(str(path))}"


DIALECTS: dict[ShellKind, type[ShellDialect]] = {
    ShellKind.FISH: Fish,
    ShellKind.NUSHELL: Nushell,
    ShellKind.ZSH: Zsh,
    ShellKind.BASH: Bash,
}


def get_dialect(
    kind: ShellKind | str,
    *,
    home: Path | None = None,
    entrypoint: Path | None = None,
) -> ShellDialect:
    """Instantiate the dialect for ``kind`` (ValueError if unknown)."""
    return DIALECTS[ShellKind(kind)](home=home, entrypoint=entrypoint)
