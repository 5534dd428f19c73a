"""
Host declaration — the declared state an activation run is computed from.

A host describes itself in ``host.yaml`` (see ``envseal.config`` for the
default location):

    host: mp-i9-16i
    shells: [fish, nushell, zsh]
    secrets:
      openai_key:
        bundle: ai
        field: OPENAI_API_KEY
      gemini_key:
        bundle: ai
        field: GEMINI_API_KEY
        env: [GEMINI_API_KEY, GOOGLE_GENERATIVE_AI_API_KEY]
    links:
      - source: dotfiles/shell/env.zsh
        target: ~/.config/zsh/env.zsh
    tools:
      - name: zoxide
        install: curl -sSfL https://raw.githubusercontent.com/ajeetdsouza/zoxide/main/install.sh | sh
    env:
      EDITOR: hx
    path: [~/.local/bin, ~/.cargo/bin]
    aliases:
      cldy: claude --dangerously-skip-permissions
    functions: [yazi]
    integrations: [starship, zoxide, direnv]

Nothing here is persisted: every run re-reads the file and rebuilds the plan.
"""

from __future__ import annotations

import logging
import re
import shlex
from dataclasses import dataclass, field
from pathlib import Path

import yaml
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from envseal.config import Config, get_config
from envseal.errors import DeclarationError
from envseal.shell.dialects import ShellDialect, ShellKind, get_dialect
from envseal.shell.hooks import (
    BUILTIN_FUNCTIONS,
    BUILTIN_INTEGRATIONS,
    HookSet,
    InitIntegration,
    builtin_integration,
)

logger = logging.getLogger(__name__)

_ENV_NAME = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")
_LOGICAL_NAME = re.compile(r"^[A-Za-z0-9_][A-Za-z0-9_.-]*$")
_ALIAS_NAME = re.compile(r"^[A-Za-z0-9_][A-Za-z0-9_.-]*$")


# ── Document schema ─────────────────────────────────────────────────────


class _Strict(BaseModel):
    model_config = ConfigDict(extra="forbid", populate_by_name=True)


class LinkDecl(_Strict):
    source: str
    target: str


class ToolDecl(_Strict):
    name: str
    install: str
    optional: bool = False


class SecretDecl(_Strict):
    bundle: str
    field_name: str = Field(alias="field")
    path: str | None = None
    env: list[str] | None = None

    @field_validator("env")
    @classmethod
    def _env_names(cls, v: list[str] | None) -> list[str] | None:
        if v is not None:
            if not v:
                raise ValueError("env must list at least one variable name")
            for name in v:
                if not _ENV_NAME.match(name):
                    raise ValueError(f"invalid environment variable name {name!r}")
        return v


class IntegrationDecl(_Strict):
    name: str
    commands: dict[ShellKind, str]

    @field_validator("commands")
    @classmethod
    def _parseable(cls, v: dict[ShellKind, str]) -> dict[ShellKind, str]:
        for kind, command in v.items():
            try:
                argv = shlex.split(command)
            except ValueError as e:
                raise ValueError(f"{kind} command {command!r}: {e}") from e
            if not argv:
                raise ValueError(f"{kind} command is empty")
        return v


class HostDeclaration(_Strict):
    host: str | None = None

    # Path overrides (defaults come from envseal.config)
    identity: str | None = None
    bundles_dir: str | None = None
    policy: str | None = None
    runtime_dir: str | None = None
    cache_dir: str | None = None

    shells: list[ShellKind] = Field(default_factory=lambda: list(ShellKind))
    entrypoints: dict[ShellKind, str] = Field(default_factory=dict)

    links: list[LinkDecl] = Field(default_factory=list)
    tools: list[ToolDecl] = Field(default_factory=list)
    secrets: dict[str, SecretDecl] = Field(default_factory=dict)

    env: dict[str, str] = Field(default_factory=dict)
    path: list[str] = Field(default_factory=list)
    aliases: dict[str, str] = Field(default_factory=dict)
    functions: list[str] = Field(default_factory=list)
    integrations: list[str | IntegrationDecl] = Field(default_factory=list)

    @field_validator("secrets")
    @classmethod
    def _logical_names(cls, v: dict[str, SecretDecl]) -> dict[str, SecretDecl]:
        for name in v:
            if not _LOGICAL_NAME.match(name):
                raise ValueError(f"invalid secret name {name!r}")
        return v

    @field_validator("env")
    @classmethod
    def _static_env(cls, v: dict[str, str]) -> dict[str, str]:
        for name in v:
            if not _ENV_NAME.match(name):
                raise ValueError(f"invalid environment variable name {name!r}")
        return v

    @field_validator("aliases")
    @classmethod
    def _alias_names(cls, v: dict[str, str]) -> dict[str, str]:
        for name in v:
            if not _ALIAS_NAME.match(name):
                raise ValueError(f"invalid alias name {name!r}")
        return v

    @field_validator("functions")
    @classmethod
    def _known_functions(cls, v: list[str]) -> list[str]:
        for name in v:
            if name not in BUILTIN_FUNCTIONS:
                known = ", ".join(sorted(BUILTIN_FUNCTIONS))
                raise ValueError(f"unknown shell function {name!r} (known: {known})")
        return v

    @field_validator("integrations")
    @classmethod
    def _known_integrations(cls, v: list[str | IntegrationDecl]) -> list[str | IntegrationDecl]:
        for item in v:
            if isinstance(item, str) and item not in BUILTIN_INTEGRATIONS:
                known = ", ".join(sorted(BUILTIN_INTEGRATIONS))
                raise ValueError(f"unknown integration {item!r} (known: {known})")
        return v


# ── Resolved plan ───────────────────────────────────────────────────────


@dataclass(frozen=True)
class SecretBinding:
    """Expose ``bundle_id``/``field_name`` at ``runtime_path`` (mode 0600)."""

    logical_name: str
    bundle_id: str
    field_name: str
    runtime_path: Path
    env_names: tuple[str, ...] = ()


@dataclass(frozen=True)
class LinkSpec:
    source: Path
    target: Path


@dataclass(frozen=True)
class ToolSpec:
    name: str
    install: str
    optional: bool = False


@dataclass(frozen=True)
class ActivationPlan:
    host: str
    home: Path
    identity_file: Path
    bundles_dir: Path
    policy_file: Path
    runtime_dir: Path
    cache_dir: Path
    shells: tuple[ShellKind, ...] = ()
    entrypoints: dict[ShellKind, Path] = field(default_factory=dict)
    links: tuple[LinkSpec, ...] = ()
    tools: tuple[ToolSpec, ...] = ()
    bindings: tuple[SecretBinding, ...] = ()
    hooks: HookSet = field(default_factory=HookSet)

    def dialects(self) -> list[ShellDialect]:
        return [
            get_dialect(kind, home=self.home, entrypoint=self.entrypoints.get(kind))
            for kind in self.shells
        ]


# ── Loading ─────────────────────────────────────────────────────────────


def _resolve(value: str, base: Path) -> Path:
    path = Path(value).expanduser()
    return path if path.is_absolute() else base / path


def _or(value: str | None, default: Path, base: Path) -> Path:
    return default if value is None else _resolve(value, base)


def load_declaration(path: Path | str | None = None, config: Config | None = None) -> ActivationPlan:
    """Parse ``host.yaml`` into an ActivationPlan.

    Relative paths resolve against the declaration's directory, except secret
    ``path`` entries, which resolve against the runtime directory. Any problem
    raises DeclarationError.
    """
    config = config or get_config()
    path = Path(path).expanduser() if path is not None else config.host_config

    try:
        with open(path) as f:
            raw = yaml.safe_load(f)
    except FileNotFoundError:
        raise DeclarationError(f"Host declaration not found at {path}") from None
    except (OSError, yaml.YAMLError) as e:
        raise DeclarationError(f"Cannot read host declaration {path}: {e}") from e

    if raw is None:
        raw = {}
    if not isinstance(raw, dict):
        raise DeclarationError(f"Host declaration {path} must be a mapping")

    try:
        decl = HostDeclaration.model_validate(raw)
    except ValidationError as e:
        raise DeclarationError(f"Invalid host declaration {path}: {e}") from e

    base = path.parent.resolve()
    runtime_dir = _or(decl.runtime_dir, config.runtime_dir, base)
    bundles_dir = _or(decl.bundles_dir, config.bundles_dir, base)

    bindings = _bindings(decl, runtime_dir)

    tool_names = [t.name for t in decl.tools]
    dupes = sorted({n for n in tool_names if tool_names.count(n) > 1})
    if dupes:
        raise DeclarationError(f"Tool(s) declared more than once: {', '.join(dupes)}")

    integrations: list[InitIntegration] = []
    for item in decl.integrations:
        if isinstance(item, str):
            integrations.append(builtin_integration(item))
        else:
            integrations.append(InitIntegration(name=item.name, commands=dict(item.commands)))

    plan = ActivationPlan(
        host=decl.host or config.host,
        home=Path.home(),
        identity_file=_or(decl.identity, config.identity_file, base),
        bundles_dir=bundles_dir,
        policy_file=_or(
            decl.policy,
            config.policy_file if decl.bundles_dir is None else bundles_dir / ".envseal.yaml",
            base,
        ),
        runtime_dir=runtime_dir,
        cache_dir=_or(decl.cache_dir, config.cache_dir, base),
        shells=tuple(dict.fromkeys(decl.shells)),
        entrypoints={k: _resolve(v, base) for k, v in decl.entrypoints.items()},
        links=tuple(
            LinkSpec(source=_resolve(lk.source, base),
                     target=_resolve(lk.target, base))
            for lk in decl.links
        ),
        tools=tuple(ToolSpec(t.name, t.install, t.optional) for t in decl.tools),
        bindings=bindings,
        hooks=HookSet(
            env=tuple(decl.env.items()),
            path=tuple(_resolve(p, base) for p in decl.path),
            aliases=tuple(decl.aliases.items()),
            functions=tuple(dict.fromkeys(decl.functions)),
            integrations=tuple(integrations),
        ),
    )
    logger.debug(
        "Loaded declaration %s: %d binding(s), %d link(s), %d tool(s), shells=%s",
        path, len(plan.bindings), len(plan.links), len(plan.tools),
        ",".join(plan.shells),
    )
    return plan


def _bindings(decl: HostDeclaration, runtime_dir: Path) -> tuple[SecretBinding, ...]:
    bindings: list[SecretBinding] = []
    seen_paths: dict[Path, str] = {}
    seen_env: dict[str, str] = {}

    for name, s in decl.secrets.items():
        runtime_path = _or(s.path, runtime_dir / name, runtime_dir)
        if runtime_path in seen_paths:
            raise DeclarationError(
                f"Secrets '{seen_paths[runtime_path]}' and '{name}' "
                f"share runtime path {runtime_path}"
            )
        seen_paths[runtime_path] = name

        env_names = tuple(s.env) if s.env is not None else (s.field_name,)
        for env_name in env_names:
            if env_name in seen_env:
                raise DeclarationError(
                    f"Environment variable {env_name} is exported by both "
                    f"'{seen_env[env_name]}' and '{name}'"
                )
            seen_env[env_name] = name

        bindings.append(
            SecretBinding(
                logical_name=name,
                bundle_id=s.bundle,
                field_name=s.field_name,
                runtime_path=runtime_path,
                env_names=env_names,
            )
        )
    return tuple(bindings)
