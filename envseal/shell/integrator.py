"""
Shell integration — one generated snippet per dialect plus one managed
reference to it in the user's own entrypoint.

The snippet is fully regenerated on every activation and never contains a
secret value; it exports each binding by reading the runtime file when the
shell starts.

The entrypoint is user-owned. envseal only ever appends a marker-delimited
block holding the reference line:

    # >>> envseal managed block >>>
    test -f '/home/me/.cache/envseal/envseal.fish'; and source '/home/me/.cache/envseal/envseal.fish'
    # <<< envseal managed block <<<

On later runs the block body is refreshed in place. If the user removed the
markers but kept the exact reference line, nothing is appended. Existing
content is never deleted or reordered.
"""

from __future__ import annotations

import logging
import subprocess
from collections.abc import Sequence
from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING

from envseal.errors import IntegrationWriteError
from envseal.fsutil import atomic_write, file_mode, write_if_changed
from envseal.shell.dialects import ShellDialect, ShellKind
from envseal.shell.hooks import HookSet, Runner, function_body, refresh_integration

if TYPE_CHECKING:
    from envseal.activation.declared import SecretBinding

logger = logging.getLogger(__name__)

MARKER_BEGIN = "# >>> envseal managed block >>>"
MARKER_END = "# <<< envseal managed block <<<"
SNIPPET_STEM = "envseal"


@dataclass(frozen=True)
class ShellIntegrationArtifact:
    shell_kind: ShellKind
    generated_snippet_path: Path
    managed_marker: str
    entrypoint_path: Path
    snippet_changed: bool = False
    entrypoint_changed: bool = False
    warnings: tuple[str, ...] = ()


def snippet_path(dialect: ShellDialect, cache_dir: Path) -> Path:
    return Path(cache_dir) / f"{SNIPPET_STEM}.{dialect.extension}"


# ── Snippet ─────────────────────────────────────────────────────────────


def render_snippet(
    dialect: ShellDialect,
    bindings: Sequence[SecretBinding],
    hooks: HookSet,
    cache_dir: Path,
) -> str:
    """Deterministic snippet text for ``dialect``."""
    sections: list[list[str]] = [
        [
            dialect.comment("Generated by envseal on every activation. Do not edit."),
            dialect.comment("Secrets are read from their runtime files when the shell starts."),
        ]
    ]

    if hooks.path:
        sections.append([dialect.prepend_path(list(hooks.path))])

    if hooks.env:
        sections.append([dialect.set_env(name, value) for name, value in hooks.env])

    if bindings:
        section = [dialect.comment("secrets")]
        for b in bindings:
            for env_name in b.env_names:
                section.append(dialect.export_from_file(env_name, b.runtime_path))
        sections.append(section)

    if hooks.aliases:
        sections.append([dialect.alias(name, command) for name, command in hooks.aliases])

    for name in hooks.functions:
        body = function_body(name, dialect.kind)
        if body is not None:
            sections.append([dialect.comment(f"function: {name}"), body])

    sources = [
        dialect.source_if_exists(integ.cache_path(cache_dir, dialect))
        for integ in hooks.integrations
        if integ.command_for(dialect.kind) is not None
    ]
    if sources:
        sections.append([dialect.comment("integrations"), *sources])

    return "\n\n".join("\n".join(s) for s in sections) + "\n"


# ── Entrypoint ──────────────────────────────────────────────────────────


def _find_block(lines: list[str]) -> tuple[int, int] | None:
    """Begin/end indices of the managed block: the last begin marker with an end marker after it."""
    begins = [i for i, line in enumerate(lines) if line.strip() == MARKER_BEGIN]
    ends = [i for i, line in enumerate(lines) if line.strip() == MARKER_END]
    for begin in reversed(begins):
        end = next((i for i in ends if i > begin), None)
        if end is not None:
            return begin, end
    return None


def update_entrypoint_text(text: str, reference: str) -> str | None:
    """Return ``text`` with exactly one managed reference, or None if already correct.

    Only the block body is ever replaced; every other line keeps its bytes,
    line endings included.
    """
    newline = "\r\n" if "\r\n" in text else "\n"
    lines = text.splitlines(keepends=True)
    block = _find_block(lines)

    if block is not None:
        begin, end = block
        if [line.rstrip("\r\n") for line in lines[begin + 1:end]] == [reference]:
            return None
        eol = lines[begin][len(lines[begin].rstrip("\r\n")):]
        return "".join(lines[: begin + 1] + [reference + eol] + lines[end:])

    if any(line.strip() == reference for line in lines):
        return None

    prefix = text
    if prefix and not prefix.endswith("\n"):
        prefix += newline
    if prefix.strip():
        prefix += newline
    return prefix + newline.join([MARKER_BEGIN, reference, MARKER_END]) + newline


def ensure_reference(dialect: ShellDialect, snippet: Path) -> bool:
    """Make the entrypoint source ``snippet`` exactly once. Returns True if it was written.

    A symlinked entrypoint is edited at its target so the link survives.
    """
    entry = dialect.entrypoint_path()
    target = entry.resolve() if entry.is_symlink() else entry
    reference = dialect.reference_line(snippet)

    try:
        if target.exists():
            text = target.read_bytes().decode("utf-8")
            mode = file_mode(target)
            created = False
        else:
            text = dialect.stub()
            mode = 0o644
            created = True

        updated = update_entrypoint_text(text, reference)
        if updated is None and not created:
            return False
        atomic_write(target, updated if updated is not None else text, mode=mode)
    except (OSError, UnicodeDecodeError) as e:
        raise IntegrationWriteError(f"{dialect.kind}: cannot update {entry}: {e}") from e

    logger.info("%s %s with envseal reference", "Created" if created else "Updated", entry)
    return True


# ── Entry point ─────────────────────────────────────────────────────────


def integrate(
    dialect: ShellDialect,
    bindings: Sequence[SecretBinding],
    hooks: HookSet,
    cache_dir: Path,
    *,
    runner: Runner = subprocess.run,
) -> ShellIntegrationArtifact:
    """Regenerate the snippet for ``dialect`` and wire it into the entrypoint.

    Integration cache failures are collected as warnings; failing to write the
    snippet or the entrypoint raises IntegrationWriteError.
    """
    warnings: list[str] = []
    for integ in hooks.integrations:
        try:
            refresh_integration(integ, dialect, cache_dir, runner=runner)
        except IntegrationWriteError as e:
            logger.warning("%s", e)
            warnings.append(str(e))

    path = snippet_path(dialect, cache_dir)
    content = render_snippet(dialect, bindings, hooks, cache_dir)
    try:
        snippet_changed = write_if_changed(path, content)
    except OSError as e:
        raise IntegrationWriteError(f"{dialect.kind}: cannot write snippet {path}: {e}") from e
    if snippet_changed:
        logger.info("Wrote %s snippet %s", dialect.kind, path)

    entry_changed = ensure_reference(dialect, path)

    return ShellIntegrationArtifact(
        shell_kind=dialect.kind,
        generated_snippet_path=path,
        managed_marker=MARKER_BEGIN,
        entrypoint_path=dialect.entrypoint_path(),
        snippet_changed=snippet_changed,
        entrypoint_changed=entry_changed,
        warnings=tuple(warnings),
    )
