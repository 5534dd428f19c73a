"""Link-management stage: point dotfile targets at their versioned sources."""

from __future__ import annotations

import contextlib
import logging
import os
import shutil
from collections.abc import Iterable
from dataclasses import dataclass
from pathlib import Path

from envseal.activation.declared import LinkSpec
from envseal.errors import LinkError
from envseal.fsutil import ensure_dir

logger = logging.getLogger(__name__)


@dataclass
class LinkResult:
    source: Path
    target: Path
    action: str  # linked | relinked | unchanged | backed-up | skipped
    backup: Path | None = None
    warning: str | None = None


def backup_path(target: Path) -> Path:
    """First free ``target.bak``, ``target.bak.1``, ``target.bak.2``, ..."""
    candidate = target.with_name(f"{target.name}.bak")
    n = 1
    while candidate.exists() or candidate.is_symlink():
        candidate = target.with_name(f"{target.name}.bak.{n}")
        n += 1
    return candidate


def _symlink_atomic(source: Path, target: Path) -> None:
    ensure_dir(target.parent)
    tmp = target.with_name(f".{target.name}.envseal-link")
    with contextlib.suppress(FileNotFoundError):
        tmp.unlink()
    tmp.symlink_to(source)
    os.replace(tmp, target)


def apply_link(spec: LinkSpec) -> LinkResult:
    """Make ``spec.target`` a symlink to ``spec.source``.

    A regular file at the target is preserved as a ``.bak`` copy first. A
    real directory is never replaced.
    """
    source, target = spec.source, spec.target

    if not source.exists():
        warning = f"Link source {source} does not exist; skipping {target}"
        logger.warning("%s", warning)
        return LinkResult(source, target, "skipped", warning=warning)

    try:
        if target.is_symlink():
            if os.readlink(target) == str(source):
                return LinkResult(source, target, "unchanged")
            _symlink_atomic(source, target)
            logger.info("Relinked %s -> %s", target, source)
            return LinkResult(source, target, "relinked")

        if target.is_dir():
            # Real dir, don't overwrite
            warning = f"{target} is a directory; not replacing it with a link to {source}"
            logger.warning("%s", warning)
            return LinkResult(source, target, "skipped", warning=warning)

        if target.exists():
            backup = backup_path(target)
            try:
                os.link(target, backup)
            except OSError:
                shutil.copy2(target, backup)
            _symlink_atomic(source, target)
            logger.info("Backed up %s to %s and linked -> %s", target, backup, source)
            return LinkResult(source, target, "backed-up", backup=backup)

        _symlink_atomic(source, target)
    except OSError as e:
        raise LinkError(f"Cannot link {target} -> {source}: {e}") from e

    logger.info("Linked %s -> %s", target, source)
    return LinkResult(source, target, "linked")


def apply_links(specs: Iterable[LinkSpec]) -> list[LinkResult]:
    """Apply every declared link in order; the first OS failure raises LinkError."""
    return [apply_link(spec) for spec in specs]
