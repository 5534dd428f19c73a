"""
Atomic file writes.

Every file envseal generates (materialized secrets, shell snippets, cached
init scripts, entrypoint edits, re-sealed bundles) is written to a temp file
in the destination directory and renamed over the target, so a concurrently
started shell sees either the old complete file or the new one.
"""

from __future__ import annotations

import contextlib
import os
import tempfile
from pathlib import Path


def ensure_dir(path: Path, mode: int = 0o755) -> Path:
    """Create ``path`` (and parents) if missing. ``mode`` applies only to a newly created leaf."""
    path = Path(path)
    if not path.is_dir():
        path.mkdir(parents=True, exist_ok=True)
        path.chmod(mode)
    return path


def stage_write(
    path: Path,
    data: bytes | str,
    *,
    mode: int = 0o644,
    dir_mode: int = 0o755,
) -> Path:
    """Write ``data`` to a fsynced temp file beside ``path`` and return the temp path.

    The temp file gets ``mode`` before any byte is written, so secret content
    is never readable by others, not even transiently. Nothing is visible at
    ``path`` until ``commit_staged``.
    """
    path = Path(path)
    ensure_dir(path.parent, dir_mode)
    if isinstance(data, str):
        data = data.encode("utf-8")

    fd, tmp = tempfile.mkstemp(dir=path.parent, prefix=f".{path.name}.", suffix=".tmp")
    try:
        os.fchmod(fd, mode)
        with os.fdopen(fd, "wb") as f:
            f.write(data)
            f.flush()
            os.fsync(f.fileno())
    except BaseException:
        discard_staged(Path(tmp))
        raise
    return Path(tmp)


def commit_staged(tmp: Path, path: Path) -> Path:
    """Rename a staged temp file over ``path``."""
    try:
        os.replace(tmp, path)
    except BaseException:
        discard_staged(tmp)
        raise
    return Path(path)


def discard_staged(tmp: Path) -> None:
    with contextlib.suppress(FileNotFoundError):
        os.unlink(tmp)


def atomic_write(
    path: Path,
    data: bytes | str,
    *,
    mode: int = 0o644,
    dir_mode: int = 0o755,
) -> Path:
    """Write ``data`` to ``path`` via temp file + fsync + rename."""
    return commit_staged(stage_write(path, data, mode=mode, dir_mode=dir_mode), path)


def write_if_changed(path: Path, data: bytes | str, *, mode: int = 0o644) -> bool:
    """Atomically write ``data`` unless ``path`` already holds exactly those bytes.

    Returns True if the file was (re)written.
    """
    path = Path(path)
    raw = data.encode("utf-8") if isinstance(data, str) else data
    try:
        if path.is_file() and path.read_bytes() == raw:
            return False
    except OSError:
        pass
    atomic_write(path, raw, mode=mode)
    return True


def file_mode(path: Path) -> int:
    """Permission bits of ``path``."""
    return Path(path).stat().st_mode & 0o777
