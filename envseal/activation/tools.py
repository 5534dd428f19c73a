"""Fallback tool install stage: ``command -v X || <install X>``."""

from __future__ import annotations

import logging
import shutil
import subprocess
from collections.abc import Callable, Iterable
from dataclasses import dataclass

from envseal.activation.declared import ToolSpec
from envseal.errors import ToolInstallError

logger = logging.getLogger(__name__)

INSTALL_TIMEOUT_SECONDS = 600

Runner = Callable[..., subprocess.CompletedProcess]


@dataclass
class ToolResult:
    name: str
    found: bool
    installed: bool = False
    path: str = ""
    hint: str = ""

    @property
    def ok(self) -> bool:
        return self.found


def check_tool(name: str) -> ToolResult:
    """Whether ``name`` is on PATH."""
    path = shutil.which(name)
    if not path:
        return ToolResult(name=name, found=False, hint=f"{name} not found on PATH")
    return ToolResult(name=name, found=True, path=path)


def ensure_tool(spec: ToolSpec, *, runner: Runner = subprocess.run) -> ToolResult:
    """Install ``spec`` if it is missing.

    The install command runs through ``/bin/sh -c`` so one-liners such as
    ``curl ... | sh`` work. Failure raises ToolInstallError for a required
    tool and returns a not-found result (with a hint) for an optional one.
    """
    status = check_tool(spec.name)
    if status.ok:
        logger.debug("%s already available at %s", spec.name, status.path)
        return status

    logger.info("Installing missing tool %s", spec.name)
    hint = ""
    try:
        proc = runner(
            ["/bin/sh", "-c", spec.install],
            capture_output=True,
            text=True,
            timeout=INSTALL_TIMEOUT_SECONDS,
        )
        if proc.returncode != 0:
            stderr = (proc.stderr or "").strip()
            hint = f"install command exited {proc.returncode}: {stderr[:200]}"
    except (OSError, subprocess.TimeoutExpired) as e:
        hint = f"install command could not run: {e}"

    if not hint:
        status = check_tool(spec.name)
        if status.ok:
            status.installed = True
            logger.info("Installed %s at %s", spec.name, status.path)
            return status
        hint = "install command succeeded but the tool is still not on PATH"

    message = f"Cannot install {spec.name}: {hint}"
    if not spec.optional:
        raise ToolInstallError(message)
    logger.warning("%s (optional, continuing)", message)
    return ToolResult(name=spec.name, found=False, hint=message)


def ensure_tools(specs: Iterable[ToolSpec], *, runner: Runner = subprocess.run) -> list[ToolResult]:
    return [ensure_tool(spec, runner=runner) for spec in specs]
