"""Tests for the fallback tool install stage."""

import subprocess

import pytest

from envseal.activation.declared import ToolSpec
from envseal.activation.tools import check_tool, ensure_tool, ensure_tools
from envseal.errors import ToolInstallError


class FakeWhich:
    """shutil.which that reports a tool only after it has been 'installed'."""

    def __init__(self, present=()):
        self.present = set(present)

    def __call__(self, name):
        return f"/usr/local/bin/{name}" if name in self.present else None


@pytest.fixture
def which(monkeypatch):
    fake = FakeWhich()
    monkeypatch.setattr("envseal.activation.tools.shutil.which", fake)
    return fake


class TestEnsureTool:
    def test_present_is_noop(self, which, no_subprocess):
        which.present.add("zoxide")
        result = ensure_tool(ToolSpec("zoxide", "false"), runner=no_subprocess)
        assert result.ok and not result.installed
        assert result.path == "/usr/local/bin/zoxide"

    def test_installs_missing_tool_via_shell(self, which):
        calls = []

        def runner(argv, **kwargs):
            calls.append(argv)
            which.present.add("zoxide")
            return subprocess.CompletedProcess(argv, 0, "", "")

        cmd = "curl -sSfL https://example.invalid/install.sh | sh"
        result = ensure_tool(ToolSpec("zoxide", cmd), runner=runner)

        assert result.ok and result.installed
        assert calls == [["/bin/sh", "-c", cmd]]

    def test_required_failure_raises(self, which):
        def runner(argv, **kwargs):
            return subprocess.CompletedProcess(argv, 7, "", "no network")

        with pytest.raises(ToolInstallError, match="exited 7: no network"):
            ensure_tool(ToolSpec("atuin", "install-atuin"), runner=runner)

    def test_optional_failure_is_result(self, which):
        def runner(argv, **kwargs):
            return subprocess.CompletedProcess(argv, 1, "", "")

        result = ensure_tool(ToolSpec("atuin", "install-atuin", optional=True), runner=runner)
        assert not result.ok
        assert "Cannot install atuin" in result.hint

    def test_still_missing_after_install(self, which, ok_runner):
        with pytest.raises(ToolInstallError, match="still not on PATH"):
            ensure_tool(ToolSpec("yazi", "true"), runner=ok_runner)

    def test_timeout(self, which):
        def runner(argv, **kwargs):
            raise subprocess.TimeoutExpired(argv, kwargs["timeout"])

        with pytest.raises(ToolInstallError, match="could not run"):
            ensure_tool(ToolSpec("yazi", "sleep 999"), runner=runner)


def test_check_tool_missing(which):
    result = check_tool("nope")
    assert not result.ok
    assert "not found" in result.hint


def test_ensure_tools_all(which, no_subprocess):
    which.present.update({"git", "fish"})
    results = ensure_tools([ToolSpec("git", "x"), ToolSpec("fish", "y")], runner=no_subprocess)
    assert [r.name for r in results] == ["git", "fish"]
