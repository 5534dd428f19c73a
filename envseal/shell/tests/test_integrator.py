"""Tests for snippet generation and idempotent entrypoint wiring."""

import os
import stat
from pathlib import Path

import pytest

from envseal.errors import IntegrationWriteError
from envseal.shell.dialects import Bash, Fish, Nushell, Zsh
from envseal.shell.hooks import HookSet, builtin_integration
from envseal.shell.integrator import (
    MARKER_BEGIN,
    MARKER_END,
    ensure_reference,
    integrate,
    render_snippet,
    snippet_path,
    update_entrypoint_text,
)

USER_RC = """\
# my zsh config
alias gs='git status'
alias ll='ls -la'
export EDITOR=vim
"""


class TestRenderSnippet:
    def test_exports_by_path_never_value(self, home, cache_dir, openai_binding):
        text = render_snippet(Fish(home), [openai_binding], HookSet(), cache_dir)
        assert str(openai_binding.runtime_path) in text
        assert "set -gx OPENAI_API_KEY (cat" in text

    def test_deterministic(self, home, cache_dir, openai_binding):
        hooks = HookSet(
            env=(("EDITOR", "hx"),),
            path=(home / ".local" / "bin",),
            aliases=(("cldy", "claude --dangerously-skip-permissions"),),
            functions=("yazi",),
            integrations=(builtin_integration("zoxide"),),
        )
        a = render_snippet(Zsh(home), [openai_binding], hooks, cache_dir)
        b = render_snippet(Zsh(home), [openai_binding], hooks, cache_dir)
        assert a == b
        assert a.endswith("\n")
        assert "alias cldy='claude --dangerously-skip-permissions'" in a
        assert "function y()" in a
        assert str(cache_dir / "zoxide.zsh") in a

    def test_alias_names_export_every_env(self, home, cache_dir, openai_binding):
        from dataclasses import replace

        gemini = replace(
            openai_binding,
            logical_name="gemini_key",
            field_name="GEMINI_API_KEY",
            runtime_path=home / ".secrets" / "gemini_key",
            env_names=("GEMINI_API_KEY", "GOOGLE_GENERATIVE_AI_API_KEY"),
        )
        text = render_snippet(Bash(home), [gemini], HookSet(), cache_dir)
        assert "export GEMINI_API_KEY=" in text
        assert "export GOOGLE_GENERATIVE_AI_API_KEY=" in text

    def test_integration_without_dialect_support_not_sourced(self, home, cache_dir):
        hooks = HookSet(integrations=(builtin_integration("direnv"),))
        assert "direnv" not in render_snippet(Nushell(home), [], hooks, cache_dir)


class TestUpdateEntrypointText:
    ref = "test -f '/c/envseal.fish'; and source '/c/envseal.fish'"

    def test_empty_file(self):
        assert update_entrypoint_text("", self.ref) == f"{MARKER_BEGIN}\n{self.ref}\n{MARKER_END}\n"

    def test_appends_after_user_content(self):
        out = update_entrypoint_text("alias g git", self.ref)
        assert out == f"alias g git\n\n{MARKER_BEGIN}\n{self.ref}\n{MARKER_END}\n"

    def test_current_block_is_noop(self):
        text = update_entrypoint_text("alias g git\n", self.ref)
        assert update_entrypoint_text(text, self.ref) is None

    def test_stale_block_refreshed_in_place(self):
        text = f"a\n{MARKER_BEGIN}\nsource /old/path\n{MARKER_END}\nb\n"
        out = update_entrypoint_text(text, self.ref)
        assert out == f"a\n{MARKER_BEGIN}\n{self.ref}\n{MARKER_END}\nb\n"

    def test_hand_added_reference_not_duplicated(self):
        text = f"# mine\n{self.ref}\n"
        assert update_entrypoint_text(text, self.ref) is None

    def test_stale_block_keeps_crlf_user_lines(self):
        text = f"alias a='x'\r\nalias b='y'\r\n{MARKER_BEGIN}\r\nOLD\r\n{MARKER_END}\r\nbindkey -e"
        out = update_entrypoint_text(text, self.ref)
        assert out == (
            f"alias a='x'\r\nalias b='y'\r\n{MARKER_BEGIN}\r\n{self.ref}\r\n{MARKER_END}\r\nbindkey -e"
        )

    def test_current_crlf_block_is_noop(self):
        text = f"alias a='x'\r\n{MARKER_BEGIN}\r\n{self.ref}\r\n{MARKER_END}\r\n"
        assert update_entrypoint_text(text, self.ref) is None

    def test_append_follows_crlf_endings(self):
        out = update_entrypoint_text("alias a='x'\r\n", self.ref)
        assert out == f"alias a='x'\r\n\r\n{MARKER_BEGIN}\r\n{self.ref}\r\n{MARKER_END}\r\n"

    def test_stray_end_marker_before_block(self):
        text = f"# notes\n{MARKER_END}\n{MARKER_BEGIN}\nsource /old/path\n{MARKER_END}\n"
        out = update_entrypoint_text(text, self.ref)
        assert out == f"# notes\n{MARKER_END}\n{MARKER_BEGIN}\n{self.ref}\n{MARKER_END}\n"
        assert out.count(MARKER_BEGIN) == 1

    def test_orphan_begin_after_block_ignored(self):
        text = f"{MARKER_BEGIN}\nsource /old/path\n{MARKER_END}\n{MARKER_BEGIN}\n"
        out = update_entrypoint_text(text, self.ref)
        assert out == f"{MARKER_BEGIN}\n{self.ref}\n{MARKER_END}\n{MARKER_BEGIN}\n"

    def test_orphan_begin_marker_kept_as_user_text(self):
        text = f"{MARKER_BEGIN}\nalias g git\n"
        out = update_entrypoint_text(text, self.ref)
        assert out.startswith(text)
        assert out.count(self.ref) == 1
        assert out.endswith(f"{MARKER_BEGIN}\n{self.ref}\n{MARKER_END}\n")


class TestEnsureReference:
    def test_creates_stub_when_absent(self, home):
        d = Fish(home)
        snippet = home / ".cache" / "envseal" / "envseal.fish"
        assert ensure_reference(d, snippet)
        text = d.entrypoint_path().read_text()
        assert text.startswith("# fish configuration")
        assert text.count(d.reference_line(snippet)) == 1

    def test_user_content_preserved_across_two_runs(self, home):
        d = Zsh(home)
        rc = d.entrypoint_path()
        rc.write_text(USER_RC)
        snippet = home / ".cache" / "envseal" / "envseal.zsh"

        assert ensure_reference(d, snippet) is True
        assert ensure_reference(d, snippet) is False

        text = rc.read_text()
        assert text.startswith(USER_RC)
        assert text.count(d.reference_line(snippet)) == 1
        assert text.count(MARKER_BEGIN) == 1

    def test_symlinked_entrypoint_edited_at_target(self, home, tmp_path):
        dotfiles = tmp_path / "dotfiles"
        dotfiles.mkdir()
        real = dotfiles / "bashrc"
        real.write_text("alias x=y\n")
        d = Bash(home)
        d.entrypoint_path().symlink_to(real)

        ensure_reference(d, home / "envseal.bash")

        assert d.entrypoint_path().is_symlink()
        assert os.readlink(d.entrypoint_path()) == str(real)
        assert MARKER_BEGIN in real.read_text()

    def test_crlf_entrypoint_bytes_kept_on_refresh(self, home):
        d = Zsh(home)
        rc = d.entrypoint_path()
        user = b"alias gs='git status'\r\nalias gd='git diff'\r\n"
        rc.write_bytes(user + f"{MARKER_BEGIN}\r\nsource /old\r\n{MARKER_END}\r\n".encode())
        snippet = home / ".cache" / "envseal" / "envseal.zsh"

        assert ensure_reference(d, snippet) is True

        ref = d.reference_line(snippet)
        assert rc.read_bytes() == user + f"{MARKER_BEGIN}\r\n{ref}\r\n{MARKER_END}\r\n".encode()
        assert ensure_reference(d, snippet) is False

    def test_file_mode_preserved(self, home):
        d = Bash(home)
        rc = d.entrypoint_path()
        rc.write_text("alias x=y\n")
        rc.chmod(0o600)
        ensure_reference(d, home / "envseal.bash")
        assert stat.S_IMODE(rc.stat().st_mode) == 0o600

    def test_write_failure_is_integration_error(self, home, monkeypatch):
        def fail(*args, **kwargs):
            raise PermissionError("read-only file system")

        monkeypatch.setattr("envseal.shell.integrator.atomic_write", fail)
        with pytest.raises(IntegrationWriteError, match="read-only") as exc:
            ensure_reference(Bash(home), home / "envseal.bash")
        assert exc.value.fatal is False


class TestIntegrate:
    def test_idempotent(self, home, cache_dir, openai_binding, fake_runner):
        d = Fish(home)
        first = integrate(d, [openai_binding], HookSet(), cache_dir, runner=fake_runner())
        snippet_bytes = first.generated_snippet_path.read_bytes()
        rc_bytes = d.entrypoint_path().read_bytes()

        second = integrate(d, [openai_binding], HookSet(), cache_dir, runner=fake_runner())

        assert first.generated_snippet_path == snippet_path(d, cache_dir) == cache_dir / "envseal.fish"
        assert first.snippet_changed and first.entrypoint_changed
        assert not second.snippet_changed and not second.entrypoint_changed
        assert first.generated_snippet_path.read_bytes() == snippet_bytes
        assert d.entrypoint_path().read_bytes() == rc_bytes
        assert second.managed_marker == MARKER_BEGIN

    def test_integration_failure_is_warning(self, home, cache_dir, fake_runner, monkeypatch):
        monkeypatch.setattr("envseal.shell.hooks.shutil.which", lambda name: f"/usr/bin/{name}")
        hooks = HookSet(integrations=(builtin_integration("starship"),))

        artifact = integrate(Nushell(home), [], hooks, cache_dir, runner=fake_runner(returncode=1))

        assert len(artifact.warnings) == 1
        assert "starship" in artifact.warnings[0]
        assert (cache_dir / "starship.nu").exists()
        assert 'source "' + str(cache_dir / "starship.nu") + '"' in (
            artifact.generated_snippet_path.read_text()
        )
