"""
Materializer — decrypts bound secrets into ephemeral runtime files.

Each binding becomes one file holding the trimmed plaintext, mode 0600,
owned by the current user, written via temp file + rename so a shell
started mid-activation never reads a partial value.

Fail-closed: ``materialize_all`` decrypts every binding, then stages every
value in a temp file, and only then renames them into place. A missing
identity, a missing bundle or field, a bundle this host cannot open, or a
temp file that cannot be written aborts the whole set and leaves the
previous runtime files as they were.
"""

from __future__ import annotations

import logging
import os
from collections.abc import Iterable
from dataclasses import dataclass, field
from pathlib import Path

from envseal.activation.declared import SecretBinding
from envseal.errors import FilesystemPermissionError, PolicyError
from envseal.fsutil import commit_staged, discard_staged, file_mode, stage_write
from envseal.vault.bundle import SecretBundle, bundle_path, decrypt_field, load_bundle
from envseal.vault.identity import Identity, load_identity
from envseal.vault.policy import RecipientPolicy

logger = logging.getLogger(__name__)

SECRET_MODE = 0o600
RUNTIME_DIR_MODE = 0o700


@dataclass(frozen=True)
class MaterializedSecret:
    logical_name: str
    runtime_path: Path
    mode: int = SECRET_MODE
    owner: int = field(default_factory=os.getuid)
    changed: bool = True


class Materializer:
    """Decrypts bindings with the local identity and writes them to disk."""

    def __init__(
        self,
        identity_file: Path,
        bundles_dir: Path,
        policy: RecipientPolicy | None = None,
    ):
        self.identity_file = Path(identity_file)
        self.bundles_dir = Path(bundles_dir)
        self.policy = policy
        self.warnings: list[str] = []
        self._identity: Identity | None = None
        self._bundles: dict[str, SecretBundle] = {}

    @property
    def identity(self) -> Identity:
        if self._identity is None:
            self._identity = load_identity(self.identity_file)
        return self._identity

    def _bundle(self, bundle_id: str) -> SecretBundle:
        cached = self._bundles.get(bundle_id)
        if cached is not None:
            return cached

        path = bundle_path(self.bundles_dir, bundle_id)
        bundle = load_bundle(path, bundle_id)
        if self.policy is not None:
            try:
                self.policy.check(bundle, path)
            except PolicyError as e:
                # drift is reported; decryption decides access
                logger.warning("%s", e)
                self.warnings.append(str(e))
        self._bundles[bundle_id] = bundle
        return bundle

    # ── Phases ──────────────────────────────────────────────────────────

    def decrypt(self, binding: SecretBinding) -> str:
        """Plaintext for ``binding`` with trailing whitespace removed."""
        bundle = self._bundle(binding.bundle_id)
        value = decrypt_field(bundle, binding.field_name, self.identity).rstrip()
        if not value:
            warning = (
                f"Secret '{binding.logical_name}' "
                f"({binding.bundle_id}/{binding.field_name}) is empty"
            )
            logger.warning("%s", warning)
            self.warnings.append(warning)
        return value

    def _stage(self, binding: SecretBinding, value: str) -> tuple[Path, str | None]:
        """Write ``value`` to a temp file beside the runtime path; nothing is visible yet."""
        path = binding.runtime_path
        try:
            previous = path.read_text() if path.is_file() and not path.is_symlink() else None
        except OSError:
            previous = None
        try:
            tmp = stage_write(path, value, mode=SECRET_MODE, dir_mode=RUNTIME_DIR_MODE)
        except OSError as e:
            raise FilesystemPermissionError(
                f"Cannot write secret '{binding.logical_name}' to {path}: {e}"
            ) from e
        return tmp, previous

    def _install(
        self, binding: SecretBinding, value: str, tmp: Path, previous: str | None
    ) -> MaterializedSecret:
        """Rename the staged file into place and verify its mode and owner."""
        path = binding.runtime_path
        try:
            commit_staged(tmp, path)
            st = path.stat()
            parent_mode = file_mode(path.parent)
        except OSError as e:
            raise FilesystemPermissionError(
                f"Cannot write secret '{binding.logical_name}' to {path}: {e}"
            ) from e

        mode = st.st_mode & 0o777
        uid = os.getuid()
        if mode != SECRET_MODE or st.st_uid != uid:
            raise FilesystemPermissionError(
                f"Secret '{binding.logical_name}' at {path} has mode {mode:o} "
                f"owner {st.st_uid}; expected {SECRET_MODE:o} owner {uid}"
            )
        if parent_mode & 0o077:
            logger.warning(
                "Runtime directory %s is accessible by group/others (mode %o)",
                path.parent, parent_mode,
            )

        changed = previous != value
        if changed:
            logger.info("Materialized secret '%s' at %s", binding.logical_name, path)
        return MaterializedSecret(
            logical_name=binding.logical_name,
            runtime_path=path,
            mode=mode,
            owner=st.st_uid,
            changed=changed,
        )

    def commit(self, binding: SecretBinding, value: str) -> MaterializedSecret:
        """Atomically replace the runtime file and verify its mode and owner."""
        return self._install(binding, value, *self._stage(binding, value))

    # ── Entry points ────────────────────────────────────────────────────

    def materialize(self, binding: SecretBinding) -> Path:
        return self.commit(binding, self.decrypt(binding)).runtime_path

    def materialize_all(self, bindings: Iterable[SecretBinding]) -> list[MaterializedSecret]:
        """Decrypt everything, stage every temp file, then rename them all into place.

        A decryption or staging error leaves every runtime file untouched. Only
        a failing rename, after all values are staged, can leave earlier files
        already replaced.
        """
        decrypted = [(b, self.decrypt(b)) for b in bindings]

        staged: list[tuple[SecretBinding, str, Path, str | None]] = []
        try:
            for b, value in decrypted:
                staged.append((b, value, *self._stage(b, value)))
        except FilesystemPermissionError:
            for _, _, tmp, _ in staged:
                discard_staged(tmp)
            raise

        results: list[MaterializedSecret] = []
        for i, (b, value, tmp, previous) in enumerate(staged):
            try:
                results.append(self._install(b, value, tmp, previous))
            except FilesystemPermissionError:
                for _, _, rest, _ in staged[i + 1:]:
                    discard_staged(rest)
                raise
        return results
