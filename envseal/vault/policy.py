"""
Recipient policy — which public identities may decrypt which bundles.

The policy file lives beside the bundles and is versioned with them:

    hosts:
      mp-i9-16i: x25519:...
      work-mp-m3-max: x25519:...
    rules:
      - path_pattern: "ai.yaml"
        recipients: [mp-i9-16i, work-mp-m3-max]
      - path_regex: "^db/"
        recipients: [work-mp-m3-max]

Rules are ordered; the first rule matching a bundle's path (relative to the
bundles directory) wins. Changing a rule never touches the bundles: they
drift until an explicit re-seal, and sealing new fields into a drifted
bundle is refused.

Adding a host:
    1. append its public key to ``hosts`` and the relevant rules
    2. ``envseal policy check``   (dry-run: lists bundles needing re-seal)
    3. ``envseal policy reseal``  (on a host that is already a recipient)
"""

from __future__ import annotations

import fnmatch
import logging
import re
from dataclasses import dataclass
from pathlib import Path

import yaml
from pydantic import ValidationError

from envseal.errors import EnvsealError, MissingBundleError, PolicyDriftError, PolicyError
from envseal.vault.bundle import (
    SecretBundle,
    bundle_id_for,
    bundle_path,
    decrypt_all,
    iter_bundle_paths,
    load_bundle,
    save_bundle,
    seal_bundle,
    with_field,
)
from envseal.vault.crypto import PUBLIC_KEY_PREFIX, normalize_public_key
from envseal.vault.identity import Identity
from envseal.vault.models import PolicyFile

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PolicyRule:
    recipients: frozenset[str]
    path_pattern: str | None = None
    path_regex: str | None = None

    def matches(self, rel_path: str) -> bool:
        if self.path_pattern is not None:
            return fnmatch.fnmatchcase(rel_path, self.path_pattern)
        return re.search(self.path_regex or "", rel_path) is not None


@dataclass(frozen=True)
class DriftReport:
    """Dry-run result for one bundle."""

    bundle_id: str
    path: Path
    added: frozenset[str] = frozenset()
    removed: frozenset[str] = frozenset()
    error: str | None = None

    @property
    def needs_reseal(self) -> bool:
        return self.error is None and bool(self.added or self.removed)


class RecipientPolicy:
    """Resolves bundle paths to authorized recipient sets."""

    def __init__(
        self,
        rules: list[PolicyRule],
        bundles_dir: Path,
        hosts: dict[str, str] | None = None,
    ):
        self.rules = rules
        self.bundles_dir = Path(bundles_dir)
        self.hosts = dict(hosts or {})

    @classmethod
    def load(cls, policy_file: Path, bundles_dir: Path) -> RecipientPolicy:
        """Parse the policy file. Any problem raises PolicyError."""
        policy_file = Path(policy_file)
        try:
            with open(policy_file) as f:
                raw = yaml.safe_load(f) or {}
        except FileNotFoundError:
            raise PolicyError(f"Recipient policy not found at {policy_file}") from None
        except (OSError, yaml.YAMLError) as e:
            raise PolicyError(f"Cannot read recipient policy {policy_file}: {e}") from e

        try:
            doc = PolicyFile.model_validate(raw)
        except ValidationError as e:
            raise PolicyError(f"Invalid recipient policy {policy_file}: {e}") from e

        try:
            hosts = {label: normalize_public_key(key) for label, key in doc.hosts.items()}
        except ValueError as e:
            raise PolicyError(f"Invalid host key in {policy_file}: {e}") from e

        rules = []
        for i, r in enumerate(doc.rules):
            if r.path_regex is not None:
                try:
                    re.compile(r.path_regex)
                except re.error as e:
                    raise PolicyError(f"Rule {i}: bad path_regex {r.path_regex!r}: {e}") from e
            rules.append(
                PolicyRule(
                    recipients=frozenset(_resolve_recipient(x, hosts) for x in r.recipients),
                    path_pattern=r.path_pattern,
                    path_regex=r.path_regex,
                )
            )
        logger.debug("Loaded %d policy rules from %s", len(rules), policy_file)
        return cls(rules, bundles_dir, hosts)

    # ── Resolution ──────────────────────────────────────────────────────

    def _rel(self, path: Path | str) -> str:
        path = Path(path)
        try:
            return path.relative_to(self.bundles_dir).as_posix()
        except ValueError:
            return path.as_posix()

    def resolve(self, path: Path | str) -> frozenset[str]:
        """Authorized public keys for the bundle at ``path``."""
        rel = self._rel(path)
        for rule in self.rules:
            if rule.matches(rel):
                return rule.recipients
        raise PolicyError(f"No recipient rule matches bundle path '{rel}'")

    def label(self, public_key: str) -> str:
        """Host label for a key, or the key itself when unknown."""
        for host, key in self.hosts.items():
            if key == public_key:
                return host
        return public_key

    # ── Drift ───────────────────────────────────────────────────────────

    def drift(self, bundle: SecretBundle, path: Path) -> DriftReport:
        expected = self.resolve(path)
        used = bundle.recipients_used
        return DriftReport(
            bundle_id=bundle.bundle_id,
            path=Path(path),
            added=expected - used,
            removed=used - expected,
        )

    def check(self, bundle: SecretBundle, path: Path) -> None:
        """Raise PolicyDriftError if ``bundle`` was sealed for another recipient set."""
        report = self.drift(bundle, path)
        if report.needs_reseal:
            raise PolicyDriftError(bundle.bundle_id, report.added, report.removed)

    def plan_reseal(self) -> list[DriftReport]:
        """Dry-run over every bundle. Nothing is written."""
        reports: list[DriftReport] = []
        for path in iter_bundle_paths(self.bundles_dir):
            bundle_id = bundle_id_for(self.bundles_dir, path)
            try:
                bundle = load_bundle(path, bundle_id)
                reports.append(self.drift(bundle, path))
            except EnvsealError as e:
                logger.warning("Cannot evaluate bundle %s: %s", path, e)
                reports.append(DriftReport(bundle_id=bundle_id, path=path, error=str(e)))
        return reports

    # ── Mutation (explicit only) ────────────────────────────────────────

    def reseal(self, bundle_id: str, identity: Identity, *, dry_run: bool = False) -> DriftReport:
        """Re-encrypt a whole bundle for the current policy recipients.

        The local identity must be one of the bundle's current recipients.
        """
        path = bundle_path(self.bundles_dir, bundle_id)
        bundle = load_bundle(path, bundle_id)
        report = self.drift(bundle, path)
        if dry_run:
            return report

        values = decrypt_all(bundle, identity)
        resealed = seal_bundle(bundle.bundle_id, values, self.resolve(path))
        save_bundle(resealed, path)
        logger.info(
            "Re-sealed bundle '%s' for %d recipients (+%d/-%d)",
            bundle_id, len(resealed.stanzas), len(report.added), len(report.removed),
        )
        return report

    def set_field(
        self, bundle_id: str, field_name: str, value: str, identity: Identity
    ) -> SecretBundle:
        """Seal ``value`` into a bundle, creating the bundle if needed.

        An existing bundle must match the policy; drift raises PolicyDriftError.
        """
        path = bundle_path(self.bundles_dir, bundle_id)
        recipients = self.resolve(path)
        try:
            bundle = load_bundle(path, bundle_id)
        except MissingBundleError:
            updated = seal_bundle(bundle_id, {field_name: value}, recipients)
        else:
            self.check(bundle, path)
            updated = with_field(bundle, field_name, value, identity)
        save_bundle(updated, path)
        return updated


def _resolve_recipient(entry: str, hosts: dict[str, str]) -> str:
    if entry in hosts:
        return hosts[entry]
    if entry.startswith(PUBLIC_KEY_PREFIX):
        try:
            return normalize_public_key(entry)
        except ValueError as e:
            raise PolicyError(f"Invalid recipient key {entry!r}: {e}") from e
    raise PolicyError(f"Unknown host label '{entry}' in recipient policy")
