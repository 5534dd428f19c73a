"""
Error taxonomy for envseal.

Every error carries the activation stage it belongs to and whether it aborts
an activation run. The orchestrator relies on ``fatal`` to decide between
halting the pipeline and recording a warning.

    PolicyError              policy file invalid / no rule matches
      PolicyDriftError       bundle recipients != policy recipients
    IdentityError            local identity missing or unreadable
    DecryptionError          local identity cannot open a bundle field
    MissingBundleError       binding references a bundle that does not exist
      MissingFieldError      bundle exists but lacks the bound field
    FilesystemPermissionError  runtime path cannot be written with mode 0600
    IntegrationWriteError    shell snippet / entrypoint write failed (non-fatal)
    LinkError                symlink management failed
    ToolInstallError         required fallback tool could not be installed
    DeclarationError         host declaration file is invalid
"""

from __future__ import annotations


class EnvsealError(Exception):
    """Base class. Subclasses set ``stage`` and ``fatal``."""

    stage = "activation"
    fatal = True


class DeclarationError(EnvsealError):
    stage = "declaration"


class PolicyError(EnvsealError):
    stage = "policy"


class PolicyDriftError(PolicyError):
    """A bundle was sealed for a different recipient set than the policy lists.

    Recoverable: run an explicit re-seal.
    """

    def __init__(self, bundle_id: str, added: frozenset[str], removed: frozenset[str]):
        self.bundle_id = bundle_id
        self.added = added
        self.removed = removed
        parts = []
        if added:
            parts.append(f"{len(added)} recipient(s) added to policy")
        if removed:
            parts.append(f"{len(removed)} recipient(s) removed from policy")
        super().__init__(
            f"Bundle '{bundle_id}' has drifted from the recipient policy "
            f"({', '.join(parts)}). Run 'envseal policy reseal {bundle_id}'."
        )


class IdentityError(EnvsealError):
    stage = "secrets"


class DecryptionError(EnvsealError):
    stage = "secrets"

    def __init__(self, bundle_id: str, reason: str, field_name: str | None = None):
        self.bundle_id = bundle_id
        self.field_name = field_name
        target = f"'{bundle_id}'" if field_name is None else f"'{bundle_id}' field '{field_name}'"
        super().__init__(f"Cannot decrypt bundle {target}: {reason}")


class MissingBundleError(EnvsealError):
    stage = "secrets"

    def __init__(self, bundle_id: str, path: object = None):
        self.bundle_id = bundle_id
        where = f" (expected at {path})" if path is not None else ""
        super().__init__(
            f"Secret bundle '{bundle_id}' not found{where}. "
            "Create it with 'envseal bundle set' or restore it from the secrets repository."
        )


class MissingFieldError(MissingBundleError):
    def __init__(self, bundle_id: str, field_name: str):
        self.bundle_id = bundle_id
        self.field_name = field_name
        EnvsealError.__init__(
            self, f"Secret bundle '{bundle_id}' has no field '{field_name}'."
        )


class FilesystemPermissionError(EnvsealError):
    stage = "secrets"


class IntegrationWriteError(EnvsealError):
    stage = "shells"
    fatal = False


class LinkError(EnvsealError):
    stage = "links"


class ToolInstallError(EnvsealError):
    stage = "tools"
