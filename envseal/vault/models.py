"""On-disk document schemas for bundles and the recipient policy."""

from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, Field, field_validator, model_validator

from envseal.vault.crypto import is_encrypted

BUNDLE_FORMAT_VERSION = 1


class StanzaModel(BaseModel):
    recipient: str
    ephemeral: str
    wrapped: str


class BundleMetadata(BaseModel):
    """The sops-style block recording who a bundle was sealed for."""

    version: int = BUNDLE_FORMAT_VERSION
    bundle_id: str
    recipients: list[StanzaModel] = []
    mac: str
    lastmodified: datetime | None = None

    @field_validator("version")
    @classmethod
    def _supported_version(cls, v: int) -> int:
        if v != BUNDLE_FORMAT_VERSION:
            raise ValueError(f"unsupported bundle format version {v}")
        return v


class BundleFile(BaseModel):
    """A secret bundle file (metadata only is ever plaintext)."""

    fields: dict[str, str] = {}
    metadata: BundleMetadata

    @field_validator("fields")
    @classmethod
    def _fields_encrypted(cls, v: dict[str, str]) -> dict[str, str]:
        plain = [name for name, value in v.items() if not is_encrypted(value)]
        if plain:
            raise ValueError(f"fields are not encrypted: {', '.join(sorted(plain))}")
        return v


class PolicyRuleModel(BaseModel):
    path_pattern: str | None = None
    path_regex: str | None = None
    recipients: list[str] = Field(min_length=1)

    @model_validator(mode="after")
    def _one_matcher(self) -> PolicyRuleModel:
        if (self.path_pattern is None) == (self.path_regex is None):
            raise ValueError("each rule needs exactly one of path_pattern or path_regex")
        return self


class PolicyFile(BaseModel):
    """Recipient policy: host label → public key map plus ordered rules."""

    hosts: dict[str, str] = {}
    rules: list[PolicyRuleModel] = []
