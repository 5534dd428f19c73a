"""Tests for sealing, persisting and opening secret bundles."""

from pathlib import Path

import pytest
import yaml

from envseal.errors import DecryptionError, MissingBundleError, MissingFieldError, PolicyError
from envseal.vault.bundle import (
    bundle_id_for,
    bundle_path,
    decrypt_all,
    decrypt_field,
    iter_bundle_paths,
    load_bundle,
    save_bundle,
    seal_bundle,
    with_field,
)


class TestSealOpen:
    def test_roundtrip(self, host_a):
        bundle = seal_bundle("ai", {"OPENAI_API_KEY": "sk-test-123"}, [host_a.public_key])
        assert decrypt_field(bundle, "OPENAI_API_KEY", host_a) == "sk-test-123"

    def test_every_recipient_can_open(self, host_a, host_b):
        bundle = seal_bundle(
            "ai", {"A": "1", "B": "2"}, [host_a.public_key, host_b.public_key]
        )
        assert decrypt_all(bundle, host_a) == {"A": "1", "B": "2"}
        assert decrypt_all(bundle, host_b) == {"A": "1", "B": "2"}
        assert bundle.recipients_used == {host_a.public_key, host_b.public_key}

    def test_non_recipient_fails_hard(self, host_a, host_b):
        bundle = seal_bundle("ai", {"OPENAI_API_KEY": "sk-test-123"}, [host_a.public_key])
        with pytest.raises(DecryptionError, match="'ai'") as exc:
            decrypt_field(bundle, "OPENAI_API_KEY", host_b)
        assert exc.value.bundle_id == "ai"
        assert "host-b" in str(exc.value)

    def test_missing_field(self, host_a):
        bundle = seal_bundle("ai", {"A": "1"}, [host_a.public_key])
        with pytest.raises(MissingFieldError) as exc:
            decrypt_field(bundle, "B", host_a)
        assert isinstance(exc.value, MissingBundleError)
        assert "'B'" in str(exc.value)

    def test_zero_recipients_refused(self):
        with pytest.raises(PolicyError, match="zero recipients"):
            seal_bundle("ai", {"A": "1"}, [])

    def test_with_field_keeps_recipients(self, host_a, host_b):
        bundle = seal_bundle("ai", {"A": "1"}, [host_a.public_key, host_b.public_key])
        updated = with_field(bundle, "B", "2", host_a)
        assert updated.stanzas == bundle.stanzas
        assert decrypt_all(updated, host_b) == {"A": "1", "B": "2"}

    def test_tampered_fields_detected(self, host_a):
        bundle = seal_bundle("ai", {"A": "1", "B": "2"}, [host_a.public_key])
        swapped = {"A": bundle.fields["B"], "B": bundle.fields["A"]}
        tampered = type(bundle)(
            bundle_id=bundle.bundle_id,
            fields=swapped,
            stanzas=bundle.stanzas,
            mac=bundle.mac,
        )
        with pytest.raises(DecryptionError, match="MAC"):
            decrypt_field(tampered, "A", host_a)


class TestPersistence:
    def test_save_load_roundtrip(self, host_a, bundles_dir: Path):
        path = bundle_path(bundles_dir, "ai")
        save_bundle(seal_bundle("ai", {"OPENAI_API_KEY": "sk-test-123"}, [host_a.public_key]), path)

        loaded = load_bundle(path, "ai")
        assert loaded.bundle_id == "ai"
        assert loaded.field_names == ["OPENAI_API_KEY"]
        assert loaded.recipients_used == {host_a.public_key}
        assert loaded.lastmodified is not None
        assert decrypt_field(loaded, "OPENAI_API_KEY", host_a) == "sk-test-123"

    def test_no_plaintext_on_disk(self, host_a, bundles_dir: Path):
        path = save_bundle(
            seal_bundle("ai", {"OPENAI_API_KEY": "sk-test-123"}, [host_a.public_key]),
            bundle_path(bundles_dir, "ai"),
        )
        text = path.read_text()
        assert "sk-test-123" not in text
        doc = yaml.safe_load(text)
        assert doc["fields"]["OPENAI_API_KEY"].startswith("ENC[AES256_GCM,")
        assert doc["metadata"]["recipients"][0]["recipient"] == host_a.public_key

    def test_missing_bundle_names_id(self, bundles_dir: Path):
        with pytest.raises(MissingBundleError, match="'ai'") as exc:
            load_bundle(bundle_path(bundles_dir, "ai"), "ai")
        assert exc.value.bundle_id == "ai"

    def test_plaintext_field_rejected(self, host_a, bundles_dir: Path):
        path = save_bundle(
            seal_bundle("ai", {"A": "1"}, [host_a.public_key]), bundle_path(bundles_dir, "ai")
        )
        doc = yaml.safe_load(path.read_text())
        doc["fields"]["A"] = "plain"
        path.write_text(yaml.safe_dump(doc))
        with pytest.raises(DecryptionError, match="not encrypted"):
            load_bundle(path, "ai")

    def test_not_a_mapping(self, bundles_dir: Path):
        path = bundles_dir / "ai.yaml"
        path.write_text("- just\n- a list\n")
        with pytest.raises(DecryptionError, match="not a mapping"):
            load_bundle(path, "ai")

    def test_renamed_file_still_opens(self, host_a, bundles_dir: Path):
        src = save_bundle(
            seal_bundle("ai", {"A": "1"}, [host_a.public_key]), bundle_path(bundles_dir, "ai")
        )
        dst = bundle_path(bundles_dir, "ml")
        dst.write_text(src.read_text())
        bundle = load_bundle(dst, "ml")
        assert bundle.bundle_id == "ai"
        assert decrypt_field(bundle, "A", host_a) == "1"


class TestBundlePaths:
    def test_nested_ids_and_dotfiles(self, bundles_dir: Path):
        (bundles_dir / "ai.yaml").write_text("{}")
        (bundles_dir / "db").mkdir()
        (bundles_dir / "db" / "prod.yaml").write_text("{}")
        (bundles_dir / ".envseal.yaml").write_text("{}")
        (bundles_dir / ".git").mkdir()
        (bundles_dir / ".git" / "x.yaml").write_text("{}")

        paths = iter_bundle_paths(bundles_dir)
        assert [bundle_id_for(bundles_dir, p) for p in paths] == ["ai", "db/prod"]

    def test_missing_dir(self, tmp_path: Path):
        assert iter_bundle_paths(tmp_path / "nope") == []
