"""Tests for identifier hashing and query fingerprints."""
import pytest

from eduvault.shared.utils import pii
from eduvault.shared.utils import configure_pii_salt, fingerprint, hash_pii, log_safe_id

SALT = "test_salt_that_is_at_least_32_characters_long"


@pytest.fixture(autouse=True)
def setup_pii_salt():
    configure_pii_salt(SALT)


class TestConfigurePiiSalt:
    """Tests for salt configuration."""

    def test_short_salt_rejected(self):
        with pytest.raises(ValueError):
            configure_pii_salt("too_short")

    def test_empty_salt_rejected(self):
        with pytest.raises(ValueError):
            configure_pii_salt("")

    def test_hash_without_salt_raises(self, monkeypatch):
        monkeypatch.setattr(pii, "_PII_SALT", None)

        with pytest.raises(RuntimeError):
            hash_pii("student-1")


class TestHashPii:
    """Tests for hash_pii."""

    def test_deterministic(self):
        assert hash_pii("student-1") == hash_pii("student-1")

    def test_distinct_inputs_differ(self):
        assert hash_pii("student-1") != hash_pii("student-2")

    def test_does_not_contain_input(self):
        hashed = hash_pii("student-12345")

        assert "12345" not in hashed
        assert len(hashed) == 64

    def test_salt_changes_hash(self):
        before = hash_pii("student-1")
        configure_pii_salt("another_salt_that_is_also_32_characters_long")

        assert hash_pii("student-1") != before

    def test_log_safe_id_is_prefix(self):
        assert log_safe_id("rec-1") == hash_pii("rec-1")[:16]


class TestFingerprint:
    """Tests for query fingerprints."""

    def test_key_order_does_not_matter(self):
        assert fingerprint({"a": 1, "b": [1, 2]}) == fingerprint({"b": [1, 2], "a": 1})

    def test_different_params_differ(self):
        assert fingerprint({"k": 5}) != fingerprint({"k": 6})

    def test_independent_of_salt(self):
        before = fingerprint({"dataset": "quiz"})
        configure_pii_salt("another_salt_that_is_also_32_characters_long")

        assert fingerprint({"dataset": "quiz"}) == before
