"""Tests for platform configuration loading and validation."""
import json
from datetime import timedelta
from unittest.mock import patch

import pytest

from eduvault.shared.config import (
    AnalyticsConfig,
    CacheConfig,
    ConfigurationError,
    NamespacePolicy,
    PlatformConfig,
    RetentionConfig,
    DEFAULT_PRIVACY_TTL_SECONDS,
)
from eduvault.shared.models import FinalAction, PrivacyLevel, RetentionPolicy


class TestCacheConfig:
    """Tests for CacheConfig validation."""

    def test_defaults(self):
        config = CacheConfig()

        assert dict(config.privacy_ttl_seconds) == DEFAULT_PRIVACY_TTL_SECONDS
        assert config.namespace("analytics").max_ttl_seconds == 120
        assert config.namespace("progress").max_payload_bytes == 64 * 1024

    def test_rejects_increasing_ttl(self):
        with pytest.raises(ConfigurationError):
            CacheConfig(privacy_ttl_seconds={1: 300, 2: 1800, 3: 900, 4: 100})

    def test_equal_ttls_allowed(self):
        config = CacheConfig(privacy_ttl_seconds={1: 600, 2: 600, 3: 600, 4: 600})
        assert config.privacy_ttl_seconds[PrivacyLevel.RESTRICTED] == 600

    def test_rejects_missing_level(self):
        with pytest.raises(ConfigurationError):
            CacheConfig(privacy_ttl_seconds={1: 3600, 2: 1800, 3: 900})

    def test_rejects_non_positive_ttl(self):
        with pytest.raises(ConfigurationError):
            CacheConfig(privacy_ttl_seconds={1: 3600, 2: 1800, 3: 900, 4: 0})

    def test_rejects_duplicate_namespaces(self):
        with pytest.raises(ConfigurationError):
            CacheConfig(namespaces=(NamespacePolicy("a"), NamespacePolicy("a")))

    def test_unknown_namespace_is_unrestricted(self):
        policy = CacheConfig().namespace("scratch")

        assert policy.name == "scratch"
        assert policy.max_payload_bytes is None
        assert policy.max_ttl_seconds is None

    def test_configuration_error_is_value_error(self):
        assert issubclass(ConfigurationError, ValueError)


class TestAnalyticsConfig:
    """Tests for AnalyticsConfig validation."""

    def test_default_k_is_five(self):
        assert AnalyticsConfig().k_anonymity_threshold == 5

    def test_rejects_k_below_one(self):
        with pytest.raises(ConfigurationError):
            AnalyticsConfig(k_anonymity_threshold=0)

    def test_warm_minimum_not_below_k(self):
        with pytest.raises(ConfigurationError):
            AnalyticsConfig(k_anonymity_threshold=8, warm_min_subject_count=6)


class TestRetentionConfig:
    """Tests for RetentionConfig validation."""

    def test_default_policies(self):
        policies = RetentionConfig().policy_map()

        assert policies["learning_progress"].active_window == timedelta(days=365)
        assert policies["learning_progress"].final_action is FinalAction.PURGE
        assert policies["accommodation_records"].protected is True
        assert policies["anonymized_analytics"].delete_outright is True
        assert policies["anonymized_analytics"].active_window == timedelta(days=730)
        assert policies["course_content"].final_action is FinalAction.ARCHIVE

    def test_rejects_duplicate_categories(self):
        policy = RetentionPolicy(category="x", active_window=timedelta(days=1))

        with pytest.raises(ConfigurationError):
            RetentionConfig(policies=(policy, policy))

    def test_rejects_zero_interval(self):
        with pytest.raises(ConfigurationError):
            RetentionConfig(cycle_interval_seconds=0)


class TestPlatformConfigFromDict:
    """Tests for PlatformConfig.from_dict."""

    def test_empty_document_gives_defaults(self):
        config = PlatformConfig.from_dict({})

        assert config == PlatformConfig()

    def test_full_document(self):
        config = PlatformConfig.from_dict({
            "cache": {
                "privacy_ttl_seconds": {"1": 1200, "2": 600, "3": 300, "4": 60},
                "namespaces": [{"name": "progress", "max_payload_bytes": 1024}],
                "shard_count": 8,
            },
            "analytics": {
                "k_anonymity_threshold": 10,
                "warm_min_subject_count": 20,
                "warm_privacy_level": "limited",
            },
            "retention": {
                "cycle_interval_seconds": 600,
                "policies": [{
                    "category": "learning_progress",
                    "active_window_days": 30,
                    "archive_window_days": 60,
                    "final_action": "purge",
                    "cache_namespace": "progress",
                }],
            },
            "archive_bucket": "eduvault-archive",
        })

        assert config.cache.privacy_ttl_seconds[PrivacyLevel.RESTRICTED] == 60
        assert config.cache.shard_count == 8
        assert config.analytics.k_anonymity_threshold == 10
        assert config.analytics.warm_privacy_level is PrivacyLevel.LIMITED
        policy = config.retention.policy_map()["learning_progress"]
        assert policy.active_window == timedelta(days=30)
        assert policy.final_action is FinalAction.PURGE
        assert config.archive_bucket == "eduvault-archive"

    def test_rejects_unknown_root_option(self):
        with pytest.raises(ConfigurationError, match="Unknown"):
            PlatformConfig.from_dict({"cahce": {}})

    def test_rejects_unknown_nested_option(self):
        with pytest.raises(ConfigurationError):
            PlatformConfig.from_dict({"cache": {"shards": 4}})

    def test_rejects_invalid_level_in_ttl_table(self):
        with pytest.raises(ConfigurationError):
            PlatformConfig.from_dict({
                "cache": {"privacy_ttl_seconds": {"1": 10, "2": 9, "3": 8, "5": 7}},
            })

    def test_rejects_invalid_configured_privacy_level(self):
        with pytest.raises(ConfigurationError):
            PlatformConfig.from_dict({"analytics": {"cache_privacy_level": "top_secret"}})

    def test_rejects_unknown_final_action(self):
        with pytest.raises(ConfigurationError):
            PlatformConfig.from_dict({
                "retention": {"policies": [{
                    "category": "x",
                    "active_window_days": 1,
                    "final_action": "shred",
                }]},
            })


class TestPlatformConfigFromEnv:
    """Tests for PlatformConfig.from_env."""

    @pytest.fixture(autouse=True)
    def clean_env(self, monkeypatch):
        for name in (
            "EDUVAULT_CONFIG_PATH", "K_ANONYMITY_THRESHOLD", "RETENTION_CYCLE_SECONDS",
            "DB_HOST", "DB_SECRET_ARN", "PII_HASH_SALT", "ARCHIVE_BUCKET", "AWS_REGION",
        ):
            monkeypatch.delenv(name, raising=False)

    def test_defaults_without_env(self):
        config = PlatformConfig.from_env()

        assert config.database is None
        assert config.archive_bucket is None
        assert config.aws_region == "us-east-1"

    def test_env_overrides(self, monkeypatch):
        monkeypatch.setenv("RETENTION_CYCLE_SECONDS", "120")
        monkeypatch.setenv("ARCHIVE_BUCKET", "archive-bucket")
        monkeypatch.setenv("DB_HOST", "db.internal")

        config = PlatformConfig.from_env()

        assert config.retention.cycle_interval_seconds == 120
        assert config.archive_bucket == "archive-bucket"
        assert config.database.host == "db.internal"

    def test_invalid_env_value(self, monkeypatch):
        monkeypatch.setenv("RETENTION_CYCLE_SECONDS", "hourly")

        with pytest.raises(ConfigurationError):
            PlatformConfig.from_env()

    def test_config_file(self, monkeypatch, tmp_path):
        path = tmp_path / "eduvault.json"
        path.write_text(json.dumps({"cache": {"shard_count": 4}}))
        monkeypatch.setenv("EDUVAULT_CONFIG_PATH", str(path))

        config = PlatformConfig.from_env()

        assert config.cache.shard_count == 4

    @patch('boto3.client')
    def test_secret_arn_loads_credentials(self, mock_client, monkeypatch):
        mock_client.return_value.get_secret_value.return_value = {
            "SecretString": json.dumps({"host": "db.secret", "username": "vault", "password": "pw"}),
        }
        monkeypatch.setenv("DB_SECRET_ARN", "arn:aws:secretsmanager:eu-west-1:1:secret:db")
        monkeypatch.setenv("DB_HOST", "ignored.internal")
        monkeypatch.setenv("AWS_REGION", "eu-west-1")

        config = PlatformConfig.from_env()

        mock_client.assert_called_once_with("secretsmanager", region_name="eu-west-1")
        assert config.database.host == "db.secret"
        assert config.database.username == "vault"
