"""Tests for s3-tree-clone configuration."""

import pytest

from s3_tree_clone.config import (
    AWSConfig,
    Config,
    S3Config,
    SyncConfig,
    normalize_prefix,
    parse_destination,
    split_source,
)
from s3_tree_clone.errors import ConfigurationError, UsageError


class TestConfig:
    """Test configuration management."""

    def test_config_creation(self):
        """Test basic configuration creation."""
        config = Config()

        assert config.aws is not None
        assert config.s3 is not None
        assert config.sync is not None
        assert config.sync.root_uid == 0

    def test_aws_config_defaults(self):
        aws_config = AWSConfig()

        assert aws_config.profile is None
        assert aws_config.region is None

    def test_s3_config_defaults(self):
        s3_config = S3Config()

        assert s3_config.bucket == ""
        assert s3_config.storage_class == "STANDARD"
        assert s3_config.encryption_algorithm == "AES256"
        assert s3_config.kms_key_id == "aws/s3"
        assert s3_config.check_bucket is True

    def test_sync_config_defaults(self):
        sync_config = SyncConfig()

        assert sync_config.max_concurrent == 30
        assert sync_config.max_retries == 10
        assert sync_config.max_backoff_delay == 60.0
        assert sync_config.ignore_timestamps is False
        assert sync_config.root_uid == 0

    def test_config_is_immutable(self):
        config = Config()
        with pytest.raises(Exception):
            config.s3.bucket = "other"

    def test_build_normalizes_prefix(self):
        config = Config.build(s3={"bucket": "hello", "prefix": "/a//b"})

        assert config.s3.prefix == "a/b/"

    @pytest.mark.parametrize(
        "sections",
        [
            {"s3": {"storage_class": "FAST"}},
            {"s3": {"encryption_algorithm": "none"}},
            {"sync": {"max_concurrent": 0}},
            {"sync": {"max_retries": -1}},
            {"sync": {"max_backoff_delay": 0}},
            {"sync": {"root_uid": -1}},
        ],
    )
    def test_build_rejects_invalid_values(self, sections):
        with pytest.raises(ConfigurationError):
            Config.build(**sections)

    def test_with_overrides_ignores_none(self):
        config = Config.build(s3={"bucket": "hello", "storage_class": "GLACIER"})

        updated = config.with_overrides(s3={"storage_class": None, "kms_key_id": "alias/k"}, sync={"verbose": True})

        assert updated.s3.storage_class == "GLACIER"
        assert updated.s3.kms_key_id == "alias/k"
        assert updated.sync.verbose is True
        assert config.sync.verbose is False

    def test_config_from_env(self):
        """Test configuration from environment variables."""
        environ = {
            "S3TC_PROFILE": "test-profile",
            "S3TC_REGION": "us-west-2",
            "S3TC_STORAGE_CLASS": "ONEZONE_IA",
            "S3TC_MAX_CONCURRENT": "12",
            "S3TC_VERBOSE": "true",
            "S3TC_KMS_KEY": "",
        }

        config = Config.from_env(environ=environ)

        assert config.aws.profile == "test-profile"
        assert config.aws.region == "us-west-2"
        assert config.s3.storage_class == "ONEZONE_IA"
        assert config.s3.kms_key_id == "aws/s3"
        assert config.sync.max_concurrent == 12
        assert config.sync.verbose is True

    def test_config_from_env_invalid(self):
        with pytest.raises(ConfigurationError):
            Config.from_env(environ={"S3TC_MAX_RETRIES": "many"})


class TestDestination:
    """Test parsing of the s3:// destination."""

    @pytest.mark.parametrize(
        "destination,expected",
        [
            ("s3://hello", ("hello", "")),
            ("s3://hello/", ("hello", "")),
            ("s3://hello/backup", ("hello", "backup/")),
            ("s3://hello/backup/", ("hello", "backup/")),
            ("s3://hello//a///b", ("hello", "a/b/")),
        ],
    )
    def test_valid(self, destination, expected):
        assert parse_destination(destination) == expected

    @pytest.mark.parametrize("destination", ["", "hello", "s3:/hello", "s3://", "S3://hello"])
    def test_invalid(self, destination):
        with pytest.raises(UsageError) as excinfo:
            parse_destination(destination)
        assert str(excinfo.value) == f"Destination is not a valid S3 URL: {destination}"

    def test_normalize_prefix(self):
        assert normalize_prefix("") == ""
        assert normalize_prefix("/") == ""
        assert normalize_prefix("x") == "x/"


class TestSplitSource:
    """Test rsync-style interpretation of the source argument."""

    @pytest.mark.parametrize(
        "source,expected",
        [
            (".", (".", "")),
            ("./", (".", "")),
            ("dir", (".", "dir")),
            ("dir/", ("dir", "")),
            ("a/b", ("a", "b")),
            ("a/b/", ("a/b", "")),
            ("/", ("/", "")),
            ("/data", ("/", "data")),
            ("/data/", ("/data", "")),
            ("a//b/", ("a/b", "")),
        ],
    )
    def test_split(self, source, expected):
        assert split_source(source) == expected
