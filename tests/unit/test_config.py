"""Unit tests for settings resolution."""

from pathlib import Path

from chronomem.core.config import (
    DEFAULT_LOCAL_S3_ENDPOINT,
    LOCAL_S3_ACCESS_KEY,
    Settings,
    resolve_s3_settings,
)


class TestResolveS3Settings:
    """Tests for object-storage credential resolution."""

    def test_testing_environment_uses_local_server(self):
        """Test that the testing environment ignores real keys."""
        s3 = resolve_s3_settings(
            {
                "CHRONOMEM_ENV": "testing",
                "AWS_ACCESS_KEY_ID": "AKIA",
                "AWS_SECRET_ACCESS_KEY": "secret",
            }
        )
        assert s3.is_local
        assert s3.access_key_id == LOCAL_S3_ACCESS_KEY
        assert s3.endpoint == DEFAULT_LOCAL_S3_ENDPOINT
        assert s3.url_style == "path"
        assert not s3.use_ssl

    def test_missing_keys_fall_back_to_local(self):
        s3 = resolve_s3_settings({})
        assert s3.is_local

    def test_own_keys_take_precedence(self):
        """Test that project variables beat AWS_* variables."""
        s3 = resolve_s3_settings(
            {
                "CHRONOMEM_S3_ACCESS_KEY_ID": "own",
                "CHRONOMEM_S3_SECRET_ACCESS_KEY": "own-secret",
                "CHRONOMEM_S3_SESSION_TOKEN": "own-token",
                "AWS_ACCESS_KEY_ID": "aws",
                "AWS_SECRET_ACCESS_KEY": "aws-secret",
                "AWS_SESSION_TOKEN": "aws-token",
                "AWS_REGION": "us-east-1",
            }
        )
        assert not s3.is_local
        assert s3.access_key_id == "own"
        assert s3.session_token == "own-token"
        assert s3.region == "us-east-1"
        assert s3.endpoint is None
        assert s3.url_style == "vhost"

    def test_production_uses_regional_endpoint(self):
        s3 = resolve_s3_settings(
            {
                "CHRONOMEM_ENV": "production",
                "AWS_ACCESS_KEY_ID": "aws",
                "AWS_SECRET_ACCESS_KEY": "aws-secret",
                "CHRONOMEM_S3_REGION": "eu-west-1",
            }
        )
        assert s3.endpoint == "https://s3.eu-west-1.amazonaws.com"
        assert s3.use_ssl

    def test_localhost_endpoint_uses_path_style(self):
        s3 = resolve_s3_settings(
            {
                "AWS_ACCESS_KEY_ID": "aws",
                "AWS_SECRET_ACCESS_KEY": "aws-secret",
                "CHRONOMEM_S3_ENDPOINT": "http://127.0.0.1:9000",
            }
        )
        assert s3.url_style == "path"


class TestSettingsFromEnv:
    """Tests for Settings.from_env."""

    def test_defaults(self):
        settings = Settings.from_env({})
        assert settings.graph_extensions is True
        assert settings.graph_conditional_writes is False
        assert settings.platform_api_key is None

    def test_data_dir_and_flags(self):
        """Test paths derived from the data directory and boolean flags."""
        settings = Settings.from_env(
            {
                "CHRONOMEM_DATA_DIR": "/tmp/cm",
                "CHRONOMEM_GRAPH_EXTENSIONS": "false",
                "CHRONOMEM_GRAPH_CONDITIONAL_WRITES": "yes",
                "CHRONOMEM_REQUEST_TIMEOUT": "5",
            }
        )
        assert settings.vector_root == Path("/tmp/cm/vectordb")
        assert settings.db_path == Path("/tmp/cm/chronomem.db")
        assert settings.graph_extensions is False
        assert settings.graph_conditional_writes is True
        assert settings.request_timeout == 5.0
