from __future__ import annotations

import pytest

from drive_backend.config import Settings


def test_settings_development_allows_placeholders():
    # Development should stay frictionless: placeholder values are allowed.
    s = Settings.model_validate({"environment": "development"})
    assert any("STORAGE_SIGNING_SECRET" in w for w in s.security_warnings())


def test_settings_production_requires_secrets_and_core_config():
    with pytest.raises(Exception) as excinfo:
        Settings.model_validate({"environment": "production", "cors_allow_origins": "*"})

    msg = str(excinfo.value)
    assert "STORAGE_SIGNING_SECRET" in msg
    assert "CORS_ALLOW_ORIGINS" in msg


def test_settings_production_allows_safe_defaults_when_configured():
    s = Settings.model_validate(
        {
            "environment": "production",
            "database_url": "postgresql+psycopg://u:p@localhost:5432/drive",
            "public_base_url": "https://drive.example.com",
            "storage_signing_secret": "strong-signing-secret",
            "cors_allow_origins": "https://example.com, https://app.example.com",
        }
    )
    assert s.cors_origins_list() == ["https://example.com", "https://app.example.com"]
    assert s.s3_configured() is False


def test_settings_production_rejects_partial_s3_config():
    with pytest.raises(Exception) as excinfo:
        Settings.model_validate(
            {
                "environment": "production",
                "storage_signing_secret": "strong-signing-secret",
                "cors_allow_origins": "https://example.com",
                "s3_bucket": "bucket",
            }
        )

    msg = str(excinfo.value)
    assert "S3 config incomplete" in msg
    assert "S3_ENDPOINT_URL" in msg


def test_settings_full_s3_config_is_detected():
    s = Settings.model_validate(
        {
            "s3_bucket": "bucket",
            "s3_endpoint_url": "http://localhost:9000",
            "s3_access_key_id": "ak",
            "s3_secret_access_key": "sk",
        }
    )
    assert s.s3_configured() is True
    assert not any("S3" in w for w in s.security_warnings())
