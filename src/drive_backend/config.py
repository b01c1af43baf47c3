from __future__ import annotations

from typing import ClassVar, final

from pydantic import AliasChoices, Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


_PLACEHOLDER_SIGNING_SECRET = "storage_signing_secret_change_me"


def _split_csv(value: str | None) -> list[str]:
    if not value:
        return []
    return [x.strip() for x in value.split(",") if x.strip()]


@final
class Settings(BaseSettings):
    model_config: ClassVar[SettingsConfigDict] = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        populate_by_name=True,
        extra="ignore",
    )
    app_name: str = "Drive Backend"
    api_prefix: str = "/api/v1"

    # Environment (ENVIRONMENT): development | production
    environment: str = "development"

    database_url: str = "sqlite:///./dev.db"

    # Primary env: CORS_ALLOW_ORIGINS; also accept CORS_ORIGINS as alias.
    cors_allow_origins: str = Field(
        default="*",
        validation_alias=AliasChoices("CORS_ALLOW_ORIGINS", "CORS_ORIGINS"),
    )

    # Share links are rendered as {public_base_url}/shared/{token}
    public_base_url: str = "http://localhost:3000"
    # Externally reachable API origin, used for locally signed blob URLs.
    api_base_url: str = "http://localhost:8000"

    log_level: str = "INFO"

    # Quota
    storage_quota_bytes: int = 15 * 1024 * 1024 * 1024

    # Content grants
    upload_url_expires_seconds: int = 300
    download_url_expires_seconds: int = 60 * 60
    storage_timeout_seconds: float = 30.0
    upload_max_size_bytes: int = 100 * 1024 * 1024

    # Local object storage (used when S3 config is incomplete)
    local_storage_dir: str = ".data/objects"
    storage_signing_secret: str = _PLACEHOLDER_SIGNING_SECRET

    # S3 compatible object storage
    s3_endpoint_url: str = ""
    s3_region: str = ""
    s3_bucket: str = ""
    s3_access_key_id: str = ""
    s3_secret_access_key: str = ""
    s3_force_path_style: bool = False

    @model_validator(mode="after")
    def _validate_production_settings(self) -> "Settings":  # pyright: ignore[reportUnusedFunction]
        if self.environment.strip().lower() != "production":
            return self

        errors: list[str] = []

        signing_secret = self.storage_signing_secret.strip()
        if not signing_secret or signing_secret == _PLACEHOLDER_SIGNING_SECRET:
            errors.append("STORAGE_SIGNING_SECRET must be set in production")

        cors_v = self.cors_allow_origins.strip()
        if not cors_v or cors_v == "*":
            errors.append("CORS_ALLOW_ORIGINS must be explicit (not '*') in production")

        # A partial S3 config would silently fall back to local storage.
        s3_fields = self.s3_fields()
        if any(v for v in s3_fields.values()) and any(not v for v in s3_fields.values()):
            missing = ",".join([k for k, v in s3_fields.items() if not v])
            errors.append(f"S3 config incomplete in production; missing: {missing}")

        if errors:
            raise ValueError("Invalid production settings: " + "; ".join(errors))
        return self

    def s3_fields(self) -> dict[str, str]:
        return {
            "S3_BUCKET": self.s3_bucket.strip(),
            "S3_ENDPOINT_URL": self.s3_endpoint_url.strip(),
            "S3_ACCESS_KEY_ID": self.s3_access_key_id.strip(),
            "S3_SECRET_ACCESS_KEY": self.s3_secret_access_key.strip(),
        }

    def s3_configured(self) -> bool:
        return all(self.s3_fields().values())

    def cors_origins_list(self) -> list[str]:
        v = self.cors_allow_origins.strip()
        if not v:
            return []
        if v == "*":
            return ["*"]
        return _split_csv(v)

    def security_warnings(self) -> list[str]:
        warnings: list[str] = []
        signing_secret = self.storage_signing_secret.strip()
        if not signing_secret or signing_secret == _PLACEHOLDER_SIGNING_SECRET:
            warnings.append("STORAGE_SIGNING_SECRET is missing or using placeholder value")
        if self.cors_allow_origins.strip() == "*":
            warnings.append("CORS_ALLOW_ORIGINS='*' is permissive")
        if not self.s3_configured():
            warnings.append("S3 is not configured; objects are stored on the local filesystem")
        return warnings


settings = Settings()
