from __future__ import annotations

from typing import Literal

from pydantic import ConfigDict, Field, field_validator
from pydantic_settings import BaseSettings

DEFAULT_CONFIDENCE_LEVELS = {"HIGH": 0.9, "MEDIUM": 0.6, "LOW": 0.3}


class Settings(BaseSettings):
    """Application configuration loaded from environment variables."""

    api_key: str = Field("test-api-key", alias="API_KEY")

    log_level: str = Field("INFO", alias="LOG_LEVEL")

    host: str = Field("0.0.0.0", alias="HOST")
    port: int = Field(5000, alias="PORT")
    cors_origins: list[str] = Field(
        default_factory=lambda: ["http://localhost:5173"], alias="CORS_ORIGINS"
    )

    database_url: str = Field("sqlite:////tmp/skinscan.db", alias="DATABASE_URL")
    db_create_all: bool = Field(False, alias="DB_CREATE_ALL")

    openai_api_key: str = Field("", alias="OPENAI_API_KEY")
    openai_model: str = Field("gpt-4o-mini", alias="OPENAI_MODEL")
    openai_temperature: float = Field(0.2, alias="OPENAI_TEMPERATURE")

    s3_bucket: str = Field("", alias="S3_BUCKET")
    s3_endpoint: str | None = Field(None, alias="S3_ENDPOINT")
    s3_region: str = Field("us-east-1", alias="S3_REGION")
    s3_access_key: str | None = Field(None, alias="S3_ACCESS_KEY")
    s3_secret_key: str | None = Field(None, alias="S3_SECRET_KEY")
    s3_public_url: str | None = Field(None, alias="S3_PUBLIC_URL")
    s3_folder: str = Field("skin-detections", alias="S3_FOLDER")

    upload_max_mb: int = Field(10, alias="UPLOAD_MAX_MB")

    stats_monthly_window: Literal["calendar_year", "trailing"] = Field(
        "calendar_year",
        alias="STATS_MONTHLY_WINDOW",
        description="Twelve month buckets: Jan-Dec of this year or the last twelve months",
    )
    confidence_levels: dict[str, float] = Field(
        default_factory=lambda: dict(DEFAULT_CONFIDENCE_LEVELS),
        alias="CONFIDENCE_LEVELS",
        description="Numeric confidence assigned to qualitative levels in model output",
    )

    model_config = ConfigDict(
        extra="ignore",
        env_file=".env",
        case_sensitive=False,
        populate_by_name=True,
    )

    @field_validator("openai_api_key", "s3_bucket", mode="before")
    @classmethod
    def _strip(cls, v: str | None) -> str:
        return (v or "").strip()

    @field_validator("confidence_levels")
    @classmethod
    def _upper_levels(cls, v: dict[str, float]) -> dict[str, float]:
        return {str(k).strip().upper(): float(val) for k, val in v.items()}

    @property
    def upload_max_bytes(self) -> int:
        return self.upload_max_mb * 1024 * 1024

    def missing_credentials(self) -> list[str]:
        """Return names of model/storage credentials that are not set."""
        missing = []
        if not self.openai_api_key:
            missing.append("OPENAI_API_KEY")
        if not self.s3_bucket:
            missing.append("S3_BUCKET")
        if not self.s3_access_key:
            missing.append("S3_ACCESS_KEY")
        if not self.s3_secret_key:
            missing.append("S3_SECRET_KEY")
        return missing
