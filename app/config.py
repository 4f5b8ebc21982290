from __future__ import annotations

from pydantic import ConfigDict, Field
from pydantic_settings import BaseSettings

DEFAULT_MODEL_VERSION = (
    "a029dff38972b5fda4ec5d75d7d1cd25aeff621d2cf4946a41055d7db66b80bc"
)

# Subscription tiers understood by the quota ledger
TIERS = ("free", "premium", "pro")


class Settings(BaseSettings):
    """Application configuration loaded from environment variables.

    Built once at process start and handed to each component; instances are
    frozen so nothing can mutate configuration at runtime.
    """

    environment: str = Field("development", alias="NODE_ENV")
    app_url: str = Field("http://localhost:8000", alias="APP_URL")

    database_url: str = Field("sqlite:////tmp/bgremover_test.db", alias="DATABASE_URL")
    db_create_all: bool = Field(False, alias="DB_CREATE_ALL")

    session_ttl_days: int = 30
    session_cookie_name: str = "session"
    bcrypt_rounds: int = 12

    replicate_api_token: str | None = Field(None, alias="REPLICATE_API_TOKEN")
    replicate_api_url: str = Field(
        "https://api.replicate.com/v1", alias="REPLICATE_API_URL"
    )
    replicate_model_version: str = Field(
        DEFAULT_MODEL_VERSION, alias="REPLICATE_MODEL_VERSION"
    )
    poll_interval_s: float = 1.0
    poll_timeout_s: float = Field(
        90.0,
        description="Upper bound on waiting for a prediction to finish",
    )
    http_timeout_s: float = 30.0

    max_upload_bytes: int = 10 * 1024 * 1024
    free_monthly_limit: int = 3
    premium_monthly_limit: int = 100

    resend_api_key: str | None = Field(None, alias="RESEND_API_KEY")
    resend_api_url: str = "https://api.resend.com"
    email_from: str = "AI Background Remover <onboarding@resend.dev>"
    verification_ttl_h: int = 24

    model_config = ConfigDict(
        extra="ignore",
        env_file=".env",
        case_sensitive=False,
        frozen=True,
        populate_by_name=True,
    )

    @property
    def is_production(self) -> bool:
        return self.environment == "production"

    @property
    def is_development(self) -> bool:
        return self.environment == "development"

    def quota_policy(self) -> dict[str, int | None]:
        """Monthly allowance per tier; ``None`` means unlimited."""
        return {
            "free": self.free_monthly_limit,
            "premium": self.premium_monthly_limit,
            "pro": None,
        }
