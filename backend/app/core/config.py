"""Application configuration using pydantic-settings.

All environment variables should be accessed through the settings object
rather than using os.getenv() directly. Compliance policy thresholds live
here too so that sites can tune them without code changes.
"""

from functools import lru_cache
from typing import List, Literal, Optional

from pydantic import field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",  # Ignore extra env vars
    )

    # Database - defaults to relative path for Docker, override via env for local dev
    database_url: str = "sqlite:///./data/compliance.db"

    # Redis - optional, shares revoked tokens across workers and restarts
    redis_url: Optional[str] = None

    # Security
    secret_key: str = "change-me-in-production"
    algorithm: str = "HS256"
    access_token_expire_minutes: int = 240  # 4 hours

    # CORS - comma-separated origins or "*" for development only
    cors_origins: str = "http://localhost:3000,http://localhost:8000"

    # Server
    debug: bool = True
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = "INFO"

    # API
    api_v1_prefix: str = "/api/v1"

    # Rate limiting
    rate_limit_enabled: bool = True

    # ==========================================================================
    # Training journey policy
    # ==========================================================================
    sop_ack_threshold: int = 3  # SOP acknowledgements needed for skills
    quiz_pass_percentage: float = 80.0

    # ==========================================================================
    # Staff safety score policy
    # ==========================================================================
    incident_weight_critical: float = 25.0
    incident_weight_major: float = 10.0
    incident_weight_minor: float = 3.0

    score_weight_training: float = 0.30
    score_weight_ccp_accuracy: float = 0.30
    score_weight_on_time_checks: float = 0.20
    score_weight_incidents: float = 0.20

    # Highest incident count still considered promotion-ready
    promotion_max_incidents: int = 0

    @field_validator("secret_key")
    @classmethod
    def validate_secret_key(cls, v: str) -> str:
        if v == "change-me-in-production" or len(v) < 32:
            import warnings
            warnings.warn(
                "SECRET_KEY should be set to a random value of at least 32 characters.",
                UserWarning,
                stacklevel=2,
            )
        return v

    @field_validator("incident_weight_critical", "incident_weight_major", "incident_weight_minor")
    @classmethod
    def validate_incident_weight(cls, v: float) -> float:
        if v < 0:
            raise ValueError("Incident weights must not be negative")
        return v

    @model_validator(mode="after")
    def validate_production_settings(self) -> "Settings":
        """Validate settings for production safety."""
        if not self.debug and (
            self.secret_key == "change-me-in-production" or len(self.secret_key) < 32
        ):
            raise ValueError(
                "FATAL: Cannot start in production mode without a secure SECRET_KEY "
                "(minimum 32 characters)."
            )

        total = (
            self.score_weight_training
            + self.score_weight_ccp_accuracy
            + self.score_weight_on_time_checks
            + self.score_weight_incidents
        )
        if total <= 0:
            raise ValueError("Safety score weights must sum to a positive value")

        return self

    @property
    def cors_origins_list(self) -> List[str]:
        """Parse CORS origins into a list."""
        if self.cors_origins == "*":
            return ["*"]
        return [origin.strip() for origin in self.cors_origins.split(",") if origin.strip()]


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()


settings = get_settings()
