from pydantic_settings import BaseSettings
from pydantic import field_validator, model_validator
from typing import List, Optional


class Settings(BaseSettings):
    # Project Info
    PROJECT_NAME: str = "Exam Platform Session Guard"
    API_V1_STR: str = "/api/v1"

    # Security
    SECRET_KEY: str
    ALGORITHM: str = "HS256"
    ACCESS_TOKEN_EXPIRE_MINUTES: int = 60 * 24

    # Token revocation
    BLOCKLIST_SWEEP_INTERVAL_SECONDS: int = 300
    USER_INVALIDATION_RETENTION_SECONDS: Optional[int] = None

    # Rate limits
    RATE_LIMIT_CSRF_TOKEN: str = "120/minute"
    RATE_LIMIT_LOGOUT: str = "20/minute"

    # CORS
    BACKEND_CORS_ORIGINS: List[str] = [
        "http://localhost:3000",
    ]

    # Environment
    ENVIRONMENT: str = "development"
    DEBUG: bool = False

    # Frontend
    FRONTEND_URL: str = "http://localhost:3000"

    # Monitoring (Optional - Add to .env for production)
    SENTRY_DSN: str = ""

    @field_validator("ENVIRONMENT")
    @classmethod
    def normalize_environment(cls, value: str) -> str:
        return value.lower().strip()

    @field_validator("BLOCKLIST_SWEEP_INTERVAL_SECONDS")
    @classmethod
    def validate_sweep_interval(cls, value: int) -> int:
        if value <= 0:
            raise ValueError("BLOCKLIST_SWEEP_INTERVAL_SECONDS must be positive")
        return value

    @field_validator("USER_INVALIDATION_RETENTION_SECONDS")
    @classmethod
    def validate_retention(cls, value: Optional[int]) -> Optional[int]:
        if value is not None and value <= 0:
            raise ValueError("USER_INVALIDATION_RETENTION_SECONDS must be positive")
        return value

    @model_validator(mode="after")
    def validate_production_secret(self):
        if self.ENVIRONMENT == "production":
            normalized_secret = (self.SECRET_KEY or "").strip()
            if len(normalized_secret) < 32 or "your-secret-key-here" in normalized_secret.lower():
                raise ValueError("SECRET_KEY must be at least 32 chars and not use placeholders in production")
        return self

    @property
    def is_production(self) -> bool:
        return self.ENVIRONMENT == "production"

    model_config = {
        "env_file": ".env",
        "case_sensitive": True,
        "extra": "ignore",
    }


settings = Settings()
