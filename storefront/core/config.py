from pydantic_settings import BaseSettings
from pydantic import field_validator, model_validator
from typing import List
import json


class Settings(BaseSettings):
    # Project Info
    PROJECT_NAME: str = "Brewhouse Storefront API"
    API_V1_STR: str = "/api/v1"

    # Database
    DATABASE_URL: str
    AUTO_CREATE_TABLES: bool = False
    SEED_CATALOG: bool = False

    # Security
    SECRET_KEY: str
    ALGORITHM: str = "HS256"
    ACCESS_TOKEN_EXPIRE_MINUTES: int = 30

    # CORS
    BACKEND_CORS_ORIGINS: List[str] = [
        "http://localhost:3000",
    ]
    FRONTEND_URL: str = "http://localhost:3000"

    # Environment
    ENVIRONMENT: str = "development"
    DEBUG: bool = False
    TRUST_PROXY_HEADERS: bool = False
    LOG_LEVEL: str = ""

    # Monitoring (optional)
    SENTRY_DSN: str = ""

    # Celery & Redis (Task Queue)
    CELERY_BROKER_URL: str = "redis://localhost:6379/0"
    CELERY_RESULT_BACKEND: str = "redis://localhost:6379/0"

    # Rate limiting
    RATE_LIMIT_STORAGE_URI: str = "memory://"
    DEFAULT_RATE_LIMIT: str = "300/minute"

    # Checkout lifecycle
    ORDER_PAYMENT_WINDOW_MINUTES: int = 30
    CHECKOUT_TOKEN_TTL_MINUTES: int = 30

    # Admin bootstrap
    DEFAULT_ADMIN_USERNAME: str = "admin"
    DEFAULT_ADMIN_EMAIL: str = "admin@brewhouse.local"
    DEFAULT_ADMIN_PASSWORD: str = ""

    @field_validator("ENVIRONMENT")
    @classmethod
    def normalize_environment(cls, value: str) -> str:
        return value.lower().strip()

    @field_validator("BACKEND_CORS_ORIGINS", mode="before")
    @classmethod
    def parse_cors_origins(cls, value):
        if isinstance(value, str):
            raw = value.strip()
            if raw.startswith("["):
                try:
                    return json.loads(raw)
                except json.JSONDecodeError as exc:
                    raise ValueError("BACKEND_CORS_ORIGINS must be valid JSON or comma-separated") from exc
            return [origin.strip() for origin in raw.split(",") if origin.strip()]
        return value

    @model_validator(mode="after")
    def validate_production_secrets(self):
        if self.ENVIRONMENT == "production":
            normalized_secret = (self.SECRET_KEY or "").strip()
            if len(normalized_secret) < 32 or "change-me" in normalized_secret.lower():
                raise ValueError("SECRET_KEY must be at least 32 chars and not use placeholders in production")
        return self

    @property
    def is_sqlite(self) -> bool:
        return self.DATABASE_URL.startswith("sqlite")

    model_config = {
        "env_file": ".env",
        "case_sensitive": True,
        "extra": "ignore",
    }


settings = Settings()
