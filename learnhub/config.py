"""Application configuration module."""

from typing import List, Optional

from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings."""

    model_config = SettingsConfigDict(env_file=".env", case_sensitive=True, extra="ignore")

    # Data API settings
    DATA_API_URL: str = "http://localhost:54321"
    SERVICE_ROLE_KEY: Optional[str] = None
    ANON_KEY: Optional[str] = None
    STORE_CREDENTIAL_MODE: str = "auto"
    STORE_TIMEOUT_SECONDS: float = 10.0
    STORE_MAX_RETRIES: int = 2

    # Assessment settings
    DEFAULT_QUESTION_LIMIT: int = 25
    QUICK_ASSESSMENT_PASSING_SCORE: int = 72

    # Identity settings
    JWT_SECRET: Optional[str] = None
    JWT_AUDIENCE: Optional[str] = None
    ALLOW_DEV_UNVERIFIED_JWT: bool = False

    # Logging settings
    LOG_LEVEL: str = "INFO"
    LOG_JSON: bool = False
    LOG_FILE: Optional[str] = None

    # API settings
    PROJECT_NAME: str = "LearnHub Backend"
    CORS_ORIGINS: List[str] = ["*"]

    @field_validator("STORE_CREDENTIAL_MODE")
    @classmethod
    def validate_credential_mode(cls, v: str) -> str:
        """Validate the store credential mode"""
        valid_modes = ["auto", "service_role", "user_token", "memory"]
        if v.lower() not in valid_modes:
            raise ValueError(f"Invalid credential mode: {v}. Must be one of {valid_modes}")
        return v.lower()

    @field_validator("LOG_LEVEL")
    @classmethod
    def validate_level(cls, v: str) -> str:
        """Validate log level"""
        valid_levels = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
        if v.upper() not in valid_levels:
            raise ValueError(f"Invalid log level: {v}. Must be one of {valid_levels}")
        return v.upper()

    @property
    def rest_url(self) -> str:
        """Base URL of the REST interface of the data API."""
        return f"{self.DATA_API_URL.rstrip('/')}/rest/v1"


# Create global settings instance
settings = Settings()
