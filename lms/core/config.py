"""
Configuration management for the Leave Management System core
"""
from pydantic_settings import BaseSettings
from pydantic import Field, field_validator
from typing import Optional


class Settings(BaseSettings):
    """Application settings loaded from environment variables"""

    DATABASE_URL: str = Field(default="sqlite:///./lms.db", description="SQLAlchemy database URL")

    APP_ENV: str = Field(default="local", description="Application environment: local, staging, prod")
    LOG_LEVEL: str = Field(default="INFO", description="Logging level: DEBUG, INFO, WARNING, ERROR")

    # When False, notifications are logged but never handed to the sender
    NOTIFICATIONS_ENABLED: bool = Field(default=True, description="Deliver leave notifications")
    NOTIFICATION_FROM: str = Field(default="no-reply@lms.local", description="Sender address for notifications")

    DEFAULT_EMPLOYMENT_TYPE: str = Field(default="FTE", description="Employment type assumed for new employees")

    VERSION: Optional[str] = Field(default=None, description="Application version (git SHA or semver)")

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"
        case_sensitive = True

    @field_validator("APP_ENV")
    @classmethod
    def validate_app_env(cls, v: str) -> str:
        """Validate APP_ENV"""
        allowed = ["local", "staging", "prod"]
        if v not in allowed:
            raise ValueError(f"APP_ENV must be one of {allowed}")
        return v

    @field_validator("LOG_LEVEL")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        """Validate LOG_LEVEL"""
        allowed = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
        if v.upper() not in allowed:
            raise ValueError(f"LOG_LEVEL must be one of {allowed}")
        return v.upper()

    @field_validator("DEFAULT_EMPLOYMENT_TYPE")
    @classmethod
    def validate_employment_type(cls, v: str) -> str:
        allowed = ["FTE", "FTDC", "CONSULTANT"]
        if v.upper() not in allowed:
            raise ValueError(f"DEFAULT_EMPLOYMENT_TYPE must be one of {allowed}")
        return v.upper()


settings = Settings()
