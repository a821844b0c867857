"""
Configuration settings for certbatch.

Uses Pydantic Settings to load environment variables for quota limits, the
verification base URL, render/mail timeouts, storage and mail transport
credentials. Values may also come from a local `.env` file.
"""
from __future__ import annotations

from functools import lru_cache
from typing import Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    # Application
    app_env: str = Field("development", alias="APP_ENV")
    log_level: str = Field("INFO", alias="LOG_LEVEL")
    log_json: bool = Field(False, alias="LOG_JSON")
    base_url: str = Field("http://localhost:3000", alias="BASE_URL")

    # Quotas
    free_generation_limit: int = Field(5, alias="FREE_GENERATION_LIMIT")
    daily_email_limit: int = Field(100, alias="DAILY_EMAIL_LIMIT")
    premium_daily_email_limit: int = Field(300, alias="PREMIUM_DAILY_EMAIL_LIMIT")
    free_bulk_email_limit: int = Field(5, alias="FREE_BULK_EMAIL_LIMIT")

    # Rendering
    render_timeout_seconds: float = Field(30.0, alias="RENDER_TIMEOUT_SECONDS")
    qr_size: int = Field(200, alias="QR_SIZE")
    png_scale: float = Field(2.0, alias="PNG_SCALE")

    # Storage
    storage_backend: str = Field("memory", alias="STORAGE_BACKEND")
    db_host: str = Field("localhost", alias="DB_HOST")
    db_port: int = Field(5432, alias="DB_PORT")
    db_user: str = Field("postgres", alias="DB_USER")
    db_password: str = Field("postgres", alias="DB_PASSWORD")
    db_name: str = Field("certbatch", alias="DB_NAME")
    db_statement_timeout_ms: int = Field(5_000, alias="DB_STATEMENT_TIMEOUT_MS")

    # Mail
    mail_transport: str = Field("smtp", alias="MAIL_TRANSPORT")
    mail_timeout_seconds: float = Field(20.0, alias="MAIL_TIMEOUT_SECONDS")
    smtp_host: str = Field("localhost", alias="SMTP_HOST")
    smtp_port: int = Field(587, alias="SMTP_PORT")
    smtp_user: Optional[str] = Field(None, alias="SMTP_USER")
    smtp_password: Optional[str] = Field(None, alias="SMTP_PASSWORD")
    smtp_use_tls: bool = Field(True, alias="SMTP_USE_TLS")
    brevo_api_key: Optional[str] = Field(None, alias="BREVO_API_KEY")
    email_sender_name: str = Field("Certificates", alias="EMAIL_SENDER_NAME")
    email_sender_address: Optional[str] = Field(None, alias="EMAIL_SENDER_ADDRESS")

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        populate_by_name=True,
    )

    def daily_email_limit_for(self, is_premium: bool) -> int:
        """Daily send cap for the given tier."""
        return self.premium_daily_email_limit if is_premium else self.daily_email_limit


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """
    Retrieve a cached instance of Settings to avoid repeated env parsing.
    """
    return Settings()


__all__ = ["Settings", "get_settings"]
