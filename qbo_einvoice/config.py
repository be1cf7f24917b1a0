"""
Configuration management using pydantic-settings.
All settings loaded from environment variables (12-factor app).
"""

from functools import lru_cache
from typing import List

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # QuickBooks OAuth2
    intuit_client_id: str = Field(default="", description="Intuit OAuth2 client ID")
    intuit_client_secret: str = Field(default="", description="Intuit OAuth2 client secret")
    intuit_redirect_uri: str = Field(
        default="http://localhost:8000/callback",
        description="OAuth2 redirect URI",
    )
    intuit_env: str = Field(default="sandbox", description="Intuit environment (sandbox|production)")
    intuit_realm_id: str = Field(default="", description="Default QuickBooks company ID")
    intuit_scope: str = Field(
        default="com.intuit.quickbooks.accounting", description="OAuth2 scope requested"
    )
    intuit_webhook_verifier_token: str = Field(
        default="", description="Webhook verifier token used as the HMAC secret"
    )
    intuit_minor_version: int = Field(default=75, description="QuickBooks API minor version")
    intuit_timeout_seconds: float = Field(default=30.0, gt=0, description="QBO HTTP timeout")

    # FIRS e-invoicing
    firs_api_base_url: str = Field(
        default="https://api.firs.gov.ng", description="FIRS e-invoicing API base URL"
    )
    firs_api_key: str = Field(default="", description="FIRS x-api-key header")
    firs_api_secret: str = Field(default="", description="FIRS x-api-secret header")
    firs_public_key: str = Field(
        default="", description="Base64-encoded PEM RSA public key for QR encryption"
    )
    firs_certificate: str = Field(default="", description="FIRS certificate embedded in QR payload")
    firs_timeout_seconds: float = Field(default=30.0, gt=0, description="FIRS HTTP timeout")

    # Object storage
    supabase_url: str = Field(default="", description="Supabase project URL")
    supabase_key: str = Field(default="", description="Supabase service or anon key")
    supabase_bucket: str = Field(default="FIRS-QBO", description="Bucket for QR code images")
    supabase_timeout_seconds: float = Field(default=30.0, gt=0, description="Supabase storage HTTP timeout")

    # Invoice write-back
    irn_custom_field_name: str = Field(default="FIRS IRN", description="Custom field for the IRN")
    qr_custom_field_name: str = Field(
        default="E-invoice QRCode", description="Custom field for the QR code URL"
    )
    custom_field_max_attempts: int = Field(
        default=3, ge=1, le=10, description="Attempts for stale SyncToken retries"
    )

    # Persistence
    db_path: str = Field(default="./data/qbo_einvoice.duckdb", description="DuckDB file path")
    audit_log_path: str = Field(
        default="./data/notifications.csv", description="Append-only webhook audit CSV"
    )

    # OAuth state signing
    jwt_secret: str = Field(
        default="change-this-to-a-secure-random-string-in-production",
        description="Secret used to sign OAuth state tokens",
    )
    jwt_algorithm: str = Field(default="HS256", description="JWT algorithm")
    oauth_state_ttl_minutes: int = Field(default=10, ge=1, description="OAuth state lifetime")

    # API
    api_host: str = Field(default="0.0.0.0", description="API host")
    api_port: int = Field(default=8000, description="API port")
    api_reload: bool = Field(default=True, description="Enable hot reload")
    cors_origins: str = Field(
        default="http://localhost:3000",
        description="CORS allowed origins (comma-separated)",
        validate_default=True,
    )

    # Logging
    log_level: str = Field(default="info", description="Log level")
    log_format: str = Field(default="json", description="Log format (json|console)")

    # Development
    dev_mode: bool = Field(default=True, description="Development mode")
    testing: bool = Field(default=False, description="Testing mode")

    @field_validator("cors_origins")
    @classmethod
    def parse_cors_origins(cls, v: str) -> List[str]:
        """Parse comma-separated CORS origins."""
        if isinstance(v, str):
            return [origin.strip() for origin in v.split(",") if origin.strip()]
        return v

    @property
    def intuit_auth_url(self) -> str:
        """Intuit authorization endpoint (same host for sandbox and production)."""
        return "https://appcenter.intuit.com/connect/oauth2"

    @property
    def intuit_token_url(self) -> str:
        """Intuit token endpoint."""
        return "https://oauth.platform.intuit.com/oauth2/v1/tokens/bearer"

    @property
    def intuit_api_base_url(self) -> str:
        """Construct QuickBooks API base URL."""
        if self.intuit_env == "production":
            return "https://quickbooks.api.intuit.com"
        return "https://sandbox-quickbooks.api.intuit.com"

    @property
    def qr_encryption_configured(self) -> bool:
        """Whether both FIRS encryption inputs are present."""
        return bool(self.firs_public_key and self.firs_certificate)


@lru_cache
def get_settings() -> Settings:
    """
    Get cached settings instance.
    Uses lru_cache to ensure singleton behavior.
    """
    return Settings()
