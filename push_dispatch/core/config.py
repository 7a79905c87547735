"""Application configuration using Pydantic Settings"""
from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import AliasChoices, Field, field_validator
from typing import Optional


class Settings(BaseSettings):
    """Application settings loaded from environment variables"""

    # Application
    DEBUG: bool = False
    LOG_LEVEL: str = "INFO"
    LOG_DIR: Optional[str] = None  # Rotating file logs are written only when set

    # API
    API_V1_PREFIX: str = "/api/v1"

    # Device registry (Supabase PostgREST)
    SUPABASE_URL: Optional[str] = None
    SUPABASE_SERVICE_ROLE_KEY: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices("SUPABASE_SERVICE_ROLE_KEY", "ANALYTICS_SERVICE_ROLE_KEY"),
    )
    REGISTRY_TIMEOUT_SECONDS: float = 10.0

    @property
    def registry_ready(self) -> bool:
        """Check if the device registry connection is configured."""
        return bool(self.SUPABASE_URL and self.SUPABASE_SERVICE_ROLE_KEY)

    # APNS Configuration
    APNS_KEY: Optional[str] = None  # PEM-encoded .p8 key material
    APNS_KEY_ID: Optional[str] = None  # 10-character key identifier
    APNS_TEAM_ID: Optional[str] = None  # 10-character team identifier
    APNS_BUNDLE_ID: Optional[str] = None  # App bundle ID, used as apns-topic
    APNS_USE_SANDBOX: bool = False  # Use sandbox for development

    @property
    def apns_ready(self) -> bool:
        """Check if APNS is properly configured and ready to use."""
        return bool(
            self.APNS_KEY
            and self.APNS_KEY_ID
            and self.APNS_TEAM_ID
            and self.APNS_BUNDLE_ID
        )

    # FCM Configuration (legacy HTTP API)
    FCM_SERVER_KEY: Optional[str] = None

    @property
    def fcm_ready(self) -> bool:
        """Check if FCM is properly configured and ready to use."""
        return bool(self.FCM_SERVER_KEY)

    # Dispatch tuning
    PUSH_MAX_CONCURRENCY: int = Field(default=20, ge=1)  # In-flight requests per provider
    PUSH_PROVIDER_TIMEOUT_SECONDS: float = Field(default=10.0, gt=0)
    PUSH_DISPATCH_TIMEOUT_SECONDS: float = Field(default=30.0, gt=0)
    PUSH_DEFAULT_TITLE: str = "BLIP"

    # Delivery audit store
    AUDIT_DATABASE_URL: Optional[str] = None

    @property
    def audit_enabled(self) -> bool:
        """Check if delivery outcomes should be written to the audit store."""
        return bool(self.AUDIT_DATABASE_URL)

    @field_validator(
        'SUPABASE_URL', 'SUPABASE_SERVICE_ROLE_KEY', 'APNS_KEY', 'APNS_KEY_ID',
        'APNS_TEAM_ID', 'APNS_BUNDLE_ID', 'FCM_SERVER_KEY', 'AUDIT_DATABASE_URL',
        'LOG_DIR',
        mode='after',
    )
    @classmethod
    def blank_as_missing(cls, v: Optional[str]) -> Optional[str]:
        """Treat empty or whitespace-only values as not configured."""
        if v is not None and not v.strip():
            return None
        return v

    @field_validator('SUPABASE_URL', mode='after')
    @classmethod
    def strip_trailing_slash(cls, v: Optional[str]) -> Optional[str]:
        """Normalize the registry base URL so paths can be appended."""
        return v.rstrip('/') if v else v

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=True,
        extra="ignore",
    )


# Global settings instance
settings = Settings()


def get_settings() -> Settings:
    """Dependency returning the process-wide settings instance."""
    return settings
