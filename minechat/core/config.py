"""Application configuration using Pydantic settings."""

from functools import lru_cache
from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Application
    app_env: Literal["development", "staging", "production"] = "development"
    app_debug: bool = False
    app_host: str = "0.0.0.0"
    app_port: int = 8000
    public_base_url: str = "http://localhost:8000"

    # Facebook Messenger (Graph API)
    facebook_app_id: str = ""
    facebook_app_secret: str = ""
    facebook_redirect_uri: str = ""
    facebook_graph_url: str = "https://graph.facebook.com"
    facebook_dialog_url: str = "https://www.facebook.com"
    facebook_graph_version: str = "v19.0"
    facebook_dialog_version: str = "v18.0"
    facebook_oauth_scopes: str = "pages_manage_metadata,pages_messaging,pages_read_engagement"
    messenger_request_timeout: float = 15.0

    # Shared with the provider's webhook configuration
    messenger_verify_token: str = "minechat_webhook_verify_token"

    # OAuth handshake
    oauth_state_ttl_seconds: int = 900
    auto_select_single_page: bool = False

    # Credentials
    # Fernet key (urlsafe base64, 32 bytes). Development falls back to an ephemeral key.
    credential_encryption_key: str = ""

    # LLM Providers
    openai_api_key: str = ""
    anthropic_api_key: str = ""
    google_api_key: str = ""

    # LiteLLM
    litellm_primary_model: str = "gpt-3.5-turbo"
    litellm_fallback_model: str = "gpt-4o-mini"
    ai_temperature: float = Field(default=0.3, ge=0.0, le=2.0)
    ai_history_messages: int = 10

    # Webhook ingestion
    dedup_retention_seconds: int = 7 * 24 * 3600

    # Outbound dispatch
    dispatch_max_attempts: int = 4
    dispatch_backoff_min: float = 0.5
    dispatch_backoff_max: float = 8.0
    image_send_interval_seconds: float = 1.0

    # Admin
    impersonation_ttl_seconds: int = 8 * 3600

    # Firestore
    firestore_emulator_host: str | None = None
    gcp_project_id: str = ""

    # Logging
    log_level: str = "INFO"
    log_format: Literal["json", "text"] = "json"

    @property
    def is_development(self) -> bool:
        """Check if running in development mode."""
        return self.app_env == "development"

    @property
    def is_production(self) -> bool:
        """Check if running in production mode."""
        return self.app_env == "production"

    @property
    def oauth_redirect_uri(self) -> str:
        """Callback URL registered with the Facebook app."""
        if self.facebook_redirect_uri:
            return self.facebook_redirect_uri
        return f"{self.public_base_url.rstrip('/')}/channels/messenger/callback"


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()


settings = get_settings()
