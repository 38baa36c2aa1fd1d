"""
Application Settings for Chat Relay

Centralized configuration using Pydantic Settings with .env support.
All environment variables are validated at startup.
"""

import logging
from functools import lru_cache
from typing import Optional
from pydantic import model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


logger = logging.getLogger(__name__)


class Settings(BaseSettings):
    """
    Application settings loaded from environment variables.
    
    Billing settings are optional so the non-billing surface boots without
    Stripe credentials; the webhook endpoint refuses to run without its secret.
    """
    
    # Application Settings
    environment: str = "development"
    debug: bool = False
    log_level: str = "INFO"
    
    # CORS Configuration
    allowed_origins: list[str] = [
        "http://localhost:5173",
        "http://localhost:3000",
        "http://127.0.0.1:5173",
    ]
    
    # Database Configuration (SQLModel/SQLAlchemy)
    database_url: str = "sqlite+aiosqlite:///./chatrelay.db"
    database_pool_size: int = 5
    database_max_overflow: int = 10
    database_pool_timeout: int = 30
    database_echo: bool = False
    
    # Authentication
    jwt_secret: str = "dev-jwt-secret-change-me"
    jwt_algorithm: str = "HS256"
    access_token_expire_hours: int = 3
    
    # Trial window for newly registered users (0 = unlimited trial)
    trial_duration_hours: int = 4
    
    # Stripe Configuration
    stripe_secret_key: Optional[str] = None
    stripe_webhook_secret: Optional[str] = None
    stripe_webhook_tolerance_seconds: int = 300
    stripe_price_id: Optional[str] = None
    stripe_success_url: Optional[str] = None
    stripe_cancel_url: Optional[str] = None
    stripe_portal_return_url: Optional[str] = None
    stripe_timeout_seconds: float = 10.0
    stripe_max_network_retries: int = 2
    
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )
    
    @model_validator(mode="after")
    def validate_billing_keys(self) -> "Settings":
        """Warn about missing Stripe credentials in production."""
        if self.is_production:
            missing = [
                name for name in ("stripe_secret_key", "stripe_webhook_secret")
                if not getattr(self, name)
            ]
            if missing:
                logger.warning(f"Billing disabled, missing settings: {', '.join(missing)}")
        
        return self
    
    @property
    def portal_return_url(self) -> Optional[str]:
        """Billing portal return URL, falling back to the checkout success URL."""
        return self.stripe_portal_return_url or self.stripe_success_url
    
    @property
    def is_production(self) -> bool:
        """Check if running in production."""
        return self.environment.lower() == "production"


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()


# Convenience export for direct import
settings = get_settings()
