"""
Application Configuration Module

Centralizes all configuration using environment variables with Pydantic Settings.
Supports two modes:
    - DEVELOPMENT: Uses mock collaborators (no API keys needed)
    - PRODUCTION: Uses real APIs (OpenAI, Google Custom Search, Evolution API)

The ENV_MODE variable controls which collaborators are instantiated
throughout the application, enabling seamless switching between local
testing and production deployment.

Usage:
    from concierge.core.config import get_settings

    settings = get_settings()
    if settings.is_development:
        # Use mock collaborators
    else:
        # Use real APIs
"""

import logging
import sys
from enum import Enum
from typing import Optional
from functools import lru_cache

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class EnvironmentMode(str, Enum):
    """
    Application environment modes.

    Attributes:
        DEVELOPMENT: Local testing with mock collaborators
        PRODUCTION: Live environment with real API integrations
        STAGING: Pre-production testing with real APIs but test accounts
    """
    DEVELOPMENT = "development"
    PRODUCTION = "production"
    STAGING = "staging"


class Settings(BaseSettings):
    """
    Application settings loaded from environment variables.

    All settings can be overridden via environment variables or .env file.
    Sensitive values (API keys) should NEVER be committed to version control.

    Attributes:
        env_mode: Current environment (development/production/staging)
        debug: Enable verbose logging and error details

        # External Services (Required in production)
        openai_api_key: Key for the text generation collaborator
        google_search_api_key / google_search_engine_id: Custom Search API
        evolution_base_url / evolution_api_key / evolution_instance_id:
            WhatsApp gateway used to talk to restaurants and clients

        # Business Configuration
        default_city: Locality used when the address does not name one
        fanout_delays: Gaps between the confirmation messages
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # ==========================================================================
    # ENVIRONMENT
    # ==========================================================================

    env_mode: EnvironmentMode = Field(
        default=EnvironmentMode.DEVELOPMENT,
        description="Application environment mode"
    )
    debug: bool = Field(
        default=False,
        description="Enable debug mode with verbose logging"
    )

    # ==========================================================================
    # APPLICATION
    # ==========================================================================

    app_name: str = Field(
        default="Delivery Concierge",
        description="Application display name"
    )
    app_version: str = Field(
        default="1.0.0",
        description="Application version"
    )
    api_host: str = Field(
        default="0.0.0.0",
        description="API server host"
    )
    api_port: int = Field(
        default=8001,
        description="API server port"
    )
    app_base_url: str = Field(
        default="http://localhost:8001",
        description="Public URL of the chat, linked in client notifications"
    )

    # ==========================================================================
    # TEXT GENERATION (OPENAI)
    # ==========================================================================

    openai_api_key: Optional[str] = Field(
        default=None,
        description="OpenAI API key"
    )
    openai_model: str = Field(
        default="gpt-4o-mini",
        description="Chat completion model"
    )
    openai_temperature: float = Field(
        default=0.7,
        ge=0.0,
        le=2.0,
        description="Sampling temperature for generated replies"
    )

    # ==========================================================================
    # WEB SEARCH
    # ==========================================================================

    google_search_api_key: Optional[str] = Field(
        default=None,
        description="Google Custom Search JSON API key"
    )
    google_search_engine_id: Optional[str] = Field(
        default=None,
        description="Google Programmable Search Engine ID (cx)"
    )
    search_scrape_url: str = Field(
        default="https://html.duckduckgo.com/html/",
        description="Search results page scraped when the API is unavailable"
    )
    http_user_agent: str = Field(
        default=(
            "Mozilla/5.0 (X11; Linux x86_64) AppleWebKit/537.36 "
            "(KHTML, like Gecko) Chrome/124.0 Safari/537.36"
        ),
        description="User-Agent sent on scrape and page fetch requests"
    )

    # ==========================================================================
    # WHATSAPP (EVOLUTION API)
    # ==========================================================================

    evolution_base_url: str = Field(
        default="https://api.evoapicloud.com",
        description="Evolution API base URL"
    )
    evolution_api_key: Optional[str] = Field(
        default=None,
        description="Evolution API key (sent as the apikey header)"
    )
    evolution_instance_id: Optional[str] = Field(
        default=None,
        description="Evolution instance that owns the WhatsApp number"
    )

    # ==========================================================================
    # OUTBOUND CALL POLICY
    # ==========================================================================

    retry_attempts: int = Field(
        default=3,
        ge=1,
        description="Attempts per outbound call"
    )
    retry_backoff_seconds: float = Field(
        default=1.0,
        ge=0.0,
        description="Linear backoff step between attempts"
    )
    request_timeout_seconds: float = Field(
        default=10.0,
        gt=0.0,
        description="Timeout for a single outbound attempt"
    )

    # ==========================================================================
    # RESTAURANT DISCOVERY
    # ==========================================================================

    default_city: str = Field(
        default="Rio de Janeiro",
        description="Locality used when the address does not name a city"
    )
    country_code: str = Field(
        default="55",
        description="Country prefix for WhatsApp contact ids"
    )
    discovery_max_results: int = Field(
        default=10,
        ge=1,
        description="Search results inspected for a contact number"
    )
    discovery_max_candidates: int = Field(
        default=3,
        ge=1,
        le=3,
        description="Restaurants presented to the user"
    )
    discovery_allow_generated: bool = Field(
        default=False,
        description="Ask the text generator for candidates before the fallback list"
    )

    # ==========================================================================
    # CONVERSATION
    # ==========================================================================

    chat_reply_max_chars: int = Field(
        default=400,
        ge=50,
        description="Ceiling for replies shown in the chat"
    )
    proxy_reply_max_chars: int = Field(
        default=600,
        ge=50,
        description="Ceiling for replies sent to restaurants on the client's behalf"
    )
    proxy_history_turns: int = Field(
        default=6,
        ge=1,
        description="Restaurant conversation turns given to the client proxy"
    )
    chat_fallback_on_generation_error: bool = Field(
        default=False,
        description="Answer chat messages from templates when generation fails"
    )

    # ==========================================================================
    # HUMAN-LIKE DELAYS
    # ==========================================================================

    dispatch_delay_min_seconds: float = Field(default=2.0, ge=0.0)
    dispatch_delay_max_seconds: float = Field(default=5.0, ge=0.0)
    proxy_reply_delay_min_seconds: float = Field(default=2.0, ge=0.0)
    proxy_reply_delay_max_seconds: float = Field(default=5.0, ge=0.0)
    fanout_delays: str = Field(
        default="3.0,2.5,2.0",
        description="Comma-separated gaps (seconds) between confirmation messages"
    )

    # ==========================================================================
    # MAILBOX
    # ==========================================================================

    mailbox_ttl_minutes: int = Field(
        default=30,
        ge=1,
        description="Undelivered chat notifications are dropped after this age"
    )

    # ==========================================================================
    # DEVELOPMENT MOCKS
    # ==========================================================================

    mock_failure_rate: float = Field(
        default=0.05,
        ge=0.0,
        le=1.0,
        description="Simulated failure rate of mock collaborators"
    )

    # ==========================================================================
    # VALIDATORS
    # ==========================================================================

    @field_validator("env_mode", mode="before")
    @classmethod
    def validate_env_mode(cls, v: str) -> EnvironmentMode:
        """Convert string to EnvironmentMode enum."""
        if isinstance(v, EnvironmentMode):
            return v
        try:
            return EnvironmentMode(v.lower())
        except ValueError:
            valid = [e.value for e in EnvironmentMode]
            raise ValueError(f"Invalid env_mode. Must be one of: {valid}")

    @field_validator("fanout_delays")
    @classmethod
    def validate_fanout_delays(cls, v: str) -> str:
        """Require exactly three non-negative gaps."""
        try:
            delays = [float(part) for part in v.split(",") if part.strip()]
        except ValueError:
            raise ValueError("fanout_delays must be comma-separated numbers")
        if len(delays) != 3 or any(d < 0 for d in delays):
            raise ValueError("fanout_delays needs three non-negative values")
        return v

    # ==========================================================================
    # COMPUTED PROPERTIES
    # ==========================================================================

    @property
    def is_development(self) -> bool:
        """Check if running in development mode."""
        return self.env_mode == EnvironmentMode.DEVELOPMENT

    @property
    def is_production(self) -> bool:
        """Check if running in production mode."""
        return self.env_mode == EnvironmentMode.PRODUCTION

    @property
    def is_staging(self) -> bool:
        """Check if running in staging mode."""
        return self.env_mode == EnvironmentMode.STAGING

    @property
    def use_real_services(self) -> bool:
        """Check if real external services should be used."""
        return self.env_mode in (EnvironmentMode.PRODUCTION, EnvironmentMode.STAGING)

    @property
    def fanout_delays_list(self) -> list[float]:
        """Get confirmation gaps as a list of seconds."""
        return [float(part) for part in self.fanout_delays.split(",") if part.strip()]

    @property
    def has_search_api(self) -> bool:
        """Check if the structured search API is configured."""
        return bool(self.google_search_api_key and self.google_search_engine_id)

    # ==========================================================================
    # VALIDATION METHODS
    # ==========================================================================

    def validate_production_config(self) -> list[str]:
        """
        Validate that all required production settings are configured.

        The search API is optional: without it discovery scrapes a
        results page instead.

        Returns:
            List of missing configuration keys (empty if all present)
        """
        missing = []

        if self.use_real_services:
            if not self.openai_api_key:
                missing.append("OPENAI_API_KEY")
            if not self.evolution_api_key:
                missing.append("EVOLUTION_API_KEY")
            if not self.evolution_instance_id:
                missing.append("EVOLUTION_INSTANCE_ID")

        return missing


@lru_cache()
def get_settings() -> Settings:
    """
    Get cached application settings.

    Settings are loaded once per process; call
    ``get_settings.cache_clear()`` to reload them.

    Returns:
        Settings: Configured application settings
    """
    return Settings()


# =============================================================================
# LOGGING CONFIGURATION
# =============================================================================

def setup_logging(level: int = logging.INFO) -> logging.Logger:
    """
    Configure application-wide logging.

    Args:
        level: Logging level (DEBUG, INFO, WARNING, ERROR)

    Returns:
        Configured package logger
    """
    settings = get_settings()

    if settings.debug:
        level = logging.DEBUG

    log_format = "%(asctime)s │ %(levelname)-8s │ %(name)-32s │ %(message)s"
    date_format = "%Y-%m-%d %H:%M:%S"

    logging.basicConfig(
        level=level,
        format=log_format,
        datefmt=date_format,
        handlers=[logging.StreamHandler(sys.stdout)],
    )

    # Reduce noise from third-party libraries
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)
    logging.getLogger("openai").setLevel(logging.WARNING)

    return logging.getLogger("concierge")
