from functools import lru_cache
from pathlib import Path
from typing import Literal, Optional

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Direct Anthropic API (agent handoff replies)
    anthropic_api_key: Optional[str] = None

    # Agent config
    default_model: str = "haiku"

    # ------------------------------------------------------------------
    # Connector mode
    # ------------------------------------------------------------------
    # "simulator": always use in-memory simulators (default, no external calls)
    # "hybrid":    use the real connector per channel when credentials are set,
    #               fall back to simulator when not
    # "real":      same routing as hybrid; signals intent to use real services
    connector_mode: Literal["simulator", "hybrid", "real"] = "simulator"

    # ------------------------------------------------------------------
    # Twilio credentials (SMS)
    # ------------------------------------------------------------------
    twilio_account_sid: Optional[str] = None            # AC...
    twilio_auth_token: Optional[str] = None
    twilio_from_number: Optional[str] = None            # +15551234567
    twilio_messaging_service_sid: Optional[str] = None  # MG..., wins over from number

    # ------------------------------------------------------------------
    # Mailgun credentials (email)
    # ------------------------------------------------------------------
    mailgun_api_key: Optional[str] = None
    mailgun_domain: Optional[str] = None                # mg.yourdomain.com
    mailgun_from: Optional[str] = None                  # defaults to no-reply@<domain>
    mailgun_base_url: str = "https://api.mailgun.net"

    # ------------------------------------------------------------------
    # Workflow engine
    # ------------------------------------------------------------------
    default_timezone: str = "Europe/Brussels"
    max_wait_delay_ms: int = 7 * 24 * 60 * 60 * 1000    # in-memory timer ceiling
    side_effect_timeout_seconds: float = 30.0
    data_dir: Optional[Path] = None                     # defaults to apps/backend/data
    log_level: str = "INFO"

    class Config:
        env_file = ".env"
        case_sensitive = False


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
