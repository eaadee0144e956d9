from pathlib import Path

from pydantic_settings import BaseSettings, SettingsConfigDict

ENV_PATH = Path(__file__).resolve().parent.parent / ".env.local"


class Settings(BaseSettings):
    # Environment settings
    environment: str = "development"
    debug: bool = False
    LOG_LEVEL: str = "INFO"

    # Redis settings (tracker state blob lives here)
    REDIS_URL: str = "redis://localhost:6379/0"
    REDIS_MAX_CONNECTIONS: int = 10

    # Gmail settings
    # Bearer token handed over by the OAuth integration; never refreshed here
    GMAIL_ACCESS_TOKEN: str | None = None
    GMAIL_REQUEST_TIMEOUT: float = 30.0

    # =================================================================
    # EMAIL TRACKING SETTINGS
    # =================================================================
    TRACKER_ID: str = "default"
    TRACKER_POLL_INTERVAL_SECONDS: float = 30.0
    TRACKER_MIN_SESSION_SECONDS: float = 30.0
    TRACKER_IDLE_TIMEOUT_MINUTES: float = 30.0

    # Sender domain -> client name
    TRACKER_CLIENT_DOMAINS: dict[str, str] = {
        "salesforce.com": "Salesforce",
        "hubspot.com": "HubSpot",
        "zendesk.com": "Zendesk",
        "acme.com": "Acme Corp",
    }
    # Subject keyword -> project name (checked in order)
    TRACKER_PROJECT_KEYWORDS: dict[str, str] = {
        "crm": "CRM Project",
        "marketing": "Marketing Campaign",
        "support": "Support Portal",
        "integration": "Integration Project",
    }
    TRACKER_BILLABLE_DOMAINS: list[str] = ["client.com", "customer.org", "acme.com"]

    model_config = SettingsConfigDict(
        env_file=str(ENV_PATH),
        env_file_encoding="utf-8",
        extra="ignore",
    )

    def get_tracker_config(self) -> dict:
        """
        Get email tracking tuning values.
        Shorter intervals in development make manual testing less tedious.
        """
        config = {
            "poll_interval_seconds": self.TRACKER_POLL_INTERVAL_SECONDS,
            "min_session_seconds": self.TRACKER_MIN_SESSION_SECONDS,
            "idle_timeout_minutes": self.TRACKER_IDLE_TIMEOUT_MINUTES,
        }

        if self.environment == "development" and self.debug:
            config.update({"poll_interval_seconds": min(self.TRACKER_POLL_INTERVAL_SECONDS, 10.0)})

        return config


settings = Settings()
