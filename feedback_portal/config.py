from pathlib import Path
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from pydantic_settings import BaseSettings, SettingsConfigDict

ENV_PATH = Path(__file__).resolve().parent.parent / ".env.local"


class Settings(BaseSettings):
    # Environment settings
    environment: str = "development"
    debug: bool = False
    LOG_LEVEL: str = "INFO"

    # Portal API settings
    PORTAL_API_URL: str = "http://localhost:8080"
    PORTAL_ACCESS_TOKEN: str | None = None
    PORTAL_USER_ID: str | None = None
    PORTAL_DEPARTMENT_ID: int | None = None
    PORTAL_TIMEZONE: str = "UTC"
    PORTAL_RESPONDED_PATH: str = "/api/feedback/my-feedback"

    # Network calls are failures after this many seconds, never hangs
    PORTAL_REQUEST_TIMEOUT: float = 15.0
    PORTAL_MAX_RETRIES: int = 2  # GET requests only
    PORTAL_RETRY_BACKOFF: float = 0.5

    # =================================================================
    # FEEDBACK WINDOW SETTINGS
    # =================================================================
    FEEDBACK_LEAD_MINUTES: int = 5
    FEEDBACK_GRACE_MINUTES: int = 60
    POLL_INTERVAL_ACTIVE_SECONDS: float = 10.0  # feedback view open
    POLL_INTERVAL_IDLE_SECONDS: float = 60.0
    RESPONDED_POLL_SECONDS: float = 60.0
    COUNTDOWN_STEPS: int = 3
    COUNTDOWN_STEP_SECONDS: float = 1.0

    # Persistence settings
    PERSISTENCE_BACKEND: str = "memory"  # "memory" or "redis"
    REDIS_URL: str | None = None
    REDIS_KEY_PREFIX: str = "feedback"

    model_config = SettingsConfigDict(
        env_file=str(ENV_PATH),
        env_file_encoding="utf-8",
        extra="ignore",
    )

    def portal_timezone(self) -> ZoneInfo:
        """Timezone used to interpret meeting wall-clock times."""
        try:
            return ZoneInfo(self.PORTAL_TIMEZONE)
        except (ZoneInfoNotFoundError, ValueError):
            return ZoneInfo("UTC")

    def redis_namespace(self) -> str:
        """
        Key namespace for persisted client state.

        Scoped per user so two sessions on the same Redis never share a
        responded set.
        """
        user = self.PORTAL_USER_ID or "anonymous"
        return f"{self.REDIS_KEY_PREFIX}:{user}"

    def get_poll_config(self) -> dict:
        """
        Get scheduler poll configuration.
        Adjust environment-specific settings based on self.environment.
        """
        config = {
            "active_seconds": self.POLL_INTERVAL_ACTIVE_SECONDS,
            "idle_seconds": self.POLL_INTERVAL_IDLE_SECONDS,
        }

        if self.environment == "development":
            # Never poll slower than once a minute locally
            config["idle_seconds"] = min(config["idle_seconds"], 60.0)

        return config


settings = Settings()
