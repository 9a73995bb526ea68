"""Application configuration with environment variables."""

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    # Environment
    ENV: str = "dev"

    # App Version (format: a.bc.de - major.feature.patch)
    VERSION: str = "0.1.0"

    # Database
    DATABASE_URL: str = "sqlite:///./slotsync.db"

    # Session Token (issued by the auth service, supports key rotation)
    JWT_SECRET: str = "change-this-in-production"
    JWT_SECRET_PREVIOUS: str = ""  # Set during rotation, clear after
    JWT_EXPIRES_HOURS: int = 4

    # Google OAuth client used to refresh provider calendar tokens
    GOOGLE_CLIENT_ID: str = ""
    GOOGLE_CLIENT_SECRET: str = ""
    GOOGLE_TOKEN_URL: str = "https://oauth2.googleapis.com/token"
    GOOGLE_API_BASE_URL: str = "https://www.googleapis.com/calendar/v3"
    CALENDAR_TIMEOUT_SECONDS: float = 10.0

    # Push notification channels
    WEBHOOK_CALLBACK_BASE_URL: str = "http://localhost:8000"
    WEBHOOK_SECRET: str = ""  # Shared HMAC secret for X-Goog-Signature
    WEBHOOK_CHANNEL_TTL_DAYS: int = 7
    WEBHOOK_MAX_PAYLOAD_BYTES: int = 100000  # 100KB limit

    # Background tasks
    RENEWAL_SCHEDULER_ENABLED: bool = False  # Run renewal inside the API process
    RENEWAL_INTERVAL_SECONDS: int = 6 * 60 * 60
    RENEWAL_THRESHOLD_HOURS: int = 48
    RECONCILE_INTERVAL_SECONDS: int = 5 * 60

    # Internal scheduled endpoints (cron jobs)
    INTERNAL_SECRET: str = ""  # Secret for /internal/scheduled/* endpoints

    # Token Encryption (for storing OAuth tokens)
    FERNET_KEY: str = ""  # Generate with: python -c "from cryptography.fernet import Fernet; print(Fernet.generate_key().decode())"

    # CORS
    CORS_ORIGINS: str = "http://localhost:3000"

    # Error Tracking (optional, set in production)
    SENTRY_DSN: str = ""

    # Rate Limiting (requests per minute)
    RATE_LIMIT_BOOKING: int = 10  # Public booking attempts
    RATE_LIMIT_WEBHOOK: int = 100  # Google push notifications
    RATE_LIMIT_API: int = 60  # General API

    @property
    def cors_origins_list(self) -> list[str]:
        """Parse CORS_ORIGINS into a list."""
        return [o.strip() for o in self.CORS_ORIGINS.split(",") if o.strip()]

    @property
    def jwt_secrets(self) -> list[str]:
        """Returns list of valid secrets (current first, then previous if set)."""
        secrets = [self.JWT_SECRET]
        if self.JWT_SECRET_PREVIOUS:
            secrets.append(self.JWT_SECRET_PREVIOUS)
        return secrets

    @property
    def webhook_callback_url(self) -> str:
        """Public address Google posts channel notifications to."""
        return f"{self.WEBHOOK_CALLBACK_BASE_URL.rstrip('/')}/webhooks/google-calendar"


settings = Settings()
