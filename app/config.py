"""Application configuration."""

from functools import lru_cache

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
        env_parse_none_str="null",
    )

    # Application
    app_name: str = Field(default="Clinic Booking API", alias="APP_NAME")
    app_version: str = Field(default="0.1.0", alias="APP_VERSION")
    environment: str = Field(default="development", alias="ENVIRONMENT")
    debug: bool = Field(default=False, alias="DEBUG")
    api_v1_prefix: str = Field(default="/api/v1", alias="API_V1_PREFIX")

    # Server
    host: str = Field(default="0.0.0.0", alias="HOST")
    port: int = Field(default=8000, alias="PORT")
    reload: bool = Field(default=False, alias="RELOAD")

    # Database
    database_url: str = Field(..., alias="DATABASE_URL")
    store_timeout_seconds: float = Field(default=10.0, alias="STORE_TIMEOUT_SECONDS")

    # Redis
    redis_host: str = Field(..., alias="REDIS_HOST")
    redis_port: int = Field(..., alias="REDIS_PORT")
    redis_username: str = Field(default="default", alias="REDIS_USERNAME")
    redis_password: str = Field(default="", alias="REDIS_PASSWORD")
    redis_decode_responses: bool = Field(default=True, alias="REDIS_DECODE_RESPONSES")
    redis_socket_timeout: float = Field(default=5.0, alias="REDIS_SOCKET_TIMEOUT")

    # Twilio WhatsApp
    twilio_account_sid: str = Field(..., alias="TWILIO_ACCOUNT_SID")
    twilio_auth_token: str = Field(..., alias="TWILIO_AUTH_TOKEN")
    whatsapp_from: str = Field(..., alias="WHATSAPP_FROM")
    twilio_status_callback_url: str | None = Field(
        default=None,
        alias="TWILIO_STATUS_CALLBACK_URL",
        description="Public URL of the delivery-status webhook",
    )
    delivery_ack_template_sid: str | None = Field(
        default=None,
        alias="DELIVERY_ACK_TEMPLATE_SID",
        description="Template sent to the doctor once a patient message is delivered",
    )
    notification_timeout_seconds: float = Field(
        default=15.0, alias="NOTIFICATION_TIMEOUT_SECONDS"
    )
    default_country_code: str = Field(default="+91", alias="DEFAULT_COUNTRY_CODE")

    # Resend email (optional)
    resend_api_key: str | None = Field(default=None, alias="RESEND_API_KEY")
    email_from: str | None = Field(default=None, alias="EMAIL_FROM")

    # Scheduling
    practice_timezone: str = Field(default="Asia/Kolkata", alias="PRACTICE_TIMEZONE")
    feedback_delay_minutes: int = Field(default=60, alias="FEEDBACK_DELAY_MINUTES")
    reminder_lead_minutes: int = Field(default=120, alias="REMINDER_LEAD_MINUTES")
    job_poll_interval_seconds: float = Field(default=5.0, alias="JOB_POLL_INTERVAL_SECONDS")
    job_batch_size: int = Field(default=50, alias="JOB_BATCH_SIZE")
    job_key_prefix: str = Field(default="appointment-jobs", alias="JOB_KEY_PREFIX")

    # CORS
    cors_origins_str: str = Field(
        default="http://localhost:3000",
        alias="CORS_ORIGINS",
    )
    cors_allow_credentials: bool = Field(default=True, alias="CORS_ALLOW_CREDENTIALS")

    @property
    def cors_origins(self) -> list[str]:
        """Get CORS origins as a list."""
        if isinstance(self.cors_origins_str, str):
            return [origin.strip() for origin in self.cors_origins_str.split(",") if origin.strip()]
        return [self.cors_origins_str]

    # Logging
    log_level: str = Field(default="INFO", alias="LOG_LEVEL")
    log_format: str = Field(default="json", alias="LOG_FORMAT")

    @property
    def email_enabled(self) -> bool:
        """Check if the email channel is configured."""
        return bool(self.resend_api_key and self.email_from)

    @property
    def is_production(self) -> bool:
        """Check if running in production environment."""
        return self.environment.lower() == "production"

    @property
    def is_development(self) -> bool:
        """Check if running in development environment."""
        return self.environment.lower() == "development"


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()  # type: ignore[call-arg]


# Global settings instance
settings = get_settings()
