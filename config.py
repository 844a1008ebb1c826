"""
Configuration management for SmartPillBox

Every engine knob (generation horizon, correlation tolerance, sweep timing,
notification timeout) can be overridden from the environment or a .env file.
"""

from functools import lru_cache

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables"""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=True,
        extra="ignore"
    )

    # Application
    APP_NAME: str = "SmartPillBox"
    APP_VERSION: str = "1.0.0"
    DEBUG: bool = False
    ENV: str = "development"

    # API
    API_PREFIX: str = "/api/v1"
    HOST: str = "0.0.0.0"
    PORT: int = 8000
    CORS_ORIGINS: list[str] = ["http://localhost:3000", "http://localhost:5173"]

    # Database
    DATABASE_URL: str = "sqlite:///./smart_pillbox.db"
    DATABASE_ECHO: bool = False

    # Schedule generation: days past today to materialise
    GENERATION_HORIZON_DAYS: int = Field(30, ge=1, le=366)

    # A sensor open matches a dose scheduled within +/- this many minutes
    SENSOR_TOLERANCE_MINUTES: int = Field(30, ge=0)

    # Sweep loop
    SWEEP_ENABLED: bool = True
    SWEEP_INTERVAL_SECONDS: float = Field(60.0, gt=0)
    MISSED_GRACE_MINUTES: int = Field(30, ge=0)
    UPCOMING_LOOKAHEAD_MINUTES: int = Field(5, ge=0)
    ALERT_COOLDOWN_MINUTES: int = Field(10, ge=0)

    # Notifications are fire-and-forget with one bounded attempt
    NOTIFY_TIMEOUT_SECONDS: float = Field(2.0, gt=0)

    # Logging
    LOG_LEVEL: str = "INFO"
    LOG_FORMAT: str = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance"""
    return Settings()


# Database table names
class TableNames:
    PATIENTS = "patients"
    MEDICINE_BOXES = "medicine_boxes"
    MEDICINES = "medicines"
    INTAKE_RECORDS = "intake_records"
    SENSOR_EVENTS = "sensor_events"
    ALERT_SUPPRESSIONS = "alert_suppressions"


settings = get_settings()
