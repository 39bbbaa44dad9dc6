"""Configuration dataclass."""

from __future__ import annotations

from dataclasses import dataclass


@dataclass
class Settings:
    """Configuration settings for agro_alerts."""

    DEBOUNCE_S: int
    COOLDOWN_S: int
    SOIL_MOISTURE_COOLDOWN_S: int
    PERSISTED_COOLDOWN_ALL: bool
    DISPATCH_TIMEOUT_S: float
    HISTORY_RETENTION_DAYS: int
    CLEANUP_INTERVAL_S: float
    SUPPRESSION_STATE_FILE: str | None
    ALERT_HISTORY_FILE: str | None
    ALERT_TIMEZONE: str
    TWILIO_ACCOUNT_SID: str | None
    TWILIO_AUTH_TOKEN: str | None
    TWILIO_FROM_NUMBER: str | None
    SMTP_SERVER: str | None
    SMTP_PORT: int
    SMTP_USERNAME: str | None
    SMTP_PASSWORD: str | None
    ALERT_EMAIL_FROM: str | None
