"""Central configuration for agro_alerts."""

from __future__ import annotations

import logging
import os

from .alerting import parse_duration
from .models.settings import Settings

logger = logging.getLogger(__name__)

_PLACEHOLDERS = {"placeholder", "placeholder-twilio-auth-token", "changeme"}


def _secret(name: str) -> str | None:
    """Read a credential, treating empty and placeholder values as unset.

    Example:
        >>> os.environ["TWILIO_AUTH_TOKEN"] = "placeholder"
        >>> _secret("TWILIO_AUTH_TOKEN") is None
        True
    """
    value = (os.environ.get(name) or "").strip()
    if not value or value.lower() in _PLACEHOLDERS:
        return None
    return value


def _duration(name: str, default_s: int) -> int:
    raw = os.environ.get(name)
    parsed = parse_duration(raw, default_s)
    if parsed is None:
        logger.warning("Invalid duration for %s=%r; using %ss", name, raw, default_s)
        return default_s
    return parsed


def _bool(name: str, default: bool) -> bool:
    raw = os.environ.get(name)
    if raw is None or not raw.strip():
        return default
    return raw.strip().lower() in {"1", "true", "yes", "on"}


def _read_settings() -> Settings:
    """Read all configuration from environment variables.

    Returns:
        Settings object with all configuration values.

    Note:
        Invalid numeric values fall back to sensible defaults.
        Durations accept 30s, 10m, 2h or 1d; bare numbers are seconds.
    """
    debounce_s = _duration("ALERT_DEBOUNCE", 60)
    cooldown_s = _duration("ALERT_COOLDOWN", 2 * 60 * 60)
    soil_cooldown_s = _duration("SOIL_MOISTURE_COOLDOWN", 2 * 60 * 60)
    persisted_all = _bool("PERSISTED_COOLDOWN_ALL", True)

    try:
        dispatch_timeout = float(os.environ.get("DISPATCH_TIMEOUT_S", "5") or "5")
    except Exception:
        dispatch_timeout = 5.0
    try:
        retention_days = int(os.environ.get("HISTORY_RETENTION_DAYS", "30") or "30")
    except Exception:
        retention_days = 30
    try:
        cleanup_interval = float(os.environ.get("CLEANUP_INTERVAL_S", "3600") or "3600")
    except Exception:
        cleanup_interval = 3600.0

    state_file = (os.environ.get("SUPPRESSION_STATE_FILE") or "").strip() or None
    history_file = (os.environ.get("ALERT_HISTORY_FILE") or "").strip() or None
    timezone = (os.environ.get("ALERT_TIMEZONE") or "").strip() or "Asia/Colombo"

    # SMTP
    smtp_port_raw = (os.environ.get("SMTP_PORT") or "587").strip()
    try:
        smtp_port = int(smtp_port_raw) if smtp_port_raw else 587
    except Exception:
        smtp_port = 587

    return Settings(
        DEBOUNCE_S=debounce_s,
        COOLDOWN_S=cooldown_s,
        SOIL_MOISTURE_COOLDOWN_S=soil_cooldown_s,
        PERSISTED_COOLDOWN_ALL=persisted_all,
        DISPATCH_TIMEOUT_S=dispatch_timeout,
        HISTORY_RETENTION_DAYS=retention_days,
        CLEANUP_INTERVAL_S=cleanup_interval,
        SUPPRESSION_STATE_FILE=state_file,
        ALERT_HISTORY_FILE=history_file,
        ALERT_TIMEZONE=timezone,
        TWILIO_ACCOUNT_SID=_secret("TWILIO_ACCOUNT_SID"),
        TWILIO_AUTH_TOKEN=_secret("TWILIO_AUTH_TOKEN"),
        TWILIO_FROM_NUMBER=_secret("TWILIO_FROM_NUMBER")
        or _secret("TWILIO_PHONE_NUMBER"),
        SMTP_SERVER=(os.environ.get("SMTP_SERVER") or "").strip() or None,
        SMTP_PORT=smtp_port,
        SMTP_USERNAME=os.environ.get("SMTP_USERNAME") or None,
        SMTP_PASSWORD=_secret("SMTP_PASSWORD"),
        ALERT_EMAIL_FROM=os.environ.get("ALERT_EMAIL_FROM") or None,
    )


settings = _read_settings()


def twilio_configured(s: Settings | None = None) -> bool:
    s = s or settings
    return bool(s.TWILIO_ACCOUNT_SID and s.TWILIO_AUTH_TOKEN and s.TWILIO_FROM_NUMBER)


def smtp_configured(s: Settings | None = None) -> bool:
    s = s or settings
    return bool(s.SMTP_SERVER)


def validate_settings() -> None:
    """Validate configuration and log warnings for likely mistakes."""
    if settings.DEBOUNCE_S > settings.COOLDOWN_S:
        logger.warning(
            "ALERT_DEBOUNCE (%ss) is longer than ALERT_COOLDOWN (%ss)",
            settings.DEBOUNCE_S,
            settings.COOLDOWN_S,
        )
    if not twilio_configured():
        logger.warning("Twilio credentials not configured; SMS will be logged only.")
    if not smtp_configured():
        logger.warning("SMTP_SERVER is not set; email will be logged only.")
    if settings.SUPPRESSION_STATE_FILE is None:
        logger.info("SUPPRESSION_STATE_FILE not set; suppression state is in-memory.")


# Exported constants
DEBOUNCE_S: int = settings.DEBOUNCE_S
COOLDOWN_S: int = settings.COOLDOWN_S
SOIL_MOISTURE_COOLDOWN_S: int = settings.SOIL_MOISTURE_COOLDOWN_S
PERSISTED_COOLDOWN_ALL: bool = settings.PERSISTED_COOLDOWN_ALL
DISPATCH_TIMEOUT_S: float = settings.DISPATCH_TIMEOUT_S
HISTORY_RETENTION_DAYS: int = settings.HISTORY_RETENTION_DAYS
CLEANUP_INTERVAL_S: float = settings.CLEANUP_INTERVAL_S
SUPPRESSION_STATE_FILE: str | None = settings.SUPPRESSION_STATE_FILE
HISTORY_FILE: str | None = settings.ALERT_HISTORY_FILE
ALERT_TIMEZONE: str = settings.ALERT_TIMEZONE
