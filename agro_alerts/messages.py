"""Notification text for SMS and email channels."""

from __future__ import annotations

import html
import logging
import re
from datetime import datetime, timezone
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from . import config
from .alerting import format_threshold, format_value, get_parameter_def
from .models.rules import AlertRule, Parameter

logger = logging.getLogger(__name__)

SMS_SOFT_LIMIT = 150
_EMAIL_RE = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")


def _tz(name: str | None = None):
    tz_name = name or config.ALERT_TIMEZONE
    try:
        return ZoneInfo(tz_name)
    except (ZoneInfoNotFoundError, ValueError):
        logger.warning("Unknown timezone %r; using UTC", tz_name)
        return timezone.utc


def _fmt_number(value: float) -> str:
    if float(value).is_integer():
        return str(int(value))
    return f"{value:.1f}"


def local_time(ts: float | None = None, tz_name: str | None = None) -> datetime:
    moment = datetime.now(timezone.utc) if ts is None else datetime.fromtimestamp(ts, timezone.utc)
    return moment.astimezone(_tz(tz_name))


def recommendation(parameter: Parameter, value: float, threshold: float) -> str:
    if parameter == Parameter.SOIL_MOISTURE_PCT:
        return "Check irrigation system" if value < threshold else "Check for overwatering"
    if parameter in {Parameter.SOIL_TEMPERATURE, Parameter.AIR_TEMPERATURE}:
        return "Check for heat stress" if value > threshold else "Check for cold stress"
    if parameter == Parameter.AIR_HUMIDITY:
        return "Check ventilation" if value > threshold else "Check humidity levels"
    if parameter in {Parameter.AIR_QUALITY_INDEX, Parameter.CO2, Parameter.NH3}:
        if value > threshold:
            return "Check air quality"
        return "Check system"
    return "Check device status"


def _label(parameter: Parameter, short: bool = True) -> str:
    definition = get_parameter_def(parameter)
    if definition is None:
        return parameter.value
    return definition.short_label if short else definition.label


def build_sms(
    rule: AlertRule,
    value: float,
    device_id: str,
    ts: float | None = None,
    tz_name: str | None = None,
) -> str:
    """Short SMS body; the recommendation is added only if it still fits."""
    prefix = "🚨 CRITICAL: " if rule.critical else "🔔 "
    when = local_time(ts, tz_name).strftime("%H:%M:%S")
    message = (
        f"{prefix}Farm Alert\n"
        f"{_label(rule.parameter)}: {_fmt_number(value)} "
        f"{rule.comparison.value} {_fmt_number(rule.threshold)}\n"
        f"Device: {device_id}\n"
        f"Time: {when}"
    )
    tip = recommendation(rule.parameter, value, rule.threshold)
    if len(message) + len(tip) < SMS_SOFT_LIMIT:
        message += f"\n{tip}"
    return message


def build_email_subject(rule: AlertRule, value: float, device_id: str) -> str:
    tag = "[CRITICAL] " if rule.critical else ""
    return (
        f"{tag}Farm Alert - {_label(rule.parameter, short=False)} "
        f"{_fmt_number(value)} on {device_id}"
    )


def build_email_text(
    rule: AlertRule,
    value: float,
    device_id: str,
    ts: float | None = None,
    tz_name: str | None = None,
) -> str:
    when = local_time(ts, tz_name).strftime("%Y-%m-%d %H:%M:%S %Z")
    return (
        f"FARM ALERT{' (CRITICAL)' if rule.critical else ''}\n"
        f"{'=' * 40}\n"
        f"Parameter:  {_label(rule.parameter, short=False)}\n"
        f"Reading:    {format_value(rule.parameter, value)}\n"
        f"Condition:  {rule.comparison.value} {format_threshold(rule.parameter, rule.threshold)}\n"
        f"Device:     {device_id}\n"
        f"Time:       {when}\n"
        f"\n"
        f"Recommendation: {recommendation(rule.parameter, value, rule.threshold)}\n"
        f"{'=' * 40}\n"
        f"This is an automated alert."
    )


def build_email_html(
    rule: AlertRule,
    value: float,
    device_id: str,
    ts: float | None = None,
    tz_name: str | None = None,
) -> str:
    when = local_time(ts, tz_name).strftime("%Y-%m-%d %H:%M:%S %Z")
    color = "#d32f2f" if rule.critical else "#f57c00"
    rows = [
        ("Parameter", _label(rule.parameter, short=False)),
        ("Reading", format_value(rule.parameter, value)),
        (
            "Condition",
            f"{rule.comparison.value} {format_threshold(rule.parameter, rule.threshold)}",
        ),
        ("Device", device_id),
        ("Time", when),
    ]
    body = "".join(
        f"<tr><td><b>{html.escape(k)}</b></td><td>{html.escape(v)}</td></tr>"
        for k, v in rows
    )
    tip = html.escape(recommendation(rule.parameter, value, rule.threshold))
    return (
        f'<html><body style="font-family: Arial, sans-serif;">'
        f'<div style="border: 2px solid {color}; border-radius: 8px; padding: 16px; max-width: 600px;">'
        f'<h2 style="color: {color};">Farm Alert{" - CRITICAL" if rule.critical else ""}</h2>'
        f"<table>{body}</table>"
        f"<p><b>Recommendation:</b> {tip}</p>"
        f'<p style="font-size: 12px; color: #888;">This is an automated alert.</p>'
        f"</div></body></html>"
    )


def validate_phone_number(phone_number: str) -> str | None:
    """Return an E.164-style number or None if it cannot be one.

    Ten-digit numbers are assumed to be North American and get ``+1``.
    """
    cleaned = re.sub(r"\D", "", phone_number or "")
    if len(cleaned) < 10 or len(cleaned) > 15:
        return None
    if len(cleaned) == 10:
        return f"+1{cleaned}"
    return f"+{cleaned}"


def validate_email(address: str) -> bool:
    return bool(_EMAIL_RE.match((address or "").strip()))
