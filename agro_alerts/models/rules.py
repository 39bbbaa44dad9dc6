"""Alert rule dataclass and the closed enums it is built from."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any

from ..errors import ConfigurationError


class Parameter(str, Enum):
    """Telemetry parameters a rule can watch.

    Values are the field names used by rule documents and device payloads.
    """

    SOIL_MOISTURE_PCT = "soilMoisturePct"
    SOIL_TEMPERATURE = "soilTemperature"
    AIR_TEMPERATURE = "airTemperature"
    AIR_HUMIDITY = "airHumidity"
    AIR_QUALITY_INDEX = "airQualityIndex"
    CO2 = "co2"
    NH3 = "nh3"

    @classmethod
    def parse(cls, raw: object) -> "Parameter | None":
        if isinstance(raw, cls):
            return raw
        key = str(raw or "").strip()
        if not key:
            return None
        key = PARAMETER_ALIASES.get(key.lower(), key)
        try:
            return cls(key)
        except ValueError:
            return None


PARAMETER_ALIASES: dict[str, str] = {
    "soil-moisture-pct": "soilMoisturePct",
    "soilmoisturepct": "soilMoisturePct",
    "soilmoisture": "soilMoisturePct",
    "soil moisture (%)": "soilMoisturePct",
    "soil-temperature": "soilTemperature",
    "soiltemperature": "soilTemperature",
    "soiltemp": "soilTemperature",
    "soil temperature (°c)": "soilTemperature",
    "air-temperature": "airTemperature",
    "airtemperature": "airTemperature",
    "temperature": "airTemperature",
    "air temperature (°c)": "airTemperature",
    "air-humidity": "airHumidity",
    "airhumidity": "airHumidity",
    "humidity": "airHumidity",
    "air humidity (%)": "airHumidity",
    "air-quality-index": "airQualityIndex",
    "airqualityindex": "airQualityIndex",
    "aqi": "airQualityIndex",
}


class Comparison(str, Enum):
    GT = ">"
    LT = "<"
    GE = ">="
    LE = "<="


class Channel(str, Enum):
    EMAIL = "email"
    SMS = "sms"


def parse_flag(value: object, default: bool) -> bool:
    if value is None:
        return default
    if isinstance(value, str):
        text = value.strip().lower()
        if not text:
            return default
        return text in {"1", "true", "yes", "on"}
    return bool(value)


@dataclass(frozen=True)
class AlertRule:
    id: str
    user_id: str
    parameter: Parameter
    comparison: Comparison
    threshold: float
    channel: Channel
    destination: str
    critical: bool = False
    active: bool = True

    @classmethod
    def from_dict(cls, user_id: str, data: dict[str, Any]) -> "AlertRule":
        """Build a rule from a stored rule document.

        Accepts the stored field names (``type``/``value`` for the channel and
        its destination) as well as the canonical ones.

        Raises:
            ConfigurationError: If any field is missing or not recognised.
        """
        rule_id = str(data.get("id") or "").strip()
        if not rule_id:
            raise ConfigurationError("Rule is missing an id")

        parameter = Parameter.parse(data.get("parameter"))
        if parameter is None:
            raise ConfigurationError(
                f"Rule {rule_id}: unknown parameter {data.get('parameter')!r}"
            )

        try:
            comparison = Comparison(str(data.get("comparison") or "").strip())
        except ValueError:
            raise ConfigurationError(
                f"Rule {rule_id}: unknown comparison {data.get('comparison')!r}"
            ) from None

        raw_channel = data.get("channel", data.get("type"))
        try:
            channel = Channel(str(raw_channel or "").strip().lower())
        except ValueError:
            raise ConfigurationError(
                f"Rule {rule_id}: unknown channel {raw_channel!r}"
            ) from None

        raw_threshold = data.get("threshold")
        if isinstance(raw_threshold, bool):
            raise ConfigurationError(f"Rule {rule_id}: threshold must be numeric")
        try:
            threshold = float(raw_threshold)
        except (TypeError, ValueError):
            raise ConfigurationError(
                f"Rule {rule_id}: threshold must be numeric"
            ) from None

        destination = str(data.get("destination", data.get("value")) or "").strip()
        if not destination:
            raise ConfigurationError(f"Rule {rule_id}: destination is empty")

        return cls(
            id=rule_id,
            user_id=user_id,
            parameter=parameter,
            comparison=comparison,
            threshold=threshold,
            channel=channel,
            destination=destination,
            critical=parse_flag(data.get("critical"), False),
            active=parse_flag(data.get("active"), True),
        )
