"""Parameter catalogue, rule evaluation and formatting helpers."""

from __future__ import annotations

import logging
import math
import operator as op
from dataclasses import dataclass

from .models.rules import Comparison, Parameter


@dataclass(frozen=True)
class ParameterDef:
    parameter: Parameter
    label: str
    short_label: str
    unit: str | None


logger = logging.getLogger(__name__)

PARAMETER_DEFS: dict[Parameter, ParameterDef] = {
    Parameter.SOIL_MOISTURE_PCT: ParameterDef(
        parameter=Parameter.SOIL_MOISTURE_PCT,
        label="Soil moisture",
        short_label="Soil Moisture",
        unit="percent",
    ),
    Parameter.SOIL_TEMPERATURE: ParameterDef(
        parameter=Parameter.SOIL_TEMPERATURE,
        label="Soil temperature",
        short_label="Soil Temp",
        unit="temp",
    ),
    Parameter.AIR_TEMPERATURE: ParameterDef(
        parameter=Parameter.AIR_TEMPERATURE,
        label="Air temperature",
        short_label="Air Temp",
        unit="temp",
    ),
    Parameter.AIR_HUMIDITY: ParameterDef(
        parameter=Parameter.AIR_HUMIDITY,
        label="Air humidity",
        short_label="Humidity",
        unit="percent",
    ),
    Parameter.AIR_QUALITY_INDEX: ParameterDef(
        parameter=Parameter.AIR_QUALITY_INDEX,
        label="Air quality index",
        short_label="Air Quality",
        unit=None,
    ),
    Parameter.CO2: ParameterDef(
        parameter=Parameter.CO2,
        label="CO2",
        short_label="CO2",
        unit="ppm",
    ),
    Parameter.NH3: ParameterDef(
        parameter=Parameter.NH3,
        label="NH3",
        short_label="NH3",
        unit="ppm",
    ),
}

OPERATORS = {
    Comparison.GT.value: op.gt,
    Comparison.LT.value: op.lt,
    Comparison.GE.value: op.ge,
    Comparison.LE.value: op.le,
}


def normalize_parameter(name: object) -> Parameter | None:
    return Parameter.parse(name)


def get_parameter_def(parameter: object) -> ParameterDef | None:
    key = normalize_parameter(parameter)
    if key is None:
        return None
    return PARAMETER_DEFS.get(key)


def parse_duration(raw: str | None, default_s: int) -> int | None:
    if raw is None:
        return default_s
    text = raw.strip().lower()
    if not text:
        return default_s
    unit = text[-1]
    if unit in {"s", "m", "h", "d"}:
        number = text[:-1]
    else:
        unit = "s"
        number = text
    try:
        value = float(number)
    except ValueError:
        return None
    if value < 0:
        return None
    multiplier = {"s": 1, "m": 60, "h": 3600, "d": 86400}[unit]
    return int(value * multiplier)


def format_duration(duration_s: float) -> str:
    duration_s = int(math.ceil(duration_s))
    if duration_s % 3600 == 0 and duration_s >= 3600:
        return f"{duration_s // 3600}h"
    if duration_s % 60 == 0 and duration_s >= 60:
        return f"{duration_s // 60}m"
    if duration_s > 3600:
        return f"{duration_s // 3600}h{(duration_s % 3600) // 60}m"
    if duration_s > 60:
        return f"{duration_s // 60}m{duration_s % 60}s"
    return f"{duration_s}s"


def format_value(parameter: object, value: object) -> str:
    definition = get_parameter_def(parameter)
    if definition is None or value is None:
        return "n/a"
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return str(value)
    if definition.unit == "percent":
        return f"{value:.1f}%"
    if definition.unit == "temp":
        return f"{value:.1f}C"
    if definition.unit == "ppm":
        return f"{value:.0f}ppm"
    return f"{value:.2f}".rstrip("0").rstrip(".")


def format_threshold(parameter: object, value: object) -> str:
    definition = get_parameter_def(parameter)
    if definition is None or value is None:
        return "n/a"
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        text = f"{value:.2f}".rstrip("0").rstrip(".")
        if definition.unit == "percent":
            return f"{text}%"
        if definition.unit == "temp":
            return f"{text}C"
        return text
    return str(value)


def evaluate(value: object, comparison: object, threshold: object) -> bool:
    """Return True when ``value <comparison> threshold`` holds.

    Unknown operators are a configuration problem: they are logged and never
    match. Missing or non-numeric operands never match either.
    """
    key = comparison.value if isinstance(comparison, Comparison) else str(comparison)
    compare = OPERATORS.get(key)
    if compare is None:
        logger.error("Unknown comparison operator: %r", comparison)
        return False
    if value is None or threshold is None:
        return False
    if isinstance(value, bool) or isinstance(threshold, bool):
        return False
    try:
        left = float(value)
        right = float(threshold)
    except (TypeError, ValueError):
        return False
    if math.isnan(left) or math.isnan(right):
        return False
    return compare(left, right)


def synthetic_violation(comparison: object, threshold: float, offset: float = 5.0) -> float:
    """Value just across ``threshold`` on the violating side, for test firings."""
    key = comparison.value if isinstance(comparison, Comparison) else str(comparison)
    if key in {Comparison.LT.value, Comparison.LE.value}:
        return threshold - offset
    return threshold + offset
