"""Extraction and normalisation of telemetry values into canonical units.

Every :class:`Parameter` has exactly one extractor registered in
``_EXTRACTORS``; the module refuses to import if one is missing.

Soil moisture probes report a raw ADC count where a higher count means
drier soil. The bit depth is not part of the payload, so it is guessed by
bracketing the raw value into the known sensor ranges. This is an
approximation for uncalibrated probes, not a calibration: values outside
every bracket are clamped to 0..100 as-is and a warning is logged.
"""

from __future__ import annotations

import logging
import math
from typing import Any, Callable, Mapping

from .errors import DataAbsentError
from .models.rules import Parameter
from .models.telemetry import TelemetrySample

logger = logging.getLogger(__name__)

ADC_RANGES: tuple[int, ...] = (255, 1023, 1024, 4095)

_SOIL_PCT_KEYS = (
    "soilMoisturePct",
    "soilMoisture",
    "soil_moisture_pct",
    "soil_moisture",
    "sm_pct",
    "Soil Moisture (%)",
)
_SOIL_RAW_KEYS = ("soilMoistureRaw", "soil_moisture_raw", "sm_raw")

Extractor = Callable[[Mapping[str, Any]], "float | None"]


def _clamp_pct(value: float) -> float:
    return max(0.0, min(100.0, value))


def _as_number(value: object) -> float | None:
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        number = float(value)
    elif isinstance(value, str):
        try:
            number = float(value.strip())
        except ValueError:
            return None
    else:
        return None
    if math.isnan(number) or math.isinf(number):
        return None
    return number


def detect_adc_max(raw: float) -> int | None:
    """Return the smallest known ADC full-scale value that contains ``raw``."""
    if raw < 0:
        return None
    for max_raw in ADC_RANGES:
        if raw <= max_raw:
            return max_raw
    return None


def adc_to_percent(raw: float) -> float:
    """Convert a raw soil moisture ADC count to percent (100 = wet)."""
    max_raw = detect_adc_max(raw)
    if max_raw is None:
        logger.warning(
            "Soil moisture raw value %s outside known ADC ranges; clamping", raw
        )
        return _clamp_pct(raw)
    return _clamp_pct((max_raw - raw) / max_raw * 100.0)


def percent_to_adc(pct: float, max_raw: int = 4095) -> int:
    """Inverse of :func:`adc_to_percent` for a given full-scale value."""
    return int(round((100.0 - _clamp_pct(pct)) / 100.0 * max_raw))


def _first_number(values: Mapping[str, Any], keys: tuple[str, ...]) -> float | None:
    for key in keys:
        number = _as_number(values.get(key))
        if number is not None:
            return number
    return None


def _soil_moisture(values: Mapping[str, Any]) -> float | None:
    pct = _first_number(values, _SOIL_PCT_KEYS)
    if pct is not None:
        return _clamp_pct(pct)
    raw = _first_number(values, _SOIL_RAW_KEYS)
    if raw is None:
        return None
    return adc_to_percent(raw)


def _gas(name: str) -> Extractor:
    def _extract(values: Mapping[str, Any]) -> float | None:
        gases = values.get("gases")
        if isinstance(gases, Mapping):
            number = _as_number(gases.get(name))
            if number is not None:
                return number
        return _as_number(values.get(name))

    return _extract


def _direct(*keys: str) -> Extractor:
    def _extract(values: Mapping[str, Any]) -> float | None:
        return _first_number(values, keys)

    return _extract


_EXTRACTORS: dict[Parameter, Extractor] = {
    Parameter.SOIL_MOISTURE_PCT: _soil_moisture,
    Parameter.SOIL_TEMPERATURE: _direct(
        "soilTemperature", "soilTemp", "Soil Temperature (°C)"
    ),
    Parameter.AIR_TEMPERATURE: _direct(
        "airTemperature", "temperature", "Air Temperature (°C)"
    ),
    Parameter.AIR_HUMIDITY: _direct("airHumidity", "humidity", "Air Humidity (%)"),
    Parameter.AIR_QUALITY_INDEX: _direct("airQualityIndex", "aqi"),
    Parameter.CO2: _gas("co2"),
    Parameter.NH3: _gas("nh3"),
}

_missing = set(Parameter) - set(_EXTRACTORS)
if _missing:
    raise RuntimeError(f"No extractor registered for: {sorted(p.value for p in _missing)}")


def _values_of(sample: TelemetrySample | Mapping[str, Any]) -> Mapping[str, Any]:
    if isinstance(sample, TelemetrySample):
        return sample.values
    return sample or {}


def normalize(
    parameter: Parameter, sample: TelemetrySample | Mapping[str, Any]
) -> float | None:
    """Return the canonical value of ``parameter`` in ``sample`` or None if absent."""
    return _EXTRACTORS[parameter](_values_of(sample))


def extract(
    parameter: Parameter, sample: TelemetrySample | Mapping[str, Any]
) -> float:
    """Like :func:`normalize` but raise :class:`DataAbsentError` when absent."""
    value = normalize(parameter, sample)
    if value is None:
        device_id = sample.device_id if isinstance(sample, TelemetrySample) else None
        raise DataAbsentError(parameter.value, device_id)
    return value
