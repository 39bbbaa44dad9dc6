import pytest

from agro_alerts import units
from agro_alerts.errors import DataAbsentError
from agro_alerts.models.rules import Parameter
from agro_alerts.models.telemetry import TelemetrySample


@pytest.mark.parametrize("max_raw", [255, 1023, 4095])
def test_adc_endpoints(max_raw) -> None:
    assert units.adc_to_percent(max_raw) == 0.0
    assert units.adc_to_percent(0) == 100.0


def test_adc_brackets_pick_first_range_that_fits() -> None:
    assert units.detect_adc_max(200) == 255
    assert units.detect_adc_max(256) == 1023
    assert units.detect_adc_max(1024) == 1024
    assert units.detect_adc_max(2048) == 4095
    assert units.detect_adc_max(5000) is None
    assert units.detect_adc_max(-1) is None


def test_adc_to_percent_formula() -> None:
    assert units.adc_to_percent(3112) == pytest.approx(24.0, abs=0.05)
    assert units.adc_to_percent(2900) == pytest.approx(29.18, abs=0.01)
    assert units.adc_to_percent(512) == pytest.approx((1023 - 512) / 1023 * 100)


def test_adc_out_of_range_clamps_with_warning(caplog) -> None:
    with caplog.at_level("WARNING"):
        assert units.adc_to_percent(5000) == 100.0
        assert units.adc_to_percent(-20) == 0.0
    assert "outside known ADC ranges" in caplog.text


def test_percent_to_adc_inverse() -> None:
    assert units.percent_to_adc(100) == 0
    assert units.percent_to_adc(0) == 4095
    assert units.percent_to_adc(25, max_raw=1023) == 767


def test_soil_prefers_percentage_over_raw() -> None:
    values = {"soilMoisturePct": 42.0, "soilMoistureRaw": 4000}
    assert units.normalize(Parameter.SOIL_MOISTURE_PCT, values) == 42.0


def test_soil_legacy_percentage_alias() -> None:
    assert units.normalize(Parameter.SOIL_MOISTURE_PCT, {"soilMoisture": 55}) == 55.0


def test_soil_snake_case_aliases() -> None:
    assert units.normalize(Parameter.SOIL_MOISTURE_PCT, {"soil_moisture_pct": 41}) == 41.0
    assert units.normalize(Parameter.SOIL_MOISTURE_PCT, {"sm_pct": 12.5}) == 12.5
    value = units.normalize(Parameter.SOIL_MOISTURE_PCT, {"sm_raw": 3112})
    assert value == pytest.approx(24.0, abs=0.05)


def test_soil_falls_back_to_raw() -> None:
    value = units.normalize(Parameter.SOIL_MOISTURE_PCT, {"soilMoistureRaw": 3112})
    assert value == pytest.approx(24.0, abs=0.05)


def test_gases_nested_then_top_level() -> None:
    assert units.normalize(Parameter.CO2, {"gases": {"co2": 800}, "co2": 400}) == 800.0
    assert units.normalize(Parameter.NH3, {"nh3": 12}) == 12.0
    assert units.normalize(Parameter.CO2, {"gases": {"nh3": 3}}) is None


def test_legacy_aliases() -> None:
    assert units.normalize(Parameter.AIR_TEMPERATURE, {"temperature": 31.5}) == 31.5
    assert units.normalize(Parameter.AIR_HUMIDITY, {"humidity": "77"}) == 77.0
    assert units.normalize(Parameter.SOIL_TEMPERATURE, {"soilTemp": 19}) == 19.0


def test_absent_and_non_numeric_values_are_none() -> None:
    assert units.normalize(Parameter.AIR_HUMIDITY, {}) is None
    assert units.normalize(Parameter.AIR_HUMIDITY, {"airHumidity": True}) is None
    assert units.normalize(Parameter.AIR_HUMIDITY, {"airHumidity": "wet"}) is None
    assert units.normalize(Parameter.AIR_HUMIDITY, {"airHumidity": float("nan")}) is None


def test_zero_is_a_value_not_absence() -> None:
    assert units.normalize(Parameter.AIR_TEMPERATURE, {"airTemperature": 0}) == 0.0


def test_every_parameter_has_an_extractor() -> None:
    assert set(units._EXTRACTORS) == set(Parameter)


def test_extract_raises_for_missing_parameter() -> None:
    sample = TelemetrySample(device_id="ESP32_001", values={"airTemperature": 20})
    with pytest.raises(DataAbsentError) as exc_info:
        units.extract(Parameter.CO2, sample)
    assert exc_info.value.device_id == "ESP32_001"
    assert exc_info.value.parameter == "co2"
