import math

import pytest

from telemetry_relay.dashboard import (
    DashboardState,
    apply_frame,
    battery_level,
    battery_percent,
    temperature_percent,
)
from tests.conftest import SAMPLE_FRAME


@pytest.mark.parametrize(
    "voltage, expected",
    [(4.2, 0.0), (5.0, 0.0), (5.8, 50.0), (6.6, 100.0), (7.4, 100.0), (float("nan"), 0.0)],
)
def test_battery_percent(voltage, expected):
    assert battery_percent(voltage, empty=5.0, full=6.6) == pytest.approx(expected)


def test_battery_percent_requires_sane_range():
    with pytest.raises(ValueError):
        battery_percent(5.5, empty=6.0, full=5.0)


def test_temperature_and_level_bands():
    assert temperature_percent(-40) == 0.0
    assert temperature_percent(30) == pytest.approx(50.0)
    assert temperature_percent(120) == 100.0
    assert battery_level(80) == "high"
    assert battery_level(45) == "medium"
    assert battery_level(30) == "low"


def test_binary_frame_updates_every_field():
    state = DashboardState()
    assert apply_frame(state, SAMPLE_FRAME, True) is True
    assert state.last_sequence == 1
    assert state.pitch == 12.5
    assert state.yaw == 90.0
    assert state.battery_voltage == pytest.approx(6.1, abs=1e-5)
    assert "V:6.10V" in state.summary()


def test_other_binary_sizes_are_ignored():
    state = DashboardState()
    assert apply_frame(state, bytes(10), True) is False
    assert state == DashboardState()


def test_json_attitude_needs_all_three_axes():
    state = DashboardState()
    assert apply_frame(state, '{"pitch": 5, "roll": 6}', False) is False
    assert state.pitch == 0.0

    assert apply_frame(state, '{"pitch": 1, "roll": 2, "yaw": 3}', False) is True
    assert (state.pitch, state.roll, state.yaw) == (1.0, 2.0, 3.0)


def test_json_fields_are_independent_and_lenient():
    state = DashboardState()
    changed = apply_frame(
        state, '{"temperature": "hot", "humidity": 40.5, "battery": 6.2, "extra": 1}', False
    )
    assert changed is True
    assert state.temperature == 0.0
    assert state.humidity == 40.5
    assert state.battery_voltage == 6.2
    assert state.pitch == 0.0


@pytest.mark.parametrize("text", ["not json", "[1, 2, 3]", ""])
def test_unusable_text_is_ignored(text):
    state = DashboardState()
    assert apply_frame(state, text, False) is False


def test_nan_from_binary_frame_is_kept():
    import struct

    frame = struct.pack("<II6f", 9, 0, float("nan"), 0, 0, 0, 0, 0)
    state = DashboardState()
    apply_frame(state, frame, True)
    assert math.isnan(state.pitch)


def test_json_value_coercion():
    state = DashboardState()
    apply_frame(state, '{"humidity": [5], "battery": "6.2", "temperature": null}', False)
    assert state.humidity == 0.0
    assert state.battery_voltage == 6.2
    assert state.temperature == 0.0

    apply_frame(state, '{"temperature": "inf", "humidity": true}', False)
    assert math.isinf(state.temperature)
    assert state.humidity == 1.0
