import pytest

import analytics
from analytics import (
    analyze,
    efficiency,
    filter_window,
    format_runtime,
    moisture_condition,
    moisture_trends,
    predict_moisture,
    watering_events,
)

NOW = 1_700_000_000


def reading(ts, moisture, valve="OFF"):
    return {"timestamp": ts, "moisture": moisture, "temperature": 24, "humidity": 60, "valveStatus": valve}


@pytest.mark.parametrize("window", ["1h", "6h", "24h", "7d", "30d"])
def test_filter_window_keeps_only_recent_sorted(window):
    window_s = analytics.WINDOWS_MS[window] // 1000
    readings = [
        reading(NOW - 10, 50),
        reading(NOW - window_s - 1, 40),
        reading(NOW - window_s, 45),
        reading(NOW - 100, 55),
    ]
    result = filter_window(readings, window, now=NOW)
    assert [r["timestamp"] for r in result] == [NOW - window_s, NOW - 100, NOW - 10]


def test_filter_window_all_keeps_everything():
    readings = [reading(30, 1), reading(10, 2), reading(20, 3)]
    result = filter_window(readings, "all", now=NOW)
    assert [r["timestamp"] for r in result] == [10, 20, 30]


def test_filter_window_empty_and_unknown():
    assert filter_window([], "24h", now=NOW) == []
    with pytest.raises(ValueError):
        filter_window([reading(NOW, 50)], "2w", now=NOW)


def test_filter_window_drops_readings_without_timestamp():
    result = filter_window([{"moisture": 10}, reading(NOW, 50)], "1h", now=NOW)
    assert len(result) == 1


def test_trends_need_two_points():
    assert moisture_trends([]) == []
    assert moisture_trends([reading(0, 50)]) == []


def test_trends_rate_per_hour():
    trends = moisture_trends([reading(0, 50), reading(1800, 45), reading(5400, 55)])
    assert len(trends) == 2
    assert trends[0] == {"timestamp": 1800, "change": -5, "rate": -10, "moisture": 45}
    assert trends[1]["rate"] == 10


def test_trends_same_timestamp_rate_is_zero():
    trends = moisture_trends([reading(100, 50), reading(100, 60)])
    assert trends[0]["change"] == 10
    assert trends[0]["rate"] == 0


def test_single_watering_event():
    readings = [reading(0, 70, "OFF"), reading(60, 65, "ON"), reading(300, 85, "OFF")]
    events = watering_events(readings)
    assert len(events) == 1
    event = events[0]
    assert event["start"] == 60
    assert event["end"] == 300
    assert event["duration_minutes"] == 4
    assert event["effectiveness_percent"] == 20


def test_open_watering_is_not_emitted():
    readings = [reading(0, 40, "ON"), reading(60, 45, "ON")]
    assert watering_events(readings) == []


def test_repeated_statuses_do_not_double_count():
    readings = [
        reading(0, 30, "ON"),
        reading(60, 35, "ON"),
        reading(120, 40, "OFF"),
        reading(180, 40, "OFF"),
        reading(240, 38, "ON"),
    ]
    events = watering_events(readings)
    assert len(events) == 1
    assert events[0]["start"] == 0
    assert watering_events(readings) == events


def test_efficiency_aggregates():
    readings = [reading(i * 60, m) for i, m in enumerate([20, 40, 60, 80])]
    result = efficiency(readings)
    assert result["avg_moisture"] == 50.0
    assert result["low_moisture_percent"] == 25
    assert result["watering_efficiency"] == 0
    assert result["total_watering_time"] == 0


def test_efficiency_with_events():
    readings = [
        reading(0, 30, "ON"), reading(300, 50, "OFF"),
        reading(600, 40, "ON"), reading(1500, 55, "OFF"),
    ]
    result = efficiency(readings)
    assert result["total_watering_time"] == 20
    assert result["watering_efficiency"] == 18  # mean of 20 and 15, half up


def test_efficiency_rounds_half_up():
    readings = [reading(i, 29 if i == 0 else 50) for i in range(8)]
    assert efficiency(readings)["low_moisture_percent"] == 13


def test_efficiency_empty():
    assert efficiency([]) == {}


def test_prediction_needs_ten_points():
    assert predict_moisture([reading(i, 50) for i in range(9)]) == {}


def test_prediction_flat_series_is_stable():
    result = predict_moisture([reading(i, 55) for i in range(10)])
    assert result["slope"] == pytest.approx(0)
    assert result["trend"] == "stable"
    assert result["predicted_moisture"] == 55
    assert result["confidence"] == 95


def test_prediction_rising_series():
    result = predict_moisture([reading(i, 40 + i) for i in range(10)])
    assert result["slope"] == pytest.approx(1)
    assert result["trend"] == "increasing"
    assert result["predicted_moisture"] == 62
    assert result["confidence"] == pytest.approx(85)


def test_prediction_uses_last_ten_only():
    readings = [reading(i, 0) for i in range(5)] + [reading(5 + i, 50) for i in range(10)]
    result = predict_moisture(readings)
    assert result["trend"] == "stable"
    assert result["predicted_moisture"] == 50


def test_prediction_clamps():
    result = predict_moisture([reading(i, 90 - i * 10) for i in range(10)])
    assert result["trend"] == "decreasing"
    assert result["predicted_moisture"] == 0
    assert result["confidence"] == 60


def test_analyze_bundles_window():
    readings = [
        reading(NOW - 8 * 86400, 10, "ON"),
        reading(NOW - 3000, 30, "ON"),
        reading(NOW - 2700, 45, "OFF"),
        reading(NOW - 60, 44, "OFF"),
    ]
    result = analyze(readings, "7d", now=NOW)
    assert len(result["readings"]) == 3
    assert len(result["moisture_trends"]) == 2
    assert len(result["watering_events"]) == 1
    assert result["efficiency"]["total_watering_time"] == 5
    assert result["predictions"] == {}


def test_moisture_condition_bands():
    assert moisture_condition(10)[0] == "Very Dry"
    assert moisture_condition(30)[0] == "Dry"
    assert moisture_condition(60)[0] == "Moist"
    assert moisture_condition(70)[0] == "Wet"


def test_format_runtime():
    assert format_runtime(45) == "45s"
    assert format_runtime(125) == "2m 5s"
    assert format_runtime(3720) == "1h 2m"
