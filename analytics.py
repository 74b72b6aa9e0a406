"""
Moisture analytics over a device's reading history
Window filtering, trend rates, watering-event segmentation, efficiency and
a short-horizon linear prediction
"""

import math
import time

# =====================================================
# WINDOWS
# =====================================================
WINDOWS_MS = {
    "1h": 60 * 60 * 1000,
    "6h": 6 * 60 * 60 * 1000,
    "24h": 24 * 60 * 60 * 1000,
    "7d": 7 * 24 * 60 * 60 * 1000,
    "30d": 30 * 24 * 60 * 60 * 1000,
    "all": None,
}

LOW_MOISTURE = 30
PREDICTION_POINTS = 10
PREDICTION_STEPS = 12  # 30-minute sampling => ~6 hours ahead


def round_half_up(value, digits=0):
    """Round like the dashboard always has (0.5 goes up), not banker's rounding"""
    factor = 10 ** digits
    rounded = math.floor(value * factor + 0.5) / factor
    return int(rounded) if digits == 0 else rounded


def filter_window(readings, window, now=None):
    """Readings inside `window` (a WINDOWS_MS tag), sorted by timestamp"""
    if window not in WINDOWS_MS:
        raise ValueError(f"Unknown window {window!r}, expected one of {sorted(WINDOWS_MS)}")

    now_ms = (time.time() if now is None else now) * 1000
    window_ms = WINDOWS_MS[window]

    selected = []
    for reading in readings:
        ts = reading.get("timestamp")
        if ts is None:
            continue
        if window_ms is None or ts * 1000 >= now_ms - window_ms:
            selected.append(reading)

    # arrival order is not trusted
    return sorted(selected, key=lambda r: r["timestamp"])


# =====================================================
# TRENDS & EVENTS
# =====================================================

def moisture_trends(readings):
    """Rate of moisture change between consecutive readings (% per hour)"""
    if len(readings) < 2:
        return []

    trends = []
    for prev, curr in zip(readings, readings[1:]):
        change = curr["moisture"] - prev["moisture"]
        hours = (curr["timestamp"] - prev["timestamp"]) / 3600
        trends.append({
            "timestamp": curr["timestamp"],
            "change": change,
            "rate": change / hours if hours else 0,
            "moisture": curr["moisture"],
        })
    return trends


def watering_events(readings):
    """Segment the valve status stream into ON -> OFF watering events.

    A watering still running at the end of the readings has no OFF to close
    it and is left out; a window that cuts through a long watering therefore
    shows no event for it.
    """
    events = []
    current = None

    for reading in readings:
        status = reading.get("valveStatus")
        if status == "ON" and current is None:
            current = {
                "start": reading["timestamp"],
                "start_moisture": reading["moisture"],
            }
        elif status == "OFF" and current is not None:
            end_moisture = reading["moisture"]
            events.append({
                **current,
                "end": reading["timestamp"],
                "end_moisture": end_moisture,
                "duration_minutes": (reading["timestamp"] - current["start"]) / 60,
                "effectiveness_percent": end_moisture - current["start_moisture"],
            })
            current = None

    return events


def efficiency(readings, events=None, low_threshold=LOW_MOISTURE):
    """Aggregate moisture and watering figures for a window"""
    if not readings:
        return {}
    if events is None:
        events = watering_events(readings)

    moistures = [r["moisture"] for r in readings]
    low_count = sum(1 for m in moistures if m < low_threshold)
    total_watering = sum(e["duration_minutes"] for e in events)

    if events:
        mean_effect = sum(e["effectiveness_percent"] for e in events) / len(events)
        watering_efficiency = round_half_up(mean_effect)
    else:
        watering_efficiency = 0

    return {
        "avg_moisture": round_half_up(sum(moistures) / len(moistures), 1),
        "total_watering_time": round_half_up(total_watering),
        "low_moisture_percent": round_half_up(low_count / len(moistures) * 100),
        "watering_efficiency": watering_efficiency,
    }


# =====================================================
# PREDICTION
# =====================================================

def predict_moisture(readings):
    """Linear forecast over the last 10 readings.

    The confidence figure is a heuristic that shrinks as the slope grows;
    it is not a statistical confidence interval.
    """
    if len(readings) < PREDICTION_POINTS:
        return {}

    ys = [r["moisture"] for r in readings[-PREDICTION_POINTS:]]
    n = len(ys)
    xs = range(n)

    sum_x = sum(xs)
    sum_y = sum(ys)
    sum_xy = sum(x * y for x, y in zip(xs, ys))
    sum_xx = sum(x * x for x in xs)

    slope = (n * sum_xy - sum_x * sum_y) / (n * sum_xx - sum_x * sum_x)
    intercept = (sum_y - slope * sum_x) / n

    predicted = intercept + slope * (n + PREDICTION_STEPS)

    if slope > 0.1:
        trend = "increasing"
    elif slope < -0.1:
        trend = "decreasing"
    else:
        trend = "stable"

    return {
        "trend": trend,
        "predicted_moisture": max(0, min(100, round_half_up(predicted))),
        "confidence": min(95, max(60, 95 - abs(slope) * 10)),
        "slope": slope,
        "intercept": intercept,
    }


def analyze(readings, window="7d", now=None):
    """Full analytics refresh for one window of history"""
    data = filter_window(readings, window, now=now)
    events = watering_events(data)
    return {
        "window": window,
        "readings": data,
        "moisture_trends": moisture_trends(data),
        "watering_events": events,
        "efficiency": efficiency(data, events),
        "predictions": predict_moisture(data),
    }


# =====================================================
# PRESENTATION HELPERS
# =====================================================

def moisture_condition(moisture):
    """Determine soil condition"""
    if moisture < 25:
        return "Very Dry", "🔴", "#F44336", "⚠ Critical"
    elif moisture < 45:
        return "Dry", "🟠", "#FF9800", "⚡ Action Needed"
    elif moisture < 70:
        return "Moist", "🟢", "#4CAF50", "✅ Optimal"
    else:
        return "Wet", "🔵", "#2196F3", "💧 Saturated"


def format_runtime(seconds):
    """Format runtime"""
    if seconds < 60:
        return f"{int(seconds)}s"
    elif seconds < 3600:
        return f"{int(seconds/60)}m {int(seconds%60)}s"
    else:
        hours = int(seconds/3600)
        minutes = int((seconds%3600)/60)
        return f"{hours}h {minutes}m"
