"""
CSV export of watering events and sensor history
"""

import datetime

import pandas as pd

EVENT_COLUMNS = ["Timestamp", "Duration(min)", "Effectiveness(%)"]
HISTORY_COLUMNS = ["Timestamp", "Moisture Level", "Temperature", "Humidity"]


def iso_timestamp(ts):
    """ISO-8601 UTC with milliseconds, e.g. 2024-01-01T00:00:00.000Z"""
    return (
        datetime.datetime.fromtimestamp(ts, datetime.timezone.utc)
        .isoformat(timespec="milliseconds")
        .replace("+00:00", "Z")
    )


def events_to_csv(events):
    df = pd.DataFrame(
        [
            [iso_timestamp(e["start"]), e["duration_minutes"], e["effectiveness_percent"]]
            for e in events
        ],
        columns=EVENT_COLUMNS,
    )
    return df.to_csv(index=False)


def history_to_csv(readings):
    df = pd.DataFrame(
        [
            [iso_timestamp(r["timestamp"]), r.get("moisture"), r.get("temperature"), r.get("humidity")]
            for r in readings
        ],
        columns=HISTORY_COLUMNS,
    )
    return df.to_csv(index=False)
