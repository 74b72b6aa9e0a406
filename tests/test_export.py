from analytics import watering_events
from export import events_to_csv, history_to_csv, iso_timestamp


def test_iso_timestamp():
    assert iso_timestamp(0) == "1970-01-01T00:00:00.000Z"
    assert iso_timestamp(1_700_000_000) == "2023-11-14T22:13:20.000Z"


def test_events_csv():
    readings = [
        {"timestamp": 0, "moisture": 70, "valveStatus": "OFF"},
        {"timestamp": 60, "moisture": 65, "valveStatus": "ON"},
        {"timestamp": 300, "moisture": 85, "valveStatus": "OFF"},
    ]
    lines = events_to_csv(watering_events(readings)).splitlines()
    assert lines[0] == "Timestamp,Duration(min),Effectiveness(%)"
    assert lines[1] == "1970-01-01T00:01:00.000Z,4.0,20"


def test_history_csv():
    readings = [{"timestamp": 60, "moisture": 41, "temperature": 23.5, "humidity": 60}]
    lines = history_to_csv(readings).splitlines()
    assert lines == [
        "Timestamp,Moisture Level,Temperature,Humidity",
        "1970-01-01T00:01:00.000Z,41,23.5,60",
    ]


def test_empty_exports_keep_header():
    assert events_to_csv([]).strip() == "Timestamp,Duration(min),Effectiveness(%)"
    assert history_to_csv([]).strip() == "Timestamp,Moisture Level,Temperature,Humidity"
