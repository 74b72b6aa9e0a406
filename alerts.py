"""
Device alerts
Sensor-derived warnings plus the alerts stored under deviceData/{id}/alerts
"""

import logging
import math
import threading
import time

from devices import device_data_path

logger = logging.getLogger(__name__)

# type -> (severity, id bucket in ms)
ALERT_RULES = {
    "low_moisture": ("error", 5 * 60 * 1000),
    "moisture_warning": ("warning", 10 * 60 * 1000),
    "high_temperature": ("warning", 15 * 60 * 1000),
    "device_offline": ("error", 30 * 60 * 1000),
}

OFFLINE_AFTER = 600  # seconds


def make_alert(device, alert_type, message, now_ms, data=None):
    """Alert record; the id is bucketed so repeats within the bucket collapse"""
    severity, bucket = ALERT_RULES[alert_type]
    device_id = device["deviceId"]
    return {
        "id": f"{device_id}_{alert_type}_{math.floor(now_ms / bucket)}",
        "deviceId": device_id,
        "deviceName": device.get("name") or device_id,
        "type": alert_type,
        "message": message,
        "severity": severity,
        "timestamp": now_ms,
        "data": data or {},
    }


def check_sensor_alerts(device, live, last_seen=None, now=None):
    """Alerts raised by the latest reading of `device`"""
    now = time.time() if now is None else now
    now_ms = int(now * 1000)
    alerts = []

    moisture = live.get("moisture")
    if moisture is not None:
        if moisture < 20:
            alerts.append(make_alert(
                device, "low_moisture",
                f"Critical: Soil moisture is very low ({moisture}%)",
                now_ms, {"moisture": moisture},
            ))
        elif moisture < 30:
            alerts.append(make_alert(
                device, "moisture_warning",
                f"Warning: Soil moisture is getting low ({moisture}%)",
                now_ms, {"moisture": moisture},
            ))

    temperature = live.get("temperature")
    if temperature is not None and temperature > 35:
        alerts.append(make_alert(
            device, "high_temperature",
            f"High temperature detected ({temperature}°C)",
            now_ms, {"temperature": temperature},
        ))

    if last_seen is None or now - last_seen > OFFLINE_AFTER:
        alerts.append(make_alert(
            device, "device_offline",
            "Device appears to be offline",
            now_ms, {"lastSeen": last_seen},
        ))

    return alerts


class AlertCenter:
    """Unacknowledged alerts across the user's devices"""

    def __init__(self, backend, uid, clock=time.time):
        self.backend = backend
        self.uid = uid
        self.clock = clock
        self._alerts = {}
        self._subs = []
        self._lock = threading.RLock()

    def watch(self, devices):
        """Subscribe to every device's stored alerts (replacing earlier watches)"""
        with self._lock:
            self.close()
            for device in devices:
                sub = self.backend.subscribe(
                    device_data_path(device["deviceId"], "alerts"),
                    lambda value, device=device: self._on_alerts(device, value),
                    lambda e, device=device: logger.warning(
                        "Alert subscription for %s failed: %s", device["deviceId"], e
                    ),
                )
                self._subs.append(sub)

    def _on_alerts(self, device, value):
        if not isinstance(value, dict):
            return
        for alert_id, alert in value.items():
            if not isinstance(alert, dict) or alert.get("acknowledged"):
                continue
            self.add({
                "id": alert_id,
                "deviceId": device["deviceId"],
                "deviceName": device.get("name") or device["deviceId"],
                "type": alert.get("type"),
                "message": alert.get("message", ""),
                "severity": alert.get("severity") or "info",
                "timestamp": alert.get("timestamp"),
                "data": alert.get("data") or {},
            })

    def add(self, alert):
        """Keep `alert` unless one with the same id is already held"""
        with self._lock:
            if alert["id"] in self._alerts:
                return False
            self._alerts[alert["id"]] = alert
            return True

    def pending(self):
        with self._lock:
            return sorted(self._alerts.values(), key=lambda a: a.get("timestamp") or 0)

    def acknowledge(self, alert):
        now = self.clock()
        self.backend.merge(
            device_data_path(alert["deviceId"], "alerts", alert["id"]),
            {
                "acknowledged": True,
                "acknowledgedAt": int(now * 1000),
                "acknowledgedBy": self.uid,
            },
        )
        with self._lock:
            self._alerts.pop(alert["id"], None)

    def raise_alert(self, device_id, alert_type, message, severity="info", data=None):
        """Store a new alert for the device and return its key"""
        record = {
            "type": alert_type,
            "message": message,
            "severity": severity,
            "timestamp": int(self.clock() * 1000),
            "acknowledged": False,
            "data": data or {},
        }
        return self.backend.push_new(device_data_path(device_id, "alerts"), record)

    def close(self):
        with self._lock:
            subs, self._subs = self._subs, []
        for sub in subs:
            sub.close()
