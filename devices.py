"""
Registered device records under users/{uid}/devices
"""

import datetime
import time

DEFAULTS = {
    "moistureThreshold": 30,
    "autoWatering": True,
    "wateringDuration": 5,
    "checkInterval": 60,
}

CONFIG_FIELDS = ("name", "location") + tuple(DEFAULTS)
FIRMWARE_FIELDS = tuple(DEFAULTS)


def user_devices_path(uid, device_key=None):
    path = f"users/{uid}/devices"
    return f"{path}/{device_key}" if device_key else path


def device_data_path(device_id, *parts):
    return "/".join(["deviceData", device_id, *parts])


def _iso_now(now=None):
    ts = time.time() if now is None else now
    return (
        datetime.datetime.fromtimestamp(ts, datetime.timezone.utc)
        .isoformat(timespec="milliseconds")
        .replace("+00:00", "Z")
    )


def normalize_device(device_key, record):
    """Device record with defaults applied; `id` is the local key"""
    device = {**DEFAULTS, **(record or {})}
    device["id"] = device_key
    device.setdefault("deviceId", device_key)
    return device


def device_list(raw):
    """Ordered device list from the users/{uid}/devices value, minus removed ones"""
    if not raw:
        return []
    if isinstance(raw, list):
        raw = {str(i): r for i, r in enumerate(raw) if r}
    return [
        normalize_device(key, record)
        for key, record in raw.items()
        if isinstance(record, dict) and record.get("status") != "removed"
    ]


def validate_config(config):
    threshold = config.get("moistureThreshold")
    if threshold is not None and not 0 <= threshold <= 100:
        raise ValueError(f"moistureThreshold must be within 0-100, got {threshold}")
    for field in ("wateringDuration", "checkInterval"):
        value = config.get(field)
        if value is not None and value <= 0:
            raise ValueError(f"{field} must be positive, got {value}")


def update_device_config(backend, uid, device, config, now=None):
    """Save device configuration and mirror the firmware fields to deviceData/{id}/settings"""
    validate_config(config)
    stamp = _iso_now(now)

    user_update = {k: config[k] for k in CONFIG_FIELDS if k in config}
    user_update["lastConfigUpdate"] = stamp
    backend.merge(user_devices_path(uid, device["id"]), user_update)

    settings = {k: config[k] for k in FIRMWARE_FIELDS if k in config}
    settings["lastUpdate"] = stamp
    backend.merge(device_data_path(device["deviceId"], "settings"), settings)
    return user_update, settings


def remove_device(backend, uid, device, now=None):
    """Soft-remove a device; history under deviceData is kept"""
    marker = {
        "status": "removed",
        "removedAt": _iso_now(now),
        "removedBy": uid,
    }
    backend.merge(user_devices_path(uid, device["id"]), marker)
    backend.merge(device_data_path(device["deviceId"]), marker)
    return marker


def _seconds(value):
    """lastSeen may be unix seconds, unix ms or an ISO string"""
    if value is None or value == "":
        return None
    if isinstance(value, str):
        try:
            return datetime.datetime.fromisoformat(value.replace("Z", "+00:00")).timestamp()
        except ValueError:
            return None
    return value / 1000 if value > 1e11 else value


def device_health(device, now=None):
    """online / warning / offline from the device's lastSeen"""
    last_seen = _seconds(device.get("lastSeen"))
    if last_seen is None:
        return "offline"
    minutes = ((time.time() if now is None else now) - last_seen) / 60
    if minutes > 10:
        return "offline"
    elif minutes > 5:
        return "warning"
    return "online"
