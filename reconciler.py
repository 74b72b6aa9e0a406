"""
Device state reconciliation
Merges the live deviceData snapshot stream, the polled history buffer and
optimistic command echoes into one presented state for the selected device
"""

import logging
import math
import random
import threading
import time
from concurrent import futures

import config
from devices import device_data_path, device_list, user_devices_path

logger = logging.getLogger(__name__)

# =====================================================
# STATES
# =====================================================
NO_DATA = "NO_DATA"
LIVE = "LIVE"
STALE = "STALE"

VALVE_CONFIRMED = "confirmed"
VALVE_PENDING = "pending"
VALVE_REVERTED = "reverted"

SENSOR_FIELDS = ("moisture", "temperature", "humidity", "valveStatus")
DEMO_POINTS = 11
DEMO_SPACING = 300  # seconds


def to_seconds(ts):
    """Device timestamps are unix seconds; some firmware sends milliseconds.

    Returns None for a value that is not a number.
    """
    if isinstance(ts, bool):
        return None
    if not isinstance(ts, (int, float)):
        try:
            ts = float(ts)
        except (TypeError, ValueError):
            return None
        if not math.isfinite(ts):
            return None
    return ts / 1000 if ts > 1e11 else ts


def _number(value):
    if isinstance(value, bool):
        return 0
    if isinstance(value, (int, float)):
        return value
    try:
        value = float(value)
    except (TypeError, ValueError):
        return 0
    return value if math.isfinite(value) else 0


def normalize_reading(data):
    """Sensor fields of a snapshot/history record, missing or unreadable ones defaulted"""
    reading = {
        "moisture": _number(data.get("moisture")),
        "temperature": _number(data.get("temperature")),
        "humidity": _number(data.get("humidity")),
        "valveStatus": "ON" if data.get("valveStatus") == "ON" else "OFF",
    }
    ts = to_seconds(data.get("timestamp"))
    if ts:
        reading["timestamp"] = ts
    return reading


def has_sensor_data(data):
    return isinstance(data, dict) and any(data.get(f) is not None for f in SENSOR_FIELDS)


def clean_history(records):
    """History records with a moisture value and a readable timestamp, oldest first"""
    readings = (normalize_reading(r) for r in records if r.get("moisture") is not None)
    history = [r for r in readings if "timestamp" in r]
    return sorted(history, key=lambda r: r["timestamp"])


def synthetic_reading(rng, now):
    """Plausible stand-in reading, tagged so it is never taken for telemetry"""
    return {
        "timestamp": int(now),
        "moisture": round(rng.uniform(40, 70), 1),
        "temperature": round(rng.uniform(22, 28), 1),
        "humidity": round(rng.uniform(50, 70), 1),
        "valveStatus": "OFF",
        "synthetic": True,
    }


def demo_history(rng, now, count=DEMO_POINTS, spacing=DEMO_SPACING):
    """Short synthetic series ending at `now`"""
    start = int(now) - (count - 1) * spacing
    return [
        {
            "timestamp": start + i * spacing,
            "moisture": round(rng.uniform(50, 80), 1),
            "temperature": round(rng.uniform(22, 28), 1),
            "humidity": round(rng.uniform(50, 70), 1),
            "valveStatus": "OFF",
            "synthetic": True,
        }
        for i in range(count)
    ]


# =====================================================
# POLLING
# =====================================================

class PollTimer:
    """Calls `fn` every `interval` seconds on a re-armed threading.Timer until cancelled"""

    def __init__(self, interval, fn):
        self.interval = interval
        self.fn = fn
        self.cancelled = False
        self._timer = None
        self._lock = threading.Lock()

    def start(self):
        self._arm()

    def _arm(self):
        with self._lock:
            if self.cancelled:
                return
            self._timer = threading.Timer(self.interval, self._tick)
            self._timer.daemon = True
            self._timer.start()

    def _tick(self):
        if self.cancelled:
            return
        try:
            self.fn()
        except Exception:
            logger.exception("History poll failed")
        self._arm()

    def cancel(self):
        with self._lock:
            self.cancelled = True
            if self._timer is not None:
                self._timer.cancel()
                self._timer = None


# =====================================================
# RECONCILER
# =====================================================

class DeviceReconciler:
    """Presented state for one selected device at a time.

    Snapshot callbacks, poll ticks and dispatcher echoes may arrive on
    different threads; every mutation happens under `_lock`. Each device
    selection bumps `_generation` and callbacks carrying an older generation
    are dropped, so a late update from the previous device never lands in
    the new device's state.
    """

    def __init__(
        self,
        backend,
        uid,
        clock=time.time,
        poll_interval=config.POLL_INTERVAL,
        history_limit=config.HISTORY_LIMIT,
        pending_timeout=config.PENDING_TIMEOUT,
        rng=None,
    ):
        self.backend = backend
        self.uid = uid
        self.clock = clock
        self.poll_interval = poll_interval
        self.history_limit = history_limit
        self.pending_timeout = pending_timeout
        self._rng = rng or random.Random()
        self._lock = threading.RLock()

        self.devices = []
        self.selected = None
        self.closed = False
        self._generation = 0
        self._live_sub = None
        self._poll_timer = None
        self._devices_sub = None
        self._reset_device_state()

    def _reset_device_state(self):
        self.live = None
        self.last_seen = None
        self.last_update = None
        self.connected = False
        self.history = []
        self._valve = {
            "value": "OFF",
            "state": VALVE_CONFIRMED,
            "confirmed": "OFF",
            "since": None,
        }

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        self.close()

    # -------------------------------------------------
    # Device list
    # -------------------------------------------------

    def load_devices(self, timeout=config.LOAD_TIMEOUT):
        """Read the user's devices once; on timeout or error carry on with none"""
        executor = futures.ThreadPoolExecutor(max_workers=1)
        future = executor.submit(self.backend.get_once, user_devices_path(self.uid))
        try:
            raw = future.result(timeout=timeout)
        except futures.TimeoutError:
            logger.warning("Device list not loaded after %ss, continuing without devices", timeout)
            raw = None
        except Exception as e:
            logger.warning("Device list load failed: %s", e)
            raw = None
        finally:
            executor.shutdown(wait=False)
        return self.set_devices(device_list(raw))

    def watch_devices(self):
        """Follow users/{uid}/devices and reselect when the list changes"""
        with self._lock:
            if self._devices_sub is not None:
                self._devices_sub.close()
            self._devices_sub = self.backend.subscribe(
                user_devices_path(self.uid),
                lambda value: self.set_devices(device_list(value)),
                lambda e: logger.warning("Device list subscription failed: %s", e),
            )

    def set_devices(self, devices):
        """Replace the device list and keep the selection valid"""
        with self._lock:
            if self.closed:
                return self.devices
            self.devices = list(devices)
            by_id = {d["id"]: d for d in self.devices}
            current = self.selected

            if current is None:
                if not self.devices:
                    return self.devices
                target = self.devices[0]
            elif current["id"] not in by_id:
                target = None
            elif by_id[current["id"]]["deviceId"] != current["deviceId"]:
                target = by_id[current["id"]]
            else:
                self.selected = by_id[current["id"]]
                return self.devices

        self.select_device(target)
        return self.devices

    # -------------------------------------------------
    # Selection lifecycle
    # -------------------------------------------------

    def select_device(self, device):
        """Switch the live stream and history poll to `device` (None clears)"""
        with self._lock:
            if self.closed:
                return
            self._release_device()
            self._generation += 1
            generation = self._generation
            self.selected = device
            self._reset_device_state()
            if device is None:
                logger.info("Device selection cleared")
                return

            device_id = device["deviceId"]
            logger.info("Selected device %s", device_id)
            self._live_sub = self.backend.subscribe(
                device_data_path(device_id),
                lambda data: self._on_snapshot(generation, data),
                lambda e: self._on_error(generation, e),
            )

        self._poll(generation, device_id)

        with self._lock:
            if generation == self._generation and not self.closed:
                self._poll_timer = PollTimer(
                    self.poll_interval, lambda: self._poll(generation, device_id)
                )
                self._poll_timer.start()

    def _release_device(self):
        if self._live_sub is not None:
            self._live_sub.close()
            self._live_sub = None
        if self._poll_timer is not None:
            self._poll_timer.cancel()
            self._poll_timer = None

    def close(self):
        """Release every subscription and timer"""
        with self._lock:
            self._release_device()
            if self._devices_sub is not None:
                self._devices_sub.close()
                self._devices_sub = None
            self._generation += 1
            self.closed = True

    # -------------------------------------------------
    # Live channel
    # -------------------------------------------------

    def _on_snapshot(self, generation, data):
        with self._lock:
            if generation != self._generation or self.closed:
                return
            now = self.clock()
            self.connected = True
            if not has_sensor_data(data):
                logger.info("No live data for %s, showing demo reading", self.selected["deviceId"])
                self.live = synthetic_reading(self._rng, now)
                return

            reading = normalize_reading(data)
            self.last_seen = reading.pop("timestamp", now)
            self.live = reading
            self.last_update = now
            self._reconcile_valve(reading["valveStatus"], now)

    def _on_error(self, generation, error):
        with self._lock:
            if generation != self._generation or self.closed:
                return
            logger.warning("Live data unavailable for %s: %s", self.selected["deviceId"], error)
            self.connected = False
            self.live = synthetic_reading(self._rng, self.clock())

    # -------------------------------------------------
    # History channel
    # -------------------------------------------------

    def poll_history(self):
        """Pull the history buffer for the selected device now"""
        with self._lock:
            if self.selected is None:
                return []
            generation = self._generation
            device_id = self.selected["deviceId"]
        self._poll(generation, device_id)
        with self._lock:
            return list(self.history)

    def _poll(self, generation, device_id):
        try:
            records = self.backend.query_ordered_limited_to_last(
                device_data_path(device_id, "history"), "timestamp", self.history_limit
            )
        except Exception as e:
            logger.warning("History poll for %s failed: %s", device_id, e)
            records = None

        with self._lock:
            if generation != self._generation or self.closed:
                return
            if records is None:
                self.connected = False
                if not self.history:
                    self.history = demo_history(self._rng, self.clock())
                return
            history = clean_history(records)
            if not history:
                logger.info("No history for %s, showing demo series", device_id)
                history = demo_history(self._rng, self.clock())
            self.history = history

    def load_history(self, limit=config.ANALYTICS_LIMIT):
        """Larger one-off history pull for analytics.

        Falls back to the real readings of the poll buffer; the demo series is
        never returned, so analytics and exports only see device telemetry.
        """
        with self._lock:
            if self.selected is None:
                return []
            device_id = self.selected["deviceId"]
            fallback = [r for r in self.history if not r.get("synthetic")]
        try:
            records = self.backend.query_ordered_limited_to_last(
                device_data_path(device_id, "history"), "timestamp", limit
            )
        except Exception as e:
            logger.warning("Analytics history for %s failed: %s", device_id, e)
            return fallback
        return clean_history(records) or fallback

    # -------------------------------------------------
    # Optimistic valve
    # -------------------------------------------------

    def apply_optimistic_valve(self, device_id, status):
        """Show `status` before the device confirms it"""
        with self._lock:
            if self.selected is None or self.selected["deviceId"] != device_id:
                return False
            self._valve.update(value=status, state=VALVE_PENDING, since=self.clock())
            return True

    def _reconcile_valve(self, reported, now):
        valve = self._valve
        valve["confirmed"] = reported
        if valve["state"] != VALVE_PENDING:
            valve.update(value=reported, state=VALVE_CONFIRMED, since=None)
        elif reported == valve["value"]:
            valve.update(state=VALVE_CONFIRMED, since=None)
        elif now - valve["since"] >= self.pending_timeout:
            self._revert_valve()

    def _revert_valve(self):
        valve = self._valve
        logger.warning(
            "Valve command %s not confirmed within %ss, reverting to %s",
            valve["value"], self.pending_timeout, valve["confirmed"],
        )
        valve.update(value=valve["confirmed"], state=VALVE_REVERTED, since=None)

    # -------------------------------------------------
    # Presented state
    # -------------------------------------------------

    def state(self):
        """Snapshot of everything the dashboard shows for the selected device"""
        with self._lock:
            now = self.clock()
            valve = self._valve
            if valve["state"] == VALVE_PENDING and now - valve["since"] >= self.pending_timeout:
                self._revert_valve()

            synthetic = self.live is None or bool(self.live.get("synthetic"))
            online = (
                not synthetic
                and self.last_seen is not None
                and now - self.last_seen < config.ONLINE_WINDOW
            )
            if synthetic:
                status = NO_DATA
            else:
                status = LIVE if online else STALE

            live = None
            if self.live is not None:
                live = dict(self.live, valveStatus=valve["value"])

            return {
                "device": self.selected,
                "status": status,
                "live": live,
                "online": online,
                "last_seen": self.last_seen,
                "last_update": self.last_update,
                "connected": self.connected,
                "history": list(self.history),
                "valve": dict(valve),
            }
