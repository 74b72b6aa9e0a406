"""
Valve commands written to deviceData/{deviceId}/commands
The slot holds a single record that every command overwrites; the firmware
polls it and there is no acknowledgement, so the last write wins.
"""

import logging
import time

from devices import device_data_path

logger = logging.getLogger(__name__)

VALVE_STATES = ("ON", "OFF")
MODES = ("AUTOMATIC", "MANUAL")


class CommandError(Exception):
    """A command could not be written; carries the backend's message"""

    def __init__(self, device_id, action, cause):
        super().__init__(str(cause))
        self.device_id = device_id
        self.action = action
        self.cause = cause


class CommandDispatcher:
    def __init__(self, backend, reconciler=None, clock=time.time):
        self.backend = backend
        self.reconciler = reconciler
        self.clock = clock

    def _send(self, device_id, action, **params):
        now = self.clock()
        command = {
            "targetDeviceId": device_id,
            "action": action,
            **{k: v for k, v in params.items() if v is not None},
            "issuedAt": int(now),
            "id": int(now * 1000),
        }
        try:
            self.backend.write(device_data_path(device_id, "commands"), command)
        except Exception as e:
            logger.error("Command %s for %s failed: %s", action, device_id, e)
            raise CommandError(device_id, action, e) from e

        logger.info("Sent %s to %s", action, device_id)
        if action in VALVE_STATES and self.reconciler is not None:
            self.reconciler.apply_optimistic_valve(device_id, action)
        return command

    def set_valve(self, device_id, status):
        """Open or close the valve"""
        if status not in VALVE_STATES:
            raise ValueError(f"Valve status must be ON or OFF, got {status!r}")
        return self._send(device_id, status)

    def quick_water(self, device_id, minutes):
        """Open the valve for `minutes`; the firmware closes it afterwards"""
        if minutes <= 0:
            raise ValueError(f"Watering duration must be positive, got {minutes}")
        return self._send(device_id, "ON", duration=minutes)

    def emergency_stop(self, device_id):
        # sent even when the valve already reads OFF
        return self._send(device_id, "OFF", emergency=True)

    def set_mode(self, device_id, mode):
        if mode not in MODES:
            raise ValueError(f"Mode must be AUTOMATIC or MANUAL, got {mode!r}")
        return self._send(device_id, "SET_MODE", mode=mode)

    def ping(self, device_id):
        """Connection test; merged beside the command record"""
        now = self.clock()
        test = {
            "test": {
                "command": "ping",
                "timestamp": int(now),
                "id": int(now * 1000),
            }
        }
        try:
            self.backend.merge(device_data_path(device_id, "commands"), test)
        except Exception as e:
            logger.error("Ping for %s failed: %s", device_id, e)
            raise CommandError(device_id, "PING", e) from e
        return test["test"]
