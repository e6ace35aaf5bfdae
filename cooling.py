"""Cooling device access through the thermal sysfs interface.

Every method is best effort: reads fall back to a default, writes swallow I/O
errors. The caller retries on its next cycle.
"""

from __future__ import annotations

import dataclasses
import logging
import pathlib
from typing import Protocol

log = logging.getLogger("pi5-fan")

COOLING_DEVICE = pathlib.Path("/sys/class/thermal/cooling_device0")
THERMAL_ZONE = pathlib.Path("/sys/class/thermal/thermal_zone0")


class Cooling(Protocol):
    """Protocol for the fan actuator and its thermal sensor."""

    def read_temperature(self) -> int: ...
    def read_current_state(self) -> int | None: ...
    def read_max_state(self) -> int: ...
    def write_state(self, speed: int) -> bool: ...


class SysfsCooling:
    """Fan state via cooling_device cur_state/max_state, temp via thermal_zone."""

    @dataclasses.dataclass(slots=True, kw_only=True)
    class Config:
        cooling_device: pathlib.Path = COOLING_DEVICE
        thermal_zone: pathlib.Path = THERMAL_ZONE
        default_max_state: int = 4

        def setup(self) -> SysfsCooling:
            return SysfsCooling(self)

    config: Config

    def __init__(self, config: Config) -> None:
        self.config = config

    @property
    def cur_state_path(self) -> pathlib.Path:
        return self.config.cooling_device / "cur_state"

    @property
    def max_state_path(self) -> pathlib.Path:
        return self.config.cooling_device / "max_state"

    @property
    def temp_path(self) -> pathlib.Path:
        return self.config.thermal_zone / "temp"

    def read_temperature(self) -> int:
        """Temperature in whole degrees Celsius, 0 if unreadable."""
        millidegrees = read_int(self.temp_path)
        if millidegrees is None:
            return 0
        return millidegrees // 1000

    def read_current_state(self) -> int | None:
        """Current fan state, None if unreadable."""
        return read_int(self.cur_state_path)

    def read_max_state(self) -> int:
        value = read_int(self.max_state_path)
        if value is None:
            return self.config.default_max_state
        return value

    def write_state(self, speed: int) -> bool:
        """Write speed to cur_state. Returns False on failure."""
        try:
            with open(self.cur_state_path, "w") as f:
                _ = f.write("%d\n" % speed)
        except OSError as e:
            log.debug("Write to %s failed: %s", self.cur_state_path, e)
            return False
        return True


def read_int(path: pathlib.Path) -> int | None:
    """Read an integer from a sysfs-style file.

    Missing, empty or garbled files read as None.
    """
    try:
        return int(path.read_text().strip())
    except (OSError, ValueError):
        return None
