"""On-disk bookkeeping shared by the daemon and the command line.

Three plain files: the daemon's PID, the target speed, and the event log.
There is no locking. Only one daemon writes the PID and log files at a time,
and a half-written target reads as absent.
"""

from __future__ import annotations

import collections
import dataclasses
import pathlib
import time
from typing import Protocol

from cooling import read_int

RUN_DIR = pathlib.Path("/tmp")
LOG_DELIMITER = "=" * 41


class RuntimeState(Protocol):
    """Protocol for the liveness record, target record and event log."""

    def record_liveness(self, pid: int) -> None: ...
    def read_liveness(self) -> int | None: ...
    def clear_liveness(self) -> None: ...
    def write_target(self, speed: int) -> None: ...
    def read_target(self) -> int | None: ...
    def clear_target(self) -> None: ...
    def reset_log(self) -> None: ...
    def append_event(self, message: str) -> None: ...
    def tail_log(self, n: int) -> list[str]: ...
    def clear_all(self) -> None: ...


class FileRuntimeState:
    """RuntimeState backed by files in a run directory."""

    @dataclasses.dataclass(slots=True, kw_only=True)
    class Config:
        run_dir: pathlib.Path = RUN_DIR
        pid_name: str = "pi5_fan_control.pid"
        target_name: str = "pi5_fan_target_speed"
        log_name: str = "pi5_fan_control.log"

        def setup(self) -> FileRuntimeState:
            return FileRuntimeState(self)

    config: Config

    def __init__(self, config: Config) -> None:
        self.config = config

    @property
    def pid_path(self) -> pathlib.Path:
        return self.config.run_dir / self.config.pid_name

    @property
    def target_path(self) -> pathlib.Path:
        return self.config.run_dir / self.config.target_name

    @property
    def log_path(self) -> pathlib.Path:
        return self.config.run_dir / self.config.log_name

    def record_liveness(self, pid: int) -> None:
        _ = self.pid_path.write_text("%d\n" % pid)

    def read_liveness(self) -> int | None:
        return read_int(self.pid_path)

    def clear_liveness(self) -> None:
        _unlink(self.pid_path)

    def write_target(self, speed: int) -> None:
        _ = self.target_path.write_text("%d\n" % speed)

    def read_target(self) -> int | None:
        return read_int(self.target_path)

    def clear_target(self) -> None:
        _unlink(self.target_path)

    def reset_log(self) -> None:
        """Truncate the event log and start a new session."""
        _ = self.log_path.write_text(LOG_DELIMITER + "\n")

    def append_event(self, message: str) -> None:
        """Append '[HH:MM:SS] message' to the event log."""
        with open(self.log_path, "a") as f:
            _ = f.write("[%s] %s\n" % (time.strftime("%H:%M:%S"), message))

    def tail_log(self, n: int) -> list[str]:
        """Last n lines of the event log. Raises FileNotFoundError if absent."""
        if n <= 0:
            if not self.log_path.exists():
                raise FileNotFoundError(self.log_path)
            return []
        with open(self.log_path) as f:
            return [line.rstrip("\n") for line in collections.deque(f, maxlen=n)]

    def clear_all(self) -> None:
        for path in (self.pid_path, self.target_path, self.log_path):
            _unlink(path)


def _unlink(path: pathlib.Path) -> None:
    try:
        path.unlink(missing_ok=True)
    except OSError:
        pass
