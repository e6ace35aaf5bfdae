"""Start, stop and inspect the fan daemon.

The supervisor runs in the short-lived command-line process. It finds a
running daemon only through the liveness record and never talks to the
daemon directly.
"""

from __future__ import annotations

import dataclasses
import logging
import time
from collections.abc import Callable

from cooling import Cooling
from launcher import ProcessControl, ProcessLauncher
from runtime_state import RuntimeState

log = logging.getLogger("pi5-fan")

SUCCESS = 25
logging.addLevelName(SUCCESS, "SUCCESS")


@dataclasses.dataclass(slots=True, kw_only=True)
class StartResult:
    """Outcome of DaemonSupervisor.start."""

    ok: bool
    pid: int | None
    log_tail: list[str] = dataclasses.field(default_factory=list)


@dataclasses.dataclass(slots=True, kw_only=True)
class Status:
    """Snapshot of fan and daemon state."""

    temperature: int
    current_state: int | None
    max_state: int
    daemon_pid: int | None = None
    target: int | None = None
    recent_events: list[str] = dataclasses.field(default_factory=list)

    @property
    def percentage(self) -> int | None:
        if self.current_state is None or self.max_state <= 0:
            return None
        return self.current_state * 100 // self.max_state

    @property
    def active(self) -> bool:
        return self.daemon_pid is not None


class DaemonSupervisor:
    """Owns the daemon lifecycle: at most one daemon runs at a time."""

    @dataclasses.dataclass(slots=True, kw_only=True)
    class Config:
        restart_settle_seconds: float = 1.0
        burst_writes: int = 10
        burst_delay_seconds: float = 0.05
        verify_settle_seconds: float = 1.5
        stop_grace_seconds: float = 1.0
        log_tail_on_failure: int = 5
        status_log_lines: int = 3

        def setup(
            self,
            cooling: Cooling,
            state: RuntimeState,
            launcher: ProcessLauncher,
            processes: ProcessControl,
            daemon_argv: Callable[[int], list[str]],
        ) -> DaemonSupervisor:
            return DaemonSupervisor(
                self, cooling, state, launcher, processes, daemon_argv
            )

    config: Config
    cooling: Cooling
    state: RuntimeState
    launcher: ProcessLauncher
    processes: ProcessControl
    # Builds the command line that runs the daemon at a given speed.
    daemon_argv: Callable[[int], list[str]]

    def __init__(
        self,
        config: Config,
        cooling: Cooling,
        state: RuntimeState,
        launcher: ProcessLauncher,
        processes: ProcessControl,
        daemon_argv: Callable[[int], list[str]],
    ) -> None:
        self.config = config
        self.cooling = cooling
        self.state = state
        self.launcher = launcher
        self.processes = processes
        self.daemon_argv = daemon_argv

    def running_pid(self) -> int | None:
        """PID of the live daemon. Removes a stale liveness record."""
        pid = self.state.read_liveness()
        if pid is None:
            return None
        if self.processes.alive(pid):
            return pid
        log.debug("Removing stale liveness record (PID: %d)", pid)
        self.state.clear_liveness()
        return None

    def start(self, speed: int) -> StartResult:
        """Replace any running daemon with one holding speed."""
        cfg = self.config
        if self.running_pid() is not None:
            log.info("Stopping existing daemon...")
            _ = self.stop()
            time.sleep(cfg.restart_settle_seconds)

        self.state.clear_all()
        self.state.write_target(speed)

        # Firmware fights the first writes hardest.
        log.info("Initial speed write...")
        for _ in range(cfg.burst_writes):
            _ = self.cooling.write_state(speed)
            time.sleep(cfg.burst_delay_seconds)

        log.info("Starting daemon...")
        try:
            proc = self.launcher.launch(self.daemon_argv(speed))
        except OSError as e:
            log.debug("Launch failed: %s", e)
            return StartResult(ok=False, pid=None, log_tail=self._log_tail())

        time.sleep(cfg.verify_settle_seconds)

        if proc.poll() is None and self.running_pid() == proc.pid:
            return StartResult(ok=True, pid=proc.pid)
        log.debug(
            "Verification failed: exit=%s liveness=%s",
            proc.poll(),
            self.state.read_liveness(),
        )
        return StartResult(ok=False, pid=proc.pid, log_tail=self._log_tail())

    def stop(self) -> int | None:
        """Stop the daemon if running. Safe to call when nothing runs."""
        pid = self.running_pid()
        try:
            if pid is not None:
                log.info("Stopping daemon (PID: %d)...", pid)
                if self.processes.terminate(pid, self.config.stop_grace_seconds):
                    log.log(SUCCESS, "Daemon stopped")
                else:
                    log.warning("Daemon (PID: %d) may still be running", pid)
        finally:
            self.state.clear_liveness()
            self.state.clear_target()
        return pid

    def status(self) -> Status:
        """Read fan state, plus daemon details when one is running."""
        status = Status(
            temperature=self.cooling.read_temperature(),
            current_state=self.cooling.read_current_state(),
            max_state=self.cooling.read_max_state(),
        )
        pid = self.running_pid()
        if pid is None:
            return status
        status.daemon_pid = pid
        status.target = self.state.read_target()
        try:
            status.recent_events = self.state.tail_log(self.config.status_log_lines)
        except FileNotFoundError:
            pass
        return status

    def _log_tail(self) -> list[str]:
        try:
            return self.state.tail_log(self.config.log_tail_on_failure)
        except FileNotFoundError:
            return []
