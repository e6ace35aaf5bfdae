"""Daemon loop that holds the fan at a target state against firmware resets.

Each cycle re-reads the target file, compares the fan register with the
target and rewrites it on mismatch. Firmware overrides are logged only when
the observed value changes, so a register that stays wrong for several
cycles produces one event. Every 20th cycle rewrites the target even when the
register already matches.

The loop never checks for shutdown. The hosting process is stopped with
SIGTERM, which keeps its default action. SIGHUP is ignored.
"""

from __future__ import annotations

import dataclasses
import logging
import os
import signal
import time

from cooling import Cooling
from runtime_state import LOG_DELIMITER, RuntimeState

log = logging.getLogger("pi5-fan")


def _fmt_state(state: int | None) -> str:
    return "unknown" if state is None else str(state)


class ConvergenceLoop:
    """Read-compare-correct-sleep cycle for one cooling device."""

    @dataclasses.dataclass(slots=True, kw_only=True)
    class Config:
        check_interval_seconds: float = 0.15
        rewrite_every: int = 20
        heartbeat_every: int = 200

        def setup(
            self, cooling: Cooling, state: RuntimeState, target: int
        ) -> ConvergenceLoop:
            return ConvergenceLoop(self, cooling, state, target)

    config: Config
    cooling: Cooling
    state: RuntimeState
    target: int
    cycles: int
    corrections: int
    # Fan state observed on the previous cycle; starts at the target.
    last_observed: int | None

    def __init__(
        self,
        config: Config,
        cooling: Cooling,
        state: RuntimeState,
        target: int,
    ) -> None:
        self.config = config
        self.cooling = cooling
        self.state = state
        self.target = target
        self.cycles = 0
        self.corrections = 0
        self.last_observed = target

    def start(self) -> None:
        """Claim the liveness record and open a fresh event log."""
        pid = os.getpid()
        self.state.record_liveness(pid)
        self.state.reset_log()
        self.state.append_event("Daemon started (PID: %d)" % pid)
        self.state.append_event("Target speed: %d" % self.target)
        self.state.append_event(LOG_DELIMITER)

    def cycle(self) -> None:
        """Run one convergence cycle."""
        new_target = self.state.read_target()
        if new_target is not None and new_target != self.target:
            self.state.append_event(
                "Speed change: %d -> %d" % (self.target, new_target)
            )
            self.target = new_target
            self.corrections = 0

        current = self.cooling.read_current_state()
        if current != self.target:
            _ = self.cooling.write_state(self.target)
            self.corrections += 1
            if current != self.last_observed:
                self.state.append_event(
                    "Firmware changed: %s -> %s, restoring to %d"
                    % (_fmt_state(self.last_observed), _fmt_state(current), self.target)
                )

        if self.cycles % self.config.rewrite_every == 0:
            _ = self.cooling.write_state(self.target)

        self.last_observed = current
        self.cycles += 1

        if self.cycles % self.config.heartbeat_every == 0:
            self.state.append_event(
                "Active - %d cycles, %d°C, %d corrections"
                % (self.cycles, self.cooling.read_temperature(), self.corrections)
            )

    def run(self) -> None:
        """Cycle forever. Only a signal ends this."""
        while True:
            try:
                self.cycle()
            except Exception:
                log.exception("Convergence cycle failed")
            time.sleep(self.config.check_interval_seconds)


def run_daemon(
    config: ConvergenceLoop.Config,
    cooling: Cooling,
    state: RuntimeState,
    target: int,
    log_file: str | os.PathLike[str] | None = None,
) -> None:
    """Entry point of the detached daemon process. Does not return."""
    _ = signal.signal(signal.SIGHUP, signal.SIG_IGN)
    loop = config.setup(cooling, state, target)
    loop.start()
    if log_file is not None:
        handler = logging.FileHandler(log_file)
        handler.setFormatter(
            logging.Formatter("[%(asctime)s] %(message)s", datefmt="%H:%M:%S")
        )
        log.handlers[:] = [handler]
        log.propagate = False
    loop.run()
