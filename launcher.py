"""Spawning and signalling the daemon process.

A launched daemon must outlive the invoking shell: it runs in its own
session with its standard streams on /dev/null, and ignores SIGHUP.
"""

from __future__ import annotations

import logging
import subprocess
from typing import Protocol

import psutil

log = logging.getLogger("pi5-fan")


class LaunchedProcess(Protocol):
    """Handle on a spawned process (subprocess.Popen satisfies this)."""

    @property
    def pid(self) -> int: ...
    def poll(self) -> int | None: ...


class ProcessLauncher(Protocol):
    """Spawn a detached process that survives its parent and ignores SIGHUP."""

    def launch(self, argv: list[str]) -> LaunchedProcess: ...


class ProcessControl(Protocol):
    """Protocol for checking and stopping a process by PID."""

    def alive(self, pid: int) -> bool: ...
    def terminate(self, pid: int, grace_seconds: float) -> bool: ...


class DetachedLauncher:
    """Launch via subprocess in a new session with closed standard streams."""

    def launch(self, argv: list[str]) -> LaunchedProcess:
        log.debug("Launching: %s", " ".join(argv))
        return subprocess.Popen(
            argv,
            stdin=subprocess.DEVNULL,
            stdout=subprocess.DEVNULL,
            stderr=subprocess.DEVNULL,
            start_new_session=True,
            close_fds=True,
        )


class Processes:
    """Liveness checks and termination of arbitrary PIDs via psutil."""

    def alive(self, pid: int) -> bool:
        """True if pid names a running, non-zombie process."""
        try:
            return psutil.Process(pid).status() != psutil.STATUS_ZOMBIE
        except (psutil.NoSuchProcess, ValueError):
            return False
        except psutil.AccessDenied:
            # Exists but belongs to someone else.
            return True

    def terminate(self, pid: int, grace_seconds: float) -> bool:
        """SIGTERM, wait up to grace_seconds, then SIGKILL.

        Returns True once pid is gone.
        """
        try:
            proc = psutil.Process(pid)
            proc.terminate()
            try:
                _ = proc.wait(timeout=grace_seconds)
                return True
            except psutil.TimeoutExpired:
                log.debug("PID %d ignored SIGTERM, killing", pid)
            proc.kill()
            _ = proc.wait(timeout=grace_seconds)
        except psutil.NoSuchProcess:
            pass
        except psutil.AccessDenied:
            log.warning("Not permitted to signal PID %d", pid)
            return False
        except psutil.TimeoutExpired:
            log.warning("PID %d still alive after SIGKILL", pid)
            return False
        return True
