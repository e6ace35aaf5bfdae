#!/usr/bin/env python3
"""
Hold a Raspberry Pi 5 fan at a fixed speed against firmware resets.

The Pi 5 firmware rewrites the cooling device state on its own schedule.
`pi5-fan --speed N` starts a detached daemon that puts the requested state
back within one check interval whenever that happens, and logs every
override it sees.

Usage:
    sudo pi5-fan --speed 3     # hold speed 3
    sudo pi5-fan --status      # fan and daemon status
    sudo pi5-fan --logs 50     # last 50 daemon log lines
    sudo pi5-fan --stop        # stop, firmware takes over again
"""

from __future__ import annotations

import argparse
import functools
import logging
import os
import pathlib
import re
import sys
import time
from typing import NoReturn, cast

import colorama
from colorama import Fore, Style

from convergence import ConvergenceLoop, run_daemon
from cooling import COOLING_DEVICE, THERMAL_ZONE, Cooling, SysfsCooling
from launcher import DetachedLauncher, Processes
from runtime_state import RUN_DIR, FileRuntimeState
from supervisor import SUCCESS, DaemonSupervisor, Status

log = logging.getLogger("pi5-fan")

DEFAULT_LOG_LINES = 30
STATUS_DELAY_SECONDS = 2.0
RULE = "═" * 40

SPEED_LEVELS = """\
Speed levels (typical):
  0 = Off (silent, CPU up to ~60°C)
  1 = Low (quiet, CPU ~50-60°C)
  2 = Medium (moderate, CPU ~40-50°C)
  3 = High (audible, CPU ~35-45°C)
  4 = Max (loud, maximum cooling)
"""


class SetupError(Exception):
    """Missing hardware or insufficient privilege."""


class ColorFormatter(logging.Formatter):
    """Render records as '[LEVEL] message' with a colored tag."""

    COLORS = {
        logging.DEBUG: Style.DIM,
        logging.INFO: Fore.BLUE,
        SUCCESS: Fore.GREEN,
        logging.WARNING: Fore.YELLOW,
        logging.ERROR: Fore.RED,
        logging.CRITICAL: Fore.RED,
    }

    def format(self, record: logging.LogRecord) -> str:
        color = self.COLORS.get(record.levelno, "")
        return "%s[%s]%s %s" % (
            color,
            record.levelname,
            Style.RESET_ALL,
            record.getMessage(),
        )


def setup_logging(verbose: bool = False) -> None:
    """Route INFO/SUCCESS to stdout and WARNING and above to stderr."""
    out = logging.StreamHandler(sys.stdout)
    out.addFilter(lambda record: record.levelno < logging.WARNING)
    err = logging.StreamHandler(sys.stderr)
    err.setLevel(logging.WARNING)
    for handler in (out, err):
        handler.setFormatter(ColorFormatter())
    log.handlers[:] = [out, err]
    log.setLevel(logging.DEBUG if verbose else logging.INFO)
    log.propagate = False


class Parser(argparse.ArgumentParser):
    """ArgumentParser that prints usage and exits 1 on bad input."""

    def error(self, message: str) -> NoReturn:
        log.error(message)
        self.print_help(sys.stderr)
        sys.exit(1)


def build_parser() -> Parser:
    p = Parser(
        prog="pi5-fan",
        description="Hold the Raspberry Pi 5 fan at a fixed speed.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  pi5-fan --speed 3          # Maintain speed at 3 permanently
  pi5-fan --status           # Show current status
  pi5-fan --logs 50          # Show 50 log lines
  pi5-fan --stop             # Stop and return to automatic mode

Notes:
  - The daemon survives SSH disconnections
  - Firmware resets are undone within one check interval
  - Without arguments, status is shown

"""
        + SPEED_LEVELS,
    )
    actions = p.add_mutually_exclusive_group()
    _ = actions.add_argument(
        "--speed",
        metavar="N",
        help="Maintain fan speed at N (0 to max_state).",
    )
    _ = actions.add_argument(
        "--stop",
        action="store_true",
        help="Stop daemon and return to automatic mode.",
    )
    _ = actions.add_argument(
        "--status",
        action="store_true",
        help="Show current fan status.",
    )
    _ = actions.add_argument(
        "--logs",
        nargs="?",
        type=int,
        const=DEFAULT_LOG_LINES,
        metavar="N",
        help="Show last N log lines (default: %d)." % DEFAULT_LOG_LINES,
    )
    _ = p.add_argument("--daemon", type=int, metavar="N", help=argparse.SUPPRESS)
    _ = p.add_argument(
        "--cooling-device",
        type=pathlib.Path,
        default=COOLING_DEVICE,
        help="Cooling device sysfs directory (default: %(default)s).",
    )
    _ = p.add_argument(
        "--thermal-zone",
        type=pathlib.Path,
        default=THERMAL_ZONE,
        help="Thermal zone sysfs directory (default: %(default)s).",
    )
    _ = p.add_argument(
        "--run-dir",
        type=pathlib.Path,
        default=RUN_DIR,
        help="Directory for PID, target and log files (default: %(default)s).",
    )
    _ = p.add_argument(
        "--interval",
        type=float,
        default=ConvergenceLoop.Config().check_interval_seconds,
        help="Daemon check interval in seconds (default: %(default)s).",
    )
    _ = p.add_argument(
        "-v",
        "--verbose",
        action="store_true",
        help="Print debug diagnostics.",
    )
    return p


def check_privileges(cooling: SysfsCooling) -> None:
    """Require root, or at least write access to the fan state."""
    if os.geteuid() == 0 or os.access(cooling.cur_state_path, os.W_OK):
        return
    raise SetupError("This script must be run with sudo")


def check_environment(cooling: SysfsCooling) -> None:
    directory = cooling.config.cooling_device
    if not directory.is_dir():
        raise SetupError(
            "Directory %s not found. "
            "Are you running this on a Raspberry Pi 5 with an active fan?" % directory
        )


def validate_speed(value: str, max_state: int) -> int:
    """Parse value as a fan state in [0, max_state]."""
    if not re.fullmatch(r"[0-9]+", value):
        raise ValueError("Invalid speed: '%s'" % value)
    speed = int(value)
    if speed > max_state:
        raise ValueError(
            "Speed out of range: %d (must be 0-%d)" % (speed, max_state)
        )
    return speed


def daemon_argv(
    speed: int,
    *,
    cooling_device: pathlib.Path,
    thermal_zone: pathlib.Path,
    run_dir: pathlib.Path,
    interval: float,
) -> list[str]:
    """Command line that runs this module as the daemon."""
    return [
        sys.executable,
        str(pathlib.Path(__file__).resolve()),
        "--daemon",
        str(speed),
        "--cooling-device",
        str(cooling_device),
        "--thermal-zone",
        str(thermal_zone),
        "--run-dir",
        str(run_dir),
        "--interval",
        repr(interval),
    ]


def _paint(color: str, text: object) -> str:
    return "%s%s%s" % (color, text, Style.RESET_ALL)


def print_status(status: Status) -> None:
    print("\n" + _paint(Fore.BLUE, RULE))
    print(_paint(Fore.BLUE, "   Raspberry Pi 5 Fan Status"))
    print(_paint(Fore.BLUE, RULE) + "\n")
    print("🌡️  Temperature:            " + _paint(Fore.YELLOW, "%d°C" % status.temperature))
    current = "unknown" if status.current_state is None else status.current_state
    print(
        "💨 Current speed:           %s / %d"
        % (_paint(Fore.GREEN, current), status.max_state)
    )
    if status.percentage is not None:
        print("📊 Percentage:              " + _paint(Fore.GREEN, "%d%%" % status.percentage))
    if status.active:
        print(
            "🔧 Daemon:                  %s (PID: %s)"
            % (_paint(Fore.GREEN, "Active"), status.daemon_pid)
        )
        if status.target is not None:
            print("🎯 Target speed:            " + _paint(Fore.BLUE, status.target))
        if status.recent_events:
            print("\n" + _paint(Fore.BLUE, "📋 Recent events:"))
            for line in status.recent_events:
                print("   " + line)
    else:
        print("🔧 Daemon:                  " + _paint(Fore.RED, "Inactive"))
        print("⚠️  " + _paint(Fore.YELLOW, "Firmware is in automatic control"))
    print("\n" + _paint(Fore.BLUE, RULE) + "\n")


def show_logs(state: FileRuntimeState, lines: int) -> int:
    try:
        tail = state.tail_log(lines)
    except FileNotFoundError:
        log.error("No logs found")
        return 1
    except OSError as e:
        log.error("Cannot read logs: %s", e)
        return 1
    print(_paint(Fore.BLUE, "📋 Logs (last %d lines):" % lines) + "\n")
    for line in tail:
        print(line)
    return 0


def main(argv: list[str] | None = None) -> int:
    colorama.just_fix_windows_console()
    setup_logging()
    args = build_parser().parse_args(argv)
    setup_logging(verbose=cast(bool, args.verbose))

    cooling = SysfsCooling.Config(
        cooling_device=cast(pathlib.Path, args.cooling_device),
        thermal_zone=cast(pathlib.Path, args.thermal_zone),
    ).setup()
    state = FileRuntimeState.Config(
        run_dir=cast(pathlib.Path, args.run_dir)
    ).setup()
    interval = cast(float, args.interval)

    try:
        check_privileges(cooling)
        check_environment(cooling)
    except SetupError as e:
        log.error(str(e))
        return 1

    if args.daemon is not None:
        run_daemon(
            ConvergenceLoop.Config(check_interval_seconds=interval),
            cooling,
            state,
            cast(int, args.daemon),
            log_file=state.log_path,
        )
        return 0

    supervisor = DaemonSupervisor.Config().setup(
        cooling,
        state,
        DetachedLauncher(),
        Processes(),
        functools.partial(
            daemon_argv,
            cooling_device=cooling.config.cooling_device,
            thermal_zone=cooling.config.thermal_zone,
            run_dir=state.config.run_dir,
            interval=interval,
        ),
    )

    if args.speed is not None:
        return start(supervisor, cooling, cast(str, args.speed))
    if args.stop:
        _ = supervisor.stop()
        print_status(supervisor.status())
        return 0
    if args.logs is not None:
        return show_logs(state, cast(int, args.logs))
    print_status(supervisor.status())
    return 0


def start(supervisor: DaemonSupervisor, cooling: Cooling, value: str) -> int:
    """Validate value, start the daemon and show the resulting status."""
    try:
        speed = validate_speed(value, cooling.read_max_state())
    except ValueError as e:
        log.error(str(e))
        return 1
    try:
        result = supervisor.start(speed)
    except OSError as e:
        log.error("Cannot write runtime files: %s", e)
        return 1
    if not result.ok:
        log.error("Daemon failed to start")
        if result.log_tail:
            print("Last log lines:")
            for line in result.log_tail:
                print(line)
        return 1
    log.log(SUCCESS, "Daemon started (PID: %d)", result.pid)
    time.sleep(STATUS_DELAY_SECONDS)
    print_status(supervisor.status())
    return 0


if __name__ == "__main__":
    sys.exit(main())
