"""Unit tests for runtime_state.py."""
# pyright: basic

from __future__ import annotations

import pathlib
import re

import pytest

import runtime_state


@pytest.fixture
def state(tmp_path: pathlib.Path) -> runtime_state.FileRuntimeState:
    return runtime_state.FileRuntimeState.Config(run_dir=tmp_path).setup()


class TestLiveness:
    def test_round_trip(self, state: runtime_state.FileRuntimeState) -> None:
        state.record_liveness(4242)
        assert state.read_liveness() == 4242
        assert state.pid_path.read_text().strip() == "4242"

    def test_absent(self, state: runtime_state.FileRuntimeState) -> None:
        assert state.read_liveness() is None

    def test_clear_is_idempotent(
        self, state: runtime_state.FileRuntimeState
    ) -> None:
        state.record_liveness(1)
        state.clear_liveness()
        state.clear_liveness()
        assert not state.pid_path.exists()


class TestTarget:
    def test_round_trip(self, state: runtime_state.FileRuntimeState) -> None:
        state.write_target(3)
        assert state.read_target() == 3

    def test_partial_write_reads_absent(
        self, state: runtime_state.FileRuntimeState
    ) -> None:
        state.target_path.write_text("")
        assert state.read_target() is None

    def test_garbage_reads_absent(
        self, state: runtime_state.FileRuntimeState
    ) -> None:
        state.target_path.write_text("three\n")
        assert state.read_target() is None

    def test_clear(self, state: runtime_state.FileRuntimeState) -> None:
        state.write_target(2)
        state.clear_target()
        assert state.read_target() is None


class TestEventLog:
    def test_reset_writes_delimiter(
        self, state: runtime_state.FileRuntimeState
    ) -> None:
        state.log_path.write_text("old session\n")
        state.reset_log()
        assert state.log_path.read_text() == runtime_state.LOG_DELIMITER + "\n"

    def test_append_stamps_time(
        self, state: runtime_state.FileRuntimeState
    ) -> None:
        state.reset_log()
        state.append_event("hello")
        last = state.tail_log(1)[0]
        assert re.fullmatch(r"\[\d{2}:\d{2}:\d{2}\] hello", last)

    def test_tail_returns_last_n_in_order(
        self, state: runtime_state.FileRuntimeState
    ) -> None:
        state.reset_log()
        for i in range(10):
            state.append_event("event %d" % i)
        tail = state.tail_log(3)
        assert [line.split("] ", 1)[1] for line in tail] == [
            "event 7",
            "event 8",
            "event 9",
        ]

    def test_tail_more_than_available(
        self, state: runtime_state.FileRuntimeState
    ) -> None:
        state.reset_log()
        state.append_event("only")
        assert len(state.tail_log(30)) == 2

    def test_tail_missing_log(self, state: runtime_state.FileRuntimeState) -> None:
        with pytest.raises(FileNotFoundError):
            state.tail_log(5)

    def test_tail_zero_lines(self, state: runtime_state.FileRuntimeState) -> None:
        state.reset_log()
        assert state.tail_log(0) == []


class TestClearAll:
    def test_removes_everything(
        self, state: runtime_state.FileRuntimeState
    ) -> None:
        state.record_liveness(1)
        state.write_target(2)
        state.reset_log()
        state.clear_all()
        assert not state.pid_path.exists()
        assert not state.target_path.exists()
        assert not state.log_path.exists()

    def test_nothing_to_remove(self, state: runtime_state.FileRuntimeState) -> None:
        state.clear_all()


def test_default_paths() -> None:
    state = runtime_state.FileRuntimeState.Config().setup()
    assert state.pid_path == pathlib.Path("/tmp/pi5_fan_control.pid")
    assert state.target_path == pathlib.Path("/tmp/pi5_fan_target_speed")
    assert state.log_path == pathlib.Path("/tmp/pi5_fan_control.log")
