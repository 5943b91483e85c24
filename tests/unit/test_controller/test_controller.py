# SPDX-License-Identifier: LGPL-3.0-or-later
"""
Conversion controller tests.

Subprocess tests run a fake qemu-img (a small Python script) so the whole
launch -> stream -> exit path is exercised without real disk images.
"""
from __future__ import annotations

import asyncio
import logging
import os
import signal
import time
from pathlib import Path
from typing import List
from unittest.mock import Mock

import pytest

from fakes.fake_qemu_img import make_fake_qemu_img
from qcow2img.controller.controller import ConversionController
from qcow2img.controller.events import ConversionState, LogSource, Status
from qcow2img.converters.qemu.converter import ConversionRequest, TargetFormat

posix_only = pytest.mark.skipif(os.name == "nt", reason="fake qemu-img is a shebang script")


def _controller(tool, **kw) -> ConversionController:
    return ConversionController(tool_path=str(tool), logger=logging.getLogger("qcow2img.test"), **kw)


def _input(tmp_path: Path, name: str = "disk.qcow2") -> Path:
    p = tmp_path / name
    p.write_bytes(b"QFI\xfb")
    return p


def _alive(pid: int) -> bool:
    try:
        os.kill(pid, 0)
    except ProcessLookupError:
        return False
    stat = Path(f"/proc/{pid}/stat")
    if stat.exists():
        try:
            # zombies still answer kill(0)
            return stat.read_text().rsplit(")", 1)[1].split()[0] != "Z"
        except (OSError, IndexError):
            return False
    return True


def _wait_dead(pid: int, timeout: float = 5.0) -> bool:
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if not _alive(pid):
            return True
        time.sleep(0.05)
    return not _alive(pid)


def _reap(pid: int) -> None:
    try:
        os.kill(pid, signal.SIGKILL)
    except ProcessLookupError:
        pass


def _tool_entries(state: ConversionState) -> List[str]:
    return [e.message for e in state.log if e.from_tool]


class _Recorder:
    def __init__(self) -> None:
        self.states: List[ConversionState] = []

    def __call__(self, state: ConversionState) -> None:
        self.states.append(state)

    @property
    def statuses(self) -> List[Status]:
        return [s.status for s in self.states]


@pytest.mark.unit
class TestFields:
    def test_input_sets_suggested_output(self, tmp_path):
        ctl = ConversionController(tool_path="qemu-img")
        ctl.input_path = f'  "{tmp_path / "disk.qcow2"}" '
        assert ctl.input_path == str(tmp_path / "disk.qcow2")
        assert ctl.output_path == str(tmp_path / "disk.img")

        ctl.target_format = "qcow2"
        assert ctl.output_path == str(tmp_path / "disk.qcow2")

    def test_explicit_output_after_input(self, tmp_path):
        ctl = ConversionController(tool_path="qemu-img")
        ctl.input_path = str(tmp_path / "disk.qcow2")
        ctl.output_path = ' "/elsewhere/out.img" '
        assert ctl.output_path == "/elsewhere/out.img"

    def test_choose_output_directory(self, tmp_path):
        ctl = ConversionController(tool_path="qemu-img", target_format="qcow2")
        ctl.choose_output_directory(str(tmp_path))
        assert ctl.output_path == str(tmp_path / "output.qcow2")

        ctl.input_path = "/vm/guest.img"
        ctl.choose_output_directory(f'"{tmp_path}"')
        assert ctl.output_path == str(tmp_path / "guest.qcow2")

        ctl.choose_output_directory("  ")
        assert ctl.output_path == str(tmp_path / "guest.qcow2")

    def test_build_request(self, tmp_path):
        ctl = ConversionController(tool_path="/usr/bin/qemu-img", target_format=TargetFormat.QCOW2)
        ctl.input_path = str(tmp_path / "a.img")
        req = ctl.build_request()
        assert req.tool_path == "/usr/bin/qemu-img"
        assert req.target_format is TargetFormat.QCOW2
        assert req.source_format == "raw"

    def test_cancel_when_idle_is_noop(self):
        ctl = ConversionController(tool_path="qemu-img")
        assert ctl.cancel() is False
        ctl.cancel_threadsafe()
        assert ctl.state.log == ()


@pytest.mark.unit
class TestValidation:
    def test_missing_input_never_runs(self, tmp_path):
        ctl = _controller(tmp_path / "qemu-img")
        rec = _Recorder()
        ctl.subscribe(rec)
        ctl.input_path = str(tmp_path / "missing.qcow2")

        state = asyncio.run(ctl.start())

        assert state.status is Status.READY
        assert Status.RUNNING not in rec.statuses
        assert len(state.log) == 1
        assert state.log[0].message == "Input file not found."

    def test_run_log_is_mirrored_at_debug_only(self, tmp_path):
        logger = Mock(spec=logging.Logger)
        ctl = ConversionController(tool_path=str(tmp_path / "qemu-img"), logger=logger)
        ctl.input_path = str(tmp_path / "missing.qcow2")

        asyncio.run(ctl.start())

        logger.debug.assert_any_call("[controller] Input file not found.")
        logger.info.assert_not_called()
        logger.warning.assert_not_called()
        logger.error.assert_not_called()

    def test_empty_output(self, tmp_path):
        ctl = _controller(tmp_path / "qemu-img")
        req = ConversionRequest(str(_input(tmp_path)), "   ", str(tmp_path / "qemu-img"), TargetFormat.RAW)
        state = asyncio.run(ctl.start(req))
        assert [e.message for e in state.log] == ["Output path is empty."]

    def test_missing_tool_is_prevalidated(self, tmp_path):
        ctl = _controller(tmp_path / "no-such-qemu-img")
        ctl.input_path = str(_input(tmp_path))
        assert ctl.can_start is False

        state = asyncio.run(ctl.start())
        assert state.status is Status.READY
        assert [e.message for e in state.log] == ["qemu-img not found. Set the correct path."]

    def test_bad_target_format(self, tmp_path):
        tool = tmp_path / "qemu-img"
        tool.write_text("", encoding="utf-8")
        req = ConversionRequest(str(_input(tmp_path)), str(tmp_path / "o.vmdk"), str(tool), "vmdk")  # type: ignore[arg-type]
        state = asyncio.run(_controller(tool).start(req))
        assert state.status is Status.READY
        assert state.log[0].message.startswith("Unsupported target format")


@posix_only
@pytest.mark.subprocess
class TestRun:
    def test_success_forces_full_progress(self, tmp_path):
        tool = make_fake_qemu_img(tmp_path, stderr=["    (12.00/100%)\r", "    (37.00/100%)\r"], exit_code=0)
        ctl = _controller(tool)
        rec = _Recorder()
        ctl.subscribe(rec)
        src = _input(tmp_path)
        ctl.input_path = str(src)
        assert ctl.can_start

        state = asyncio.run(ctl.start())

        assert state.status is Status.DONE
        assert state.status_text == "Done"
        assert state.progress == 100.0
        assert 37.0 in [s.progress for s in rec.states]
        assert rec.statuses[0] is Status.RUNNING
        assert state.log[0].message.startswith(f'Running: "{tool}" convert -p -f qcow2 -O raw')
        assert state.log[-1].message == "Conversion completed."
        assert tool.recorded_args() == ["convert", "-p", "-f", "qcow2", "-O", "raw", str(src), str(tmp_path / "disk.img")]
        assert not ctl.is_running

    def test_nonzero_exit_fails_with_code(self, tmp_path):
        tool = make_fake_qemu_img(tmp_path, stderr=["qemu-img: Could not open 'x': Permission denied\n"], exit_code=2)
        ctl = _controller(tool)
        ctl.input_path = str(_input(tmp_path, "x.img"))

        state = asyncio.run(ctl.start())

        assert state.status is Status.FAILED
        assert state.status_text == "Failed (exit 2)"
        assert "2" in state.log[-1].message
        assert "Permission denied" in state.log_text

    def test_progress_can_decrease(self, tmp_path):
        tool = make_fake_qemu_img(tmp_path, stdout=["80%\n", "20%\n"], exit_code=1)
        ctl = _controller(tool)
        rec = _Recorder()
        ctl.subscribe(rec)
        ctl.input_path = str(_input(tmp_path))

        state = asyncio.run(ctl.start())

        progresses = [s.progress for s in rec.states]
        assert progresses.index(80.0) < progresses.index(20.0)
        assert state.progress == 20.0

    def test_out_of_range_percent_is_clamped(self, tmp_path):
        tool = make_fake_qemu_img(tmp_path, stdout=["weird 150%\n"], exit_code=3)
        ctl = _controller(tool)
        ctl.input_path = str(_input(tmp_path))
        state = asyncio.run(ctl.start())
        assert state.progress == 100.0
        assert state.status is Status.FAILED

    def test_blank_lines_dropped_and_order_kept(self, tmp_path):
        tool = make_fake_qemu_img(tmp_path, stdout=["l1\n", "\n", "l2\n", "   \n", "l3\n", "\t\n", "l4\n"])
        ctl = _controller(tool)
        ctl.input_path = str(_input(tmp_path))

        state = asyncio.run(ctl.start())

        assert _tool_entries(state) == ["l1", "l2", "l3", "l4"]
        assert all(e.source is LogSource.STDOUT for e in state.log if e.from_tool)

    def test_both_streams_are_logged(self, tmp_path):
        tool = make_fake_qemu_img(tmp_path, stdout=["out-a\n", "out-b\n"], stderr=["err-a\n", "err-b\n"])
        ctl = _controller(tool)
        ctl.input_path = str(_input(tmp_path))

        state = asyncio.run(ctl.start())

        entries = _tool_entries(state)
        assert sorted(entries) == ["err-a", "err-b", "out-a", "out-b"]
        assert entries.index("out-a") < entries.index("out-b")
        assert entries.index("err-a") < entries.index("err-b")

    def test_new_run_clears_log(self, tmp_path):
        tool = make_fake_qemu_img(tmp_path, stdout=["first\n"])
        ctl = _controller(tool)
        ctl.input_path = str(_input(tmp_path))
        asyncio.run(ctl.start())
        state = asyncio.run(ctl.start())
        assert _tool_entries(state) == ["first"]
        assert sum(1 for e in state.log if e.message.startswith("Running:")) == 1

    def test_launch_failure(self, tmp_path):
        tool = make_fake_qemu_img(tmp_path, executable=False)
        ctl = _controller(tool)
        ctl.input_path = str(_input(tmp_path))

        state = asyncio.run(ctl.start())

        assert state.status is Status.FAILED
        assert state.status_text == "Failed"
        assert state.log[-1].message.startswith("Failed to start qemu-img")
        assert not ctl.is_running

    def test_listener_errors_do_not_break_run(self, tmp_path):
        tool = make_fake_qemu_img(tmp_path, stdout=["50%\n"])
        ctl = _controller(tool)
        ctl.input_path = str(_input(tmp_path))

        def boom(_state):
            raise RuntimeError("listener bug")

        ctl.subscribe(boom)
        assert asyncio.run(ctl.start()).status is Status.DONE

    def test_unsubscribe(self, tmp_path):
        tool = make_fake_qemu_img(tmp_path)
        ctl = _controller(tool)
        rec = _Recorder()
        unsubscribe = ctl.subscribe(rec)
        unsubscribe()
        ctl.input_path = str(_input(tmp_path))
        asyncio.run(ctl.start())
        assert rec.states == []


@posix_only
@pytest.mark.subprocess
class TestCancellation:
    def test_cancel_kills_running_tool(self, tmp_path):
        tool = make_fake_qemu_img(tmp_path, stderr=["    (10.00/100%)\r"], sleep=30, exit_code=0)
        ctl = _controller(tool)
        ctl.input_path = str(_input(tmp_path))

        def cancel_on_progress(state: ConversionState) -> None:
            if state.is_running and state.progress >= 10:
                ctl.cancel()

        ctl.subscribe(cancel_on_progress)
        t0 = time.monotonic()
        state = asyncio.run(ctl.start())

        assert time.monotonic() - t0 < 20
        assert state.status is Status.CANCELLED
        assert state.status_text == "Cancelled"
        assert state.log[-1].message == "Conversion cancelled."
        assert not ctl.is_running

    def test_cancel_wins_over_clean_exit(self, tmp_path):
        tool = make_fake_qemu_img(tmp_path, stdout=["5%\n"], exit_code=0)
        ctl = _controller(tool)
        ctl.input_path = str(_input(tmp_path))

        def cancel_on_first_line(state: ConversionState) -> None:
            if state.is_running and any(e.from_tool for e in state.log):
                ctl.cancel()

        ctl.subscribe(cancel_on_first_line)
        state = asyncio.run(ctl.start())

        assert state.status is Status.CANCELLED
        assert "Conversion completed." not in state.log_text

    def test_cancel_failure_is_logged_not_fatal(self, tmp_path, monkeypatch):
        tool = make_fake_qemu_img(tmp_path, stdout=["1%\n"], sleep=0.5, exit_code=0)
        ctl = _controller(tool)
        ctl.input_path = str(_input(tmp_path))

        def refuse(_proc):
            raise PermissionError("Operation not permitted")

        monkeypatch.setattr("qcow2img.controller.controller.kill_process_tree", refuse)

        def cancel_on_first_line(state: ConversionState) -> None:
            if state.is_running and any(e.from_tool for e in state.log):
                ctl.cancel()

        ctl.subscribe(cancel_on_first_line)
        state = asyncio.run(ctl.start())

        assert state.status is Status.CANCELLED
        assert any(e.message == "Error while cancelling: Operation not permitted" for e in state.log)

    def test_second_start_while_running_is_rejected(self, tmp_path):
        tool = make_fake_qemu_img(tmp_path, stdout=["started\n"], sleep=30)
        ctl = _controller(tool)
        ctl.input_path = str(_input(tmp_path))

        async def scenario():
            first = asyncio.create_task(ctl.start())
            while not any(e.from_tool for e in ctl.state.log):
                await asyncio.sleep(0.02)
            again = await ctl.start()
            assert again.is_running
            ctl.cancel()
            return await first

        state = asyncio.run(scenario())
        assert state.status is Status.CANCELLED
        assert any(e.message == "A conversion is already running." for e in state.log)

    def test_cancel_kills_whole_process_tree(self, tmp_path):
        tool = make_fake_qemu_img(tmp_path, stdout=["started\n"], sleep=30, child_sleep=30)
        ctl = _controller(tool)
        ctl.input_path = str(_input(tmp_path))

        def cancel_on_first_line(state: ConversionState) -> None:
            if state.is_running and any(e.from_tool for e in state.log):
                ctl.cancel()

        ctl.subscribe(cancel_on_first_line)
        try:
            state = asyncio.run(ctl.start())
            assert state.status is Status.CANCELLED
            assert _wait_dead(tool.child_pid())
        finally:
            _reap(tool.child_pid())

    def test_gives_up_when_kill_has_no_effect(self, tmp_path, monkeypatch):
        tool = make_fake_qemu_img(tmp_path, stdout=["started\n"], sleep=3)
        ctl = _controller(tool, exit_grace_s=0.2)
        ctl.input_path = str(_input(tmp_path))
        pids = []

        monkeypatch.setattr("qcow2img.controller.controller.kill_process_tree", lambda _proc: None)

        def cancel_on_first_line(state: ConversionState) -> None:
            if state.is_running and any(e.from_tool for e in state.log) and not pids:
                pids.append(ctl._process.pid)
                ctl.cancel()

        ctl.subscribe(cancel_on_first_line)
        try:
            t0 = time.monotonic()
            state = asyncio.run(ctl.start())
            assert time.monotonic() - t0 < 2.5
            assert state.status is Status.CANCELLED
            assert "qemu-img did not exit after cancellation." in [e.message for e in state.log]
            assert not ctl.is_running
        finally:
            for pid in pids:
                _reap(pid)


@posix_only
@pytest.mark.subprocess
def test_pipes_held_open_after_exit_do_not_block(tmp_path):
    # a leftover child keeps stdout/stderr open after qemu-img itself exits
    tool = make_fake_qemu_img(tmp_path, stdout=["    (100.00/100%)\n"], child_sleep=4, exit_code=0)
    ctl = _controller(tool, exit_grace_s=0.3)
    ctl.input_path = str(_input(tmp_path))
    try:
        t0 = time.monotonic()
        state = asyncio.run(ctl.start())
        assert time.monotonic() - t0 < 10
        assert state.status is Status.DONE
        assert state.log[-1].message == "Conversion completed."
    finally:
        _reap(tool.child_pid())
