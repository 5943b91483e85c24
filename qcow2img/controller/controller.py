# SPDX-License-Identifier: LGPL-3.0-or-later
# -*- coding: utf-8 -*-
# qcow2img/controller/controller.py
from __future__ import annotations

import asyncio
import logging
from dataclasses import replace
from pathlib import Path
from typing import Callable, List, Optional, Union

from ..converters.qemu.converter import Convert, ConversionRequest, TargetFormat
from ..core.exceptions import LaunchError, ValidationError
from ..core.logger import LOGGER_NAME, Log
from ..core.paths import (
    default_tool_path,
    normalize_path,
    output_in_directory,
    resolve_tool_path,
    suggest_output_path,
)
from ..core.utils import U
from .events import ConversionState, LogEntry, LogSource, Status
from .process import QueueItem, kill_process_tree, pump_lines, spawn

Listener = Callable[[ConversionState], None]


class ConversionController:
    """
    Drives one qemu-img conversion at a time.

    Ready -> Running -> Done | Failed | Cancelled -> (idle again)

    The controller is the only writer of ConversionState. Output lines from
    both pipes arrive through one asyncio.Queue and are applied by a single
    consumer task on the controller's event loop, so listeners are always
    called from that loop.

    start() never raises for conversion problems: every failure ends in a
    terminal status plus a log entry.
    """

    def __init__(
        self,
        *,
        tool_path: Optional[str] = None,
        target_format: Union[str, TargetFormat] = TargetFormat.RAW,
        logger: Optional[logging.Logger] = None,
        exit_grace_s: float = 5.0,
    ) -> None:
        self.logger = logger or logging.getLogger(LOGGER_NAME)
        self.exit_grace_s = float(exit_grace_s)

        self._input_path = ""
        self._output_path = ""
        self._tool_path = normalize_path(tool_path) or default_tool_path()
        self._target_format = TargetFormat.parse(target_format)

        self._state = ConversionState()
        self._listeners: List[Listener] = []

        self._process: Optional[asyncio.subprocess.Process] = None
        self._cancel_event: Optional[asyncio.Event] = None
        self._loop: Optional[asyncio.AbstractEventLoop] = None

    # ------------------------------------------------------------------
    # Input fields
    # ------------------------------------------------------------------

    @property
    def input_path(self) -> str:
        return self._input_path

    @input_path.setter
    def input_path(self, value: Optional[str]) -> None:
        self._input_path = normalize_path(value)
        self._update_output_from_input()

    @property
    def output_path(self) -> str:
        return self._output_path

    @output_path.setter
    def output_path(self, value: Optional[str]) -> None:
        self._output_path = normalize_path(value)

    @property
    def tool_path(self) -> str:
        return self._tool_path

    @tool_path.setter
    def tool_path(self, value: Optional[str]) -> None:
        self._tool_path = normalize_path(value)

    @property
    def target_format(self) -> TargetFormat:
        return self._target_format

    @target_format.setter
    def target_format(self, value: Union[str, TargetFormat]) -> None:
        self._target_format = TargetFormat.parse(value)
        self._update_output_from_input()

    def choose_output_directory(self, directory: Optional[str]) -> None:
        """Put the output in `directory`, named after the input (or "output")."""
        folder = normalize_path(directory)
        if folder:
            self._output_path = output_in_directory(folder, self._input_path, self._target_format.value)

    def _update_output_from_input(self) -> None:
        suggested = suggest_output_path(self._input_path, self._target_format.value)
        if suggested:
            self._output_path = suggested

    def build_request(self) -> ConversionRequest:
        return ConversionRequest(
            input_path=self._input_path,
            output_path=self._output_path,
            tool_path=self._tool_path,
            target_format=self._target_format,
        )

    # ------------------------------------------------------------------
    # Observation
    # ------------------------------------------------------------------

    @property
    def state(self) -> ConversionState:
        return self._state

    @property
    def is_running(self) -> bool:
        return self._state.is_running

    @property
    def can_start(self) -> bool:
        if not self._state.is_idle:
            return False
        try:
            self.validate(self.build_request())
        except ValidationError:
            return False
        return True

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        """Register `listener` for state changes; returns an unsubscribe callable."""
        self._listeners.append(listener)

        def _unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return _unsubscribe

    def _publish(self) -> None:
        state = self._state
        for listener in list(self._listeners):
            try:
                listener(state)
            except Exception as e:
                self.logger.debug(f"state listener raised: {type(e).__name__}: {e}")

    def _set(self, **changes) -> None:
        self._state = replace(self._state, **changes)
        self._publish()

    def _append(self, message: str, *, source: LogSource = LogSource.CONTROLLER) -> None:
        # the run log is the user-facing record; the logger only mirrors it
        self.logger.debug(f"[{source.value}] {message}")
        self._set(log=self._state.log + (LogEntry(message=message, source=source),))

    # ------------------------------------------------------------------
    # Validation
    # ------------------------------------------------------------------

    @staticmethod
    def validate(request: ConversionRequest) -> str:
        """
        Check a (normalized) request; returns the resolved tool path.
        Raises ValidationError with the message shown to the user.
        """
        if not request.input_path or not Path(request.input_path).is_file():
            raise ValidationError(code=2, msg="Input file not found.", context={"input": request.input_path})

        if not request.output_path:
            raise ValidationError(code=2, msg="Output path is empty.")

        try:
            TargetFormat.parse(request.target_format)
        except ValueError as e:
            raise ValidationError(code=2, msg=f"Unsupported target format: {request.target_format}", cause=e) from e

        tool = resolve_tool_path(request.tool_path)
        if tool is None:
            raise ValidationError(
                code=2,
                msg="qemu-img not found. Set the correct path.",
                context={"tool": request.tool_path},
            )
        return tool

    # ------------------------------------------------------------------
    # Commands
    # ------------------------------------------------------------------

    async def start(self, request: Optional[ConversionRequest] = None) -> ConversionState:
        """
        Run one conversion to completion and return the final state.

        `request` defaults to the controller's own fields.
        """
        if self.is_running:
            self._append("A conversion is already running.")
            return self._state

        req = (request or self.build_request()).normalized()
        try:
            tool = self.validate(req)
        except ValidationError as e:
            self._append(e.msg)
            return self._state

        req = replace(req, tool_path=tool, target_format=TargetFormat.parse(req.target_format))

        self._loop = asyncio.get_running_loop()
        self._cancel_event = asyncio.Event()

        self._state = ConversionState(status=Status.RUNNING, status_text="Running…", progress=0.0, log=())
        self._append(Convert.describe_cmd(req))
        Log.trace(self.logger, "conversion request", input=req.input_path, output=req.output_path, source_format=req.source_format)

        try:
            rc = await self._run(req)

            if self._cancel_event.is_set():
                self._append("Conversion cancelled.")
                self._set(status=Status.CANCELLED, status_text="Cancelled")
            elif rc == 0:
                self._state = replace(self._state, progress=100.0)
                self._append("Conversion completed.")
                self._set(status=Status.DONE, status_text="Done")
            else:
                self._append(f"qemu-img exited with code {rc}.")
                self._set(status=Status.FAILED, status_text=f"Failed (exit {rc})")

        except LaunchError as e:
            self._append(e.msg)
            self._set(status=Status.FAILED, status_text="Failed")

        except asyncio.CancelledError:
            # The awaiting task itself was cancelled (e.g. loop shutdown).
            self._terminate_quietly()
            self._append("Conversion cancelled.")
            self._set(status=Status.CANCELLED, status_text="Cancelled")
            raise

        except Exception as e:
            self.logger.debug("conversion fault", exc_info=True)
            self._append(f"Error: {e}")
            self._set(status=Status.FAILED, status_text="Failed")

        finally:
            self._terminate_quietly()
            self._process = None
            self._cancel_event = None
            self._loop = None

        return self._state

    def cancel(self) -> bool:
        """
        Request cancellation of the running conversion and kill the qemu-img
        process tree. Returns False when nothing is running.
        """
        if not self.is_running or self._cancel_event is None:
            return False
        if self._cancel_event.is_set():
            return True

        self._cancel_event.set()
        proc = self._process
        if proc is None:
            return True

        try:
            kill_process_tree(proc)
        except Exception as e:
            self._append(f"Error while cancelling: {e}")
        return True

    def cancel_threadsafe(self) -> None:
        """cancel() for callers outside the controller's event loop (signal handlers, UI threads)."""
        loop = self._loop
        if loop is None or loop.is_closed():
            return
        loop.call_soon_threadsafe(self.cancel)

    # ------------------------------------------------------------------
    # Run
    # ------------------------------------------------------------------

    async def _run(self, req: ConversionRequest) -> Optional[int]:
        assert self._cancel_event is not None
        cmd = Convert.build_convert_cmd(req)

        try:
            proc = await spawn(cmd)
        except (OSError, ValueError) as e:
            raise LaunchError(msg=f"Failed to start qemu-img: {e}", cause=e) from e

        self._process = proc
        self.logger.debug(f"qemu-img started (pid={proc.pid}): {U.pretty_cmd(cmd)}")

        # cancel() may have landed while we were spawning
        if self._cancel_event.is_set():
            self._terminate_quietly()

        queue: "asyncio.Queue[QueueItem]" = asyncio.Queue()
        readers = [
            asyncio.create_task(pump_lines(proc.stdout, LogSource.STDOUT, queue)),
            asyncio.create_task(pump_lines(proc.stderr, LogSource.STDERR, queue)),
        ]
        consumer = asyncio.create_task(self._consume(queue, open_streams=len(readers)))
        waiter = asyncio.create_task(proc.wait())
        cancelled = asyncio.create_task(self._cancel_event.wait())

        try:
            await asyncio.wait({waiter, cancelled}, return_when=asyncio.FIRST_COMPLETED)

            if not waiter.done():
                # Cancellation won the race; the kill was sent by cancel(),
                # still reap the process so the handle is not leaked.
                try:
                    await asyncio.wait_for(asyncio.shield(waiter), timeout=self.exit_grace_s)
                except asyncio.TimeoutError:
                    self._append("qemu-img did not exit after cancellation.")
                    return None

            rc = waiter.result()

            # Every line the tool printed is applied before the terminal status.
            _done, pending = await asyncio.wait(readers, timeout=self.exit_grace_s)
            if pending:
                self.logger.debug("output pipes still open after exit; closing readers")
                for t in pending:
                    t.cancel()
            for res in await asyncio.gather(*readers, return_exceptions=True):
                if isinstance(res, Exception):
                    self.logger.debug(f"output reader failed: {type(res).__name__}: {res}")
            await consumer
            return rc

        finally:
            for t in (cancelled, waiter, consumer, *readers):
                if not t.done():
                    t.cancel()

    async def _consume(self, queue: "asyncio.Queue[QueueItem]", *, open_streams: int) -> None:
        while open_streams > 0:
            source, line = await queue.get()
            if line is None:
                open_streams -= 1
                continue
            self._handle_line(source, line)

    def _handle_line(self, source: LogSource, line: str) -> None:
        if not line.strip():
            return
        pct = Convert.parse_progress(line)
        self.logger.debug(f"[{source.value}] {line}")
        entry = LogEntry(message=line, source=source)
        if pct is None:
            self._set(log=self._state.log + (entry,))
        else:
            self._set(log=self._state.log + (entry,), progress=pct)

    def _terminate_quietly(self) -> None:
        proc = self._process
        if proc is None or proc.returncode is not None:
            return
        try:
            kill_process_tree(proc)
        except Exception as e:
            self.logger.debug(f"terminate after run: {type(e).__name__}: {e}")
