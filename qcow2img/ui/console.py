# SPDX-License-Identifier: LGPL-3.0-or-later
# -*- coding: utf-8 -*-
# qcow2img/ui/console.py
"""
Terminal front-end: a rich progress bar plus the conversion log.

It only observes ConversionState snapshots and issues start/cancel on the
controller, the same contract a windowed front-end would use.
"""
from __future__ import annotations

import asyncio
import signal
from typing import Any, Optional

from rich.console import Console
from rich.panel import Panel
from rich.progress import (
    BarColumn,
    Progress,
    TaskID,
    TaskProgressColumn,
    TextColumn,
    TimeElapsedColumn,
)

from ..controller.controller import ConversionController
from ..controller.events import ConversionState, Status
from ..converters.qemu.converter import Convert

_STATUS_STYLE = {
    Status.DONE: "green",
    Status.FAILED: "red",
    Status.CANCELLED: "yellow",
}


class ConsoleFrontend:
    def __init__(
        self,
        controller: ConversionController,
        *,
        console: Optional[Console] = None,
        show_progress_lines: bool = False,
    ) -> None:
        self.controller = controller
        self.console = console or Console(stderr=False)
        # qemu-img -p prints one line per step; keep them out of the terminal unless asked
        self.show_progress_lines = bool(show_progress_lines)

        self._progress: Optional[Progress] = None
        self._task: Optional[TaskID] = None
        self._printed = 0

    def _print(self, text: str, style: Optional[str] = None) -> None:
        con = self._progress.console if self._progress is not None else self.console
        con.print(text, style=style, markup=False, highlight=False)

    def render(self, state: ConversionState) -> None:
        if len(state.log) < self._printed:
            # log was cleared for a new run
            self._printed = 0

        for entry in state.log[self._printed:]:
            if entry.from_tool and not self.show_progress_lines and Convert.parse_progress(entry.message) is not None:
                continue
            self._print(entry.render(), style="dim" if entry.from_tool else None)
        self._printed = len(state.log)

        if self._progress is not None and self._task is not None:
            self._progress.update(
                self._task,
                completed=state.progress,
                description=f"{state.status_text} {state.progress_label}",
            )

    def _install_interrupt(self, loop: asyncio.AbstractEventLoop) -> bool:
        try:
            loop.add_signal_handler(signal.SIGINT, self.controller.cancel)
            return True
        except (NotImplementedError, RuntimeError, ValueError):
            # Windows event loops: Ctrl+C arrives as KeyboardInterrupt instead
            return False

    async def run(self) -> ConversionState:
        loop = asyncio.get_running_loop()
        unsubscribe = self.controller.subscribe(self.render)
        installed = self._install_interrupt(loop)
        try:
            with Progress(
                TextColumn("{task.description}"),
                BarColumn(),
                TaskProgressColumn(),
                TimeElapsedColumn(),
                console=self.console,
                transient=False,
            ) as progress:
                self._progress = progress
                self._task = progress.add_task("Ready", total=100.0)
                state = await self.controller.start()
                self.render(state)
        finally:
            self._progress = None
            self._task = None
            unsubscribe()
            if installed:
                loop.remove_signal_handler(signal.SIGINT)

        self.show_result(state)
        return state

    def show_result(self, state: ConversionState) -> None:
        if not state.status.is_terminal:
            return
        style = _STATUS_STYLE.get(state.status, "white")
        body = f"{state.status_text}  ({state.progress_label})"
        self.console.print(Panel(body, title=f"qemu-img convert: {state.status.value}", border_style=style, expand=False))


def run_console(controller: ConversionController, **kwargs: Any) -> ConversionState:
    """Blocking helper: run one conversion with the console front-end."""
    return asyncio.run(ConsoleFrontend(controller, **kwargs).run())
