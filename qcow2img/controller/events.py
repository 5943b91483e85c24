# SPDX-License-Identifier: LGPL-3.0-or-later
# -*- coding: utf-8 -*-
# qcow2img/controller/events.py
"""
Observable state of the conversion controller.

Front-ends never touch the controller's internals; they get an immutable
ConversionState after every change and render it.
"""
from __future__ import annotations

import datetime as _dt
from dataclasses import dataclass, field
from enum import Enum
from typing import Tuple


class Status(str, Enum):
    READY = "Ready"
    RUNNING = "Running"
    DONE = "Done"
    FAILED = "Failed"
    CANCELLED = "Cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in (Status.DONE, Status.FAILED, Status.CANCELLED)


class LogSource(str, Enum):
    CONTROLLER = "controller"
    STDOUT = "stdout"
    STDERR = "stderr"


@dataclass(frozen=True)
class LogEntry:
    message: str
    source: LogSource = LogSource.CONTROLLER
    timestamp: _dt.datetime = field(default_factory=_dt.datetime.now)

    @property
    def from_tool(self) -> bool:
        return self.source is not LogSource.CONTROLLER

    def render(self) -> str:
        return f"{self.timestamp:%H:%M:%S}  {self.message}"


@dataclass(frozen=True)
class ConversionState:
    status: Status = Status.READY
    status_text: str = "Ready"
    progress: float = 0.0
    log: Tuple[LogEntry, ...] = ()

    @property
    def is_running(self) -> bool:
        return self.status is Status.RUNNING

    @property
    def is_idle(self) -> bool:
        return not self.is_running

    @property
    def progress_label(self) -> str:
        return f"{self.progress:.0f}%"

    @property
    def log_text(self) -> str:
        return "\n".join(e.render() for e in self.log)
