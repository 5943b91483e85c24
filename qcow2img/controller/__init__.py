# SPDX-License-Identifier: LGPL-3.0-or-later
# qcow2img/controller/__init__.py
"""Conversion lifecycle: state machine, observable state, subprocess plumbing."""

from .controller import ConversionController
from .events import ConversionState, LogEntry, LogSource, Status

__all__ = ["ConversionController", "ConversionState", "LogEntry", "LogSource", "Status"]
