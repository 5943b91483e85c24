# SPDX-License-Identifier: LGPL-3.0-or-later
# -*- coding: utf-8 -*-
# qcow2img/__init__.py
"""
qcow2img - raw <-> QCOW2 disk image conversion through qemu-img

Usage as a library:

    import asyncio
    from qcow2img import ConversionController

    ctl = ConversionController(target_format="qcow2")
    ctl.input_path = "/images/disk.img"
    ctl.subscribe(lambda state: print(state.progress_label, state.status_text))
    final = asyncio.run(ctl.start())
"""

__version__ = "0.1.0"

from .controller import ConversionController, ConversionState, LogEntry, Status
from .converters import Convert, ConversionRequest, TargetFormat
from .core.paths import infer_source_format, normalize_path

__all__ = [
    "__version__",
    "ConversionController",
    "ConversionState",
    "LogEntry",
    "Status",
    "Convert",
    "ConversionRequest",
    "TargetFormat",
    "infer_source_format",
    "normalize_path",
]
