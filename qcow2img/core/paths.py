# SPDX-License-Identifier: LGPL-3.0-or-later
# -*- coding: utf-8 -*-
# qcow2img/core/paths.py
"""
Path helpers shared by the CLI and the conversion controller.

Everything here is pure string/path work except resolve_tool_path(),
which looks at the filesystem and PATH.
"""
from __future__ import annotations

import os
from pathlib import Path
from typing import Optional

from .utils import U

WINDOWS_DEFAULT_TOOL = r"C:\Program Files\qemu\qemu-img.exe"
POSIX_DEFAULT_TOOL = "qemu-img"
TOOL_ENV_VAR = "QCOW2IMG_QEMU_IMG"

_SOURCE_FORMAT_BY_EXT = {
    ".qcow2": "qcow2",
    ".img": "raw",
    ".raw": "raw",
}

_OUTPUT_EXT_BY_FORMAT = {
    "raw": ".img",
    "qcow2": ".qcow2",
}


def normalize_path(value: Optional[str]) -> str:
    """
    Clean up a user-entered path.

    Trims surrounding whitespace and strips an outer pair of double quotes
    (what you get from "Copy as path" on Windows). None and whitespace-only
    input give "". Repeated until stable, so normalize_path is idempotent.
    """
    if value is None:
        return ""
    s = str(value).strip()
    while len(s) >= 2 and s.startswith('"') and s.endswith('"'):
        s = s[1:-1].strip()
    return s


def infer_source_format(path: str) -> str:
    """
    Guess the qemu-img input format from the file extension.

    Best effort only: unknown or missing extensions fall back to qcow2 and
    a wrong guess is reported by qemu-img itself.
    """
    ext = os.path.splitext(str(path))[1].lower()
    return _SOURCE_FORMAT_BY_EXT.get(ext, "qcow2")


def output_extension(target_format: str) -> str:
    return _OUTPUT_EXT_BY_FORMAT.get(str(target_format).lower(), ".qcow2")


def suggest_output_path(input_path: str, target_format: str) -> str:
    """<input dir>/<input stem>.img for raw, .qcow2 for qcow2; "" without an input."""
    src = normalize_path(input_path)
    if not src:
        return ""
    p = Path(src)
    if not p.stem:
        return ""
    return str(p.with_name(p.stem + output_extension(target_format)))


def output_in_directory(directory: str, input_path: str, target_format: str) -> str:
    """
    Output path for a chosen folder: <directory>/<input stem><ext>, or
    <directory>/output<ext> when there is no usable input name.
    """
    stem = Path(normalize_path(input_path)).stem.strip()
    name = (stem or "output") + output_extension(target_format)
    return str(Path(normalize_path(directory)) / name)


def default_tool_path() -> str:
    env = normalize_path(os.environ.get(TOOL_ENV_VAR))
    if env:
        return env
    return WINDOWS_DEFAULT_TOOL if os.name == "nt" else POSIX_DEFAULT_TOOL


def resolve_tool_path(tool: str) -> Optional[str]:
    """
    Return a runnable path for `tool`: the path itself when it is an existing
    file, else its PATH lookup, else None.
    """
    t = normalize_path(tool)
    if not t:
        return None
    if Path(t).is_file():
        return t
    return U.which(t)
