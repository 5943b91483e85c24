# SPDX-License-Identifier: LGPL-3.0-or-later
from __future__ import annotations

import re
from dataclasses import dataclass
from enum import Enum
from typing import List, Optional, Union

from ...core.paths import infer_source_format, normalize_path


class TargetFormat(str, Enum):
    RAW = "raw"
    QCOW2 = "qcow2"

    @classmethod
    def parse(cls, value: Union[str, "TargetFormat"]) -> "TargetFormat":
        if isinstance(value, TargetFormat):
            return value
        v = normalize_path(str(value)).lower()
        # accept the output extension too ("img" means raw)
        if v in ("img", ".img"):
            return cls.RAW
        if v.startswith("."):
            v = v[1:]
        return cls(v)


@dataclass(frozen=True)
class ConversionRequest:
    input_path: str
    output_path: str
    tool_path: str
    target_format: TargetFormat = TargetFormat.RAW

    @property
    def source_format(self) -> str:
        return infer_source_format(self.input_path)

    def normalized(self) -> "ConversionRequest":
        return ConversionRequest(
            input_path=normalize_path(self.input_path),
            output_path=normalize_path(self.output_path),
            tool_path=normalize_path(self.tool_path),
            target_format=self.target_format,
        )


class Convert:
    """
    qemu-img convert invocation + progress protocol.

    qemu-img -p redraws a line like "    (45.23/100%)" on every step. Any other
    "<number>%" token is accepted as well; the first token on a line wins.
    """

    # "N%" or qemu-img's native "N/100%"
    _RE_PERCENT = re.compile(r"(\d+(?:\.\d+)?)(?:/100)?%")
    # qemu-img -p terminates progress lines with bare \r
    _RE_LINE_BREAK = re.compile(r"\r\n|\r|\n")

    @staticmethod
    def build_convert_args(request: ConversionRequest) -> List[str]:
        """Arguments after the executable, in the exact order qemu-img expects."""
        return [
            "convert",
            "-p",
            "-f",
            request.source_format,
            "-O",
            TargetFormat.parse(request.target_format).value,
            request.input_path,
            request.output_path,
        ]

    @staticmethod
    def build_convert_cmd(request: ConversionRequest) -> List[str]:
        return [request.tool_path] + Convert.build_convert_args(request)

    @staticmethod
    def describe_cmd(request: ConversionRequest) -> str:
        return f'Running: "{request.tool_path}" ' + " ".join(Convert.build_convert_args(request))

    @staticmethod
    def extract_percent(line: str) -> Optional[float]:
        """First percentage token on the line, unclamped; None when there is none."""
        m = Convert._RE_PERCENT.search(line or "")
        if not m:
            return None
        try:
            return float(m.group(1))
        except ValueError:
            return None

    @staticmethod
    def clamp_percent(value: float) -> float:
        return max(0.0, min(100.0, float(value)))

    @staticmethod
    def parse_progress(line: str) -> Optional[float]:
        pct = Convert.extract_percent(line)
        return None if pct is None else Convert.clamp_percent(pct)

    @staticmethod
    def split_lines(text: str) -> List[str]:
        return Convert._RE_LINE_BREAK.split(text)
