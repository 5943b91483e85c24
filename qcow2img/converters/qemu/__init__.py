# SPDX-License-Identifier: LGPL-3.0-or-later
# qcow2img/converters/qemu/__init__.py
"""
QEMU-based conversion utilities.

- converter: qemu-img convert argument building and progress parsing
"""

from .converter import Convert, ConversionRequest, TargetFormat

__all__ = ["Convert", "ConversionRequest", "TargetFormat"]
