# SPDX-License-Identifier: LGPL-3.0-or-later
# -*- coding: utf-8 -*-
# qcow2img/converters/__init__.py
"""Disk conversion and format handling."""

from .qemu.converter import Convert, ConversionRequest, TargetFormat

__all__ = ["Convert", "ConversionRequest", "TargetFormat"]
