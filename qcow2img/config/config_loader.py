# SPDX-License-Identifier: LGPL-3.0-or-later
# -*- coding: utf-8 -*-
# qcow2img/config/config_loader.py
from __future__ import annotations

import argparse
import glob
import json
import logging
from pathlib import Path
from typing import Any, Dict, List

import yaml

from ..core.exceptions import wrap_fatal
from ..core.utils import U

# config keys that don't match an argparse dest verbatim
_KEY_ALIASES = {
    "qemu-img": "qemu_img",
    "qemu_img_path": "qemu_img",
    "tool_path": "qemu_img",
    "target_format": "to",
    "format": "to",
    "output_path": "output",
    "input_path": "input",
    "log-file": "log_file",
    "json-logs": "json_logs",
}


class Config:
    """
    YAML/JSON config files used as argparse defaults.

    Merge order is the order given on the command line: later files override
    earlier ones, and explicit CLI flags override both.
    """

    @staticmethod
    def expand_configs(logger: logging.Logger, paths: List[str]) -> List[Path]:
        out: List[Path] = []
        for raw in paths:
            p = str(Path(raw).expanduser())
            matches = sorted(glob.glob(p)) if any(ch in p for ch in "*?[") else [p]
            if not matches:
                U.die(logger, f"Config pattern matched nothing: {raw}", 2)
            for m in matches:
                mp = Path(m)
                if not mp.is_file():
                    U.die(logger, f"Config file not found: {mp}", 2)
                out.append(mp)
        return out

    @staticmethod
    def load_one(logger: logging.Logger, path: Path) -> Dict[str, Any]:
        try:
            text = Path(path).read_text(encoding="utf-8")
        except OSError as e:
            raise wrap_fatal(f"Cannot read config {path}: {e}", e, code=2, path=str(path)) from e
        try:
            if path.suffix.lower() == ".json":
                data = json.loads(text) if text.strip() else {}
            else:
                data = yaml.safe_load(text) or {}
        except (yaml.YAMLError, json.JSONDecodeError) as e:
            U.die(logger, f"Invalid config {path}: {e}", 2)
        if not isinstance(data, dict):
            U.die(logger, f"Config {path} must be a mapping at the top level", 2)
        logger.debug(f"Loaded config: {path} ({len(data)} keys)")
        return Config.normalize(data)

    @staticmethod
    def normalize(data: Dict[str, Any]) -> Dict[str, Any]:
        out: Dict[str, Any] = {}
        for k, v in data.items():
            key = str(k).strip()
            key = _KEY_ALIASES.get(key, key).replace("-", "_")
            out[key] = v
        return out

    @staticmethod
    def load_many(logger: logging.Logger, paths: List[Path]) -> Dict[str, Any]:
        merged: Dict[str, Any] = {}
        for p in paths:
            merged.update(Config.load_one(logger, p))
        return merged

    @staticmethod
    def apply_as_defaults(logger: logging.Logger, parser: argparse.ArgumentParser, conf: Dict[str, Any]) -> None:
        if not conf:
            return
        known = {a.dest for a in parser._actions}
        defaults = {k: v for k, v in conf.items() if k in known}
        unknown = sorted(k for k in conf if k not in known)
        if unknown:
            logger.warning(f"Ignoring unknown config keys: {', '.join(unknown)}")
        parser.set_defaults(**defaults)
        logger.debug(f"Config defaults applied: {U.json_dump(defaults)}")
