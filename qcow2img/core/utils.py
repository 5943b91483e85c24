# SPDX-License-Identifier: LGPL-3.0-or-later
# -*- coding: utf-8 -*-
# qcow2img/core/utils.py
from __future__ import annotations

import json
import logging
import shlex
from typing import Any, List, NoReturn, Optional

from .exceptions import Fatal


class U:
    @staticmethod
    def die(logger: logging.Logger, msg: str, code: int = 1) -> NoReturn:
        logger.error(msg)
        raise Fatal(code, msg)

    @staticmethod
    def which(prog: str) -> Optional[str]:
        from shutil import which as _which
        return _which(prog)

    @staticmethod
    def json_dump(obj: Any) -> str:
        try:
            return json.dumps(obj, indent=2, sort_keys=True, default=str)
        except Exception:
            return repr(obj)

    @staticmethod
    def pretty_cmd(cmd: List[str]) -> str:
        return " ".join(shlex.quote(x) for x in cmd)

