# SPDX-License-Identifier: LGPL-3.0-or-later
# -*- coding: utf-8 -*-
# qcow2img/core/logger.py
"""
Logging for qcow2img.

One named logger ("qcow2img") with a stderr handler and an optional file
handler. Lines look like

    14:02:11 ➡️  INFO     Converting disk.qcow2 -> disk.img to=raw

or one JSON object per line with --json-logs. Extra key/value context is
passed as ``extra={"ctx": {...}}`` and appended to the line.
"""
from __future__ import annotations

import datetime as _dt
import json
import logging
import sys
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional

from termcolor import colored as _colored

TRACE = 5
if not hasattr(logging, "TRACE"):
    logging.TRACE = TRACE  # type: ignore[attr-defined]
    logging.addLevelName(TRACE, "TRACE")


def _logger_trace(self: logging.Logger, msg: str, *args, **kwargs) -> None:
    if self.isEnabledFor(TRACE):
        self._log(TRACE, msg, args, **kwargs)


if not hasattr(logging.Logger, "trace"):
    logging.Logger.trace = _logger_trace  # type: ignore[attr-defined]

LOGGER_NAME = "qcow2img"

_LEVELS = {
    # levelname: (emoji, color)
    "TRACE": ("🧬", "cyan"),
    "DEBUG": ("🔍", "blue"),
    "INFO": ("✅", "green"),
    "WARNING": ("⚠️", "yellow"),
    "ERROR": ("💥", "red"),
    "CRITICAL": ("🧨", "red"),
}

Ctx = Mapping[str, Any]


def is_tty(stream=None) -> bool:
    try:
        return bool((stream or sys.stdout).isatty())
    except (AttributeError, ValueError):
        return False


def _stderr_takes_unicode() -> bool:
    enc = getattr(sys.stderr, "encoding", None) or "utf-8"
    try:
        "✅".encode(enc)
    except (UnicodeEncodeError, LookupError):
        return False
    return True


def c(text: str, color: Optional[str] = None, attrs: Optional[List[str]] = None, *, enable: bool = True) -> str:
    """termcolor wrapper; returns `text` untouched when disabled or uncolored."""
    if not enable or not color:
        return text
    return _colored(text, color=color, attrs=attrs or [])


def _one_value(v: Any, limit: int = 240) -> str:
    s = str(v).replace("\r", "\\r").replace("\n", "\\n")
    return s if len(s) <= limit else s[: limit - 1] + "…"


def _ctx_suffix(ctx: Optional[Ctx]) -> str:
    if not ctx:
        return ""
    return " " + " ".join(f"{k}={_one_value(v)}" for k, v in sorted(ctx.items(), key=lambda kv: str(kv[0])))


@dataclass(frozen=True)
class LogStyle:
    color: bool = True
    show_ms: bool = False
    show_src: bool = False  # module:line
    utc: bool = False
    unicode: bool = True


class EmojiFormatter(logging.Formatter):
    def __init__(self, style: LogStyle):
        super().__init__()
        self._style = style

    def _clock(self, created: float) -> str:
        tz = _dt.timezone.utc if self._style.utc else None
        ts = _dt.datetime.fromtimestamp(created, tz=tz)
        return ts.strftime("%H:%M:%S.%f")[:-3] if self._style.show_ms else ts.strftime("%H:%M:%S")

    def format(self, record: logging.LogRecord) -> str:
        emoji, color = _LEVELS.get(record.levelname, ("•", None))
        if not self._style.unicode:
            emoji = "·"
        color_ok = self._style.color and is_tty(sys.stderr)

        level = c(f"{record.levelname:<8}", color, enable=color_ok)
        msg = record.getMessage()
        if record.levelno >= logging.WARNING:
            msg = c(msg, color, attrs=["bold"], enable=color_ok)

        src = f" [{record.module}:{record.lineno}]" if self._style.show_src else ""
        line = f"{self._clock(record.created)} {emoji} {level}{src} {msg}{_ctx_suffix(getattr(record, 'ctx', None))}"

        if record.exc_info:
            tb = "\n".join("  " + ln for ln in self.formatException(record.exc_info).splitlines())
            line += "\n" + c(tb, "red", enable=color_ok)
        return line


class JsonFormatter(logging.Formatter):
    """NDJSON: one object per record, for CI and log shippers."""

    def __init__(self, *, utc: bool = True):
        super().__init__()
        self._utc = bool(utc)

    def format(self, record: logging.LogRecord) -> str:
        tz = _dt.timezone.utc if self._utc else None
        obj: Dict[str, Any] = {
            "ts": _dt.datetime.fromtimestamp(record.created, tz=tz).isoformat(timespec="milliseconds"),
            "level": record.levelname,
            "logger": record.name,
            "msg": record.getMessage(),
            "module": record.module,
            "lineno": record.lineno,
        }
        ctx = getattr(record, "ctx", None)
        if ctx:
            obj["ctx"] = dict(ctx)
        if record.exc_info:
            obj["exc_type"] = record.exc_info[0].__name__ if record.exc_info[0] else "Exception"
            obj["traceback"] = self.formatException(record.exc_info)
        return json.dumps(obj, ensure_ascii=False, default=str)


class Log:
    @staticmethod
    def _level_from_flags(verbose: int, quiet: int) -> int:
        """
        -qq ERROR, -q WARNING, default INFO, -vv DEBUG, -vvv TRACE.
        Quiet wins over verbose.
        """
        if quiet >= 2:
            return logging.ERROR
        if quiet == 1:
            return logging.WARNING
        if verbose >= 3:
            return TRACE
        if verbose >= 2:
            return logging.DEBUG
        return logging.INFO

    @staticmethod
    def step(logger: logging.Logger, msg: str, **ctx: Any) -> None:
        logger.info("➡️  %s", msg, extra={"ctx": ctx} if ctx else None)

    @staticmethod
    def ok(logger: logging.Logger, msg: str, **ctx: Any) -> None:
        logger.info("✅ %s", msg, extra={"ctx": ctx} if ctx else None)

    @staticmethod
    def warn(logger: logging.Logger, msg: str, **ctx: Any) -> None:
        logger.warning("⚠️  %s", msg, extra={"ctx": ctx} if ctx else None)

    @staticmethod
    def fail(logger: logging.Logger, msg: str, **ctx: Any) -> None:
        logger.error("💥 %s", msg, extra={"ctx": ctx} if ctx else None)

    @staticmethod
    def trace(logger: logging.Logger, msg: str, *args: Any, **ctx: Any) -> None:
        logger.trace(msg, *args, extra={"ctx": ctx} if ctx else None)  # type: ignore[attr-defined]

    @staticmethod
    def setup(
        verbose: int = 0,
        log_file: Optional[str] = None,
        *,
        quiet: int = 0,
        json_logs: bool = False,
        color: bool = True,
        utc: bool = False,
        logger_name: str = LOGGER_NAME,
    ) -> logging.Logger:
        """
        (Re)configure the project logger and return it.

        Console records go to stderr; stdout belongs to the progress display.
        The file handler, when asked for, is never colored and always carries
        milliseconds and source locations. Calling setup() again replaces the
        previous handlers.
        """
        logger = logging.getLogger(logger_name)
        logger.propagate = False

        level = Log._level_from_flags(verbose, quiet)
        logger.setLevel(level)

        for h in list(logger.handlers):
            logger.removeHandler(h)
            h.close()

        unicode = _stderr_takes_unicode()

        def _formatter(console: bool) -> logging.Formatter:
            if json_logs:
                return JsonFormatter(utc=utc)
            if console:
                return EmojiFormatter(LogStyle(color=color, show_ms=verbose >= 3, show_src=verbose >= 3, utc=utc, unicode=unicode))
            return EmojiFormatter(LogStyle(color=False, show_ms=True, show_src=True, utc=utc, unicode=unicode))

        sh = logging.StreamHandler(stream=sys.stderr)
        sh.setLevel(level)
        sh.setFormatter(_formatter(console=True))
        logger.addHandler(sh)

        if log_file:
            fp = Path(log_file).expanduser().resolve()
            fp.parent.mkdir(parents=True, exist_ok=True)
            fh = logging.FileHandler(fp, encoding="utf-8")
            fh.setLevel(level)
            fh.setFormatter(_formatter(console=False))
            logger.addHandler(fh)

        logger.debug("Logger initialized (level=%s)", logging.getLevelName(level))
        Log.trace(logger, "TRACE enabled (verbose >= 3)")
        return logger
