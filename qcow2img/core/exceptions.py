# SPDX-License-Identifier: LGPL-3.0-or-later
# qcow2img/core/exceptions.py
from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, Optional


def _exit_code(x: Any) -> int:
    try:
        code = int(x)
    except (TypeError, ValueError):
        return 1
    # process exit codes are 0..255
    if code < 0:
        return 1
    return min(code, 255)


def _one_line(s: str, limit: int = 600) -> str:
    s = " ".join((s or "").split())
    return s if len(s) <= limit else s[: limit - 3] + "..."


@dataclass(eq=False)
class Qcow2ImgError(Exception):
    """
    Base error. `msg` is what the user sees, `code` the process exit code
    main() should use, `context` optional key/values for verbose output.
    """
    code: int = 1
    msg: str = "error"
    cause: Optional[BaseException] = None
    context: Optional[Dict[str, Any]] = None

    def __post_init__(self) -> None:
        self.code = _exit_code(self.code)
        self.msg = _one_line(self.msg) or self.__class__.__name__
        super().__init__(self.msg)
        self.args = (self.msg,)

    def user_message(self, *, include_context: bool = False, include_cause: bool = False) -> str:
        parts = [self.msg]
        if include_context and self.context:
            parts.append("[" + _one_line(", ".join(f"{k}={v!r}" for k, v in sorted(self.context.items()))) + "]")
        if include_cause and self.cause is not None:
            parts.append(f"(cause: {type(self.cause).__name__}: {_one_line(str(self.cause))})")
        return " ".join(parts)

    def __str__(self) -> str:
        return self.msg


class Fatal(Qcow2ImgError):
    """CLI or config problem; main() exits with `code`."""


class ValidationError(Qcow2ImgError):
    """
    A conversion request was rejected before anything was launched.
    The controller stays idle.
    """


class LaunchError(Qcow2ImgError):
    """qemu-img could not be started."""


def wrap_fatal(msg: str, exc: Optional[BaseException] = None, code: int = 1, **context: Any) -> Fatal:
    return Fatal(code=code, msg=msg, cause=exc, context=context or None)


def format_exception_for_cli(e: BaseException, *, verbose: int = 0) -> str:
    """
    One line for the terminal.

    verbose=0: message
    verbose=1: message + context
    verbose>=2: message + context + cause
    """
    if isinstance(e, Qcow2ImgError):
        return e.user_message(include_context=verbose >= 1, include_cause=verbose >= 2)
    if verbose >= 2:
        return f"{type(e).__name__}: {_one_line(str(e))}"
    return _one_line(str(e)) or type(e).__name__
