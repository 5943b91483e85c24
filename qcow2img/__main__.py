# SPDX-License-Identifier: LGPL-3.0-or-later
#!/usr/bin/env python3
# -*- coding: utf-8 -*-
from __future__ import annotations

import logging
import sys
import traceback
from typing import Optional, Sequence

from .cli.argument_parser import parse_args_with_config
from .controller.controller import ConversionController
from .controller.events import Status
from .core.exceptions import Fatal, format_exception_for_cli
from .core.logger import Log
from .ui.console import run_console

# process exit codes per terminal status
EXIT_CODES = {
    Status.DONE: 0,
    Status.FAILED: 1,
    Status.CANCELLED: 130,
}
EXIT_NOT_STARTED = 2


def _print_stderr(msg: str) -> None:
    print(msg, file=sys.stderr)


def _safe_log(logger: Optional[logging.Logger], level: str, msg: str) -> None:
    if logger is None:
        _print_stderr(msg)
        return
    getattr(logger, level)(msg)


def run(args, logger: logging.Logger) -> int:
    controller = ConversionController(tool_path=args.qemu_img, target_format=args.to, logger=logger)
    controller.input_path = args.input
    controller.output_path = args.output

    Log.step(logger, f"Converting {controller.input_path} -> {controller.output_path}", to=controller.target_format.value)
    state = run_console(controller, show_progress_lines=bool(getattr(args, "show_progress_lines", False)))

    if not state.status.is_terminal:
        return EXIT_NOT_STARTED
    if state.status is Status.DONE:
        Log.ok(logger, f"Wrote {controller.output_path}")
    elif state.status is Status.FAILED:
        Log.fail(logger, state.status_text)
    else:
        Log.warn(logger, "Conversion cancelled", output=controller.output_path)
    return EXIT_CODES[state.status]


def main(argv: Optional[Sequence[str]] = None) -> None:
    logger: Optional[logging.Logger] = None

    # Phase 1: parse (Fatal can happen here)
    try:
        args, _conf, logger = parse_args_with_config(argv)
    except Fatal as e:
        _safe_log(logger, "error", format_exception_for_cli(e))
        raise SystemExit(e.code)
    except KeyboardInterrupt:
        _safe_log(logger, "warning", "Interrupted by user (Ctrl+C).")
        raise SystemExit(130)

    # Phase 2: convert
    try:
        rc = run(args, logger)
    except Fatal as e:
        _safe_log(logger, "error", format_exception_for_cli(e, verbose=args.verbose))
        rc = e.code
    except KeyboardInterrupt:
        _safe_log(logger, "warning", "Interrupted by user (Ctrl+C).")
        rc = 130
    except Exception as e:
        _safe_log(logger, "error", f"💥 UNHANDLED {type(e).__name__}: {e}")
        _safe_log(logger, "debug", traceback.format_exc())
        rc = 1

    raise SystemExit(rc)


if __name__ == "__main__":
    main()
