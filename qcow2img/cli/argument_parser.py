# SPDX-License-Identifier: LGPL-3.0-or-later
# -*- coding: utf-8 -*-
# qcow2img/cli/argument_parser.py
from __future__ import annotations

import argparse
import logging
import sys
from pathlib import Path
from typing import Any, Dict, Optional, Sequence, Tuple

from ..config.config_loader import Config
from ..converters.qemu.converter import TargetFormat
from ..core.exceptions import Fatal
from ..core.logger import Log, c
from ..core.paths import default_tool_path, normalize_path, output_in_directory, suggest_output_path
from ..core.utils import U
from .help_texts import YAML_EXAMPLE


class HelpFormatter(argparse.RawDescriptionHelpFormatter, argparse.ArgumentDefaultsHelpFormatter):
    """Combines raw description formatting with default value display in help."""


def _format_choice(value: str) -> str:
    try:
        return TargetFormat.parse(value).value
    except ValueError:
        raise argparse.ArgumentTypeError(f"invalid target format {value!r} (choose raw or qcow2)")


def build_parser() -> argparse.ArgumentParser:
    from .. import __version__

    p = argparse.ArgumentParser(
        prog="qcow2img",
        description=c("qcow2img: convert disk images between raw (.img) and QCOW2 with qemu-img", "green", ["bold"]),
        formatter_class=HelpFormatter,
        epilog=c("YAML example:\n", "cyan", ["bold"]) + c(YAML_EXAMPLE, "cyan"),
    )

    g = p.add_argument_group("Global config/logging")
    g.add_argument(
        "--config",
        action="append",
        default=[],
        help="YAML/JSON config file (repeatable; later overrides earlier).",
    )
    g.add_argument("--dump-config", action="store_true", help="Print merged normalized config and exit.")
    g.add_argument("--dump-args", action="store_true", help="Print final parsed args and exit.")
    g.add_argument("--version", action="version", version=__version__)
    g.add_argument("-v", "--verbose", action="count", default=0, help="Verbosity: -v, -vv, -vvv")
    g.add_argument("-q", "--quiet", action="count", default=0, help="Less output: -q, -qq")
    g.add_argument("--log-file", dest="log_file", default=None, help="Write logs to file.")
    g.add_argument("--json-logs", dest="json_logs", action="store_true", help="Emit logs as NDJSON.")
    g.add_argument("--no-color", dest="no_color", action="store_true", help="Disable colored log lines.")
    g.add_argument("--log-utc", dest="log_utc", action="store_true", help="Log timestamps in UTC.")

    conv = p.add_argument_group("Conversion")
    conv.add_argument("input", nargs="?", default=None, help="Source image (.qcow2, .img, .raw).")
    conv.add_argument(
        "-o",
        "--output",
        dest="output",
        default=None,
        help="Output image or an existing folder. Default: next to the input, with .img (raw) or .qcow2 extension.",
    )
    conv.add_argument(
        "-t",
        "--to",
        dest="to",
        type=_format_choice,
        default=TargetFormat.RAW.value,
        help="Target format: raw or qcow2.",
    )
    conv.add_argument(
        "--qemu-img",
        dest="qemu_img",
        default=default_tool_path(),
        help="Path to the qemu-img executable (env QCOW2IMG_QEMU_IMG).",
    )
    conv.add_argument(
        "--show-progress-lines",
        dest="show_progress_lines",
        action="store_true",
        help="Also print qemu-img's raw progress lines.",
    )
    return p


def _build_preparser() -> argparse.ArgumentParser:
    pre = argparse.ArgumentParser(add_help=False)
    pre.add_argument("--config", action="append", default=[])
    pre.add_argument("-v", "--verbose", action="count", default=0)
    pre.add_argument("-q", "--quiet", action="count", default=0)
    pre.add_argument("--log-file", dest="log_file", default=None)
    pre.add_argument("--json-logs", dest="json_logs", action="store_true")
    pre.add_argument("--no-color", dest="no_color", action="store_true")
    pre.add_argument("--log-utc", dest="log_utc", action="store_true")
    pre.add_argument("--dump-config", action="store_true")
    pre.add_argument("--dump-args", action="store_true")
    return pre


_LOGGING_DESTS = ("verbose", "quiet", "log_file", "json_logs", "no_color", "log_utc")


def _logging_options(ns: argparse.Namespace) -> Tuple[Any, ...]:
    return tuple(getattr(ns, d, None) for d in _LOGGING_DESTS)


def _setup_logging(ns: argparse.Namespace) -> logging.Logger:
    return Log.setup(
        int(getattr(ns, "verbose", 0) or 0),
        getattr(ns, "log_file", None),
        quiet=int(getattr(ns, "quiet", 0) or 0),
        json_logs=bool(getattr(ns, "json_logs", False)),
        color=not getattr(ns, "no_color", False),
        utc=bool(getattr(ns, "log_utc", False)),
    )


def _load_merged_config(logger: logging.Logger, cfgs: Sequence[str]) -> Dict[str, Any]:
    if not cfgs:
        return {}
    expanded = Config.expand_configs(logger, list(cfgs))
    return Config.load_many(logger, expanded)


def validate_args(args: argparse.Namespace) -> None:
    args.input = normalize_path(args.input)
    args.output = normalize_path(args.output)
    args.qemu_img = normalize_path(args.qemu_img) or default_tool_path()

    if not args.input:
        raise Fatal(2, "No input image given (positional INPUT or `input:` in config).")

    try:
        args.to = TargetFormat.parse(args.to).value
    except ValueError as e:
        raise Fatal(2, f"Unsupported target format: {args.to}", cause=e) from e

    if not args.output:
        args.output = suggest_output_path(args.input, args.to)
    elif Path(args.output).is_dir():
        args.output = output_in_directory(args.output, args.input, args.to)


def parse_args_with_config(
    argv: Optional[Sequence[str]] = None,
    logger: Optional[logging.Logger] = None,
) -> Tuple[argparse.Namespace, Dict[str, Any], logging.Logger]:
    """
    Flow:
      Phase 0: parse ONLY global flags needed to locate config/logging
      Phase 1: load+merge config files
      Phase 2: apply config as defaults onto the parser
      Phase 3: full parse to get final args
      Phase 4: validate and fill derived values (default output path)
    """
    if argv is None:
        argv = sys.argv[1:]
    argv = list(argv)

    parser = build_parser()

    pre = _build_preparser()
    args0, _rest = pre.parse_known_args(argv)

    own_logger = logger is None
    if logger is None:
        logger = _setup_logging(args0)

    conf = _load_merged_config(logger, getattr(args0, "config", None) or [])

    if getattr(args0, "dump_config", False):
        print(U.json_dump(conf))
        raise SystemExit(0)

    Config.apply_as_defaults(logger, parser, conf)

    args = parser.parse_args(argv)

    # config files may carry verbose/log_file/...; reconfigure with the merged values
    if own_logger and _logging_options(args) != _logging_options(args0):
        logger = _setup_logging(args)

    if getattr(args0, "dump_args", False):
        print(U.json_dump(vars(args)))
        raise SystemExit(0)

    validate_args(args)
    return args, conf, logger
