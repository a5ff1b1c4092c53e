# SPDX-License-Identifier: LGPL-3.0-or-later
# -*- coding: utf-8 -*-
# smbios2iso/__main__.py
from __future__ import annotations

import sys
import traceback
from typing import Any, Optional, Sequence

from .cli.args import parse_args_with_config
from .cli.commands import dispatch
from .core.exceptions import (
    EXIT_INTERRUPTED,
    Smbios2IsoError,
    exit_code_for,
    format_exception_for_cli,
)


def _print_stderr(msg: str) -> None:
    print(msg, file=sys.stderr)


def _safe_log(logger: Any, level: str, msg: str) -> None:
    if logger is None:
        _print_stderr(msg)
        return
    fn = getattr(logger, level, None)
    if callable(fn):
        fn(msg)
    else:
        _print_stderr(msg)


def main(argv: Optional[Sequence[str]] = None) -> None:
    logger: Optional[Any] = None

    # Phase 1: parse (config and validation errors can happen here)
    try:
        args, _conf, logger = parse_args_with_config(argv)
    except Smbios2IsoError as e:
        _safe_log(logger, "error", f"💥 {format_exception_for_cli(e)}")
        raise SystemExit(exit_code_for(e))
    except KeyboardInterrupt:
        _safe_log(logger, "warning", "Interrupted by user (Ctrl+C).")
        raise SystemExit(EXIT_INTERRUPTED)

    verbose = getattr(args, "verbose", 0)

    # Phase 2: run the command
    try:
        rc = dispatch(args, logger)
    except Smbios2IsoError as e:
        _safe_log(logger, "error", f"💥 {format_exception_for_cli(e, verbose=max(1, verbose))}")
        if args.log_file:
            _safe_log(logger, "error", f"Log file: {args.log_file}")
        rc = exit_code_for(e)
    except KeyboardInterrupt:
        _safe_log(logger, "warning", "Interrupted by user (Ctrl+C).")
        rc = EXIT_INTERRUPTED
    except Exception as e:
        _safe_log(logger, "error", f"💥 UNHANDLED {type(e).__name__}: {e}")
        _safe_log(logger, "debug", traceback.format_exc())
        rc = exit_code_for(e)

    raise SystemExit(rc)


if __name__ == "__main__":
    main()
