# SPDX-License-Identifier: LGPL-3.0-or-later
# -*- coding: utf-8 -*-
# smbios2iso/core/utils.py
from __future__ import annotations

import datetime as _dt
import hashlib
import json
import logging
import shlex
import subprocess
import sys
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Union

from rich.progress import (
    BarColumn,
    Progress,
    TextColumn,
    TimeElapsedColumn,
    TimeRemainingColumn,
    TransferSpeedColumn,
)

from .exceptions import Fatal
from .logger import TRACE

OUTPUT_TAIL_LINES = 20


class U:
    @staticmethod
    def die(logger: logging.Logger, msg: str, code: int = 1) -> None:
        logger.error(msg)
        raise Fatal(code, msg)

    @staticmethod
    def which(prog: str) -> Optional[str]:
        from shutil import which as _which
        return _which(prog)

    @staticmethod
    def now_ts() -> str:
        return _dt.datetime.now().strftime("%Y%m%d-%H%M%S")

    @staticmethod
    def json_dump(obj: Any) -> str:
        return json.dumps(obj, indent=2, sort_keys=True, default=str)

    @staticmethod
    def human_bytes(n: Optional[int]) -> str:
        if n is None:
            return "unknown"
        x = float(n)
        for unit in ["B", "KiB", "MiB", "GiB", "TiB"]:
            if x < 1024 or unit == "TiB":
                return f"{x:.2f} {unit}" if unit != "B" else f"{int(x)} {unit}"
            x /= 1024
        return f"{n} B"

    @staticmethod
    def _pretty_cmd(cmd: List[str]) -> str:
        return " ".join(shlex.quote(str(x)) for x in cmd)

    @staticmethod
    def output_tail(text: Optional[str], lines: int = OUTPUT_TAIL_LINES) -> str:
        if not text:
            return ""
        return "\n".join(U.to_text(text).rstrip().splitlines()[-lines:])

    @staticmethod
    def cmd_error_context(e: BaseException) -> Dict[str, Any]:
        """exit_code + output_tail for a failed external command."""
        if isinstance(e, subprocess.CalledProcessError):
            out = "\n".join(x for x in (U.to_text(e.stdout or e.output), U.to_text(e.stderr)) if x)
            return {"exit_code": e.returncode, "output_tail": U.output_tail(out)}
        if isinstance(e, subprocess.TimeoutExpired):
            return {"exit_code": 124, "output_tail": U.output_tail(U.to_text(e.output))}
        return {"exit_code": None, "output_tail": str(e)}

    @staticmethod
    def run_cmd(
        logger: logging.Logger,
        cmd: List[str],
        *,
        check: bool = True,
        capture: bool = True,
        env: Optional[Dict[str, str]] = None,
        timeout: Optional[int] = None,
        cwd: Optional[Union[str, Path]] = None,
        input_text: Optional[str] = None,
        fatal: bool = False,
    ) -> subprocess.CompletedProcess:
        """
        Run a command.

        - capture=True collects stdout/stderr as text (logged on failure)
        - fatal=True wraps failures into Fatal (otherwise re-raises subprocess exceptions)
        """
        pretty = U._pretty_cmd(cmd)
        logger.debug("Running: %s", pretty)

        try:
            cp = subprocess.run(
                [str(x) for x in cmd],
                check=check,
                capture_output=capture,
                text=True,
                env=env,
                timeout=timeout,
                cwd=str(cwd) if cwd is not None else None,
                input=input_text,
            )
            if capture and cp.stdout:
                logger.log(TRACE, "stdout: %s", cp.stdout.rstrip())
            return cp

        except subprocess.CalledProcessError as e:
            stdout = (e.stdout or e.output or "").strip()
            stderr = (e.stderr or "").strip()
            if stdout or stderr:
                logger.error(
                    "Command failed (rc=%s): %s%s%s",
                    e.returncode,
                    pretty,
                    f"\nstdout:\n{U.output_tail(stdout)}" if stdout else "",
                    f"\nstderr:\n{U.output_tail(stderr)}" if stderr else "",
                )
            else:
                logger.error("Command failed (rc=%s): %s (no output)", e.returncode, pretty)

            if fatal:
                raise Fatal(e.returncode or 1, f"Command failed: {pretty}") from e
            raise

        except subprocess.TimeoutExpired as e:
            logger.error("Command timed out: %s (timeout=%ss)", pretty, timeout)
            if fatal:
                raise Fatal(124, f"Command timed out: {pretty}") from e
            raise

        except OSError as e:
            logger.error("Command error: %s (%s)", pretty, e)
            if fatal:
                raise Fatal(1, f"Command error: {pretty}: {e}") from e
            raise

    @staticmethod
    def checksum(path: Path, algo: str = "sha256") -> str:
        h = hashlib.new(algo)
        total_size = path.stat().st_size
        chunk = 1024 * 1024

        def _iter_blocks(f) -> Iterable[bytes]:
            while True:
                b = f.read(chunk)
                if not b:
                    break
                yield b

        if not sys.stderr.isatty():
            with open(path, "rb") as f:
                for blk in _iter_blocks(f):
                    h.update(blk)
            return h.hexdigest()

        with Progress(
            TextColumn("[progress.description]{task.description}"),
            BarColumn(),
            TextColumn("[progress.percentage]{task.percentage:>3.0f}%"),
            TransferSpeedColumn(),
            TimeElapsedColumn(),
            TimeRemainingColumn(),
            transient=True,
        ) as progress:
            task = progress.add_task(f"{algo} {path.name}", total=total_size)
            with open(path, "rb") as f:
                for blk in _iter_blocks(f):
                    h.update(blk)
                    progress.update(task, advance=len(blk))
        return h.hexdigest()

    @staticmethod
    def to_text(x: Any) -> str:
        if x is None:
            return ""
        if isinstance(x, bytes):
            return x.decode("utf-8", "replace")
        return str(x)
