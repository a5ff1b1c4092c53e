# SPDX-License-Identifier: LGPL-3.0-or-later
# smbios2iso/core/exceptions.py
from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, Optional


def _safe_int(x: Any, default: int = 1) -> int:
    try:
        return int(x)
    except (TypeError, ValueError):
        return default


def _clamp_exit_code(code: int) -> int:
    if code < 0:
        return 1
    if code > 255:
        return 255
    return code


def _one_line(s: str, limit: int = 600) -> str:
    s = (s or "").strip().replace("\r", " ").replace("\n", " ")
    s = " ".join(s.split())
    return s if len(s) <= limit else (s[: limit - 3] + "...")


_SECRET_KEY_PARTS = (
    "pass",
    "secret",
    "token",
    "apikey",
    "api_key",
    "auth",
    "cookie",
    "session",
    "bearer",
    "private",
)


def _is_secret_key(k: str) -> bool:
    ks = (k or "").lower()
    return any(p in ks for p in _SECRET_KEY_PARTS)


def _format_context_compact(ctx: Dict[str, Any]) -> str:
    parts = []
    for k in sorted(ctx.keys()):
        v = ctx.get(k)
        if _is_secret_key(str(k)):
            parts.append(f"{k}=<redacted>")
        else:
            parts.append(f"{k}={v!r}")
    return ", ".join(parts)


# Process exit codes surfaced to calling automation.
EXIT_OK = 0
EXIT_VALIDATION = 1
EXIT_BUILD = 2
EXIT_INJECTION = 3
EXIT_IDENTITY = 4
EXIT_HYPERVISOR = 5
EXIT_INTERRUPTED = 130


@dataclass(eq=False)
class Smbios2IsoError(Exception):
    """
    Base project error with:
      - stable fields for reporting/JSON
      - readable __str__ (what users see)
      - an exit code the CLI hands back to the caller
    """
    code: int = 1
    msg: str = "error"
    cause: Optional[BaseException] = None
    context: Optional[Dict[str, Any]] = None

    def __post_init__(self) -> None:
        self.code = _clamp_exit_code(_safe_int(self.code, default=1))
        self.msg = _one_line(self.msg) or self.__class__.__name__
        super().__init__(self.msg)
        self.args = (self.msg,)

    def with_context(self, **ctx: Any) -> "Smbios2IsoError":
        if self.context is None:
            self.context = {}
        self.context.update(ctx)
        return self

    def user_message(self, *, include_context: bool = False, include_cause: bool = False) -> str:
        """
        Human-friendly message for CLI output/logs.
        """
        parts = [self.msg or self.__class__.__name__]

        if include_context and self.context:
            parts.append(f"[{_one_line(_format_context_compact(self.context), limit=600)}]")

        if include_cause and self.cause is not None:
            parts.append(f"(cause: {type(self.cause).__name__}: {_one_line(str(self.cause))})")

        return " ".join(parts)

    def __str__(self) -> str:
        return self.user_message(include_context=False, include_cause=False)

    def to_dict(self, *, include_cause: bool = False) -> Dict[str, Any]:
        d: Dict[str, Any] = {
            "type": self.__class__.__name__,
            "code": self.code,
            "message": self.msg,
            "context": self.context or {},
        }
        if include_cause and self.cause is not None:
            d["cause"] = {"type": type(self.cause).__name__, "message": _one_line(str(self.cause))}
        return d


@dataclass(eq=False)
class Fatal(Smbios2IsoError):
    """
    User-facing fatal error (exit code is honored by top-level main()).
    """
    pass


@dataclass(eq=False)
class ValidationError(Smbios2IsoError):
    """Bad arguments or inputs, rejected before anything is created."""

    code: int = EXIT_VALIDATION


@dataclass(eq=False)
class InsufficientTooling(Smbios2IsoError):
    """A required external tool (mkfs.vfat, mount, genisoimage, ...) is missing."""

    code: int = EXIT_VALIDATION


@dataclass(eq=False)
class IdentityUnavailable(Smbios2IsoError):
    """Both the remote endpoint and the local serial table came up empty."""

    code: int = EXIT_IDENTITY


@dataclass(eq=False)
class MalformedDocument(Smbios2IsoError):
    """config.plist lacks the structure we are about to edit."""

    code: int = EXIT_INJECTION


@dataclass(eq=False)
class MutationFailed(Smbios2IsoError):
    """A targeted edit did not verify; the document was restored."""

    code: int = EXIT_INJECTION


@dataclass(eq=False)
class BuildFailed(Smbios2IsoError):
    """
    A build step failed.

    Raised directly by the boot image builder, and by the orchestrator with
    `stage` set to the pipeline stage that failed and `cause` set to the
    underlying error.
    """

    code: int = EXIT_BUILD
    stage: Optional[str] = None


@dataclass(eq=False)
class AssemblyFailed(Smbios2IsoError):
    """The ISO packer failed or produced an empty file."""

    code: int = EXIT_BUILD


@dataclass(eq=False)
class HypervisorError(Smbios2IsoError):
    """qm / pvesh / pvesm failed or returned something unparseable."""

    code: int = EXIT_HYPERVISOR


def exit_code_for(e: BaseException) -> int:
    """Exit code for any exception reaching main()."""
    if isinstance(e, Smbios2IsoError):
        return e.code
    if isinstance(e, KeyboardInterrupt):
        return EXIT_INTERRUPTED
    return 1


def stage_failed(stage: str, exc: BaseException) -> BuildFailed:
    """
    Wrap a pipeline stage failure.

    The exit code follows the category of the cause, so a rejected input still
    exits 1 and a failed injection still exits 3. Anything else is a build failure.
    """
    err = BuildFailed(
        code=exc.code if isinstance(exc, Smbios2IsoError) else EXIT_BUILD,
        msg=f"Stage {stage} failed: {exc}",
        cause=exc,
        context={"stage": stage},
        stage=stage,
    )
    if isinstance(exc, Smbios2IsoError) and exc.context:
        for k, v in exc.context.items():
            err.context.setdefault(k, v)  # type: ignore[union-attr]
    return err


def format_exception_for_cli(e: BaseException, *, verbose: int = 0) -> str:
    """
    One-liner output for CLI.

    verbose=0: just message
    verbose=1: message + compact context (if any)
    verbose>=2: message + context + cause
    """
    if isinstance(e, Smbios2IsoError):
        return e.user_message(
            include_context=(verbose >= 1),
            include_cause=(verbose >= 2),
        )

    if verbose >= 2:
        return f"{type(e).__name__}: {_one_line(str(e))}"
    return _one_line(str(e)) or type(e).__name__
