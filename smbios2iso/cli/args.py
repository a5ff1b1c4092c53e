# SPDX-License-Identifier: LGPL-3.0-or-later
# -*- coding: utf-8 -*-
# smbios2iso/cli/args.py
from __future__ import annotations

import argparse
import sys
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence, Tuple

from .. import __version__
from ..config.config_loader import Config
from ..core.exceptions import ValidationError
from ..core.logger import Log, c
from ..core.utils import U
from ..identity.local import DEFAULT_MODEL, SUPPORTED_MODELS
from ..identity.remote import DEFAULT_ENDPOINT, DEFAULT_TIMEOUT
from ..proxmox.client import SUPPORTED_MACOS

COMMANDS = ("identity", "inject", "boot-img", "build", "create-vm")
BUILD_LOG_SUBPATH = Path("logs") / "build-custom-iso.log"

EPILOG = """\
Examples:
  smbios2iso identity --model iMac19,1 --out smbios.json
  smbios2iso inject --config EFI_NEW/EFI/OC/config.plist --json smbios.json --backup
  sudo smbios2iso build --efi-source PROXMOX-EFI --smbios-json smbios.json --output-dir /var/lib/vz/template/iso
  smbios2iso create-vm --iso OpenCore-C02XXXXXXXXX.iso --installer-iso sequoia.iso --macos Sequoia

Config files (YAML or JSON, repeatable with --config) use option names as keys:
  efi_source: PROXMOX-EFI
  output_dir: /var/lib/vz/template/iso
  tmpdir: /root/smbios2iso/tmp

Exit codes: 0 ok, 1 validation, 2 build, 3 injection, 4 identity, 5 hypervisor, 130 interrupted.
"""


class HelpFormatter(argparse.RawDescriptionHelpFormatter, argparse.ArgumentDefaultsHelpFormatter):
    """Raw description plus default values in help."""


def _add_global(p: argparse.ArgumentParser) -> None:
    p.add_argument(
        "--config",
        action="append",
        default=[],
        help="YAML/JSON config file (repeatable; later overrides earlier).",
    )
    p.add_argument("--dump-config", action="store_true", help="Print merged normalized config and exit.")
    p.add_argument("--version", action="version", version=__version__)
    p.add_argument("-v", "--verbose", action="count", default=0, help="Verbosity: -v, -vv, -vvv (trace)")
    p.add_argument("-q", "--quiet", action="count", default=0, help="Less output: -q warnings, -qq errors only")
    p.add_argument("--log-file", dest="log_file", default=None, help="Write logs to file.")
    p.add_argument("--json-logs", dest="json_logs", action="store_true", help="Emit NDJSON log lines.")


def _add_identity(sub: Any) -> None:
    p = sub.add_parser("identity", help="Generate an SMBIOS identity JSON", formatter_class=HelpFormatter)
    p.add_argument("--model", default=DEFAULT_MODEL, help=f"Mac model ({', '.join(SUPPORTED_MODELS)})")
    p.add_argument("--offline", action="store_true", help="Skip the identity endpoint; use local sources only.")
    p.add_argument("--endpoint", default=DEFAULT_ENDPOINT, help="Identity endpoint URL.")
    p.add_argument("--timeout", type=float, default=DEFAULT_TIMEOUT, help="Endpoint timeout in seconds.")
    p.add_argument("--serial-table", dest="serial_table", default=None, help="YAML serial table (default: bundled).")
    p.add_argument("--macserial", default=None, help="Path to a macserial binary (tried before the table).")
    p.add_argument(
        "--exclude-dir",
        dest="exclude_dir",
        action="append",
        default=[],
        help="Directory of existing OpenCore-<serial>.iso files whose serials must not be reused (repeatable).",
    )
    p.add_argument("--out", default=None, help="Write identity JSON here (default: stdout).")


def _add_inject(sub: Any) -> None:
    p = sub.add_parser("inject", help="Inject an identity into config.plist in place", formatter_class=HelpFormatter)
    p.add_argument("--config", dest="plist", required=True, help="OpenCore config.plist to edit.")
    p.add_argument("--json", dest="identity_json", required=True, help="Identity JSON file.")
    p.add_argument("--backup", action="store_true", help="Keep <file>.backup-YYYYmmdd-HHMMSS next to the plist.")


def _add_boot_img(sub: Any) -> None:
    p = sub.add_parser("boot-img", help="Build a FAT16 BOOT.img from an EFI directory", formatter_class=HelpFormatter)
    p.add_argument("efi_dir", help="EFI directory to pack (copied into the image root under its own name).")
    p.add_argument("output", help="Image file to write.")
    p.add_argument("--label", default="OPENCORE", help="FAT volume label.")
    p.add_argument("--mount-root", dest="mount_root", default=None, help="Where private mount points are created.")


def _add_build(sub: Any) -> None:
    p = sub.add_parser("build", help="Build a per-VM OpenCore ISO", formatter_class=HelpFormatter)
    p.add_argument("--efi-source", dest="efi_source", default=None, help="EFI source directory (relative to --script-dir).")
    p.add_argument("--processor", default=None, help=argparse.SUPPRESS)
    p.add_argument("--smbios-json", dest="smbios_json", default=None, help="Identity JSON file.")
    p.add_argument("--output-dir", dest="output_dir", default=None, help="Directory receiving OpenCore-<serial>.iso.")
    p.add_argument("--script-dir", dest="script_dir", default=".", help="Project root (Supporting_Tools/, COPYRIGHT.md, logs/).")
    p.add_argument("--tmpdir", default=None, help="Root for the temporary build directory (default: system temp).")
    p.add_argument("--output-name-file", dest="output_name_file", default=None, help="Write the ISO file name here instead of stdout.")
    p.add_argument("--keep-workdir", dest="keep_workdir", action="store_true", help="Leave the build directory behind (debugging).")
    p.add_argument("--no-backup", dest="no_backup", action="store_true", help="Do not keep a config.plist backup in the build.")
    p.add_argument("--no-checksum", dest="no_checksum", action="store_true", help="Skip the SHA-256 of the finished ISO.")


def _add_create_vm(sub: Any) -> None:
    p = sub.add_parser("create-vm", help="Create a Proxmox VM booting the ISO", formatter_class=HelpFormatter)
    p.add_argument("--vmid", type=int, default=None, help="VM id (default: next free id).")
    p.add_argument("--name", default=None, help="VM name (default: macOS-<macos>).")
    p.add_argument("--storage", default=None, help="Disk storage (default: active storage with most free space).")
    p.add_argument("--iso-storage", dest="iso_storage", default=None, help="ISO storage (default: largest ISO storage).")
    p.add_argument("--iso", required=True, help="OpenCore ISO file name in the ISO storage.")
    p.add_argument("--installer-iso", dest="installer_iso", default=None, help="Installer ISO name (default: <macos>.iso).")
    p.add_argument("--disk-size", dest="disk_size", type=int, default=64, help="System disk size in GB.")
    p.add_argument("--cores", type=int, default=4)
    p.add_argument("--memory", type=int, default=8192, help="RAM in MB.")
    p.add_argument("--bridge", default="vmbr0")
    p.add_argument("--macos", default=SUPPORTED_MACOS[0], choices=list(SUPPORTED_MACOS))


def build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(
        prog="smbios2iso",
        description=c("smbios2iso: per-VM OpenCore ISO builder", "green", ["bold"]),
        formatter_class=HelpFormatter,
        epilog=EPILOG,
    )
    _add_global(p)
    sub = p.add_subparsers(dest="cmd", metavar="COMMAND")
    sub.required = True
    _add_identity(sub)
    _add_inject(sub)
    _add_boot_img(sub)
    _add_build(sub)
    _add_create_vm(sub)
    return p


def _build_preparser() -> argparse.ArgumentParser:
    pre = argparse.ArgumentParser(add_help=False)
    pre.add_argument("--config", action="append", default=[])
    pre.add_argument("-v", "--verbose", action="count", default=0)
    pre.add_argument("-q", "--quiet", action="count", default=0)
    pre.add_argument("--log-file", dest="log_file", default=None)
    pre.add_argument("--json-logs", dest="json_logs", action="store_true")
    pre.add_argument("--dump-config", action="store_true")
    return pre


def _global_part(argv: Sequence[str]) -> List[str]:
    """Tokens before the subcommand; `inject --config` must not be read as a config file."""
    out: List[str] = []
    for tok in argv:
        if tok in COMMANDS:
            break
        out.append(tok)
    return out


def _load_merged_config(logger: Any, cfgs: Sequence[str]) -> Dict[str, Any]:
    if not cfgs:
        return {}
    expanded = Config.expand_configs(logger, list(cfgs))
    return Config.load_many(logger, expanded)


def validate_args(args: argparse.Namespace) -> None:
    if args.cmd == "build":
        if args.processor:
            if args.efi_source:
                raise ValidationError(msg="--processor and --efi-source are mutually exclusive")
            args.efi_source = f"Processor_EFIs/{args.processor}"
        missing = [
            flag
            for flag, value in (
                ("--efi-source", args.efi_source),
                ("--smbios-json", args.smbios_json),
                ("--output-dir", args.output_dir),
                ("--script-dir", args.script_dir),
            )
            if not value
        ]
        if missing:
            raise ValidationError(msg=f"build: missing required option(s): {', '.join(missing)}")
    elif args.cmd == "identity":
        if args.timeout <= 0:
            raise ValidationError(msg=f"--timeout must be positive (got {args.timeout})")
    elif args.cmd == "create-vm":
        for flag, value in (("--disk-size", args.disk_size), ("--cores", args.cores), ("--memory", args.memory)):
            if value <= 0:
                raise ValidationError(msg=f"{flag} must be positive (got {value})")


def default_log_file(args: argparse.Namespace) -> Optional[str]:
    if args.log_file:
        return args.log_file
    if args.cmd == "build" and args.script_dir:
        return str(Path(args.script_dir).expanduser() / BUILD_LOG_SUBPATH)
    return None


def parse_args_with_config(
    argv: Optional[Sequence[str]] = None,
    logger: Any = None,
) -> Tuple[argparse.Namespace, Dict[str, Any], Any]:
    """
    Flow:
      Phase 0: parse only the global flags needed to locate config/logging
      Phase 1: load+merge config files
      Phase 2: apply config as defaults onto the parser
      Phase 3: full parse
      Phase 4: validate, then re-point logging at the command's log file
    """
    if argv is None:
        argv = sys.argv[1:]
    argv = list(argv)

    parser = build_parser()

    pre = _build_preparser()
    args0, _rest = pre.parse_known_args(_global_part(argv))

    owns_logger = logger is None
    if owns_logger:
        logger = Log.setup(
            args0.verbose,
            args0.log_file,
            quiet=args0.quiet,
            json_logs=args0.json_logs,
        )

    conf = _load_merged_config(logger, args0.config or [])

    if args0.dump_config:
        print(U.json_dump(conf))
        raise SystemExit(0)

    Config.apply_as_defaults(logger, parser, conf)

    args = parser.parse_args(argv)
    validate_args(args)

    log_file = default_log_file(args)
    if owns_logger and log_file and log_file != args0.log_file:
        logger = Log.setup(args.verbose, log_file, quiet=args.quiet, json_logs=args.json_logs)
    args.log_file = log_file

    if args.cmd == "build" and args.processor:
        logger.warning("--processor is deprecated, use --efi-source instead (using %s)", args.efi_source)

    return args, conf, logger
