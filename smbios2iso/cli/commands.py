# SPDX-License-Identifier: LGPL-3.0-or-later
# -*- coding: utf-8 -*-
# smbios2iso/cli/commands.py
"""
One function per subcommand: `(args, logger) -> exit code`.

Errors are raised, not printed; main() turns them into exit codes.
"""
from __future__ import annotations

import argparse
import logging
import sys
from pathlib import Path
from typing import Callable, Dict

from ..config.build_config import BuildConfig
from ..core.exceptions import EXIT_OK
from ..core.logger import Log
from ..identity.generator import IdentityGenerator, write_identity_json
from ..identity.local import LocalIdentitySource, MacserialPairSource, SerialTable
from ..identity.model import IdentityRecord
from ..identity.remote import RemoteIdentitySource
from ..image.builder import FilesystemImageBuilder
from ..orchestrator.orchestrator import BuildOrchestrator
from ..plist.mutator import DocumentMutator
from ..proxmox.client import ProxmoxClient, VmSpec, default_storage


def cmd_identity(args: argparse.Namespace, logger: logging.Logger) -> int:
    table = SerialTable.load(Path(args.serial_table) if args.serial_table else None)
    macserial = MacserialPairSource(logger, Path(args.macserial)) if args.macserial else None
    local = LocalIdentitySource(logger, table=table, macserial=macserial)
    remote = None
    if not args.offline:
        remote = RemoteIdentitySource(logger, endpoint=args.endpoint, timeout=args.timeout)

    gen = IdentityGenerator(logger, remote=remote, local=local, offline=args.offline)
    record = gen.generate(args.model, exclude_dirs=[Path(d) for d in args.exclude_dir])

    if args.out:
        path = write_identity_json(record, Path(args.out))
        Log.ok(logger, f"Identity written to {path}")
    else:
        sys.stdout.write(record.to_json())
    return EXIT_OK


def cmd_inject(args: argparse.Namespace, logger: logging.Logger) -> int:
    record = IdentityRecord.from_json_file(Path(args.identity_json))
    result = DocumentMutator(logger).mutate(Path(args.plist), record, backup=args.backup)
    if result.backup is not None:
        logger.info("Backup: %s", result.backup)
    Log.ok(logger, f"SMBIOS values injected into {result.document}")
    return EXIT_OK


def cmd_boot_img(args: argparse.Namespace, logger: logging.Logger) -> int:
    builder = FilesystemImageBuilder(
        logger,
        volume_label=args.label,
        mount_root=Path(args.mount_root) if args.mount_root else None,
    )
    builder.build(Path(args.efi_dir), Path(args.output))
    return EXIT_OK


def cmd_build(args: argparse.Namespace, logger: logging.Logger) -> int:
    config = BuildConfig(
        efi_source=Path(args.efi_source),
        identity_json=Path(args.smbios_json),
        output_dir=Path(args.output_dir),
        script_root=Path(args.script_dir).resolve(),
        temp_root=Path(args.tmpdir) if args.tmpdir else None,
        output_name_file=Path(args.output_name_file) if args.output_name_file else None,
        keep_workdir=args.keep_workdir,
        create_backup=not args.no_backup,
    )
    descriptor = BuildOrchestrator(logger, config, compute_checksum=not args.no_checksum).build_custom_image()
    if config.output_name_file is None:
        # Callers capture stdout for the ISO name; everything else goes to stderr.
        print(descriptor.name)
    return EXIT_OK


def cmd_create_vm(args: argparse.Namespace, logger: logging.Logger) -> int:
    px = ProxmoxClient(logger)
    px.check()

    vmid = args.vmid if args.vmid is not None else px.next_vmid()
    storage = args.storage or default_storage(px.storages("images")).name  # type: ignore[union-attr]
    iso_storage = args.iso_storage or default_storage(px.storages("iso")).name  # type: ignore[union-attr]
    installer = args.installer_iso or f"{args.macos.lower()}.iso"

    installer_size = None
    try:
        installer_path = px.iso_dir(iso_storage) / installer
        if installer_path.is_file():
            installer_size = f"{-(-installer_path.stat().st_size // (1024 * 1024))}M"
    except OSError as e:
        logger.debug("Could not stat installer ISO: %s", e)

    spec = VmSpec(
        vmid=vmid,
        name=args.name or f"macOS-{args.macos}",
        storage=storage,
        iso_storage=iso_storage,
        opencore_iso=args.iso,
        installer_iso=installer,
        disk_size_gb=args.disk_size,
        cores=args.cores,
        memory_mb=args.memory,
        bridge=args.bridge,
        macos=args.macos,
        installer_size=installer_size,
    )
    px.create_vm(spec)
    print(vmid)
    return EXIT_OK


COMMANDS: Dict[str, Callable[[argparse.Namespace, logging.Logger], int]] = {
    "identity": cmd_identity,
    "inject": cmd_inject,
    "boot-img": cmd_boot_img,
    "build": cmd_build,
    "create-vm": cmd_create_vm,
}


def dispatch(args: argparse.Namespace, logger: logging.Logger) -> int:
    return COMMANDS[args.cmd](args, logger)
