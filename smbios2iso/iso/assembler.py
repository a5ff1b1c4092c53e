# SPDX-License-Identifier: LGPL-3.0-or-later
# -*- coding: utf-8 -*-
# smbios2iso/iso/assembler.py
from __future__ import annotations

import logging
import subprocess
from pathlib import Path
from typing import List, Optional

from ..core.exceptions import AssemblyFailed, InsufficientTooling
from ..core.file_ops import safe_unlink
from ..core.logger import Log
from ..core.tooling import ISO_PACKERS, ToolChecker
from ..core.utils import U


class DiscImageAssembler:
    """
    Packs a working directory into an El-Torito ISO whose boot catalog points
    (no emulation) at the FAT boot image inside it.

    Packer preference: genisoimage, mkisofs, then xorriso in mkisofs mode.
    A zero-byte result is a failure even when the packer exits 0.
    """

    def __init__(
        self,
        logger: logging.Logger,
        *,
        volume_id: str = "OPENCORE",
        boot_catalog: str = "boot.catalog",
        packer: Optional[str] = None,
        timeout: int = 1800,
    ) -> None:
        self.logger = logger
        self.volume_id = volume_id
        self.boot_catalog = boot_catalog
        self.packer = packer
        self.timeout = timeout

    def resolve_packer(self) -> str:
        if self.packer:
            if not U.which(self.packer):
                raise InsufficientTooling(msg=f"ISO packer not found: {self.packer}")
            return self.packer
        found = ToolChecker(self.logger).first_available(ISO_PACKERS)
        if found is None:
            raise InsufficientTooling(
                msg=f"No ISO packer found (need one of: {', '.join(ISO_PACKERS)})",
                context={"candidates": list(ISO_PACKERS)},
            )
        return found

    def check(self) -> str:
        return self.resolve_packer()

    def command(self, packer: str, working_dir: Path, output_path: Path, boot_image_rel: str) -> List[str]:
        head = [packer, "-as", "mkisofs"] if packer == "xorriso" else [packer]
        args = ["-D", "-V", self.volume_id, "-no-pad", "-r"]
        if packer != "xorriso":
            args.append("-apple")
        args += [
            "-file-mode", "0555",
            "-dir-mode", "0555",
            "-eltorito-alt-boot",
            "-e", boot_image_rel,
            "-no-emul-boot",
            "-c", self.boot_catalog,
            "-o", str(output_path),
            str(working_dir),
        ]
        return head + args

    def assemble(self, working_dir: Path, output_path: Path, boot_image_rel: str) -> Path:
        working_dir = Path(working_dir)
        output_path = Path(output_path)

        if not (working_dir / boot_image_rel).is_file():
            raise AssemblyFailed(
                msg=f"Boot image {boot_image_rel} not found in {working_dir}",
                context={"working_dir": str(working_dir)},
            )

        packer = self.resolve_packer()
        cmd = self.command(packer, working_dir, output_path, boot_image_rel)
        Log.step(self.logger, f"Packing {output_path.name} with {packer}")

        try:
            U.run_cmd(self.logger, cmd, timeout=self.timeout)
        except (subprocess.CalledProcessError, subprocess.TimeoutExpired, OSError) as e:
            safe_unlink(output_path)
            raise AssemblyFailed(
                msg=f"{packer} failed: {e}",
                cause=e,
                context=U.cmd_error_context(e),
            ) from e

        if not output_path.is_file() or output_path.stat().st_size == 0:
            safe_unlink(output_path)
            raise AssemblyFailed(msg=f"{packer} reported success but {output_path.name} is empty or missing")

        Log.ok(self.logger, f"{output_path.name} written ({U.human_bytes(output_path.stat().st_size)})")
        return output_path
