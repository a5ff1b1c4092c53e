# SPDX-License-Identifier: LGPL-3.0-or-later
# -*- coding: utf-8 -*-
# smbios2iso/image/backends.py
"""
Block-level capabilities behind the boot image builder.

The builder only talks to a BlockFormatter and a FilesystemMounter. The
real implementations shell out to mkfs.vfat and mount/umount (root and loop
devices required); tests swap in in-memory fakes.
"""
from __future__ import annotations

import logging
import os
import subprocess
from abc import ABC, abstractmethod
from pathlib import Path

from ..core.exceptions import BuildFailed, InsufficientTooling
from ..core.tooling import BOOT_IMAGE_TOOLS, ToolChecker
from ..core.utils import U


def _tool_failure(msg: str, e: BaseException, **ctx) -> BuildFailed:
    context = U.cmd_error_context(e)
    context.update(ctx)
    return BuildFailed(msg=f"{msg}: {e}", cause=e, context=context)


class BlockFormatter(ABC):
    @abstractmethod
    def check(self) -> None:
        """Raise InsufficientTooling if the formatter cannot run here."""

    @abstractmethod
    def format(self, image: Path, label: str) -> None:
        """Lay a single FAT16 filesystem over the whole of `image`."""


class FilesystemMounter(ABC):
    @abstractmethod
    def check(self) -> None:
        """Raise InsufficientTooling if images cannot be mounted here."""

    @abstractmethod
    def mount(self, image: Path, mountpoint: Path) -> None:
        ...

    @abstractmethod
    def unmount(self, mountpoint: Path, *, lazy: bool = False) -> None:
        ...


class MkfsVfatFormatter(BlockFormatter):
    """mkfs.vfat -F 16 -n LABEL -S 512 on the raw file (no partition table)."""

    def __init__(self, logger: logging.Logger):
        self.logger = logger
        self.tool = "mkfs.vfat"

    def check(self) -> None:
        report = ToolChecker(self.logger).require(BOOT_IMAGE_TOOLS[:1], purpose="formatting BOOT.img")
        self.tool = next(iter(report.found))

    def format(self, image: Path, label: str) -> None:
        cmd = [self.tool, "-F", "16", "-n", label, "-S", "512", str(image)]
        try:
            U.run_cmd(self.logger, cmd, timeout=120)
        except (subprocess.CalledProcessError, subprocess.TimeoutExpired, OSError) as e:
            raise _tool_failure(f"Formatting {image.name} failed", e, image=str(image)) from e


class LoopMounter(FilesystemMounter):
    """mount -o loop / umount (falls back to a lazy umount when asked)."""

    def __init__(self, logger: logging.Logger):
        self.logger = logger

    def check(self) -> None:
        ToolChecker(self.logger).require(BOOT_IMAGE_TOOLS[1:], purpose="mounting BOOT.img")
        if os.geteuid() != 0:
            raise InsufficientTooling(msg="Loop-mounting BOOT.img requires root; re-run with sudo")

    def mount(self, image: Path, mountpoint: Path) -> None:
        try:
            U.run_cmd(self.logger, ["mount", "-o", "loop", str(image), str(mountpoint)], timeout=60)
        except (subprocess.CalledProcessError, subprocess.TimeoutExpired, OSError) as e:
            raise _tool_failure(f"Mounting {image.name} failed", e, mountpoint=str(mountpoint)) from e

    def unmount(self, mountpoint: Path, *, lazy: bool = False) -> None:
        cmd = ["umount", "-l", str(mountpoint)] if lazy else ["umount", str(mountpoint)]
        try:
            U.run_cmd(self.logger, cmd, timeout=60)
        except (subprocess.CalledProcessError, subprocess.TimeoutExpired, OSError) as e:
            raise _tool_failure(f"Unmounting {mountpoint} failed", e, mountpoint=str(mountpoint)) from e
