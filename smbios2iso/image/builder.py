# SPDX-License-Identifier: LGPL-3.0-or-later
# -*- coding: utf-8 -*-
# smbios2iso/image/builder.py
from __future__ import annotations

import fcntl
import logging
import os
import tempfile
import uuid
from dataclasses import dataclass
from pathlib import Path
from typing import IO, Optional

from ..core.exceptions import BuildFailed, InsufficientTooling, Smbios2IsoError
from ..core.file_ops import copy_tree_contents, safe_unlink
from ..core.logger import Log
from ..core.utils import U
from .backends import BlockFormatter, FilesystemMounter, LoopMounter, MkfsVfatFormatter
from .sizing import MIN_IMAGE_MB, image_size_mb, source_size_kb

_ZERO_CHUNK = b"\0" * (1024 * 1024)


@dataclass
class BootImageResult:
    path: Path
    size_mb: int
    source_kb: int
    files: int


class FilesystemImageBuilder:
    """
    Builds BOOT.img: one FAT16 filesystem over a zero-filled raw file, holding
    a copy of the EFI tree.

    Steps: size, allocate, format, mount, copy, verify, sync, unmount. Any
    failure unmounts (lazily if needed), removes the private mount point and
    deletes the partial image before BuildFailed propagates. Nothing is
    retried.
    """

    def __init__(
        self,
        logger: logging.Logger,
        *,
        formatter: Optional[BlockFormatter] = None,
        mounter: Optional[FilesystemMounter] = None,
        volume_label: str = "OPENCORE",
        check_subpath: str = "EFI/OC/config.plist",
        mount_root: Optional[Path] = None,
        build_id: Optional[str] = None,
    ) -> None:
        self.logger = logger
        self.formatter = formatter or MkfsVfatFormatter(logger)
        self.mounter = mounter or LoopMounter(logger)
        self.volume_label = volume_label
        self.check_subpath = check_subpath
        self.mount_root = Path(mount_root) if mount_root else None
        self.build_id = build_id or uuid.uuid4().hex[:8]

    # ------------------------------------------------------------------
    # mount point
    # ------------------------------------------------------------------

    def check(self) -> None:
        """Raise InsufficientTooling before anything is written if formatting or mounting cannot work here."""
        self.formatter.check()
        self.mounter.check()

    def _make_mountpoint(self) -> Path:
        mp = Path(
            tempfile.mkdtemp(
                prefix=f"smbios2iso-mnt-{os.getpid()}-{self.build_id}-",
                dir=str(self.mount_root) if self.mount_root else None,
            )
        )
        self.logger.debug("Mount point: %s", mp)
        return mp

    @staticmethod
    def _lock(mp: Path) -> IO[str]:
        fp = open(f"{mp}.lock", "w", encoding="utf-8")
        try:
            fcntl.flock(fp.fileno(), fcntl.LOCK_EX | fcntl.LOCK_NB)
        except OSError:
            fp.close()
            raise
        fp.write(f"{os.getpid()}\n")
        fp.flush()
        return fp

    @staticmethod
    def _unlock(mp: Path, fp: Optional[IO[str]]) -> None:
        if fp is None:
            return
        fcntl.flock(fp.fileno(), fcntl.LOCK_UN)
        fp.close()
        safe_unlink(Path(f"{mp}.lock"))

    def _release_mountpoint(self, mp: Path, lock_fp: Optional[IO[str]]) -> None:
        """Remove an unmounted mount point and its lock; failures only warn."""
        try:
            os.rmdir(mp)
        except OSError as e:
            self.logger.warning("Could not remove mount point %s: %s", mp, e)
        try:
            self._unlock(mp, lock_fp)
        except OSError as e:
            self.logger.warning("Could not release lock for %s: %s", mp, e)

    # ------------------------------------------------------------------
    # steps
    # ------------------------------------------------------------------

    @staticmethod
    def _allocate(path: Path, size_mb: int) -> None:
        with open(path, "wb") as f:
            for _ in range(size_mb):
                f.write(_ZERO_CHUNK)
            f.flush()
            os.fsync(f.fileno())

    def build(self, source_tree: Path, output_path: Path) -> BootImageResult:
        source_tree = Path(source_tree)
        output_path = Path(output_path)
        log = Log.bind(self.logger, image=output_path.name)

        if not source_tree.is_dir():
            raise BuildFailed(msg=f"Boot payload directory not found: {source_tree}")

        self.check()

        src_kb = source_size_kb(source_tree)
        size_mb = image_size_mb(src_kb)
        log.info("Payload %s KiB -> image %s MiB (20%% overhead, %s MiB floor)", src_kb, size_mb, MIN_IMAGE_MB)

        mp: Optional[Path] = None
        lock_fp: Optional[IO[str]] = None
        mounted = False
        files = 0
        try:
            try:
                self._allocate(output_path, size_mb)
            except OSError as e:
                raise BuildFailed(msg=f"Cannot allocate {output_path}: {e}", cause=e) from e

            self.formatter.format(output_path, self.volume_label)
            Log.trace(log, "Formatted %s as FAT16 label=%s", output_path, self.volume_label)

            try:
                mp = self._make_mountpoint()
                lock_fp = self._lock(mp)
            except OSError as e:
                raise BuildFailed(msg=f"Cannot create private mount point: {e}", cause=e) from e

            self.mounter.mount(output_path, mp)
            mounted = True

            try:
                files = copy_tree_contents(source_tree, mp / source_tree.name)
            except OSError as e:
                raise BuildFailed(msg=f"Copying {source_tree} into the image failed: {e}", cause=e) from e

            if not (mp / self.check_subpath).is_file():
                raise BuildFailed(
                    msg=f"{self.check_subpath} missing inside the image after copy",
                    context={"check": self.check_subpath},
                )
            log.info("Copied %d file(s) into %s", files, output_path.name)

            os.sync()
            self.mounter.unmount(mp)
            mounted = False
            self._release_mountpoint(mp, lock_fp)
            mp, lock_fp = None, None

            if not output_path.is_file() or output_path.stat().st_size == 0:
                raise BuildFailed(msg=f"{output_path} is empty after build")

        except BaseException as e:
            self._cleanup(output_path, mp, lock_fp, mounted)
            if isinstance(e, (BuildFailed, InsufficientTooling)) or not isinstance(e, Exception):
                raise
            if isinstance(e, Smbios2IsoError):
                raise BuildFailed(msg=str(e), cause=e, context=e.context) from e
            raise BuildFailed(msg=f"Building {output_path.name} failed: {e}", cause=e) from e

        Log.ok(log, f"{output_path.name} ready ({U.human_bytes(output_path.stat().st_size)})")
        return BootImageResult(path=output_path, size_mb=size_mb, source_kb=src_kb, files=files)

    def _cleanup(self, output: Path, mp: Optional[Path], lock_fp: Optional[IO[str]], mounted: bool) -> None:
        if mp is not None and mounted:
            try:
                self.mounter.unmount(mp)
            except BuildFailed as e:
                self.logger.warning("umount failed (%s); trying lazy unmount", e)
                try:
                    self.mounter.unmount(mp, lazy=True)
                except BuildFailed as e2:
                    Log.fail(self.logger, f"Could not unmount {mp}: {e2}")
        if mp is not None:
            self._release_mountpoint(mp, lock_fp)
        safe_unlink(output)
        self.logger.debug("Removed partial image %s", output)
