# SPDX-License-Identifier: LGPL-3.0-or-later
# -*- coding: utf-8 -*-
# smbios2iso/orchestrator/workdir.py
"""
Build-scoped working directories.

Every build gets a fresh `oc-build-*` directory, either under a caller
supplied temp root or under the system temp dir. An exclusive fcntl lock on
`<workdir>.lock` (a sibling, so it never ends up inside the ISO) is held for
the lifetime of the build. Removal is refused unless the resolved path sits
strictly under the resolved temp root and carries the expected prefix.
"""
from __future__ import annotations

import fcntl
import logging
import os
import shutil
import tempfile
import uuid
from pathlib import Path
from typing import IO, Optional

from ..core.exceptions import BuildFailed
from ..core.file_ops import safe_unlink

WORKDIR_PREFIX = "oc-build-"


class WorkingDirectory:
    def __init__(
        self,
        logger: logging.Logger,
        *,
        temp_root: Optional[Path] = None,
        build_id: Optional[str] = None,
    ) -> None:
        self.logger = logger
        self.temp_root = Path(temp_root) if temp_root else Path(tempfile.gettempdir())
        self.build_id = build_id or uuid.uuid4().hex[:8]
        self.path: Optional[Path] = None
        self._lock_fp: Optional[IO[str]] = None
        self._explicit_root = temp_root is not None

    @property
    def lock_path(self) -> Optional[Path]:
        if self.path is None:
            return None
        return self.path.with_name(self.path.name + ".lock")

    def create(self) -> Path:
        if self.path is not None:
            raise BuildFailed(msg=f"Working directory already allocated: {self.path}")
        try:
            if self._explicit_root:
                self.temp_root.mkdir(parents=True, exist_ok=True)
                path = self.temp_root / f"{WORKDIR_PREFIX}{os.getpid()}-{self.build_id}"
                path.mkdir(mode=0o700)
            else:
                path = Path(tempfile.mkdtemp(prefix=WORKDIR_PREFIX, dir=str(self.temp_root)))
        except OSError as e:
            raise BuildFailed(
                msg=f"Failed to create build directory under {self.temp_root}: {e}",
                cause=e,
                context={"temp_root": str(self.temp_root)},
            ) from e

        self.path = path
        try:
            self._acquire()
        except OSError as e:
            shutil.rmtree(path, ignore_errors=True)
            self.path = None
            raise BuildFailed(msg=f"Cannot lock build directory {path}: {e}", cause=e) from e

        self.logger.info("📁 Build directory: %s", path)
        return path

    def _acquire(self) -> None:
        assert self.lock_path is not None
        fp = open(self.lock_path, "w", encoding="utf-8")
        try:
            fcntl.flock(fp.fileno(), fcntl.LOCK_EX | fcntl.LOCK_NB)
        except OSError:
            fp.close()
            raise
        fp.write(f"{os.getpid()}\n")
        fp.flush()
        self._lock_fp = fp

    def _release(self) -> None:
        if self._lock_fp is None:
            return
        try:
            fcntl.flock(self._lock_fp.fileno(), fcntl.LOCK_UN)
        finally:
            self._lock_fp.close()
            self._lock_fp = None
        if self.lock_path is not None:
            safe_unlink(self.lock_path)

    def is_removable(self) -> bool:
        """True only for an `oc-build-*` directory strictly under the temp root."""
        if self.path is None:
            return False
        try:
            resolved = self.path.resolve()
            root = self.temp_root.resolve()
        except OSError:
            return False
        if resolved == root or root not in resolved.parents:
            return False
        return resolved.name.startswith(WORKDIR_PREFIX)

    def remove(self, *, keep: bool = False) -> bool:
        """
        Release the lock and delete the directory.

        Returns True when the directory is gone. An unexpected location is
        left in place with a warning.
        """
        if self.path is None:
            return True
        path = self.path
        self._release()

        if keep:
            self.logger.warning("Keeping build directory (requested): %s", path)
            return False
        if not self.is_removable():
            self.logger.warning("Build directory not in expected location, skipping cleanup: %s", path)
            return False

        try:
            shutil.rmtree(path)
        except FileNotFoundError:
            pass
        except OSError as e:
            self.logger.warning("Failed to clean up build directory %s: %s", path, e)
            return False
        self.logger.debug("Removed build directory %s", path)
        self.path = None
        return True
