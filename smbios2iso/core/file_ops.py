# SPDX-License-Identifier: LGPL-3.0-or-later
# -*- coding: utf-8 -*-
# smbios2iso/core/file_ops.py
"""
File helpers used by the mutator and the build pipeline.

Atomic replacement of config.plist, timestamped backups and a tree copy
that skips version-control metadata.
"""

from __future__ import annotations

import os
import shutil
import tempfile
from contextlib import contextmanager
from pathlib import Path
from typing import Generator, Iterable, Iterator, List, Optional, Tuple

VCS_EXCLUDES = (".git", ".gitignore")


@contextmanager
def atomic_write(
    target_path: Path,
    *,
    suffix: str = ".part",
    dir: Optional[Path] = None,
    delete_on_error: bool = True,
) -> Generator[Path, None, None]:
    """
    Context manager for atomic file writes using temporary file + rename.

    Yields a temporary path next to the target; on success it is renamed
    over the target with os.replace(), on failure it is removed and the
    target is left untouched.

    Example:
        with atomic_write(Path("config.plist")) as tmp:
            tmp.write_bytes(data)
    """
    target_path = Path(target_path)
    temp_dir = Path(dir) if dir else target_path.parent
    temp_dir.mkdir(parents=True, exist_ok=True)

    fd, temp_name = tempfile.mkstemp(
        suffix=suffix,
        prefix=f".{target_path.name}.",
        dir=str(temp_dir),
    )
    temp_path = Path(temp_name)

    try:
        os.close(fd)
        yield temp_path
        if target_path.exists():
            shutil.copymode(target_path, temp_path)
        os.replace(temp_path, target_path)
    except BaseException:
        if delete_on_error:
            safe_unlink(temp_path)
        raise


def write_bytes_atomic(target_path: Path, data: bytes) -> None:
    with atomic_write(target_path) as tmp:
        with open(tmp, "wb") as f:
            f.write(data)
            f.flush()
            os.fsync(f.fileno())


def backup_file(path: Path, ts: str) -> Path:
    """Copy `path` to `<path>.backup-<ts>` preserving metadata."""
    path = Path(path)
    backup = path.with_name(f"{path.name}.backup-{ts}")
    shutil.copy2(path, backup)
    return backup


def safe_unlink(path: Path, missing_ok: bool = True) -> None:
    try:
        Path(path).unlink()
    except FileNotFoundError:
        if not missing_ok:
            raise


def copy_tree(src: Path, dst: Path, *, exclude: Iterable[str] = VCS_EXCLUDES) -> None:
    """
    Recursive copy of `src` into `dst` (merged if `dst` exists).

    Entries whose name is in `exclude` are skipped at every level, the way
    `rsync --exclude` would.
    """
    shutil.copytree(
        str(src),
        str(dst),
        symlinks=True,
        ignore=shutil.ignore_patterns(*tuple(exclude)) if exclude else None,
        dirs_exist_ok=True,
    )


def walk_followed(root: Path) -> Iterator[Tuple[str, List[str], List[str]]]:
    """
    `os.walk` that descends into symlinked directories.

    A directory whose real path was already visited is pruned, so link
    cycles terminate. Dangling links are dropped from `filenames`.
    """
    seen = set()
    for dirpath, dirnames, filenames in os.walk(root, followlinks=True):
        real = os.path.realpath(dirpath)
        if real in seen:
            dirnames[:] = []
            continue
        seen.add(real)
        dirnames.sort()
        filenames = sorted(n for n in filenames if os.path.exists(os.path.join(dirpath, n)))
        yield dirpath, dirnames, filenames


def tree_size_bytes(root: Path) -> int:
    """Apparent size of every file `copy_tree_contents` would copy from `root`."""
    total = 0
    for dirpath, _dirnames, filenames in walk_followed(root):
        for name in filenames:
            total += os.path.getsize(os.path.join(dirpath, name))
    return total


def count_files(root: Path) -> int:
    return sum(len(files) for _d, _s, files in os.walk(root))


def copy_tree_contents(src: Path, dst: Path) -> int:
    """
    Copy file contents of `src` into `dst` without permission bits or
    timestamps (targets such as FAT cannot store them). Symlinks are
    resolved and their targets copied as plain files and directories.
    Returns the number of files copied.
    """
    src, dst = Path(src), Path(dst)
    copied = 0
    for dirpath, _dirnames, filenames in walk_followed(src):
        rel = Path(dirpath).relative_to(src)
        target_dir = dst / rel
        target_dir.mkdir(parents=True, exist_ok=True)
        for name in filenames:
            shutil.copyfile(os.path.join(dirpath, name), str(target_dir / name))
            copied += 1
    return copied
