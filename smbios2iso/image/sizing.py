# SPDX-License-Identifier: LGPL-3.0-or-later
# -*- coding: utf-8 -*-
# smbios2iso/image/sizing.py
from __future__ import annotations

from pathlib import Path

from ..core.file_ops import tree_size_bytes

# FAT16 with 512-byte sectors needs a few MiB of clusters to be usable at all.
MIN_IMAGE_MB = 10
# 20% on top of the payload for FAT tables, directory entries and slack.
OVERHEAD_NUM = 6
OVERHEAD_DEN = 5


def source_size_kb(source: Path) -> int:
    """Payload size in KiB, rounded up."""
    return -(-tree_size_bytes(Path(source)) // 1024)


def image_size_mb(source_kb: int) -> int:
    """
    ceil(source_kb * 1.2 / 1024), never below MIN_IMAGE_MB.

    Integer arithmetic only, so the result does not depend on float rounding:
    0 -> 10, 8192 -> 10, 100000 -> 118.
    """
    if source_kb < 0:
        raise ValueError(f"negative size: {source_kb}")
    mb = -(-source_kb * OVERHEAD_NUM // (OVERHEAD_DEN * 1024))
    return max(MIN_IMAGE_MB, mb)
