# SPDX-License-Identifier: LGPL-3.0-or-later
# -*- coding: utf-8 -*-
# smbios2iso/core/tooling.py
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Sequence, Tuple

from .exceptions import InsufficientTooling
from .utils import U

# Each requirement is satisfied by the first tool found among its alternatives.
BOOT_IMAGE_TOOLS: Tuple[Tuple[str, ...], ...] = (("mkfs.vfat", "mkfs.fat"), ("mount",), ("umount",))
ISO_PACKERS: Tuple[str, ...] = ("genisoimage", "mkisofs", "xorriso")
PROXMOX_TOOLS: Tuple[Tuple[str, ...], ...] = (("qm",), ("pvesh",), ("pvesm",))


@dataclass
class ToolReport:
    found: Dict[str, str] = field(default_factory=dict)
    missing: List[str] = field(default_factory=list)

    def ok(self) -> bool:
        return not self.missing

    def to_dict(self) -> Dict[str, object]:
        return {"ok": self.ok(), "found": dict(self.found), "missing": list(self.missing)}


class ToolChecker:
    """
    Resolves external tools before anything destructive happens.

    A missing tool is reported with every alternative that would have
    satisfied it, e.g. "genisoimage|mkisofs|xorriso".
    """

    def __init__(self, logger: logging.Logger):
        self.logger = logger

    def check(self, requirements: Sequence[Sequence[str]]) -> ToolReport:
        report = ToolReport()
        for alternatives in requirements:
            hit: Optional[str] = None
            for tool in alternatives:
                path = U.which(tool)
                if path:
                    hit = tool
                    report.found[tool] = path
                    break
            if hit is None:
                report.missing.append("|".join(alternatives))
            else:
                self.logger.debug("Tool %s -> %s", hit, report.found[hit])
        return report

    def require(self, requirements: Sequence[Sequence[str]], *, purpose: str) -> ToolReport:
        report = self.check(requirements)
        if not report.ok():
            raise InsufficientTooling(
                msg=f"Missing required tools for {purpose}: {', '.join(report.missing)}",
                context={"missing": report.missing},
            )
        return report

    def first_available(self, candidates: Sequence[str]) -> Optional[str]:
        for tool in candidates:
            if U.which(tool):
                return tool
        return None
