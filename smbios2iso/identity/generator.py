# SPDX-License-Identifier: LGPL-3.0-or-later
# -*- coding: utf-8 -*-
# smbios2iso/identity/generator.py
from __future__ import annotations

import logging
from pathlib import Path
from typing import Iterable, Optional, Set

from ..core.exceptions import IdentityUnavailable, Smbios2IsoError
from ..core.file_ops import write_bytes_atomic
from ..core.logger import Log
from .local import DEFAULT_MODEL, SUPPORTED_MODELS, LocalIdentitySource, used_serials_in
from .model import IdentityRecord
from .remote import RemoteIdentitySource


class IdentityGenerator:
    """
    Remote endpoint first, local sources second.

    Each strategy yields a complete record or nothing, so a serial and a
    board serial never come from different calls. Only when both come up
    empty does generate() raise IdentityUnavailable.
    """

    def __init__(
        self,
        logger: logging.Logger,
        *,
        remote: Optional[RemoteIdentitySource] = None,
        local: Optional[LocalIdentitySource] = None,
        offline: bool = False,
    ) -> None:
        self.logger = logger
        self.remote = remote if remote is not None else (None if offline else RemoteIdentitySource(logger))
        self.local = local if local is not None else LocalIdentitySource(logger)

    def generate(
        self,
        preferred_model: Optional[str] = None,
        *,
        used: Optional[Set[str]] = None,
        exclude_dirs: Iterable[Path] = (),
    ) -> IdentityRecord:
        model = preferred_model or DEFAULT_MODEL
        if model not in SUPPORTED_MODELS:
            Log.warn(self.logger, f"Model {model} is not in the usual list; continuing", supported=",".join(SUPPORTED_MODELS))

        used_serials = set(used or ()) | used_serials_in(exclude_dirs)
        reasons = []

        if self.remote is not None:
            Log.step(self.logger, "Fetching validated identity from endpoint")
            outcome = self.remote.fetch()
            rec = outcome.record
            if rec is not None and rec.serial in used_serials:
                reasons.append(f"remote: serial {rec.serial} already used")
                rec = None
            if rec is not None:
                Log.ok(self.logger, f"Validated serial fetched: {rec.serial} ({rec.product_type})")
                return rec
            if outcome.reason != "unavailable":
                reasons.append(f"remote: {outcome.reason}: {outcome.detail}")
                Log.warn(self.logger, f"Identity endpoint unusable ({outcome.reason}); using local table")
            else:
                reasons.append("remote: no identity available")
                self.logger.info("Identity endpoint has nothing available; using local table")

        try:
            return self.local.generate(model, used=used_serials)
        except Smbios2IsoError as e:
            reasons.append(f"local: {e}")
            raise IdentityUnavailable(
                msg="No identity available: " + "; ".join(reasons),
                cause=e,
                context={"model": model},
            ) from e


def write_identity_json(record: IdentityRecord, path: Path) -> Path:
    path = Path(path)
    write_bytes_atomic(path, record.to_json().encode("utf-8"))
    return path
