# SPDX-License-Identifier: LGPL-3.0-or-later
# -*- coding: utf-8 -*-
# smbios2iso/identity/local.py
"""
Offline identity generation.

Serial / board-serial pairs come from a keyed table (YAML, one list of
[serial, board_serial] pairs per model) or, when a macserial binary is
available, from `macserial -m <model> -n 1`. The UUID and ROM are made up
locally; they only need to be unique per host, not unpredictable.
"""
from __future__ import annotations

import logging
import random
import re
import subprocess
import uuid
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, Iterable, List, Optional, Set, Tuple

import yaml

from ..core.exceptions import IdentityUnavailable, ValidationError
from ..core.utils import U
from .model import IdentityRecord

DEFAULT_MODEL = "iMac19,1"
SUPPORTED_MODELS: Tuple[str, ...] = (
    "iMac19,1",
    "iMac19,2",
    "Macmini8,1",
    "MacPro7,1",
    "MacBookPro15,1",
    "MacBookPro15,3",
    "MacBookPro16,1",
)

BUNDLED_TABLE = Path(__file__).resolve().parent / "data" / "serials.yaml"

_ISO_SERIAL_RE = re.compile(r"^OpenCore-(?P<serial>[^/]+)\.iso$")

Pair = Tuple[str, str]


def used_serials_in(dirs: Iterable[Path]) -> Set[str]:
    """Serials already baked into OpenCore-<serial>.iso files under `dirs`."""
    out: Set[str] = set()
    for d in dirs:
        d = Path(d)
        if not d.is_dir():
            continue
        for p in d.glob("OpenCore-*.iso"):
            m = _ISO_SERIAL_RE.match(p.name)
            if m:
                out.add(m.group("serial"))
    return out


@dataclass
class SerialTable:
    pairs: Dict[str, List[Pair]] = field(default_factory=dict)
    path: Optional[Path] = None

    @classmethod
    def load(cls, path: Optional[Path] = None) -> "SerialTable":
        path = Path(path) if path else BUNDLED_TABLE
        try:
            raw = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
        except (OSError, yaml.YAMLError) as e:
            raise ValidationError(msg=f"Cannot load serial table {path}: {e}", cause=e) from e
        if not isinstance(raw, dict):
            raise ValidationError(msg=f"Serial table {path} must map model -> list of pairs")

        pairs: Dict[str, List[Pair]] = {}
        for model, entries in raw.items():
            rows: List[Pair] = []
            for entry in entries or []:
                if not isinstance(entry, (list, tuple)) or len(entry) != 2:
                    raise ValidationError(msg=f"Serial table {path}: bad entry for {model}: {entry!r}")
                serial, board = (str(x).strip() for x in entry)
                if serial and board:
                    rows.append((serial, board))
            pairs[str(model)] = rows
        return cls(pairs=pairs, path=path)

    def models(self) -> List[str]:
        return sorted(self.pairs)

    def pick_unused(self, model: str, used: Set[str]) -> Optional[Pair]:
        """First pair for `model`, in table order, whose serial is not in `used`."""
        for serial, board in self.pairs.get(model, []):
            if serial not in used:
                return serial, board
        return None


class MacserialPairSource:
    """Pairs from a local macserial binary (output line "SERIAL | BOARDSERIAL")."""

    def __init__(self, logger: logging.Logger, binary: Path):
        self.logger = logger
        self.binary = Path(binary)

    def available(self) -> bool:
        return self.binary.is_file()

    @staticmethod
    def parse(output: str) -> Optional[Pair]:
        for line in (output or "").splitlines():
            if line.startswith("Warning") or "|" not in line:
                continue
            serial, _, board = line.partition("|")
            serial, board = serial.strip(), board.strip()
            if serial and board:
                return serial, board
        return None

    def generate(self, model: str) -> Optional[Pair]:
        try:
            cp = U.run_cmd(self.logger, [str(self.binary), "-m", model, "-n", "1"], timeout=30)
        except (subprocess.CalledProcessError, subprocess.TimeoutExpired, OSError) as e:
            self.logger.warning("macserial failed for %s: %s", model, e)
            return None
        pair = self.parse(cp.stdout)
        if pair is None:
            self.logger.warning("macserial printed no 'SERIAL | BOARD' line for %s", model)
        return pair


class LocalIdentitySource:
    def __init__(
        self,
        logger: logging.Logger,
        *,
        table: Optional[SerialTable] = None,
        macserial: Optional[MacserialPairSource] = None,
        rng: Optional[random.Random] = None,
    ) -> None:
        self.logger = logger
        self.table = table
        self.macserial = macserial
        self.rng = rng or random.Random()

    def make_uuid(self) -> str:
        return str(uuid.UUID(int=self.rng.getrandbits(128), version=4)).upper()

    def make_rom(self) -> str:
        return "".join(f"{self.rng.randrange(256):02X}" for _ in range(6))

    def generate(self, model: str = DEFAULT_MODEL, *, used: Optional[Set[str]] = None) -> IdentityRecord:
        used = set(used or ())
        pair: Optional[Pair] = None
        source = None

        if self.macserial is not None and self.macserial.available():
            pair = self.macserial.generate(model)
            if pair is not None and pair[0] in used:
                self.logger.warning("macserial returned an already used serial %s; ignoring it", pair[0])
                pair = None
            source = "macserial" if pair else None

        if pair is None:
            table = self.table or SerialTable.load()
            pair = table.pick_unused(model, used)
            source = "table"
            if pair is None:
                raise IdentityUnavailable(
                    msg=f"No unused serial pair for model {model} in {table.path}",
                    context={"model": model, "used": len(used)},
                )

        serial, board = pair
        self.logger.info("Local identity for %s: serial=%s (%s)", model, serial, source)
        return IdentityRecord(
            product_type=model,
            serial=serial,
            board_serial=board,
            system_uuid=self.make_uuid(),
            hardware_address=self.make_rom(),
            source=source,
        )
