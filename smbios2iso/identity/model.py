# SPDX-License-Identifier: LGPL-3.0-or-later
# -*- coding: utf-8 -*-
# smbios2iso/identity/model.py
from __future__ import annotations

import json
import re
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Optional

from ..core.exceptions import ValidationError

# Identity JSON keys, as consumed by the build and written by `smbios2iso identity`.
KEY_TYPE = "Type"
KEY_SERIAL = "Serial"
KEY_BOARD_SERIAL = "Board Serial"
KEY_SMUUID = "SmUUID"
KEY_ROM = "ROM"
KEY_SOURCE = "Source"

REQUIRED_KEYS = (KEY_TYPE, KEY_SERIAL, KEY_BOARD_SERIAL, KEY_SMUUID, KEY_ROM)

_HEX_RE = re.compile(r"^(?:[0-9A-Fa-f]{2})+$")
_UUID_RE = re.compile(r"^[0-9A-Fa-f]{8}-[0-9A-Fa-f]{4}-[0-9A-Fa-f]{4}-[0-9A-Fa-f]{4}-[0-9A-Fa-f]{12}$")
_SERIAL_RE = re.compile(r"[A-Z0-9]+")


@dataclass(frozen=True)
class IdentityRecord:
    """
    SMBIOS identity for exactly one VM.

    `serial` and `board_serial` always come from the same generation call.
    `hardware_address` is the ROM value as a hex string (12 hex digits for
    the usual 6-byte MAC-derived ROM).
    """

    product_type: str
    serial: str
    board_serial: str
    system_uuid: str
    hardware_address: str
    source: Optional[str] = None

    def __post_init__(self) -> None:
        missing = [
            key
            for key, value in (
                (KEY_TYPE, self.product_type),
                (KEY_SERIAL, self.serial),
                (KEY_BOARD_SERIAL, self.board_serial),
                (KEY_SMUUID, self.system_uuid),
                (KEY_ROM, self.hardware_address),
            )
            if not isinstance(value, str) or not value.strip()
        ]
        if missing:
            raise ValidationError(
                msg=f"Identity is missing required field(s): {', '.join(missing)}",
                context={"missing": missing},
            )
        for key, value in ((KEY_SERIAL, self.serial), (KEY_BOARD_SERIAL, self.board_serial)):
            if not _SERIAL_RE.fullmatch(value):
                raise ValidationError(
                    msg=f"{key} must be upper-case letters and digits only: {value!r}",
                    context={"key": key},
                )
        if not _UUID_RE.match(self.system_uuid):
            raise ValidationError(msg=f"SmUUID is not a UUID: {self.system_uuid!r}")
        if not _HEX_RE.match(self.hardware_address):
            raise ValidationError(msg=f"ROM is not an even-length hex string: {self.hardware_address!r}")

    @property
    def rom_bytes(self) -> bytes:
        return bytes.fromhex(self.hardware_address)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "IdentityRecord":
        if not isinstance(data, dict):
            raise ValidationError(msg="Identity JSON must be an object")
        return cls(
            product_type=str(data.get(KEY_TYPE) or ""),
            serial=str(data.get(KEY_SERIAL) or ""),
            board_serial=str(data.get(KEY_BOARD_SERIAL) or ""),
            system_uuid=str(data.get(KEY_SMUUID) or ""),
            hardware_address=str(data.get(KEY_ROM) or ""),
            source=data.get(KEY_SOURCE),
        )

    @classmethod
    def from_json_file(cls, path: Path) -> "IdentityRecord":
        return cls.from_dict(load_identity_json(path))

    def to_dict(self) -> Dict[str, Any]:
        d: Dict[str, Any] = {
            KEY_TYPE: self.product_type,
            KEY_SERIAL: self.serial,
            KEY_BOARD_SERIAL: self.board_serial,
            KEY_SMUUID: self.system_uuid,
            KEY_ROM: self.hardware_address,
        }
        if self.source:
            d[KEY_SOURCE] = self.source
        return d

    def to_json(self) -> str:
        return json.dumps(self.to_dict(), indent=2) + "\n"


def load_identity_json(path: Path) -> Dict[str, Any]:
    """
    Read and parse an identity JSON file.

    Only checks that it is readable, well-formed JSON holding an object;
    field completeness is checked when an IdentityRecord is built from it.
    """
    path = Path(path)
    try:
        text = path.read_text(encoding="utf-8")
    except OSError as e:
        raise ValidationError(msg=f"Cannot read identity JSON {path}: {e}", cause=e) from e
    try:
        data = json.loads(text)
    except ValueError as e:
        raise ValidationError(msg=f"Invalid identity JSON {path}: {e}", cause=e) from e
    if not isinstance(data, dict):
        raise ValidationError(msg=f"Identity JSON {path} must hold an object")
    return data
