# SPDX-License-Identifier: LGPL-3.0-or-later
# -*- coding: utf-8 -*-
# smbios2iso/config/build_config.py
from __future__ import annotations

from dataclasses import asdict, dataclass, replace
from pathlib import Path
from typing import Any, Dict, Optional

from .. import __version__

OPENCORE_VERSION = "1.0.6"


@dataclass(frozen=True)
class BuildConfig:
    """
    Everything one ISO build needs, fixed at construction.

    `efi_source` is the versioned base asset tree (the directory holding
    EFI_NEW/ and friends). A relative `efi_source` is resolved against
    `script_root`, which is also where Supporting_Tools/ and COPYRIGHT.md
    are looked up.
    """

    efi_source: Path
    identity_json: Path
    output_dir: Path
    script_root: Path
    temp_root: Optional[Path] = None
    output_name_file: Optional[Path] = None
    keep_workdir: bool = False
    create_backup: bool = True

    config_subpath: str = "EFI_NEW/EFI/OC/config.plist"
    boot_payload_subpath: str = "EFI_NEW/EFI"
    image_check_subpath: str = "EFI/OC/config.plist"
    supporting_tools_dirname: str = "Supporting_Tools"
    copyright_name: str = "COPYRIGHT.md"
    boot_image_name: str = "BOOT.img"
    boot_catalog_name: str = "boot.catalog"
    volume_label: str = "OPENCORE"
    iso_volume_id: str = "OPENCORE"
    iso_name_template: str = "OpenCore-{serial}.iso"
    opencore_version: str = OPENCORE_VERSION
    tool_version: str = __version__

    def __post_init__(self) -> None:
        script_root = Path(self.script_root).expanduser()
        efi = Path(self.efi_source).expanduser()
        if not efi.is_absolute():
            efi = script_root / efi
        object.__setattr__(self, "script_root", script_root)
        object.__setattr__(self, "efi_source", efi)
        object.__setattr__(self, "identity_json", Path(self.identity_json).expanduser())
        object.__setattr__(self, "output_dir", Path(self.output_dir).expanduser())
        if self.temp_root is not None:
            object.__setattr__(self, "temp_root", Path(self.temp_root).expanduser())
        if self.output_name_file is not None:
            object.__setattr__(self, "output_name_file", Path(self.output_name_file).expanduser())

    @property
    def config_document(self) -> Path:
        return self.efi_source / self.config_subpath

    @property
    def supporting_tools(self) -> Path:
        return self.script_root / self.supporting_tools_dirname

    def iso_name(self, serial: str) -> str:
        return self.iso_name_template.format(serial=serial)

    def with_overrides(self, **kw: Any) -> "BuildConfig":
        return replace(self, **kw)

    def to_dict(self) -> Dict[str, Any]:
        return {k: (str(v) if isinstance(v, Path) else v) for k, v in asdict(self).items()}
