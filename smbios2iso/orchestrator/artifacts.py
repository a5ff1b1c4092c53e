# SPDX-License-Identifier: LGPL-3.0-or-later
# -*- coding: utf-8 -*-
# smbios2iso/orchestrator/artifacts.py
from __future__ import annotations

import datetime as _dt
import json
import logging
import os
import shutil
from pathlib import Path
from typing import Any, Dict, List, Optional

from ..config.build_config import BuildConfig
from ..core.file_ops import write_bytes_atomic
from ..identity.model import IdentityRecord

README_NAME = "README.md"
BUILD_INFO_NAME = "BUILD_INFO.json"
SETUP_COMMAND_NAME = "macOS-Setup.command"

CPU_MODEL = "Skylake-Client-v4"

# Templates live here so the generator and its tests see the same text.
# Rendered with str.format_map(); literal braces are doubled.
README_TEMPLATE = """\
# Your Custom OpenCore ISO

**Serial Number**: {serial}
**Mac Model**: {model}
**Built**: {build_date}
**OpenCore Version**: {opencore_version}

---

## What's Inside This ISO

### EFI/
Pre-configured OpenCore bootloader with your SMBIOS values already populated.
- **BOOT/** - UEFI boot files
- **OC/** - OpenCore configuration, drivers, kexts and ACPI tables
  - **config.plist** - Your personalized configuration

### Supporting_Tools/
Utilities copied to your Desktop by the setup script.

### macOS-Setup.command
Post-installation script (double-click to run).

### BUILD_INFO.json
Machine-readable record of this build.

---

## Quick Start

### Step 1: Install macOS
1. Boot your VM with this ISO attached
2. Install macOS following the on-screen installer
3. Complete the initial macOS setup

### Step 2: Run the post-install script
1. Double-click this ISO in Finder to mount it
2. Double-click **macOS-Setup.command**
3. Enter your password when prompted

### Step 3: Install OpenCore to your disk
```bash
sudo diskutil mount disk0s1
sudo cp -r /Volumes/OPENCORE/EFI/ /Volumes/EFI/
sudo diskutil unmount /Volumes/EFI
```

### Step 4: Cleanup
1. In Proxmox: remove this ISO from the VM
2. On the Proxmox host, delete the ISO file:
```bash
rm /var/lib/vz/template/iso/{iso_name}
```

---

## Your SMBIOS Information

**System Product Name**: {model}
**Serial Number**: {serial}
**Source**: {source}

Keep this information private. These identifiers make your machine unique.

---

## Troubleshooting

### macOS won't boot
- Check that OVMF (UEFI) firmware is enabled
- Verify the boot order in Proxmox (ide0 should be first)

### Need to change SMBIOS?
Build a new ISO with a freshly generated identity instead of editing this one.
"""

SETUP_COMMAND_TEMPLATE = """\
#!/bin/bash
# macOS post-install setup for OpenCore ISO {serial}
set -euo pipefail

SERIAL="{serial}"
HERE="$(cd "$(dirname "${{BASH_SOURCE[0]}}")" && pwd)"
DEST="$HOME/Desktop/Supporting_Tools"

echo "==> OpenCore post-install setup (serial $SERIAL)"

if [ -d "$HERE/Supporting_Tools" ]; then
    echo "==> Copying Supporting_Tools to $DEST"
    mkdir -p "$DEST"
    cp -R "$HERE/Supporting_Tools/." "$DEST/"
fi

if ! command -v brew >/dev/null 2>&1; then
    echo "==> Installing Homebrew"
    /bin/bash -c "$(curl -fsSL https://raw.githubusercontent.com/Homebrew/install/HEAD/install.sh)"
fi

if ! command -v python3 >/dev/null 2>&1; then
    echo "==> Installing Python 3"
    brew install python
fi

for kext in Lilu.kext VMHide.kext; do
    src="$DEST/Core_Tools/$kext"
    if [ -d "$src" ]; then
        echo "==> Installing $kext"
        sudo cp -R "$src" /Library/Extensions/
        sudo chown -R root:wheel "/Library/Extensions/$kext"
    fi
done

echo "==> System check"
sw_vers
system_profiler SPHardwareDataType | grep -E "Model Identifier|Serial Number"

echo "==> Done"
"""

_SOURCE_LABELS = {
    "api": "API-Validated",
    "macserial": "Locally generated (macserial)",
    "table": "Locally generated (serial table)",
}


def source_label(source: Optional[str]) -> str:
    if not source:
        return "Unknown"
    return _SOURCE_LABELS.get(source, source)


def _build_file_list(workdir: Path) -> List[str]:
    out: List[str] = []
    for dirpath, dirnames, filenames in os.walk(workdir):
        dirnames.sort()
        rel = Path(dirpath).relative_to(workdir)
        for name in sorted(filenames):
            out.append(str(rel / name) if str(rel) != "." else name)
    return out


class ArtifactWriter:
    """Writes COPYRIGHT.md, README.md, BUILD_INFO.json and macOS-Setup.command into a build dir."""

    def __init__(self, logger: logging.Logger, config: BuildConfig, *, now: Optional[_dt.datetime] = None):
        self.logger = logger
        self.config = config
        self.now = now or _dt.datetime.now()

    def copy_copyright(self, workdir: Path) -> Optional[Path]:
        name = self.config.copyright_name
        for candidate in (self.config.efi_source / name, self.config.script_root / name):
            if candidate.is_file():
                dest = Path(workdir) / name
                if candidate.resolve() != dest.resolve():
                    shutil.copyfile(candidate, dest)
                self.logger.info("📄 %s copied from %s", name, candidate.parent)
                return dest
        self.logger.warning("%s not found in %s or %s, skipping", name, self.config.efi_source, self.config.script_root)
        return None

    def readme_text(self, record: IdentityRecord) -> str:
        return README_TEMPLATE.format_map(
            {
                "serial": record.serial,
                "model": record.product_type,
                "build_date": self.now.strftime("%B %d, %Y at %H:%M:%S"),
                "opencore_version": self.config.opencore_version,
                "iso_name": self.config.iso_name(record.serial),
                "source": source_label(record.source),
            }
        )

    def setup_command_text(self, record: IdentityRecord) -> str:
        return SETUP_COMMAND_TEMPLATE.format_map({"serial": record.serial})

    def build_info(self, record: IdentityRecord, workdir: Path) -> Dict[str, Any]:
        return {
            "build": {
                "date": self.now.strftime("%Y-%m-%d %H:%M:%S"),
                "timestamp": int(self.now.timestamp()),
                "efi_source": str(self.config.efi_source),
                "opencore_version": self.config.opencore_version,
                "tool_version": self.config.tool_version,
                "iso_name": self.config.iso_name(record.serial),
            },
            "smbios": {
                "model": record.product_type,
                "serial": record.serial,
                "board_serial": record.board_serial,
                "system_uuid": record.system_uuid,
                "rom": record.hardware_address,
                "source": record.source,
            },
            "vm": {"cpu_model": CPU_MODEL},
            "files": _build_file_list(workdir),
        }

    def write_all(self, workdir: Path, record: IdentityRecord) -> List[Path]:
        workdir = Path(workdir)
        readme = workdir / README_NAME
        write_bytes_atomic(readme, self.readme_text(record).encode("utf-8"))

        setup = workdir / SETUP_COMMAND_NAME
        write_bytes_atomic(setup, self.setup_command_text(record).encode("utf-8"))
        os.chmod(setup, 0o755)

        # Written last so the file list covers everything else in the tree.
        info = workdir / BUILD_INFO_NAME
        data = self.build_info(record, workdir)
        data["files"].append(BUILD_INFO_NAME)
        write_bytes_atomic(info, (json.dumps(data, indent=2) + "\n").encode("utf-8"))

        for p in (readme, info, setup):
            self.logger.debug("Generated %s", p)
        return [readme, info, setup]
