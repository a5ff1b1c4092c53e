# SPDX-License-Identifier: LGPL-3.0-or-later
# -*- coding: utf-8 -*-
# smbios2iso/__init__.py
"""
smbios2iso - per-VM OpenCore boot ISO builder

Generates a unique SMBIOS identity, injects it into an OpenCore config.plist,
packs the EFI tree into a FAT boot image and wraps everything into an
El-Torito (no-emulation) ISO ready to be attached to a Proxmox VM.

Usage as a library:

    from smbios2iso import BuildConfig, BuildOrchestrator, IdentityGenerator

    record = IdentityGenerator(logger).generate("iMac19,1")
    cfg = BuildConfig(efi_source=..., identity_json=..., output_dir=..., script_root=...)
    result = BuildOrchestrator(logger, cfg).build_custom_image()
"""

__version__ = "0.1.0"

from .config.build_config import BuildConfig
from .identity.generator import IdentityGenerator
from .identity.model import IdentityRecord
from .orchestrator.orchestrator import BuildOrchestrator, DiscImageDescriptor

__all__ = [
    "__version__",
    "BuildConfig",
    "BuildOrchestrator",
    "DiscImageDescriptor",
    "IdentityGenerator",
    "IdentityRecord",
]
