# SPDX-License-Identifier: LGPL-3.0-or-later
# -*- coding: utf-8 -*-
# smbios2iso/proxmox/client.py
"""
Thin wrapper around the Proxmox VE command line (qm, pvesh, pvesm).

Used to hand a freshly built OpenCore ISO to a new macOS VM:
  - next free VM id
  - storage inventory and storage -> path resolution
  - `qm create` with the macOS device/CPU arguments
  - the post-create patch that turns the OpenCore ISO into a disk
"""
from __future__ import annotations

import json
import logging
import re
import subprocess
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, List, Optional, Sequence

from ..core.exceptions import HypervisorError
from ..core.file_ops import write_bytes_atomic
from ..core.tooling import PROXMOX_TOOLS, ToolChecker
from ..core.utils import U

QEMU_SERVER_DIR = Path("/etc/pve/qemu-server")
CPUINFO = Path("/proc/cpuinfo")
NET_CLASS_DIR = Path("/sys/class/net")

APPLESMC_ARGS = (
    '-device isa-applesmc,osk="ourhardworkbythesewordsguardedpleasedontsteal(c)AppleComputerInc" '
    "-smbios type=2"
)
USB_ARGS = "-device qemu-xhci -device usb-kbd -device usb-tablet -global nec-usb-xhci.msi=off"
CPU_ARGS_INTEL = "-cpu Skylake-Client-v4,vendor=GenuineIntel,model=165,+invtsc,+kvm_pv_unhalt,+kvm_pv_eoi,kvm=on"
CPU_ARGS_AMD = "-cpu Skylake-Client-v4,vendor=GenuineIntel,model=165,+invtsc,-pcid,-spec-ctrl,kvm=on"
HOTPLUG_FIX_ARGS = "-global ICH9-LPC.acpi-pci-hotplug-with-bridge-support=off"

OPENCORE_ISO_SIZE = "96M"
SUPPORTED_MACOS = ("Sequoia", "Tahoe")

_QEMU_VERSION_RE = re.compile(r"version\s+(\d+)\.(\d+)")


@dataclass
class StorageInfo:
    name: str
    type: str
    status: str
    total_kb: int
    used_kb: int
    avail_kb: int

    @property
    def avail_gb(self) -> float:
        return round(self.avail_kb / 1024 / 1024, 2)


@dataclass
class VmSpec:
    vmid: int
    name: str
    storage: str
    iso_storage: str
    opencore_iso: str
    installer_iso: str
    disk_size_gb: int = 64
    cores: int = 4
    memory_mb: int = 8192
    bridge: str = "vmbr0"
    macos: str = "Sequoia"
    installer_size: Optional[str] = None


def parse_storage_status(text: str) -> List[StorageInfo]:
    """
    Parse `pvesm status` output, keeping active storages with free space.

    Header lines and rows with non-numeric or zero availability are dropped.
    """
    out: List[StorageInfo] = []
    for line in (text or "").splitlines():
        parts = line.split()
        if len(parts) < 6 or parts[0] == "Name":
            continue
        name, typ, status, total, used, avail = parts[:6]
        if status != "active" or not avail.isdigit() or int(avail) == 0:
            continue
        out.append(
            StorageInfo(
                name=name,
                type=typ,
                status=status,
                total_kb=int(total) if total.isdigit() else 0,
                used_kb=int(used) if used.isdigit() else 0,
                avail_kb=int(avail),
            )
        )
    return out


def default_storage(storages: Sequence[StorageInfo]) -> Optional[StorageInfo]:
    """The storage with the most free space."""
    best: Optional[StorageInfo] = None
    for s in storages:
        if best is None or s.avail_kb > best.avail_kb:
            best = s
    return best


def patch_iso_media(conf_text: str) -> str:
    """Rewrite media=cdrom to media=disk on every drive line backed by an ISO volume."""
    lines = conf_text.splitlines(keepends=True)
    for i, line in enumerate(lines):
        if ":iso/" in line and "media=cdrom" in line:
            lines[i] = line.replace("media=cdrom", "media=disk")
    return "".join(lines)


class ProxmoxClient:
    def __init__(
        self,
        logger: logging.Logger,
        *,
        qemu_server_dir: Path = QEMU_SERVER_DIR,
        net_dir: Path = NET_CLASS_DIR,
        timeout: int = 120,
    ):
        self.logger = logger
        self.qemu_server_dir = Path(qemu_server_dir)
        self.net_dir = Path(net_dir)
        self.timeout = timeout

    def check(self) -> None:
        report = ToolChecker(self.logger).check(PROXMOX_TOOLS)
        if not report.ok():
            raise HypervisorError(
                msg=f"Proxmox tools not found: {', '.join(report.missing)} (is this a Proxmox VE host?)",
                context=report.to_dict(),
            )

    def _run(self, cmd: List[str]) -> str:
        try:
            cp = U.run_cmd(self.logger, cmd, timeout=self.timeout)
        except (subprocess.CalledProcessError, subprocess.TimeoutExpired, OSError) as e:
            ctx = U.cmd_error_context(e)
            ctx["command"] = U._pretty_cmd(cmd)
            raise HypervisorError(msg=f"{cmd[0]} failed: {e}", cause=e, context=ctx) from e
        return cp.stdout or ""

    # ------------------------------------------------------------------
    # queries
    # ------------------------------------------------------------------

    def next_vmid(self) -> int:
        out = self._run(["pvesh", "get", "/cluster/nextid"]).strip().strip('"')
        try:
            return int(out)
        except ValueError as e:
            raise HypervisorError(msg=f"Unexpected nextid output: {out!r}", cause=e) from e

    def storages(self, content: str = "images") -> List[StorageInfo]:
        found = parse_storage_status(self._run(["pvesm", "status", "--content", content]))
        if not found:
            raise HypervisorError(msg=f"No active storages with content {content!r} found")
        return found

    def storage_path(self, storage: str) -> Path:
        out = self._run(["pvesh", "get", f"/storage/{storage}", "--output-format", "json"])
        try:
            data = json.loads(out)
        except ValueError as e:
            raise HypervisorError(msg=f"Unparseable storage info for {storage}", cause=e) from e
        path = data.get("path") if isinstance(data, dict) else None
        if not path:
            raise HypervisorError(msg=f"Storage {storage} has no filesystem path")
        return Path(path)

    def iso_dir(self, iso_storage: str) -> Path:
        return self.storage_path(iso_storage) / "template" / "iso"

    @staticmethod
    def host_is_amd(cpuinfo: Path = CPUINFO) -> bool:
        try:
            return "AuthenticAMD" in cpuinfo.read_text(encoding="utf-8", errors="replace")
        except OSError:
            return False

    def qemu_needs_hotplug_fix(self) -> bool:
        if not U.which("qemu-system-x86_64"):
            return False
        try:
            out = self._run(["qemu-system-x86_64", "--version"])
        except HypervisorError as e:
            self.logger.warning("Could not determine QEMU version: %s", e)
            return False
        m = _QEMU_VERSION_RE.search(out)
        if not m:
            return False
        return (int(m.group(1)), int(m.group(2))) >= (6, 1)

    # ------------------------------------------------------------------
    # VM creation
    # ------------------------------------------------------------------

    def qemu_args(self, *, amd: bool, hotplug_fix: bool) -> str:
        parts = [APPLESMC_ARGS, USB_ARGS]
        if hotplug_fix:
            parts.append(HOTPLUG_FIX_ARGS)
        parts.append(CPU_ARGS_AMD if amd else CPU_ARGS_INTEL)
        return " ".join(parts)

    def create_command(self, spec: VmSpec, *, qemu_args: str) -> List[str]:
        installer = f"{spec.iso_storage}:iso/{spec.installer_iso},media=cdrom,cache=unsafe"
        if spec.installer_size:
            installer += f",size={spec.installer_size}"
        return [
            "qm", "create", str(spec.vmid),
            "--agent", "1",
            "--args", qemu_args,
            "--autostart", "0",
            "--balloon", "0",
            "--bios", "ovmf",
            "--boot", "order=ide0;virtio0",
            "--cores", str(spec.cores),
            "--description", f"Hackintosh VM - macOS {spec.macos}",
            "--efidisk0", f"{spec.storage}:4",
            "--machine", "q35",
            "--memory", str(spec.memory_mb),
            "--name", spec.name,
            "--net0", f"virtio,bridge={spec.bridge}",
            "--numa", "0",
            "--onboot", "0",
            "--ostype", "other",
            "--sockets", "1",
            "--start", "0",
            "--tablet", "1",
            "--vga", "vmware",
            "--vmgenid", "1",
            "--scsihw", "virtio-scsi-pci",
            "--virtio0", f"{spec.storage}:{spec.disk_size_gb},cache=none,discard=on",
            "--ide0", f"{spec.iso_storage}:iso/{spec.opencore_iso},media=cdrom,cache=unsafe,size={OPENCORE_ISO_SIZE}",
            "--ide2", installer,
        ]

    def patch_vm_media(self, vmid: int) -> Path:
        conf = self.qemu_server_dir / f"{vmid}.conf"
        try:
            text = conf.read_text(encoding="utf-8")
        except OSError as e:
            raise HypervisorError(msg=f"Cannot read VM config {conf}: {e}", cause=e) from e
        patched = patch_iso_media(text)
        if patched == text:
            raise HypervisorError(msg=f"No ISO cdrom line in {conf}")
        try:
            write_bytes_atomic(conf, patched.encode("utf-8"))
        except OSError as e:
            raise HypervisorError(msg=f"Failed to update VM config {conf}: {e}", cause=e) from e
        self.logger.info("Patched %s: ISO drives attached as disk", conf)
        return conf

    def create_vm(self, spec: VmSpec) -> Dict[str, object]:
        if spec.macos not in SUPPORTED_MACOS:
            raise HypervisorError(
                code=1,
                msg=f"Unsupported macOS version {spec.macos!r} (choose from {', '.join(SUPPORTED_MACOS)})",
            )
        if not (self.net_dir / spec.bridge).is_dir():
            raise HypervisorError(msg=f"Bridge {spec.bridge} does not exist")

        args = self.qemu_args(amd=self.host_is_amd(), hotplug_fix=self.qemu_needs_hotplug_fix())
        self._run(self.create_command(spec, qemu_args=args))
        conf = self.patch_vm_media(spec.vmid)
        self.logger.info("✅ VM %s (%s) created", spec.vmid, spec.name)
        if spec.macos == "Tahoe":
            self.logger.warning(
                "macOS Tahoe cursor freeze fix: qm set %s -args \"$(qm config %s --current | grep ^args: | cut -d' ' -f2-) -device virtio-tablet\"",
                spec.vmid,
                spec.vmid,
            )
        return {"vmid": spec.vmid, "name": spec.name, "config": str(conf)}
