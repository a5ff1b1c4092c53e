# SPDX-License-Identifier: GPL-2.0-or-later
"""
In-memory stand-ins for mkfs.vfat, loop mounts and the ISO packer.

A "formatted" image starts with a small header; unmounting serialises the
mount point's tree into the image file as JSON and empties the mount point,
so a later mount (or read_fake_image) sees the same files back.
"""
from __future__ import annotations

import base64
import json
import os
import shutil
import zipfile
from pathlib import Path

from smbios2iso.core.exceptions import AssemblyFailed, BuildFailed
from smbios2iso.image.backends import BlockFormatter, FilesystemMounter

MAGIC = b"FAKEFAT16\n"


def _snapshot(root):
    files = {}
    for dirpath, _dirs, names in os.walk(root):
        for name in names:
            p = Path(dirpath) / name
            files[str(p.relative_to(root))] = base64.b64encode(p.read_bytes()).decode("ascii")
    return files


def read_fake_image(path):
    """{relative path: bytes} stored in a fake FAT image."""
    raw = Path(path).read_bytes()
    if not raw.startswith(MAGIC):
        raise ValueError("not a fake image")
    header, _, rest = raw[len(MAGIC):].partition(b"\n")
    body = rest.rstrip(b"\0")
    if not body:
        return {}
    data = json.loads(body.decode("utf-8"))
    return {k: base64.b64decode(v) for k, v in data["files"].items()}


def image_label(path):
    raw = Path(path).read_bytes()
    return raw[len(MAGIC):].partition(b"\n")[0].decode("ascii")


class FakeFormatter(BlockFormatter):
    def __init__(self, fail=False):
        self.fail = fail
        self.calls = []

    def check(self):
        return None

    def format(self, image, label):
        self.calls.append((Path(image), label))
        if self.fail:
            raise BuildFailed(msg="mkfs.vfat failed: simulated", context={"exit_code": 1, "output_tail": "boom"})
        with open(image, "r+b") as f:
            f.write(MAGIC + label.encode("ascii") + b"\n")


class FakeMounter(FilesystemMounter):
    def __init__(self, fail_mount=False, fail_unmount=0):
        self.fail_mount = fail_mount
        self.fail_unmount = fail_unmount
        self.mounted = {}
        self.calls = []

    def check(self):
        return None

    def mount(self, image, mountpoint):
        self.calls.append(("mount", Path(mountpoint)))
        if self.fail_mount:
            raise BuildFailed(msg="mount failed: simulated")
        for rel, data in read_fake_image(image).items():
            dst = Path(mountpoint) / rel
            dst.parent.mkdir(parents=True, exist_ok=True)
            dst.write_bytes(data)
        self.mounted[str(mountpoint)] = Path(image)

    def unmount(self, mountpoint, *, lazy=False):
        self.calls.append(("umount-lazy" if lazy else "umount", Path(mountpoint)))
        if self.fail_unmount and not lazy:
            self.fail_unmount -= 1
            raise BuildFailed(msg="umount failed: target is busy")
        image = self.mounted.pop(str(mountpoint))
        label = image_label(image)
        payload = json.dumps({"files": _snapshot(mountpoint)}).encode("utf-8")
        size = image.stat().st_size
        with open(image, "r+b") as f:
            f.write(MAGIC + label.encode("ascii") + b"\n" + payload)
            if f.tell() < size:
                f.write(b"\0" * (size - f.tell()))
        for child in Path(mountpoint).iterdir():
            if child.is_dir():
                shutil.rmtree(child)
            else:
                child.unlink()


class FakeAssembler:
    """Packs the working directory into a zip named like the ISO."""

    def __init__(self, fail=False, empty=False):
        self.fail = fail
        self.empty = empty
        self.calls = []

    def check(self):
        return "fakeiso"

    def assemble(self, working_dir, output_path, boot_image_rel):
        working_dir, output_path = Path(working_dir), Path(output_path)
        self.calls.append((working_dir, output_path, boot_image_rel))
        if not (working_dir / boot_image_rel).is_file():
            raise AssemblyFailed(msg=f"Boot image {boot_image_rel} not found in {working_dir}")
        if self.fail:
            raise AssemblyFailed(msg="fakeiso failed", context={"exit_code": 2, "output_tail": "no space"})
        if self.empty:
            output_path.write_bytes(b"")
            output_path.unlink()
            raise AssemblyFailed(msg="fakeiso reported success but output is empty")
        with zipfile.ZipFile(output_path, "w") as zf:
            for dirpath, _dirs, names in os.walk(working_dir):
                for name in names:
                    p = Path(dirpath) / name
                    zf.write(p, str(p.relative_to(working_dir)))
        return output_path


def read_fake_iso(path):
    with zipfile.ZipFile(path) as zf:
        return {n: zf.read(n) for n in zf.namelist()}
