# SPDX-License-Identifier: LGPL-3.0-or-later
"""Tests for command helpers and tool discovery."""
from __future__ import annotations

import hashlib
import logging
import subprocess
from unittest.mock import patch

import pytest

from smbios2iso.core.exceptions import Fatal, InsufficientTooling
from smbios2iso.core.tooling import BOOT_IMAGE_TOOLS, ISO_PACKERS, ToolChecker
from smbios2iso.core.utils import U

LOG = logging.getLogger("smbios2iso.tests.utils")


@pytest.mark.unit
class TestOutputTail:
    def test_keeps_last_lines(self):
        text = "\n".join(f"line {i}" for i in range(50))
        tail = U.output_tail(text)
        assert tail.splitlines()[0] == "line 30"
        assert tail.splitlines()[-1] == "line 49"

    def test_cmd_error_context(self):
        e = subprocess.CalledProcessError(3, ["mount"], output="out\n", stderr="mount: permission denied\n")
        ctx = U.cmd_error_context(e)
        assert ctx["exit_code"] == 3
        assert "permission denied" in ctx["output_tail"]

    def test_timeout_context(self):
        ctx = U.cmd_error_context(subprocess.TimeoutExpired(["genisoimage"], 5))
        assert ctx["exit_code"] == 124


@pytest.mark.unit
class TestRunCmd:
    def test_success_returns_stdout(self):
        cp = U.run_cmd(LOG, ["echo", "hello"])
        assert cp.stdout.strip() == "hello"

    def test_failure_raises_called_process_error(self):
        with pytest.raises(subprocess.CalledProcessError):
            U.run_cmd(LOG, ["sh", "-c", "echo nope >&2; exit 4"])

    def test_fatal_wraps(self):
        with pytest.raises(Fatal) as ei:
            U.run_cmd(LOG, ["sh", "-c", "exit 4"], fatal=True)
        assert ei.value.code == 4


@pytest.mark.unit
def test_checksum_matches_hashlib(tmp_path):
    p = tmp_path / "blob"
    p.write_bytes(b"x" * 3_000_000)
    assert U.checksum(p) == hashlib.sha256(b"x" * 3_000_000).hexdigest()


@pytest.mark.unit
def test_human_bytes():
    assert U.human_bytes(512) == "512 B"
    assert U.human_bytes(10 * 1024 * 1024) == "10.00 MiB"
    assert U.human_bytes(None) == "unknown"


@pytest.mark.unit
class TestToolChecker:
    def test_alternatives_satisfy_requirement(self):
        fake = {"mkfs.fat": "/sbin/mkfs.fat", "mount": "/bin/mount", "umount": "/bin/umount"}
        with patch.object(U, "which", side_effect=fake.get):
            report = ToolChecker(LOG).require(BOOT_IMAGE_TOOLS, purpose="test")
        assert report.ok()
        assert "mkfs.fat" in report.found

    def test_missing_lists_all_alternatives(self):
        with patch.object(U, "which", return_value=None):
            with pytest.raises(InsufficientTooling) as ei:
                ToolChecker(LOG).require(BOOT_IMAGE_TOOLS, purpose="formatting")
        assert "mkfs.vfat|mkfs.fat" in str(ei.value)
        assert ei.value.code == 1

    def test_first_available_order(self):
        avail = {"mkisofs": "/usr/bin/mkisofs", "xorriso": "/usr/bin/xorriso"}
        with patch.object(U, "which", side_effect=avail.get):
            assert ToolChecker(LOG).first_available(ISO_PACKERS) == "mkisofs"
