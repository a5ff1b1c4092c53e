# SPDX-License-Identifier: LGPL-3.0-or-later
from __future__ import annotations

import datetime as _dt
import json
import stat
from pathlib import Path

import pytest

from smbios2iso.config.build_config import BuildConfig
from smbios2iso.identity.model import IdentityRecord
from smbios2iso.orchestrator.artifacts import ArtifactWriter, source_label

NOW = _dt.datetime(2026, 3, 14, 9, 26, 53)


@pytest.fixture
def writer(logger, script_root, tmp_path):
    cfg = BuildConfig(
        efi_source=Path("PROXMOX-EFI"),
        identity_json=tmp_path / "smbios.json",
        output_dir=tmp_path / "iso",
        script_root=script_root,
    )
    return ArtifactWriter(logger, cfg, now=NOW)


@pytest.fixture
def record(identity_dict):
    return IdentityRecord.from_dict(dict(identity_dict, Source="api"))


@pytest.mark.unit
class TestArtifactWriter:
    def test_readme_fields(self, writer, record):
        text = writer.readme_text(record)
        assert "**Serial Number**: ABCDEF123456" in text
        assert "**Mac Model**: iMac19,1" in text
        assert "March 14, 2026 at 09:26:53" in text
        assert "OpenCore-ABCDEF123456.iso" in text
        assert "API-Validated" in text
        assert "{serial}" not in text

    def test_setup_command(self, writer, record):
        text = writer.setup_command_text(record)
        assert text.startswith("#!/bin/bash")
        assert "ABCDEF123456" in text
        assert "${BASH_SOURCE[0]}" in text

    def test_write_all(self, writer, record, tmp_path):
        wd = tmp_path / "wd"
        wd.mkdir()
        (wd / "BOOT.img").write_bytes(b"\0")
        readme, info, setup = writer.write_all(wd, record)

        assert readme.name == "README.md"
        assert stat.S_IMODE(setup.stat().st_mode) == 0o755

        data = json.loads(info.read_text(encoding="utf-8"))
        assert data["build"]["timestamp"] == int(NOW.timestamp())
        assert data["build"]["iso_name"] == "OpenCore-ABCDEF123456.iso"
        assert data["smbios"] == {
            "model": "iMac19,1",
            "serial": "ABCDEF123456",
            "board_serial": "GHIJKL654321",
            "system_uuid": "11111111-2222-3333-4444-555555555555",
            "rom": "AABBCCDDEEFF",
            "source": "api",
        }
        assert data["vm"]["cpu_model"] == "Skylake-Client-v4"
        assert sorted(data["files"]) == ["BOOT.img", "BUILD_INFO.json", "README.md", "macOS-Setup.command"]

    def test_copyright_from_script_root(self, writer, tmp_path):
        wd = tmp_path / "wd"
        wd.mkdir()
        dest = writer.copy_copyright(wd)
        assert dest == wd / "COPYRIGHT.md"
        assert dest.read_text(encoding="utf-8") == "# Copyright\n"

    def test_copyright_missing(self, writer, script_root, tmp_path):
        (script_root / "COPYRIGHT.md").unlink()
        wd = tmp_path / "wd"
        wd.mkdir()
        assert writer.copy_copyright(wd) is None

    @pytest.mark.parametrize(
        "source,label",
        [("api", "API-Validated"), ("table", "Locally generated (serial table)"), (None, "Unknown")],
    )
    def test_source_label(self, source, label):
        assert source_label(source) == label
