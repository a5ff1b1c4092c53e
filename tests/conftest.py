# SPDX-License-Identifier: GPL-2.0-or-later
import json
import logging
import os
import sys
from pathlib import Path

import pytest

_THIS_DIR = Path(__file__).resolve().parent
_REPO_ROOT = _THIS_DIR.parent

for _p in (_REPO_ROOT, _THIS_DIR):
    if str(_p) not in sys.path:
        sys.path.insert(0, str(_p))

os.environ.setdefault("PYTHONPATH", str(_REPO_ROOT))


MINIMAL_CONFIG_PLIST = """\
<?xml version="1.0" encoding="UTF-8"?>
<!DOCTYPE plist PUBLIC "-//Apple//DTD PLIST 1.0//EN" "http://www.apple.com/DTDs/PropertyList-1.0.dtd">
<plist version="1.0">
<dict>
	<key>Misc</key>
	<dict>
		<key>Boot</key>
		<dict>
			<key>Timeout</key>
			<integer>5</integer>
		</dict>
	</dict>
	<key>NVRAM</key>
	<dict>
		<key>Add</key>
		<dict>
			<key>7C436110-AB2A-4BBB-A880-FE41995C9F82</key>
			<dict>
				<key>boot-args</key>
				<string>keepsyms=1 -v</string>
				<key>csr-active-config</key>
				<data>AAAAAA==</data>
			</dict>
		</dict>
	</dict>
	<!-- PlatformInfo is filled per VM -->
	<key>PlatformInfo</key>
	<dict>
		<key>Automatic</key>
		<true/>
		<key>Generic</key>
		<dict>
			<key>AdviseFeatures</key>
			<false/>
			<key>MLB</key>
			<string>M0000000000000001</string>
			<key>ROM</key>
			<data>ESIzAAAA</data>
			<key>SpoofVendor</key>
			<true/>
			<key>SystemMemoryStatus</key>
			<string>Auto</string>
			<key>SystemProductName</key>
			<string>iMacPro1,1</string>
			<key>SystemSerialNumber</key>
			<string>W00000000001</string>
			<key>SystemUUID</key>
			<string>00000000-0000-0000-0000-000000000000</string>
		</dict>
		<key>UpdateSMBIOS</key>
		<true/>
	</dict>
</dict>
</plist>
"""

SAMPLE_IDENTITY = {
    "Type": "iMac19,1",
    "Serial": "ABCDEF123456",
    "Board Serial": "GHIJKL654321",
    "SmUUID": "11111111-2222-3333-4444-555555555555",
    "ROM": "AABBCCDDEEFF",
}


@pytest.fixture
def logger():
    lg = logging.getLogger("smbios2iso.tests")
    lg.setLevel(logging.DEBUG)
    return lg


@pytest.fixture
def config_plist(tmp_path):
    p = tmp_path / "config.plist"
    p.write_text(MINIMAL_CONFIG_PLIST, encoding="utf-8")
    return p


@pytest.fixture
def identity_dict():
    return dict(SAMPLE_IDENTITY)


def write_identity(path, data):
    path = Path(path)
    path.write_text(json.dumps(data), encoding="utf-8")
    return path


@pytest.fixture
def identity_json(tmp_path):
    return write_identity(tmp_path / "smbios.json", SAMPLE_IDENTITY)


def make_script_root(root, *, with_config=True, with_tools=True):
    """
    <root>/PROXMOX-EFI/EFI_NEW/EFI/{BOOT,OC}/... plus Supporting_Tools/ and
    COPYRIGHT.md, laid out like a project checkout.
    """
    root = Path(root)
    efi = root / "PROXMOX-EFI"
    oc = efi / "EFI_NEW" / "EFI" / "OC"
    oc.mkdir(parents=True)
    (efi / "EFI_NEW" / "EFI" / "BOOT").mkdir()
    (efi / "EFI_NEW" / "EFI" / "BOOT" / "BOOTx64.efi").write_bytes(b"\x4d\x5a" + b"\0" * 510)
    (oc / "OpenCore.efi").write_bytes(b"\x4d\x5a" + b"\x01" * 1022)
    if with_config:
        (oc / "config.plist").write_text(MINIMAL_CONFIG_PLIST, encoding="utf-8")
    (efi / ".git").mkdir()
    (efi / ".git" / "HEAD").write_text("ref: refs/heads/main\n", encoding="utf-8")
    (efi / ".gitignore").write_text("*.backup-*\n", encoding="utf-8")
    if with_tools:
        (root / "Supporting_Tools").mkdir()
    (root / "COPYRIGHT.md").write_text("# Copyright\n", encoding="utf-8")
    return root


@pytest.fixture
def script_root(tmp_path):
    return make_script_root(tmp_path / "project")
