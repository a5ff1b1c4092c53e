# SPDX-License-Identifier: LGPL-3.0-or-later
from __future__ import annotations

import json
import plistlib

import pytest

from smbios2iso.__main__ import main
from smbios2iso.cli.args import parse_args_with_config
from smbios2iso.core.exceptions import ValidationError


@pytest.mark.unit
class TestParseArgs:
    def test_inject_config_is_not_a_config_file(self, logger):
        args, conf, _ = parse_args_with_config(
            ["inject", "--config", "EFI/OC/config.plist", "--json", "smbios.json"],
            logger=logger,
        )
        assert conf == {}
        assert args.plist == "EFI/OC/config.plist"
        assert args.identity_json == "smbios.json"
        assert args.backup is False

    def test_processor_maps_to_efi_source(self, logger):
        args, _, _ = parse_args_with_config(
            ["build", "--processor", "Intel", "--smbios-json", "s.json", "--output-dir", "/o"],
            logger=logger,
        )
        assert args.efi_source == "Processor_EFIs/Intel"

    def test_processor_and_efi_source_conflict(self, logger):
        with pytest.raises(ValidationError):
            parse_args_with_config(
                ["build", "--processor", "Intel", "--efi-source", "E", "--smbios-json", "s", "--output-dir", "/o"],
                logger=logger,
            )

    def test_missing_build_options(self, logger):
        with pytest.raises(ValidationError) as ei:
            parse_args_with_config(["build", "--smbios-json", "s.json"], logger=logger)
        assert "--efi-source" in str(ei.value)
        assert "--output-dir" in str(ei.value)

    def test_build_log_file_default(self, logger, tmp_path):
        args, _, _ = parse_args_with_config(
            ["build", "--efi-source", "E", "--smbios-json", "s", "--output-dir", "/o", "--script-dir", str(tmp_path)],
            logger=logger,
        )
        assert args.log_file == str(tmp_path / "logs" / "build-custom-iso.log")

    def test_explicit_log_file_wins(self, logger, tmp_path):
        args, _, _ = parse_args_with_config(
            ["--log-file", str(tmp_path / "x.log"), "build", "--efi-source", "E", "--smbios-json", "s", "--output-dir", "/o"],
            logger=logger,
        )
        assert args.log_file == str(tmp_path / "x.log")

    def test_non_positive_timeout(self, logger):
        with pytest.raises(ValidationError):
            parse_args_with_config(["identity", "--timeout", "0"], logger=logger)

    def test_create_vm_requires_iso(self, logger):
        with pytest.raises(SystemExit):
            parse_args_with_config(["create-vm"], logger=logger)

    def test_dump_config(self, logger, tmp_path, capsys):
        cfg = tmp_path / "a.yaml"
        cfg.write_text("tmpdir: /scratch\n", encoding="utf-8")
        with pytest.raises(SystemExit) as ei:
            parse_args_with_config(["--config", str(cfg), "--dump-config", "identity"], logger=logger)
        assert ei.value.code == 0
        assert json.loads(capsys.readouterr().out) == {"tmpdir": "/scratch"}


@pytest.mark.unit
class TestMain:
    def test_validation_error_exits_1(self):
        with pytest.raises(SystemExit) as ei:
            main(["build", "--smbios-json", "s.json"])
        assert ei.value.code == 1

    def test_inject_succeeds(self, config_plist, identity_json):
        with pytest.raises(SystemExit) as ei:
            main(["inject", "--config", str(config_plist), "--json", str(identity_json)])
        assert ei.value.code == 0
        generic = plistlib.loads(config_plist.read_bytes())["PlatformInfo"]["Generic"]
        assert generic["SystemSerialNumber"] == "ABCDEF123456"

    def test_inject_malformed_exits_3(self, tmp_path, identity_json):
        doc = tmp_path / "config.plist"
        doc.write_text("<plist><dict/></plist>\n", encoding="utf-8")
        with pytest.raises(SystemExit) as ei:
            main(["inject", "--config", str(doc), "--json", str(identity_json)])
        assert ei.value.code == 3

    def test_identity_offline(self, tmp_path):
        out = tmp_path / "smbios.json"
        with pytest.raises(SystemExit) as ei:
            main(["identity", "--offline", "--model", "Macmini8,1", "--out", str(out)])
        assert ei.value.code == 0
        data = json.loads(out.read_text(encoding="utf-8"))
        assert data["Type"] == "Macmini8,1"
        assert data["Serial"] == "C07ZX0C1JYVX"
        assert data["Source"] == "table"

    def test_build_failure_exit_code_and_log(self, tmp_path, identity_json):
        with pytest.raises(SystemExit) as ei:
            main(
                [
                    "build",
                    "--efi-source", "missing-efi",
                    "--smbios-json", str(identity_json),
                    "--output-dir", str(tmp_path / "iso"),
                    "--script-dir", str(tmp_path),
                ]
            )
        assert ei.value.code == 1
        log = tmp_path / "logs" / "build-custom-iso.log"
        assert log.is_file()
        assert "ValidateInputs" in log.read_text(encoding="utf-8")
