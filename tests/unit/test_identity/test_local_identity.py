# SPDX-License-Identifier: LGPL-3.0-or-later
from __future__ import annotations

import random
import subprocess
import uuid
from unittest.mock import patch

import pytest

from smbios2iso.core.exceptions import IdentityUnavailable, ValidationError
from smbios2iso.identity.local import (
    LocalIdentitySource,
    MacserialPairSource,
    SerialTable,
    SUPPORTED_MODELS,
    used_serials_in,
)

TABLE_YAML = """\
"iMac19,1":
  - ["SERIAL000001", "BOARD00000000001"]
  - ["SERIAL000002", "BOARD00000000002"]
"""


@pytest.fixture
def table(tmp_path):
    p = tmp_path / "serials.yaml"
    p.write_text(TABLE_YAML, encoding="utf-8")
    return SerialTable.load(p)


@pytest.mark.unit
class TestSerialTable:
    def test_bundled_table_covers_supported_models(self):
        t = SerialTable.load()
        assert set(SUPPORTED_MODELS) <= set(t.models())
        for model in SUPPORTED_MODELS:
            serial, board = t.pairs[model][0]
            assert len(serial) == 12
            assert len(board) == 17

    def test_pick_unused_in_order(self, table):
        assert table.pick_unused("iMac19,1", set()) == ("SERIAL000001", "BOARD00000000001")
        assert table.pick_unused("iMac19,1", {"SERIAL000001"}) == ("SERIAL000002", "BOARD00000000002")
        assert table.pick_unused("iMac19,1", {"SERIAL000001", "SERIAL000002"}) is None
        assert table.pick_unused("Macmini8,1", set()) is None

    def test_bad_entry(self, tmp_path):
        p = tmp_path / "bad.yaml"
        p.write_text('"iMac19,1":\n  - ["only-one"]\n', encoding="utf-8")
        with pytest.raises(ValidationError):
            SerialTable.load(p)


@pytest.mark.unit
def test_used_serials_in(tmp_path):
    (tmp_path / "OpenCore-AAA111.iso").write_bytes(b"x")
    (tmp_path / "OpenCore-BBB222.iso").write_bytes(b"x")
    (tmp_path / "sequoia.iso").write_bytes(b"x")
    assert used_serials_in([tmp_path, tmp_path / "missing"]) == {"AAA111", "BBB222"}


@pytest.mark.unit
class TestMacserial:
    def test_parse(self):
        out = "Warning: this is a dev build\nC02XG0FDH7JY | C02839303QXH69FJA\n"
        assert MacserialPairSource.parse(out) == ("C02XG0FDH7JY", "C02839303QXH69FJA")
        assert MacserialPairSource.parse("garbage\n") is None

    def test_generate_failure_returns_none(self, logger, tmp_path):
        binary = tmp_path / "macserial"
        binary.write_bytes(b"")
        src = MacserialPairSource(logger, binary)
        with patch(
            "smbios2iso.identity.local.U.run_cmd",
            side_effect=subprocess.CalledProcessError(1, [str(binary)]),
        ):
            assert src.generate("iMac19,1") is None


@pytest.mark.unit
class TestLocalIdentitySource:
    def test_table_identity(self, logger, table):
        rec = LocalIdentitySource(logger, table=table, rng=random.Random(7)).generate("iMac19,1")
        assert rec.serial == "SERIAL000001"
        assert rec.board_serial == "BOARD00000000001"
        assert rec.source == "table"
        assert len(rec.hardware_address) == 12
        assert uuid.UUID(rec.system_uuid).version == 4

    def test_seeded_rng_is_reproducible(self, logger, table):
        a = LocalIdentitySource(logger, table=table, rng=random.Random(42)).generate("iMac19,1")
        b = LocalIdentitySource(logger, table=table, rng=random.Random(42)).generate("iMac19,1")
        assert (a.system_uuid, a.hardware_address) == (b.system_uuid, b.hardware_address)

    def test_used_serials_skipped(self, logger, table):
        rec = LocalIdentitySource(logger, table=table).generate("iMac19,1", used={"SERIAL000001"})
        assert rec.serial == "SERIAL000002"

    def test_exhausted(self, logger, table):
        src = LocalIdentitySource(logger, table=table)
        with pytest.raises(IdentityUnavailable):
            src.generate("iMac19,1", used={"SERIAL000001", "SERIAL000002"})

    def test_macserial_preferred(self, logger, table, tmp_path):
        binary = tmp_path / "macserial"
        binary.write_bytes(b"")
        ms = MacserialPairSource(logger, binary)
        with patch.object(ms, "generate", return_value=("MSERIAL00001", "MBOARD0000000001")):
            rec = LocalIdentitySource(logger, table=table, macserial=ms).generate("iMac19,1")
        assert rec.serial == "MSERIAL00001"
        assert rec.source == "macserial"

    def test_macserial_used_serial_falls_back_to_table(self, logger, table, tmp_path):
        binary = tmp_path / "macserial"
        binary.write_bytes(b"")
        ms = MacserialPairSource(logger, binary)
        with patch.object(ms, "generate", return_value=("SERIAL000001", "BOARD00000000001")):
            rec = LocalIdentitySource(logger, table=table, macserial=ms).generate("iMac19,1", used={"SERIAL000001"})
        assert rec.serial == "SERIAL000002"
        assert rec.source == "table"
