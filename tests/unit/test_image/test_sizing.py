# SPDX-License-Identifier: LGPL-3.0-or-later
from __future__ import annotations

import pytest

from smbios2iso.image.sizing import MIN_IMAGE_MB, image_size_mb, source_size_kb


@pytest.mark.unit
@pytest.mark.parametrize(
    "kb,mb",
    [
        (0, 10),
        (1, 10),
        (8192, 10),
        (8533, 10),
        (8534, 11),
        (100000, 118),
    ],
)
def test_image_size_mb(kb, mb):
    assert image_size_mb(kb) == mb


@pytest.mark.unit
def test_floor():
    assert MIN_IMAGE_MB == 10


@pytest.mark.unit
def test_negative_rejected():
    with pytest.raises(ValueError):
        image_size_mb(-1)


@pytest.mark.unit
def test_source_size_rounds_up(tmp_path):
    (tmp_path / "a.bin").write_bytes(b"x" * 1025)
    (tmp_path / "sub").mkdir()
    (tmp_path / "sub" / "b.bin").write_bytes(b"x" * 1023)
    assert source_size_kb(tmp_path) == 2
    (tmp_path / "c.bin").write_bytes(b"x")
    assert source_size_kb(tmp_path) == 3
