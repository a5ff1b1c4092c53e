# SPDX-License-Identifier: LGPL-3.0-or-later
from __future__ import annotations

import pytest

from conftest import MINIMAL_CONFIG_PLIST
from smbios2iso.core.exceptions import MalformedDocument
from smbios2iso.plist import structure as st


@pytest.mark.unit
class TestParse:
    def test_lookup_nested_value(self):
        text = MINIMAL_CONFIG_PLIST
        plist = st.parse(text)
        node = st.lookup(text, plist, ["PlatformInfo", "Generic", "SystemSerialNumber"])
        assert node is not None
        assert node.tag == "string"
        assert node.inner(text) == "W00000000001"

    def test_lookup_missing(self):
        plist = st.parse(MINIMAL_CONFIG_PLIST)
        assert st.lookup(MINIMAL_CONFIG_PLIST, plist, ["PlatformInfo", "Nope"]) is None
        assert st.lookup(MINIMAL_CONFIG_PLIST, plist, ["Misc", "Boot", "Timeout", "Deeper"]) is None

    def test_tags_inside_comments_are_ignored(self):
        text = MINIMAL_CONFIG_PLIST.replace(
            "<!-- PlatformInfo is filled per VM -->",
            "<!-- <key>PlatformInfo</key><dict> -->",
        )
        plist = st.parse(text)
        assert st.lookup(text, plist, ["PlatformInfo", "Generic", "MLB"]) is not None

    def test_self_closing_values(self):
        plist = st.parse(MINIMAL_CONFIG_PLIST)
        node = st.lookup(MINIMAL_CONFIG_PLIST, plist, ["PlatformInfo", "Automatic"])
        assert node.tag == "true"
        assert node.self_closing

    def test_escaped_key_text(self):
        text = '<?xml version="1.0"?><plist version="1.0"><dict><key>a&amp;b</key><string>x</string></dict></plist>'
        keys = [k for k, _kn, _vn in st.dict_items(text, st.top_dict(st.parse(text)))]
        assert keys == ["a&b"]

    @pytest.mark.parametrize(
        "text",
        [
            "<plist><dict><key>a</key><string>x</dict></plist>",
            "<plist><dict>",
            "<plist><dict/></plist><plist><dict/></plist>",
        ],
    )
    def test_malformed(self, text):
        with pytest.raises(MalformedDocument):
            st.parse(text)

    def test_key_without_value(self):
        text = "<plist><dict><key>lonely</key></dict></plist>"
        with pytest.raises(MalformedDocument):
            list(st.dict_items(text, st.top_dict(st.parse(text))))


@pytest.mark.unit
class TestSplice:
    def test_only_inner_bytes_change(self):
        text = MINIMAL_CONFIG_PLIST
        node = st.lookup(text, st.parse(text), ["PlatformInfo", "Generic", "MLB"])
        out = st.splice_scalar(text, node, "string", "NEWBOARD")
        assert out == text.replace("M0000000000000001", "NEWBOARD")

    def test_self_closing_is_expanded(self):
        text = "<plist><dict><key>a</key><string/></dict></plist>"
        node = st.lookup(text, st.parse(text), ["a"])
        assert st.splice_scalar(text, node, "string", "v") == "<plist><dict><key>a</key><string>v</string></dict></plist>"

    def test_wrong_tag(self):
        text = MINIMAL_CONFIG_PLIST
        node = st.lookup(text, st.parse(text), ["PlatformInfo", "Generic", "ROM"])
        with pytest.raises(MalformedDocument):
            st.splice_scalar(text, node, "string", "x")

    def test_escape(self):
        assert st.escape_text("a<b&c") == "a&lt;b&amp;c"
