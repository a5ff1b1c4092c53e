# SPDX-License-Identifier: LGPL-3.0-or-later
from __future__ import annotations

import json
from dataclasses import dataclass

import pytest
import requests

from fakes.fake_logger import FakeLogger
from smbios2iso.identity.remote import RemoteIdentitySource

GOOD_BODY = json.dumps(
    {
        "type": "iMac19,1",
        "serial": "C02XG0FDH7JY",
        "boardserial": "C02839303QXH69FJA",
        "smuuid": "a1b2c3d4-e5f6-4711-8899-aabbccddeeff",
        "applerom": "a8:66:7f:1c:2d:3e",
        "status": False,
    }
)


@dataclass
class FakeResponse:
    status_code: int = 200
    text: str = ""


class FakeHttp:
    """Stands in for the `requests` module: replays responses or raises."""

    def __init__(self, *outcomes):
        self.outcomes = list(outcomes)
        self.calls = []

    def post(self, url, data=None, timeout=None, verify=None):
        self.calls.append({"url": url, "timeout": timeout, "verify": verify})
        out = self.outcomes.pop(0)
        if isinstance(out, BaseException):
            raise out
        return out


def _source(logger, http, **kw):
    kw.setdefault("ca_bundle", None)
    return RemoteIdentitySource(logger, endpoint="https://id.example.test/hook", http_client=http, **kw)


@pytest.mark.unit
class TestRemoteIdentitySource:
    def test_good_response(self, logger):
        http = FakeHttp(FakeResponse(200, GOOD_BODY))
        out = _source(logger, http, timeout=3).fetch()

        rec = out.record
        assert rec is not None
        assert rec.serial == "C02XG0FDH7JY"
        assert rec.board_serial == "C02839303QXH69FJA"
        assert rec.system_uuid == "A1B2C3D4-E5F6-4711-8899-AABBCCDDEEFF"
        assert rec.hardware_address == "A8667F1C2D3E"
        assert rec.source == "api"
        assert out.relaxed_tls is False
        assert http.calls == [{"url": "https://id.example.test/hook", "timeout": 3.0, "verify": True}]

    @pytest.mark.parametrize("body", ["None", "", "  None\n"])
    def test_nothing_available(self, logger, body):
        out = _source(logger, FakeHttp(FakeResponse(200, body))).fetch()
        assert out.record is None
        assert out.reason == "unavailable"

    def test_http_error(self, logger):
        out = _source(logger, FakeHttp(FakeResponse(400, "bad"))).fetch()
        assert out.record is None
        assert out.reason == "invalid"
        assert "400" in out.detail

    def test_incomplete_fields(self, logger):
        body = json.dumps({"type": "iMac19,1", "serial": "C02XG0FDH7JY"})
        out = _source(logger, FakeHttp(FakeResponse(200, body))).fetch()
        assert out.reason == "incomplete"
        assert "boardserial" in out.detail

    @pytest.mark.security
    def test_serial_with_shell_characters_is_invalid(self, logger):
        body = json.loads(GOOD_BODY)
        body["serial"] = "C02XG0FDH7JY$(reboot)"
        out = _source(logger, FakeHttp(FakeResponse(200, json.dumps(body)))).fetch()
        assert out.record is None
        assert out.reason == "invalid"
        assert "Serial" in out.detail

    def test_not_json(self, logger):
        out = _source(logger, FakeHttp(FakeResponse(200, "<html>"))).fetch()
        assert out.reason == "invalid"

    def test_transport_error_retries_without_verification(self, logger):
        http = FakeHttp(requests.exceptions.SSLError("certificate verify failed"), FakeResponse(200, GOOD_BODY))
        out = _source(logger, http).fetch()

        assert out.record is not None
        assert out.relaxed_tls is True
        assert [c["verify"] for c in http.calls] == [True, False]

    def test_both_attempts_fail(self, logger):
        http = FakeHttp(
            requests.exceptions.ConnectionError("refused"),
            requests.exceptions.ConnectTimeout("timed out"),
        )
        out = _source(logger, http).fetch()
        assert out.record is None
        assert out.reason == "transport"
        assert len(http.calls) == 2

    def test_ca_bundle_used_when_present(self, logger, tmp_path):
        bundle = tmp_path / "ca.crt"
        bundle.write_text("-----BEGIN CERTIFICATE-----\n", encoding="utf-8")
        http = FakeHttp(FakeResponse(200, GOOD_BODY))
        _source(logger, http, ca_bundle=str(bundle)).fetch()
        assert http.calls[0]["verify"] == str(bundle)

    def test_invalid_timeout(self, logger):
        with pytest.raises(ValueError):
            RemoteIdentitySource(logger, timeout=0)


@pytest.mark.security
def test_relaxed_tls_retry_is_announced():
    logger = FakeLogger()
    http = FakeHttp(requests.exceptions.SSLError("self signed certificate"), FakeResponse(200, "None"))
    out = RemoteIdentitySource(logger, endpoint="https://id.example.test/hook", http_client=http, ca_bundle=None).fetch()

    assert out.reason == "unavailable"
    assert out.relaxed_tls is True
    assert any("WITHOUT certificate verification" in m for m in logger.messages("warning"))
