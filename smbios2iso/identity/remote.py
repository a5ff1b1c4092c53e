# SPDX-License-Identifier: LGPL-3.0-or-later
# -*- coding: utf-8 -*-
# smbios2iso/identity/remote.py
"""
Remote serial-checker endpoint.

The endpoint hands out one validated identity per POST. Two attempts at
most: the first verifies TLS against the host CA bundle, the second (only
after a transport failure) disables certificate verification. The second
attempt is a trust downgrade and is always logged as such.
"""
from __future__ import annotations

import json
import logging
import os
from dataclasses import dataclass
from typing import Any, Optional, Union

import requests
import urllib3

from ..core.exceptions import ValidationError
from ..core.logger import Log
from .model import IdentityRecord

DEFAULT_ENDPOINT = "https://api.olliebot.ai/webhook/macos-serial-checker-4fcdf009-38eb-49c5-ba28-bfc42178536c"
DEFAULT_TIMEOUT = 10.0
SYSTEM_CA_BUNDLE = "/etc/ssl/certs/ca-certificates.crt"

_RESPONSE_FIELDS = ("type", "serial", "boardserial", "smuuid", "applerom")


@dataclass
class RemoteOutcome:
    """
    What one fetch produced.

    `record` is set on success. Otherwise `reason` says why there is none:
    "unavailable" (empty / "None" body), "incomplete" (fields missing),
    "invalid" (body not usable) or "transport" (both attempts failed).
    """

    record: Optional[IdentityRecord] = None
    reason: Optional[str] = None
    detail: str = ""
    relaxed_tls: bool = False
    status: Any = None


def _normalise_rom(value: str) -> str:
    return value.replace(":", "").replace("-", "").strip().upper()


class RemoteIdentitySource:
    def __init__(
        self,
        logger: logging.Logger,
        *,
        endpoint: str = DEFAULT_ENDPOINT,
        timeout: float = DEFAULT_TIMEOUT,
        ca_bundle: Optional[str] = SYSTEM_CA_BUNDLE,
        http_client: Optional[Any] = None,  # For testing/mocking
    ) -> None:
        if timeout <= 0:
            raise ValueError(f"Invalid timeout: {timeout}")
        self.logger = logger
        self.endpoint = endpoint
        self.timeout = float(timeout)
        self.ca_bundle = ca_bundle
        self._http_client = http_client or requests

    def _verify_first(self) -> Union[str, bool]:
        if self.ca_bundle and os.path.isfile(self.ca_bundle):
            return self.ca_bundle
        return True

    def _post(self, verify: Union[str, bool]) -> Any:
        return self._http_client.post(self.endpoint, data=b"", timeout=self.timeout, verify=verify)

    def fetch(self) -> RemoteOutcome:
        relaxed = False
        try:
            resp = self._post(self._verify_first())
        except requests.exceptions.RequestException as e:
            self.logger.info("Identity endpoint attempt 1 failed: %s", e)
            Log.warn(
                self.logger,
                "Retrying identity endpoint WITHOUT certificate verification (transport trust downgraded)",
                endpoint=self.endpoint,
            )
            urllib3.disable_warnings(urllib3.exceptions.InsecureRequestWarning)
            relaxed = True
            try:
                resp = self._post(False)
            except requests.exceptions.RequestException as e2:
                return RemoteOutcome(reason="transport", detail=str(e2), relaxed_tls=True)

        code = int(getattr(resp, "status_code", 200) or 200)
        if code >= 400:
            return RemoteOutcome(reason="invalid", detail=f"HTTP {code}", relaxed_tls=relaxed)

        outcome = self.parse(resp.text or "")
        outcome.relaxed_tls = relaxed
        return outcome

    def parse(self, body: str) -> RemoteOutcome:
        text = (body or "").strip()
        if not text or text == "None":
            return RemoteOutcome(reason="unavailable", detail="endpoint has no identity available")

        try:
            data = json.loads(text)
        except ValueError as e:
            return RemoteOutcome(reason="invalid", detail=f"response is not JSON: {e}")
        if not isinstance(data, dict):
            return RemoteOutcome(reason="invalid", detail="response is not a JSON object")

        missing = [k for k in _RESPONSE_FIELDS if not str(data.get(k) or "").strip()]
        if missing:
            return RemoteOutcome(reason="incomplete", detail=f"missing {', '.join(missing)}", status=data.get("status"))

        # status=false means the serial is available (not registered).
        self.logger.debug("Identity endpoint status=%r", data.get("status"))
        try:
            record = IdentityRecord(
                product_type=str(data["type"]).strip(),
                serial=str(data["serial"]).strip(),
                board_serial=str(data["boardserial"]).strip(),
                system_uuid=str(data["smuuid"]).strip().upper(),
                hardware_address=_normalise_rom(str(data["applerom"])),
                source="api",
            )
        except ValidationError as e:
            return RemoteOutcome(reason="invalid", detail=str(e), status=data.get("status"))
        return RemoteOutcome(record=record, status=data.get("status"))

