# SPDX-License-Identifier: LGPL-3.0-or-later
# -*- coding: utf-8 -*-
# smbios2iso/plist/mutator.py
from __future__ import annotations

import base64
import logging
import plistlib
import re
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, List, Optional, Sequence, Tuple
from xml.parsers.expat import ExpatError

from ..core.exceptions import MalformedDocument, MutationFailed
from ..core.file_ops import backup_file, write_bytes_atomic
from ..core.logger import Log
from ..core.utils import U
from ..identity.model import IdentityRecord
from . import structure as st

PLATFORM_SECTION: Tuple[str, ...] = ("PlatformInfo", "Generic")
NVRAM_BOOT_ARGS_PATH: Tuple[str, ...] = ("NVRAM", "Add", "7C436110-AB2A-4BBB-A880-FE41995C9F82", "boot-args")

NEHALEM_PRODUCT = "MacPro5,1"
NEHALEM_TOKEN = "-nehalem_error_disable"

# (plist key, value tag) in injection order.
IDENTITY_KEYS: Tuple[Tuple[str, str], ...] = (
    ("SystemProductName", "string"),
    ("SystemSerialNumber", "string"),
    ("MLB", "string"),
    ("SystemUUID", "string"),
    ("ROM", "data"),
)

_PROLOG_MARKERS = ("<?xml", "<plist version", "</plist>")


def _identity_values(record: IdentityRecord) -> Dict[str, str]:
    return {
        "SystemProductName": record.product_type,
        "SystemSerialNumber": record.serial,
        "MLB": record.board_serial,
        "SystemUUID": record.system_uuid,
        "ROM": base64.b64encode(record.rom_bytes).decode("ascii"),
    }


def _data_bytes(inner: str) -> bytes:
    return base64.b64decode("".join(inner.split()), validate=True)


@dataclass
class InjectionResult:
    document: Path
    backup: Optional[Path] = None
    changed_keys: Tuple[str, ...] = ()
    boot_args_changed: bool = False


class DocumentMutator:
    """
    Targeted, byte-stable edits of an OpenCore config.plist.

    Only the text between a target value's open and close tags changes;
    indentation, ordering, comments and every other section stay as they
    were. The edited text must still parse with plistlib and carry the
    injected values before it replaces the file, which happens atomically.
    When anything fails the file on disk is left byte-identical.
    """

    def __init__(self, logger: logging.Logger):
        self.logger = logger

    # ------------------------------------------------------------------
    # checks
    # ------------------------------------------------------------------

    @staticmethod
    def read(document: Path) -> str:
        try:
            raw = Path(document).read_bytes()
        except OSError as e:
            raise MalformedDocument(msg=f"Cannot read {document}: {e}", cause=e) from e
        try:
            return raw.decode("utf-8")
        except UnicodeDecodeError as e:
            raise MalformedDocument(msg=f"{document} is not UTF-8 text", cause=e) from e

    def precheck(self, text: str, section: Sequence[str] = PLATFORM_SECTION) -> st.Node:
        """Structure required before any edit; returns the parsed <plist> node."""
        for marker in _PROLOG_MARKERS:
            if marker not in text:
                raise MalformedDocument(msg=f"Document lacks {marker!r}; not an XML plist", context={"marker": marker})
        plist = st.parse(text)
        node = st.lookup(text, plist, section)
        if node is None or node.tag != "dict":
            raise MalformedDocument(msg=f"Section {'/'.join(section)} not found", context={"section": "/".join(section)})

        missing: List[str] = []
        for key, tag in IDENTITY_KEYS:
            v = st.lookup(text, plist, list(section) + [key])
            if v is None:
                missing.append(key)
            elif v.tag != tag:
                raise MalformedDocument(
                    msg=f"{'/'.join(section)}/{key} is <{v.tag}>, expected <{tag}>",
                    context={"key": key},
                )
        if missing:
            raise MalformedDocument(
                msg=f"Section {'/'.join(section)} lacks key(s): {', '.join(missing)}",
                context={"missing": missing},
            )
        return plist

    def _verify(self, text: str, section: Sequence[str], expected: Dict[str, str]) -> None:
        if "</plist>" not in text:
            raise MutationFailed(msg="Edited document lost its closing </plist>")
        try:
            plist = st.parse(text)
            parsed = plistlib.loads(text.encode("utf-8"))
        except (MalformedDocument, plistlib.InvalidFileException, ExpatError, ValueError) as e:
            raise MutationFailed(msg=f"Edited document no longer parses: {e}", cause=e) from e

        generic = parsed
        for name in section:
            generic = generic.get(name) if isinstance(generic, dict) else None
        if not isinstance(generic, dict):
            raise MutationFailed(msg=f"Edited document lost section {'/'.join(section)}")

        for key, tag in IDENTITY_KEYS:
            if key not in expected:
                continue
            node = st.lookup(text, plist, list(section) + [key])
            if node is None:
                raise MutationFailed(msg=f"{key} vanished after edit", context={"key": key})
            if tag == "data":
                want = _data_bytes(expected[key])
                try:
                    got = _data_bytes(node.inner(text))
                except ValueError as e:
                    raise MutationFailed(msg=f"{key} holds invalid base64", cause=e, context={"key": key}) from e
                if got != want or generic.get(key) != want:
                    raise MutationFailed(msg=f"{key} does not hold the injected bytes", context={"key": key})
            elif st.key_text(text, node) != expected[key] or generic.get(key) != expected[key]:
                raise MutationFailed(msg=f"{key} does not hold the injected value", context={"key": key})

    # ------------------------------------------------------------------
    # edits
    # ------------------------------------------------------------------

    def render(self, text: str, section: Sequence[str], record: IdentityRecord) -> str:
        """Return `text` with the five identity values injected (no I/O)."""
        self.precheck(text, section)
        values = _identity_values(record)
        out = text
        for key, tag in IDENTITY_KEYS:
            plist = st.parse(out)
            node = st.lookup(out, plist, list(section) + [key])
            if node is None:
                raise MutationFailed(msg=f"{key} disappeared during injection", context={"key": key})
            inner = values[key] if tag == "data" else st.escape_text(values[key])
            out = st.splice_scalar(out, node, tag, inner)
            Log.trace(self.logger, "Injected %s", key)
        self._verify(out, section, values)
        return out

    def _commit(self, document: Path, original: str, edited: str) -> None:
        data = edited.encode("utf-8")
        try:
            write_bytes_atomic(document, data)
        except OSError as e:
            raise MutationFailed(msg=f"Cannot write {document}: {e}", cause=e) from e
        if document.read_bytes() != data:
            write_bytes_atomic(document, original.encode("utf-8"))
            raise MutationFailed(msg=f"{document} did not read back as written; original restored")

    def inject(
        self,
        document: Path,
        section: Sequence[str],
        record: IdentityRecord,
        *,
        backup: bool = False,
    ) -> InjectionResult:
        document = Path(document)
        log = Log.bind(self.logger, document=document.name, serial=record.serial)
        text = self.read(document)
        self.precheck(text, section)

        backup_path = None
        if backup:
            backup_path = backup_file(document, U.now_ts())
            log.info("Backup written: %s", backup_path)

        log.info(
            "Injecting Type=%s Serial=%s MLB=%s SmUUID=%s ROM=%s",
            record.product_type,
            record.serial,
            record.board_serial,
            record.system_uuid,
            record.hardware_address,
        )

        edited = self.render(text, section, record)
        self._commit(document, text, edited)
        Log.ok(log, f"Identity injected into {'/'.join(section)}")
        return InjectionResult(
            document=document,
            backup=backup_path,
            changed_keys=tuple(k for k, _ in IDENTITY_KEYS),
        )

    # ------------------------------------------------------------------
    # boot-args
    # ------------------------------------------------------------------

    @staticmethod
    def boot_args_for(product_type: str, boot_args: str) -> str:
        """
        boot-args with the Nehalem token present iff `product_type` is MacPro5,1.

        Other tokens and their spacing are kept.
        """
        has = re.search(rf"(?:^|\s){re.escape(NEHALEM_TOKEN)}(?=\s|$)", boot_args) is not None
        if product_type == NEHALEM_PRODUCT:
            if has:
                return boot_args
            return f"{boot_args} {NEHALEM_TOKEN}" if boot_args.strip() else NEHALEM_TOKEN
        if not has:
            return boot_args
        stripped = re.sub(rf"(?:^|\s+){re.escape(NEHALEM_TOKEN)}(?=\s|$)", "", boot_args)
        return stripped.lstrip() if boot_args.startswith(NEHALEM_TOKEN) else stripped

    def update_boot_args(self, document: Path, section: Sequence[str] = PLATFORM_SECTION) -> bool:
        """
        Apply the boot-args rule from the already injected SystemProductName.

        Returns True when the document changed. A document without the NVRAM
        boot-args entry is left alone.
        """
        document = Path(document)
        text = self.read(document)
        plist = st.parse(text)

        product_node = st.lookup(text, plist, list(section) + ["SystemProductName"])
        if product_node is None or product_node.tag != "string":
            raise MalformedDocument(msg="SystemProductName missing; cannot evaluate boot-args")
        product = st.key_text(text, product_node)

        node = st.lookup(text, plist, NVRAM_BOOT_ARGS_PATH)
        if node is None:
            self.logger.info("No NVRAM boot-args entry; boot-args left unchanged")
            return False
        if node.tag != "string":
            raise MalformedDocument(msg=f"boot-args is <{node.tag}>, expected <string>")

        current = st.key_text(text, node)
        wanted = self.boot_args_for(product, current)
        if wanted == current:
            self.logger.debug("boot-args already correct for %s: %r", product, current)
            return False

        edited = st.splice_scalar(text, node, "string", st.escape_text(wanted))
        try:
            parsed = plistlib.loads(edited.encode("utf-8"))
        except (plistlib.InvalidFileException, ExpatError, ValueError) as e:
            raise MutationFailed(msg=f"boot-args edit broke the document: {e}", cause=e) from e
        nv = parsed.get("NVRAM", {}).get("Add", {}).get(NVRAM_BOOT_ARGS_PATH[2], {})
        if nv.get("boot-args") != wanted:
            raise MutationFailed(msg="boot-args did not verify after edit")

        self._commit(document, text, edited)
        verb = "Added" if product == NEHALEM_PRODUCT else "Removed"
        self.logger.info("%s %r %s boot-args (%s)", verb, NEHALEM_TOKEN, "to" if verb == "Added" else "from", product)
        return True

    def mutate(self, document: Path, record: IdentityRecord, *, backup: bool = False) -> InjectionResult:
        """inject() into PlatformInfo/Generic, then the boot-args rule."""
        result = self.inject(document, PLATFORM_SECTION, record, backup=backup)
        result.boot_args_changed = self.update_boot_args(document)
        return result

