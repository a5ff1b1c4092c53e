# SPDX-License-Identifier: LGPL-3.0-or-later
# -*- coding: utf-8 -*-
# smbios2iso/config/config_loader.py
from __future__ import annotations

import argparse
import glob
import json
import logging
from pathlib import Path
from typing import Any, Dict, List

import yaml

from ..core.utils import U


class Config:
    """
    YAML/JSON config files that feed argparse defaults.

    Keys use the argparse dest spelling (`output_dir`, `efi_source`, ...);
    dashes are accepted and normalised. Later files win over earlier ones,
    and explicit CLI flags win over every file.
    """

    @staticmethod
    def expand_configs(logger: logging.Logger, paths: List[str]) -> List[Path]:
        out: List[Path] = []
        for raw in paths:
            pattern = str(Path(raw).expanduser())
            hits = sorted(glob.glob(pattern)) if any(ch in pattern for ch in "*?[") else [pattern]
            if not hits:
                U.die(logger, f"Config glob matched nothing: {raw}", 1)
            for h in hits:
                p = Path(h)
                if not p.is_file():
                    U.die(logger, f"Config file not found: {p}", 1)
                out.append(p)
        return out

    @staticmethod
    def load_one(logger: logging.Logger, path: Path) -> Dict[str, Any]:
        try:
            text = path.read_text(encoding="utf-8")
        except (OSError, UnicodeDecodeError) as e:
            U.die(logger, f"Cannot read config {path}: {e}", 1)
        try:
            if path.suffix.lower() == ".json":
                data = json.loads(text)
            else:
                data = yaml.safe_load(text)
        except (ValueError, yaml.YAMLError) as e:
            U.die(logger, f"Cannot parse config {path}: {e}", 1)
        if data is None:
            return {}
        if not isinstance(data, dict):
            U.die(logger, f"Config {path} must be a mapping at top level", 1)
        logger.debug("Loaded config %s (%d keys)", path, len(data))
        return Config.normalize(data)

    @staticmethod
    def normalize(data: Dict[str, Any]) -> Dict[str, Any]:
        return {str(k).replace("-", "_"): v for k, v in data.items()}

    @staticmethod
    def merge(base: Dict[str, Any], over: Dict[str, Any]) -> Dict[str, Any]:
        out = dict(base)
        for k, v in over.items():
            if isinstance(v, dict) and isinstance(out.get(k), dict):
                out[k] = Config.merge(out[k], v)
            else:
                out[k] = v
        return out

    @staticmethod
    def load_many(logger: logging.Logger, paths: List[Path]) -> Dict[str, Any]:
        conf: Dict[str, Any] = {}
        for p in paths:
            conf = Config.merge(conf, Config.load_one(logger, p))
        return conf

    @staticmethod
    def apply_as_defaults(logger: logging.Logger, parser: argparse.ArgumentParser, conf: Dict[str, Any]) -> None:
        """
        Push config values into the parser (and any subparsers) as defaults.

        Unknown keys are reported at DEBUG level and otherwise ignored.
        """
        if not conf:
            return
        known = set()
        parsers = [parser]
        for action in parser._actions:
            if isinstance(action, argparse._SubParsersAction):
                parsers.extend(action.choices.values())
        for p in parsers:
            dests = {a.dest for a in p._actions}
            hits = {k: v for k, v in conf.items() if k in dests}
            if hits:
                p.set_defaults(**hits)
                known.update(hits)
        for k in sorted(set(conf) - known):
            logger.debug("Config key %r does not match any option; ignored", k)
