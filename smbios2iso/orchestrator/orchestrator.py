# SPDX-License-Identifier: LGPL-3.0-or-later
# -*- coding: utf-8 -*-
# smbios2iso/orchestrator/orchestrator.py

from __future__ import annotations

import logging
import sys
import uuid
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, List, Optional

from rich.console import Console
from rich.panel import Panel

from ..config.build_config import BuildConfig
from ..core.exceptions import stage_failed
from ..core.file_ops import write_bytes_atomic
from ..core.logger import Log, log_file_of
from ..core.utils import U
from ..image.builder import FilesystemImageBuilder
from ..iso.assembler import DiscImageAssembler
from ..plist.mutator import DocumentMutator
from .artifacts import ArtifactWriter
from .stages import BuildContext, Pipeline, StageResult
from .workdir import WorkingDirectory


@dataclass(frozen=True)
class DiscImageDescriptor:
    path: Path
    serial: str
    product_type: str
    size_bytes: int
    sha256: Optional[str] = None

    @property
    def name(self) -> str:
        return self.path.name

    def to_dict(self) -> Dict[str, Any]:
        return {
            "path": str(self.path),
            "name": self.name,
            "serial": self.serial,
            "product_type": self.product_type,
            "size_bytes": self.size_bytes,
            "sha256": self.sha256,
        }


class BuildOrchestrator:
    """
    Runs one custom ISO build end to end.

    The pipeline stops at the first failing stage and always removes the
    working directory afterwards. A failure surfaces as BuildFailed naming
    the stage, with the underlying error as its cause.
    """

    def __init__(
        self,
        logger: logging.Logger,
        config: BuildConfig,
        *,
        image_builder: Optional[FilesystemImageBuilder] = None,
        assembler: Optional[DiscImageAssembler] = None,
        mutator: Optional[DocumentMutator] = None,
        build_id: Optional[str] = None,
        compute_checksum: bool = True,
    ) -> None:
        self.logger = logger
        self.config = config
        self.build_id = build_id or uuid.uuid4().hex[:8]
        self.image_builder = image_builder or FilesystemImageBuilder(
            logger,
            volume_label=config.volume_label,
            check_subpath=config.image_check_subpath,
            build_id=self.build_id,
        )
        self.assembler = assembler or DiscImageAssembler(
            logger,
            volume_id=config.iso_volume_id,
            boot_catalog=config.boot_catalog_name,
        )
        self.mutator = mutator or DocumentMutator(logger)
        self.compute_checksum = compute_checksum
        self.results: List[StageResult] = []

        Log.trace(self.logger, "BuildOrchestrator init: build_id=%s config=%r", self.build_id, config.to_dict())

    def _context(self) -> BuildContext:
        return BuildContext(
            logger=self.logger,
            config=self.config,
            workdir=WorkingDirectory(self.logger, temp_root=self.config.temp_root, build_id=self.build_id),
            mutator=self.mutator,
            image_builder=self.image_builder,
            assembler=self.assembler,
            artifacts=ArtifactWriter(self.logger, self.config),
        )

    def build_custom_image(self) -> DiscImageDescriptor:
        Log.banner(self.logger, "Custom OpenCore ISO build")
        ctx = self._context()
        self.results = Pipeline(self.logger).run(ctx)

        failed = Pipeline.first_failure(self.results[:-1])
        cleanup = self.results[-1]
        if failed is not None:
            assert failed.error is not None
            err = stage_failed(failed.stage, failed.error)
            self._report_failure(err)
            raise err from failed.error
        if not cleanup.ok:
            self.logger.warning("Cleanup failed: %s", cleanup.error)

        assert ctx.iso_path is not None and ctx.record is not None
        iso = ctx.iso_path
        size = iso.stat().st_size if iso.is_file() else 0
        if size == 0:
            # Never report success without a non-empty artifact.
            err = stage_failed("AssembleDiscImage", FileNotFoundError(f"{iso} is missing or empty"))
            self._report_failure(err)
            raise err

        descriptor = DiscImageDescriptor(
            path=iso,
            serial=ctx.record.serial,
            product_type=ctx.record.product_type,
            size_bytes=size,
            sha256=U.checksum(iso) if self.compute_checksum else None,
        )

        if self.config.output_name_file is not None:
            write_bytes_atomic(self.config.output_name_file, (descriptor.name + "\n").encode("utf-8"))
            self.logger.info("ISO name written to %s", self.config.output_name_file)

        self._report_success(descriptor)
        return descriptor

    # ------------------------------------------------------------------
    # reporting
    # ------------------------------------------------------------------

    def _report_failure(self, err: Any) -> None:
        Log.fail(self.logger, f"Build failed at stage {err.stage}: {err.cause}")
        ctx = err.context or {}
        if ctx.get("exit_code") is not None:
            self.logger.error("Tool exit code: %s", ctx["exit_code"])
        if ctx.get("output_tail"):
            self.logger.error("Last output lines:\n%s", ctx["output_tail"])
        log_file = log_file_of(self.logger)
        if log_file:
            self.logger.error("See log file: %s", log_file)

    def _report_success(self, d: DiscImageDescriptor) -> None:
        lines = [
            f"ISO File: {d.path}",
            f"Model:    {d.product_type}",
            f"Serial:   {d.serial}",
            f"Size:     {U.human_bytes(d.size_bytes)}",
        ]
        if d.sha256:
            lines.append(f"SHA256:   {d.sha256}")
        if sys.stderr.isatty():
            Console(stderr=True).print(Panel("\n".join(lines), title="Custom OpenCore ISO Build Complete!", expand=True))
        Log.ok(self.logger, f"Custom OpenCore ISO build complete: {d.path}")
        for line in lines[1:]:
            self.logger.info("  %s", line)
