# SPDX-License-Identifier: LGPL-3.0-or-later
# -*- coding: utf-8 -*-
# smbios2iso/orchestrator/stages.py
"""
Pipeline stages for one ISO build.

Each stage is a small object with a `name` and a `run(ctx)` method that
either returns normally or raises. `Pipeline.run()` turns every stage run
into a StageResult, stops at the first failure and always runs the cleanup
stage afterwards, even on KeyboardInterrupt.
"""
from __future__ import annotations

import logging
import os
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence

from ..config.build_config import BuildConfig
from ..core.exceptions import BuildFailed, ValidationError
from ..core.file_ops import copy_tree, count_files
from ..core.logging_utils import log_step
from ..identity.model import IdentityRecord, load_identity_json
from ..image.builder import BootImageResult, FilesystemImageBuilder
from ..iso.assembler import DiscImageAssembler
from ..plist.mutator import DocumentMutator, InjectionResult
from .artifacts import ArtifactWriter
from .workdir import WorkingDirectory


@dataclass
class BuildContext:
    """Mutable state threaded through the stages of one build."""

    logger: logging.Logger
    config: BuildConfig
    workdir: WorkingDirectory
    mutator: DocumentMutator
    image_builder: FilesystemImageBuilder
    assembler: DiscImageAssembler
    artifacts: ArtifactWriter

    identity_data: Optional[Dict[str, Any]] = None
    record: Optional[IdentityRecord] = None
    injection: Optional[InjectionResult] = None
    boot_image: Optional[BootImageResult] = None
    generated: List[Path] = field(default_factory=list)
    iso_path: Optional[Path] = None

    @property
    def build_dir(self) -> Path:
        if self.workdir.path is None:
            raise BuildFailed(msg="Working directory has not been created")
        return self.workdir.path


@dataclass
class StageResult:
    stage: str
    ok: bool
    error: Optional[BaseException] = None
    elapsed: float = 0.0

    @classmethod
    def success(cls, stage: str, elapsed: float) -> "StageResult":
        return cls(stage=stage, ok=True, elapsed=elapsed)

    @classmethod
    def failure(cls, stage: str, error: BaseException, elapsed: float) -> "StageResult":
        return cls(stage=stage, ok=False, error=error, elapsed=elapsed)


class Stage(ABC):
    name: str = "Stage"
    description: str = ""

    @abstractmethod
    def run(self, ctx: BuildContext) -> None:
        ...


class ValidateInputs(Stage):
    name = "ValidateInputs"
    description = "Validating inputs"

    def run(self, ctx: BuildContext) -> None:
        cfg = ctx.config
        if not cfg.efi_source.is_dir():
            raise ValidationError(
                msg=f"EFI source directory not found: {cfg.efi_source}",
                context={"efi_source": str(cfg.efi_source)},
            )
        if not cfg.config_document.is_file():
            raise ValidationError(
                msg=f"{cfg.config_subpath} not found in EFI source {cfg.efi_source}",
                context={"config": str(cfg.config_document)},
            )

        ctx.identity_data = load_identity_json(cfg.identity_json)

        try:
            cfg.output_dir.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise ValidationError(msg=f"Cannot create output directory {cfg.output_dir}: {e}", cause=e) from e
        if not os.access(cfg.output_dir, os.W_OK):
            raise ValidationError(msg=f"Output directory is not writable: {cfg.output_dir}")

        if not cfg.supporting_tools.is_dir():
            ctx.logger.warning("%s not found at %s; the ISO will not include it", cfg.supporting_tools_dirname, cfg.supporting_tools)

        # Tooling problems surface here, before anything is created on disk.
        ctx.image_builder.check()
        packer = ctx.assembler.check()
        ctx.logger.debug("Inputs OK (efi=%s, identity=%s, packer=%s)", cfg.efi_source, cfg.identity_json, packer)


class CreateWorkingDir(Stage):
    name = "CreateWorkingDir"
    description = "Creating build directory"

    def run(self, ctx: BuildContext) -> None:
        ctx.workdir.create()


class CopyBaseAssets(Stage):
    name = "CopyBaseAssets"
    description = "Copying base EFI assets"

    def run(self, ctx: BuildContext) -> None:
        cfg = ctx.config
        try:
            copy_tree(cfg.efi_source, ctx.build_dir)
        except OSError as e:
            raise BuildFailed(msg=f"Copying {cfg.efi_source} failed: {e}", cause=e) from e

        copied = ctx.build_dir / cfg.config_subpath
        if not copied.is_file():
            raise BuildFailed(msg=f"config.plist not found after copy: {copied}")
        ctx.logger.info("📦 Base assets copied (%d files)", count_files(ctx.build_dir))


class InjectIdentity(Stage):
    name = "InjectIdentity"
    description = "Injecting SMBIOS identity into config.plist"

    def run(self, ctx: BuildContext) -> None:
        if ctx.identity_data is None:
            ctx.identity_data = load_identity_json(ctx.config.identity_json)
        ctx.record = IdentityRecord.from_dict(ctx.identity_data)
        ctx.injection = ctx.mutator.mutate(
            ctx.build_dir / ctx.config.config_subpath,
            ctx.record,
            backup=ctx.config.create_backup,
        )


class BuildFilesystemImage(Stage):
    name = "BuildFilesystemImage"
    description = "Building boot image"

    def run(self, ctx: BuildContext) -> None:
        cfg = ctx.config
        ctx.boot_image = ctx.image_builder.build(
            ctx.build_dir / cfg.boot_payload_subpath,
            ctx.build_dir / cfg.boot_image_name,
        )


class CopyAuxiliaryTrees(Stage):
    name = "CopyAuxiliaryTrees"
    description = "Copying supporting tools"

    def run(self, ctx: BuildContext) -> None:
        cfg = ctx.config
        src = cfg.supporting_tools
        if src.is_dir():
            dst = ctx.build_dir / cfg.supporting_tools_dirname
            try:
                copy_tree(src, dst, exclude=())
            except OSError as e:
                raise BuildFailed(msg=f"Copying {src} failed: {e}", cause=e) from e
            ctx.logger.info("🧰 %s copied (%d files)", cfg.supporting_tools_dirname, count_files(dst))
        else:
            ctx.logger.warning("Skipping %s: %s does not exist", cfg.supporting_tools_dirname, src)
        ctx.artifacts.copy_copyright(ctx.build_dir)


class GenerateManifestAndDocs(Stage):
    name = "GenerateManifestAndDocs"
    description = "Generating README, BUILD_INFO and setup script"

    def run(self, ctx: BuildContext) -> None:
        assert ctx.record is not None
        ctx.generated = ctx.artifacts.write_all(ctx.build_dir, ctx.record)


class AssembleDiscImage(Stage):
    name = "AssembleDiscImage"
    description = "Assembling bootable ISO"

    def run(self, ctx: BuildContext) -> None:
        assert ctx.record is not None
        cfg = ctx.config
        out = cfg.output_dir / cfg.iso_name(ctx.record.serial)
        ctx.iso_path = ctx.assembler.assemble(ctx.build_dir, out, cfg.boot_image_name)


class Cleanup(Stage):
    name = "Cleanup"
    description = "Cleaning up build directory"

    def run(self, ctx: BuildContext) -> None:
        ctx.workdir.remove(keep=ctx.config.keep_workdir)


BUILD_STAGES: Sequence[Stage] = (
    ValidateInputs(),
    CreateWorkingDir(),
    CopyBaseAssets(),
    InjectIdentity(),
    BuildFilesystemImage(),
    CopyAuxiliaryTrees(),
    GenerateManifestAndDocs(),
    AssembleDiscImage(),
)


class Pipeline:
    def __init__(self, logger: logging.Logger, stages: Sequence[Stage] = BUILD_STAGES, cleanup: Optional[Stage] = None):
        self.logger = logger
        self.stages = list(stages)
        self.cleanup = cleanup or Cleanup()

    def _run_one(self, stage: Stage, ctx: BuildContext, label: str) -> StageResult:
        t0 = time.time()
        try:
            with log_step(self.logger, label):
                stage.run(ctx)
        except Exception as e:
            return StageResult.failure(stage.name, e, time.time() - t0)
        return StageResult.success(stage.name, time.time() - t0)

    def run(self, ctx: BuildContext) -> List[StageResult]:
        results: List[StageResult] = []
        total = len(self.stages) + 1
        try:
            for i, stage in enumerate(self.stages, 1):
                res = self._run_one(stage, ctx, f"[{i}/{total}] {stage.description or stage.name}")
                results.append(res)
                if not res.ok:
                    break
        finally:
            results.append(self._run_one(self.cleanup, ctx, f"[{total}/{total}] {self.cleanup.description}"))
        return results

    @staticmethod
    def first_failure(results: Sequence[StageResult]) -> Optional[StageResult]:
        for r in results:
            if not r.ok:
                return r
        return None
