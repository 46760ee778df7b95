"""Orchestrate repro project creation and project statistics collection.

`ReproPipeline` validates the requested target, builds the copy manifest
from common files, graphics settings and item dependencies, and copies it
into a fresh project tree.
"""

import logging
import os
import shlex
import shutil
import stat
import subprocess
import tempfile
import threading
import time
from dataclasses import dataclass, field
from typing import Callable, List, Optional

from .config import PersistedSettings, ReproConfig, TEXTURE_SCALE_FACTORS
from .core import (
    AssetResolver, ConfigurationError, ConflictError, CopyManifest, CopyResult,
    DecodeError, FileCopier, ManifestBuilder, ProgressCallback, ProgressContext,
    Report, is_within, save_report, scan_project, wants_fixed_point,
)

logger = logging.getLogger("repro_pipeline")

ConfirmOverwrite = Callable[[str], Optional[bool]]


@dataclass
class ReproResult:
    """Outcome of one repro build."""

    target: str
    manifest: CopyManifest
    copy: CopyResult = field(default_factory=CopyResult)
    elapsed_seconds: float = 0.0
    dry_run: bool = False

    @property
    def failed(self) -> List[DecodeError]:
        return self.copy.failed

    @property
    def ok(self) -> bool:
        return self.copy.ok


def remove_tree_contents(path: str):
    """Delete everything below ``path``, read-only files included."""
    for root, dirnames, filenames in os.walk(path, topdown=False):
        for name in filenames:
            fpath = os.path.join(root, name)
            if not os.path.islink(fpath):
                os.chmod(fpath, stat.S_IWRITE | stat.S_IREAD)
            os.remove(fpath)
        for name in dirnames:
            dpath = os.path.join(root, name)
            if os.path.islink(dpath):
                os.remove(dpath)
            else:
                os.chmod(dpath, stat.S_IRWXU)
                os.rmdir(dpath)


def _is_non_empty_dir(path: str) -> bool:
    return os.path.isdir(path) and bool(os.listdir(path))


class ReproPipeline:
    """Create a cut-down repro copy of a project.

    ``confirm_overwrite(target)`` is asked before an existing non-empty
    target is deleted; anything but True declines.
    """

    def __init__(
        self,
        config: ReproConfig,
        resolver: AssetResolver,
        project_root: str,
        progress_callback: Optional[ProgressCallback] = None,
        confirm_overwrite: Optional[ConfirmOverwrite] = None,
    ):
        self.config = config
        self.resolver = resolver
        self.project_root = os.path.abspath(project_root)
        self._progress_callback = progress_callback
        self._confirm_overwrite = confirm_overwrite
        self._cancel_event = threading.Event()

    def request_cancel(self):
        """Request cooperative cancellation before the next file."""
        self._cancel_event.set()

    def _progress(self, title: str) -> ProgressContext:
        return ProgressContext(
            title,
            callback=self._progress_callback,
            cancel_event=self._cancel_event,
            show_bar=self.config.show_progress,
        )

    # ------------------------------------------
    # Validation
    # ------------------------------------------

    def validate(self, settings: PersistedSettings) -> str:
        """Return the absolute target path or raise ConfigurationError."""
        target = settings.target_path
        if not target:
            raise ConfigurationError("Target project name and location must both be set")
        target = os.path.abspath(target)
        if os.path.exists(target) and not os.path.isdir(target):
            raise ConfigurationError(f"Target path is a file: {target}")
        if not os.path.isdir(target) and not os.path.isdir(os.path.dirname(target)):
            raise ConfigurationError(
                f"Target path is invalid; parent directory does not exist: {target}"
            )
        if is_within(target, self.project_root) or is_within(self.project_root, target):
            raise ConfigurationError(
                f"Target {target} must not overlap the source project {self.project_root}"
            )
        if not settings.has_inputs():
            raise ConfigurationError("No input assets specified")
        if settings.texture_scale_factor not in TEXTURE_SCALE_FACTORS:
            raise ConfigurationError(
                f"texture_scale_factor must be one of {list(TEXTURE_SCALE_FACTORS)}, "
                f"got {settings.texture_scale_factor}"
            )
        return target

    def _resolve_conflict(self, target: str, progress: ProgressContext):
        if not _is_non_empty_dir(target):
            return
        confirmed = False
        if self._confirm_overwrite is not None:
            confirmed = self._confirm_overwrite(target) is True
        if not confirmed:
            logger.info("Overwrite of %s declined; nothing changed.", target)
            raise ConflictError(target)
        progress.stage("Deleting Old Project", 0.0, 0.05)
        logger.info("Deleting existing project at %s", target)
        remove_tree_contents(target)

    # ------------------------------------------
    # Build
    # ------------------------------------------

    def build_manifest(
        self, settings: PersistedSettings, progress: Optional[ProgressContext] = None
    ) -> CopyManifest:
        builder = ManifestBuilder(
            self.project_root,
            self.resolver,
            common_file_patterns=self.config.common_file_patterns,
            fixed_point=wants_fixed_point(self.config.dependencies.mode, self.resolver),
            progress=progress,
        )
        return builder.build(
            [item.path for item in settings.project_items if not item.is_empty],
            [item.path for item in settings.input_items if not item.is_empty],
        )

    def run(self, settings: PersistedSettings, dry_run: bool = False) -> ReproResult:
        """Build the repro project described by ``settings``.

        Raises ConfigurationError or ConflictError before anything on disk
        changes; SourceMissingError aborts the copy and leaves completed
        files in place.
        """
        target = self.validate(settings)
        settings.resolve_items(self.resolver)
        start = time.monotonic()

        with self._progress("Creating Repro Project") as progress:
            if dry_run:
                manifest = self.build_manifest(settings, progress)
                logger.info("Dry run: %d files would be copied to %s", len(manifest), target)
                return ReproResult(
                    target, manifest,
                    elapsed_seconds=time.monotonic() - start, dry_run=True,
                )

            self._resolve_conflict(target, progress)
            scratch_dir = tempfile.mkdtemp(prefix="repro_scratch_")
            try:
                manifest = self.build_manifest(settings, progress)
                progress.stage("Assets: ", 0.2, 1.0)
                copier = FileCopier(
                    self.project_root,
                    target,
                    scale=settings.texture_scale_factor,
                    scratch_dir=scratch_dir,
                    direct_extensions=self.config.texture.direct_extensions,
                    import_extensions=self.config.texture.import_extensions,
                    sidecar_suffix=self.config.copy.sidecar_suffix,
                    max_image_pixels=self.config.texture.max_image_pixels,
                    progress=progress,
                )
                copy_result = copier.copy(manifest)
            finally:
                shutil.rmtree(scratch_dir, ignore_errors=True)

        result = ReproResult(
            target, manifest, copy_result, time.monotonic() - start,
        )
        if result.failed:
            logger.warning(
                "%d texture(s) failed to decode and were not written: %s",
                len(result.failed), ", ".join(e.path for e in result.failed),
            )
        logger.info(
            "Repro project created at %s: %d files in %.1fs",
            target, len(manifest), result.elapsed_seconds,
        )

        if settings.open_after_export:
            self.open_project(target)
        return result

    def open_project(self, target: str) -> Optional[subprocess.Popen]:
        """Launch ``editor_command`` on ``target``; a no-op when unset."""
        command = self.config.editor_command
        if not command:
            logger.warning("open_after_export is set but editor_command is empty")
            return None
        args = shlex.split(command.format(path=target))
        logger.info("Opening %s", target)
        return subprocess.Popen(args)

    # ------------------------------------------
    # Statistics
    # ------------------------------------------

    def collect_statistics(self, output_path: Optional[str] = None) -> Report:
        """Scan the project and write the report (default beside the project)."""
        stats = self.config.stats
        with self._progress("Collecting Project Statistics") as progress:
            report = scan_project(
                self.resolver,
                self.project_root,
                scan_subdir=stats.scan_subdir,
                build_target=stats.build_target,
                unload_interval=stats.unload_interval,
                sidecar_suffix=self.config.copy.sidecar_suffix,
                progress=progress,
            )
        save_report(report, output_path or os.path.join(self.project_root, stats.report_filename))
        return report
