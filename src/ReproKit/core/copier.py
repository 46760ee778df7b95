"""Copy a manifest into a target project tree."""

import logging
import os
import shutil
import stat
from dataclasses import dataclass, field
from pathlib import Path
from typing import Iterable, List, Optional

from .errors import DecodeError, SourceMissingError
from .io import DIRECT_TEXTURE_EXTENSIONS, IMPORT_TEXTURE_EXTENSIONS, rescale_texture
from .manifest import CopyManifest
from .paths import project_file
from .progress import ProgressContext

logger = logging.getLogger("repro_pipeline.copier")

DEFAULT_SIDECAR_SUFFIX = ".meta"


@dataclass
class CopyResult:
    """Counters for one copy pass.

    ``skipped`` counts primary files that already existed at the destination.
    ``failed`` holds DecodeErrors for textures that produced no output.
    """

    copied: int = 0
    skipped: int = 0
    rescaled: int = 0
    sidecars: int = 0
    directories: int = 0
    failed: List[DecodeError] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.failed


def make_writable(path: str):
    """Clear the read-only attribute of ``path``."""
    mode = os.stat(path).st_mode
    os.chmod(path, mode | stat.S_IWRITE | stat.S_IREAD)


def copy_plain(source: str, destination: str):
    if not os.path.isfile(source):
        raise SourceMissingError(source)
    shutil.copyfile(source, destination)
    make_writable(destination)


class FileCopier:
    """Copy manifest entries from ``source_root`` to ``target_root``.

    Existing destination files are skipped, so running the same copy twice
    performs no redundant work. Textures are rescaled instead of copied when
    ``scale`` is greater than 1.
    """

    def __init__(
        self,
        source_root: str,
        target_root: str,
        scale: int = 1,
        scratch_dir: Optional[str] = None,
        direct_extensions: Iterable[str] = DIRECT_TEXTURE_EXTENSIONS,
        import_extensions: Iterable[str] = IMPORT_TEXTURE_EXTENSIONS,
        sidecar_suffix: str = DEFAULT_SIDECAR_SUFFIX,
        max_image_pixels: int = 0,
        progress: Optional[ProgressContext] = None,
    ):
        self.source_root = os.path.abspath(source_root)
        self.target_root = os.path.abspath(target_root)
        self.scale = int(scale)
        self.scratch_dir = scratch_dir
        self.direct_extensions = tuple(e.lower() for e in direct_extensions)
        self.import_extensions = tuple(e.lower() for e in import_extensions)
        self.sidecar_suffix = sidecar_suffix
        self.max_image_pixels = max_image_pixels
        self.progress = progress

    def is_rescalable(self, path: str) -> bool:
        ext = Path(path).suffix.lower()
        return ext in self.direct_extensions or ext in self.import_extensions

    def create_directories(self, manifest: CopyManifest) -> int:
        created = 0
        for directory in manifest.directories():
            dest_dir = project_file(self.target_root, directory) if directory else self.target_root
            if not os.path.isdir(dest_dir):
                created += 1
            os.makedirs(dest_dir, exist_ok=True)
        return created

    def _copy_primary(self, rel: str, source: str, destination: str, result: CopyResult):
        if os.path.exists(destination):
            result.skipped += 1
            return
        if not os.path.isfile(source):
            raise SourceMissingError(rel)

        if self.scale > 1 and self.is_rescalable(rel):
            if self.scratch_dir is None:
                raise ValueError("scratch_dir is required to rescale textures")
            try:
                rescale_texture(
                    source, destination, self.scale, self.scratch_dir,
                    import_extensions=self.import_extensions,
                    max_pixels=self.max_image_pixels,
                )
            except DecodeError as exc:
                logger.error("%s", exc)
                result.failed.append(DecodeError(rel, exc.reason))
                return
            make_writable(destination)
            result.rescaled += 1
        else:
            copy_plain(source, destination)
        result.copied += 1

    def _copy_sidecar(self, source: str, destination: str, result: CopyResult):
        meta_source = source + self.sidecar_suffix
        meta_destination = destination + self.sidecar_suffix
        if os.path.isfile(meta_source) and not os.path.exists(meta_destination):
            copy_plain(meta_source, meta_destination)
            result.sidecars += 1

    def copy(self, manifest: CopyManifest) -> CopyResult:
        """Copy every entry of ``manifest``.

        Raises SourceMissingError on the first entry whose source is gone;
        files copied before it are left in place.
        """
        result = CopyResult()
        result.directories = self.create_directories(manifest)

        total = len(manifest)
        for i, rel in enumerate(manifest):
            if self.progress is not None:
                self.progress.check_cancelled()
                self.progress.report(os.path.basename(rel), i, total)

            source = project_file(self.source_root, rel)
            destination = project_file(self.target_root, rel)
            self._copy_primary(rel, source, destination, result)
            self._copy_sidecar(source, destination, result)

        if self.progress is not None:
            self.progress.report("", total, total)
        logger.info(
            "Copied %d files (%d rescaled, %d skipped, %d sidecars, %d failed) to %s",
            result.copied, result.rescaled, result.skipped, result.sidecars,
            len(result.failed), self.target_root,
        )
        return result


def copy_manifest(
    manifest: CopyManifest,
    source_root: str,
    target_root: str,
    scale: int = 1,
    scratch_dir: Optional[str] = None,
    progress: Optional[ProgressContext] = None,
    **kwargs,
) -> CopyResult:
    """Convenience wrapper around :class:`FileCopier`."""
    copier = FileCopier(
        source_root, target_root, scale=scale, scratch_dir=scratch_dir,
        progress=progress, **kwargs,
    )
    return copier.copy(manifest)
