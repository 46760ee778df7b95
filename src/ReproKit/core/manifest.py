"""Copy manifest accumulation for repro builds."""

import logging
import os
import posixpath
import threading
import uuid
from typing import Iterable, Iterator, List, Optional, Sequence, Set

from .dependencies import collect_dependencies
from .paths import normalize_path, project_file
from .progress import ProgressContext
from .resolver import AssetResolver
from .wildcard import expand_input

logger = logging.getLogger("repro_pipeline.manifest")

DEFAULT_COMMON_FILE_PATTERNS = (
    "ProjectSettings/*.asset",
    "ProjectSettings/*.txt",
    "Assets/*.cginc",
    "Assets/*.hlsl",
    "Assets/*SRPMARKER",
    "Assets/*.dll",
    "Assets/*.cs",
    "Assets/*.rsp",
    "Assets/*.asmdef",
    "Packages/manifest.json",
    "Assets/*package.json",
)


class CopyManifest:
    """Deduplicated set of project-relative paths to copy.

    Paths are normalized on insertion. Iteration is sorted so repeated
    builds copy in the same order.
    """

    def __init__(self, paths: Iterable[str] = ()):
        self._paths: Set[str] = set()
        self.update(paths)

    def add(self, path: str) -> bool:
        """Add ``path``; return True when it was not already present."""
        rel = normalize_path(path)
        if not rel or rel in self._paths:
            return False
        self._paths.add(rel)
        return True

    def update(self, paths: Iterable[str]) -> int:
        return sum(1 for p in paths if self.add(p))

    def __contains__(self, path) -> bool:
        return normalize_path(path) in self._paths

    def __len__(self) -> int:
        return len(self._paths)

    def __iter__(self) -> Iterator[str]:
        return iter(sorted(self._paths))

    def __eq__(self, other) -> bool:
        if isinstance(other, CopyManifest):
            return self._paths == other._paths
        return NotImplemented

    def __repr__(self) -> str:
        return f"CopyManifest({len(self._paths)} paths)"

    def as_set(self) -> frozenset:
        return frozenset(self._paths)

    def directories(self) -> List[str]:
        """Unique parent directories of every entry, sorted ('' for the root)."""
        return sorted({posixpath.dirname(p) for p in self._paths})

    def write_listing(self, path: str):
        """Write the sorted manifest, one path per line, atomically."""
        os.makedirs(os.path.dirname(os.path.abspath(path)), exist_ok=True)
        tmp_path = f"{path}.tmp.{os.getpid()}.{threading.get_ident()}.{uuid.uuid4().hex[:8]}"
        try:
            with open(tmp_path, "w", encoding="utf-8", newline="\n") as f:
                for rel in self:
                    f.write(rel + "\n")
                f.flush()
                os.fsync(f.fileno())
            os.replace(tmp_path, path)
        finally:
            if os.path.exists(tmp_path):
                try:
                    os.remove(tmp_path)
                except OSError:
                    pass
        logger.info("Manifest listing saved: %s (%d entries)", path, len(self))


class ManifestBuilder:
    """Accumulate common files, graphics settings and item dependencies.

    Steps only ever add to the running manifest; their order matters only for
    progress reporting.
    """

    def __init__(
        self,
        project_root: str,
        resolver: AssetResolver,
        common_file_patterns: Sequence[str] = DEFAULT_COMMON_FILE_PATTERNS,
        fixed_point: bool = False,
        progress: Optional[ProgressContext] = None,
    ):
        self.project_root = os.path.abspath(project_root)
        self.resolver = resolver
        self.common_file_patterns = tuple(common_file_patterns)
        self.fixed_point = fixed_point
        self.progress = progress

    def _stage(self, info: str, start: float, end: float):
        if self.progress is not None:
            self.progress.stage(info, start, end)

    def _check_cancelled(self):
        if self.progress is not None:
            self.progress.check_cancelled()

    def add_common_files(self, manifest: CopyManifest) -> int:
        found: Set[str] = set()
        for pattern in self.common_file_patterns:
            self._check_cancelled()
            expand_input(self.project_root, pattern, found)
        added = manifest.update(found)
        logger.info("Common project files: %d matched, %d new", len(found), added)
        return added

    def add_graphics_settings(self, manifest: CopyManifest) -> int:
        assets = self.resolver.graphics_settings_assets()
        settings_files: Set[str] = set()
        if assets.render_pipeline:
            settings_files.add(assets.render_pipeline)
        for shader in assets.shader_overrides:
            if os.path.isfile(project_file(self.project_root, shader)):
                settings_files.add(shader)
            else:
                logger.debug("Skipping shader override not on disk: %s", shader)
        if not settings_files:
            return 0
        added = manifest.update(
            collect_dependencies(settings_files, self.resolver, self.fixed_point)
        )
        logger.info("Graphics settings dependencies: %d new", added)
        return added

    def add_items(self, manifest: CopyManifest, item_paths: Iterable[str]) -> int:
        """Expand ``item_paths`` and add them plus their dependency closure."""
        expanded: Set[str] = set()
        for path in item_paths:
            self._check_cancelled()
            expand_input(self.project_root, path, expanded)
        added = manifest.update(expanded)
        if expanded:
            added += manifest.update(
                collect_dependencies(expanded, self.resolver, self.fixed_point)
            )
        return added

    def build(
        self,
        project_items: Iterable[str],
        input_items: Iterable[str],
    ) -> CopyManifest:
        manifest = CopyManifest()

        self._stage("Finding Files", 0.05, 0.1)
        self.add_common_files(manifest)
        self.add_graphics_settings(manifest)

        self._stage("Collect Dependencies", 0.1, 0.2)
        project_added = self.add_items(manifest, project_items)
        self._check_cancelled()
        input_added = self.add_items(manifest, input_items)
        logger.info(
            "Manifest built: %d files (%d from project items, %d from inputs)",
            len(manifest), project_added, input_added,
        )
        return manifest
