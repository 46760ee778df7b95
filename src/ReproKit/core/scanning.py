"""Project statistics scanning and report I/O."""

import json
import logging
import os
import threading
import uuid
from typing import Dict, List, Optional

from .paths import relative_to_root
from .progress import ProgressContext
from .records import (
    AnimationClipRecord, AnimationInfo, AssetKind, AudioClipRecord,
    FileRecord, MaterialRecord, MeshBundleRecord, MeshInfo, PrefabRecord,
    Report, TextureRecord,
)
from .errors import ReportParseError
from .resolver import AssetResolver, HandleKind

logger = logging.getLogger("repro_pipeline.scanning")

DEFAULT_REPORT_FILENAME = "ProjectStats.json"


def unique_paths(paths) -> tuple:
    """Drop empty and repeated paths, keeping first-seen order."""
    seen = set()
    result = []
    for path in paths:
        if not path or path in seen:
            continue
        seen.add(path)
        result.append(path)
    return tuple(result)


def frame_count(frame_rate: float, duration: float) -> int:
    return int(round(frame_rate * duration))


def _prefab_record(rel: str, size: int, handle) -> PrefabRecord:
    meshes: List[Optional[str]] = []
    materials: List[Optional[str]] = []
    # Every renderer contributes its MeshFilter mesh, then skinned meshes,
    # then particle materials.
    for renderer in handle.renderers:
        meshes.append(renderer.filter_mesh_path)
        materials.extend(renderer.material_paths)
    for renderer in handle.renderers:
        if renderer.renderer_type == "SkinnedMeshRenderer":
            meshes.append(renderer.mesh_path)
            materials.extend(renderer.material_paths)
    for renderer in handle.renderers:
        if renderer.renderer_type == "ParticleSystemRenderer":
            materials.extend(renderer.material_paths)
    return PrefabRecord(rel, size, unique_paths(meshes), unique_paths(materials))


def _mesh_bundle_record(resolver: AssetResolver, rel: str, size: int) -> MeshBundleRecord:
    meshes = []
    animations = []
    for sub in resolver.load_sub_assets(rel):
        if sub.kind == HandleKind.MESH:
            meshes.append(MeshInfo(sub.submesh_count, sub.vertex_count, sub.triangle_count))
        elif sub.kind == HandleKind.ANIMATION_CLIP:
            animations.append(AnimationInfo(
                sub.name, frame_count(sub.frame_rate, sub.length), float(sub.length)
            ))
    return MeshBundleRecord(rel, size, tuple(meshes), tuple(animations))


def build_record(resolver: AssetResolver, rel: str, size: int, build_target: str):
    """Classify one project file and return ``(kind, record)``."""
    handle = resolver.resolve(rel)
    if handle is None:
        return AssetKind.FILE, FileRecord(rel, size)

    kind = handle.kind
    try:
        if kind == HandleKind.TEXTURE:
            return AssetKind.TEXTURE, TextureRecord(
                rel, size, handle.width, handle.height,
                handle.pixel_format, handle.dimension,
            )
        if kind == HandleKind.MATERIAL:
            return AssetKind.MATERIAL, MaterialRecord(
                rel, size, handle.shader_path, unique_paths(handle.texture_paths)
            )
        if kind == HandleKind.MODEL:
            return AssetKind.MESH_BUNDLE, _mesh_bundle_record(resolver, rel, size)
        if kind == HandleKind.ANIMATION_CLIP:
            return AssetKind.ANIMATION_CLIP, AnimationClipRecord(
                rel, size, frame_count(handle.frame_rate, handle.length),
                float(handle.length),
            )
        if kind == HandleKind.AUDIO_CLIP:
            settings = resolver.audio_import_settings(rel, build_target)
            return AssetKind.AUDIO_CLIP, AudioClipRecord(
                rel, size, float(handle.length), handle.channels,
                handle.frequency, handle.samples,
                settings.compression_format, settings.quality,
            )
        if kind == HandleKind.PREFAB:
            return AssetKind.PREFAB, _prefab_record(rel, size, handle)
        if kind == HandleKind.SCENE:
            return AssetKind.SCENE, FileRecord(rel, size)
        return AssetKind.FILE, FileRecord(rel, size)
    finally:
        resolver.unload(handle)


def _walk_files(scan_root: str, sidecar_suffix: str) -> List[str]:
    """Files of a directory before its subdirectories, both sorted."""
    found = []
    for root, dirnames, filenames in os.walk(scan_root):
        dirnames.sort()
        for fname in sorted(filenames):
            if not fname.endswith(sidecar_suffix):
                found.append(os.path.join(root, fname))
    return found


def scan_project(
    resolver: AssetResolver,
    project_root: str,
    scan_subdir: str = "Assets",
    build_target: str = "Standalone",
    unload_interval: int = 1000,
    sidecar_suffix: str = ".meta",
    progress: Optional[ProgressContext] = None,
) -> Report:
    """Walk ``<project_root>/<scan_subdir>`` and classify every file."""
    scan_root = os.path.join(project_root, scan_subdir) if scan_subdir else project_root
    items: Dict[AssetKind, list] = {kind: [] for kind in AssetKind}
    if not os.path.isdir(scan_root):
        logger.warning("Nothing to scan: %s is not a directory", scan_root)
        return Report(items)

    files = _walk_files(scan_root, sidecar_suffix)
    total = len(files)
    if progress is not None:
        progress.stage("", 0.0, 1.0)

    count = 0
    for fpath in files:
        rel = relative_to_root(fpath, project_root)
        if progress is not None:
            progress.check_cancelled()
            progress.report(rel, count, total)
        try:
            size = os.path.getsize(fpath)
        except OSError as e:
            logger.warning("Failed to stat %s: %s", fpath, e)
            continue

        kind, record = build_record(resolver, rel, size, build_target)
        items[kind].append(record)
        count += 1
        if unload_interval > 0 and count % unload_interval == 0:
            logger.debug("Releasing cached assets after %d files", count)
            resolver.unload_unused()

    if progress is not None:
        progress.report("", total, total)
    report = Report(items)
    logger.info(f"Scanned {count} files from {scan_root}: {report!r}")
    return report


def save_report(report: Report, path: str):
    """Write ``report`` as indented JSON (atomic replace)."""
    os.makedirs(os.path.dirname(os.path.abspath(path)), exist_ok=True)
    tmp_path = f"{path}.tmp.{os.getpid()}.{threading.get_ident()}.{uuid.uuid4().hex[:8]}"
    try:
        with open(tmp_path, "w", encoding="utf-8") as f:
            json.dump(report.to_dict(), f, indent=2)
            f.write("\n")
            f.flush()
            os.fsync(f.fileno())
        os.replace(tmp_path, path)
    finally:
        if os.path.exists(tmp_path):
            try:
                os.remove(tmp_path)
            except OSError:
                pass
    logger.info(f"Report saved: {path} ({len(report)} entries)")


def load_report(path: str) -> Report:
    """Load a report written by :func:`save_report`."""
    try:
        with open(path, "r", encoding="utf-8") as f:
            data = json.load(f)
    except OSError as e:
        raise OSError(f"Failed to read report '{path}': {e}") from e
    except json.JSONDecodeError as e:
        raise ReportParseError(f"Malformed report '{path}': {e}") from e
    return Report.from_dict(data)
