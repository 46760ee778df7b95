"""Core utilities -- re-exports all public symbols for convenience."""

from .errors import (
    ReproError,
    ConfigurationError,
    ConflictError,
    SourceMissingError,
    DecodeError,
    ReportParseError,
    ReproCancelledError,
)
from .paths import normalize_path, relative_to_root, project_file, is_within
from .progress import ProgressCallback, ProgressContext
from .records import (
    AssetKind, PixelFormat, TextureDimension, AudioCompressionFormat,
    TextureRecord, MaterialRecord, MeshInfo, AnimationInfo, MeshBundleRecord,
    AnimationClipRecord, AudioClipRecord, PrefabRecord, FileRecord,
    AssetRecord, RECORD_TYPES, Report,
)
from .resolver import AssetResolver, ProjectResolver, HandleKind
from .wildcard import expand_input, expand_inputs
from .dependencies import collect_dependencies, wants_fixed_point
from .manifest import CopyManifest, ManifestBuilder
from .io import load_image, save_png, rescale_array, rescale_texture, staged_import
from .copier import CopyResult, FileCopier, copy_manifest
from .scanning import scan_project, save_report, load_report
from .logging import setup_logging

__all__ = [
    "ReproError", "ConfigurationError", "ConflictError", "SourceMissingError",
    "DecodeError", "ReportParseError", "ReproCancelledError",
    "normalize_path", "relative_to_root", "project_file", "is_within",
    "ProgressCallback", "ProgressContext",
    "AssetKind", "PixelFormat", "TextureDimension", "AudioCompressionFormat",
    "TextureRecord", "MaterialRecord", "MeshInfo", "AnimationInfo",
    "MeshBundleRecord", "AnimationClipRecord", "AudioClipRecord",
    "PrefabRecord", "FileRecord", "AssetRecord", "RECORD_TYPES", "Report",
    "AssetResolver", "ProjectResolver", "HandleKind",
    "expand_input", "expand_inputs",
    "collect_dependencies", "wants_fixed_point",
    "CopyManifest", "ManifestBuilder",
    "load_image", "save_png", "rescale_array", "rescale_texture", "staged_import",
    "CopyResult", "FileCopier", "copy_manifest",
    "scan_project", "save_report", "load_report",
    "setup_logging",
]
