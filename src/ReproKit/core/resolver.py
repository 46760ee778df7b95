"""Asset resolver interface and a headless implementation for text projects.

The repro pipeline and the statistics scanner never inspect asset formats
themselves; they ask an :class:`AssetResolver` for typed handles and for
dependency lists. :class:`ProjectResolver` answers those questions for a
Unity-style project on disk (``.meta`` GUID sidecars, text-serialized
scenes/prefabs/materials) without a running editor.
"""

import json
import logging
import os
import struct
from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import ClassVar, Dict, Iterable, List, Optional, Set, Tuple

import trimesh
import yaml
from mutagen import File as MutagenFile
from mutagen import MutagenError
from PIL import Image, UnidentifiedImageError

from .paths import normalize_path, project_file
from .records import AudioCompressionFormat, PixelFormat, TextureDimension
from .unity_yaml import (
    BUILTIN_GUIDS, GuidIndex, UnityObject, guid_references, importer_section,
    is_text_asset, load_documents, read_meta, read_text, reference_guid,
)

logger = logging.getLogger("repro_pipeline.resolver")

IMAGE_EXTENSIONS = (
    ".png", ".jpg", ".jpeg", ".tga", ".psd", ".tif", ".tiff", ".gif",
    ".bmp", ".iff", ".pict", ".dds", ".exr", ".hdr",
)
MODEL_EXTENSIONS = (
    ".fbx", ".obj", ".glb", ".gltf", ".dae", ".ply", ".stl", ".3ds", ".blend",
)
AUDIO_EXTENSIONS = (".wav", ".mp3", ".ogg", ".aif", ".aiff", ".flac", ".m4a")
ANIMATION_EXTENSIONS = (".anim",)
MATERIAL_EXTENSION = ".mat"
PREFAB_EXTENSION = ".prefab"
SCENE_EXTENSION = ".unity"

GRAPHICS_SETTINGS_PATH = "ProjectSettings/GraphicsSettings.asset"
BUILTIN_SHADER_SLOTS = (
    "m_Deferred", "m_DeferredReflections", "m_ScreenSpaceShadows",
    "m_LegacyDeferred", "m_DepthNormals", "m_MotionVectors",
    "m_LightHalo", "m_LensFlare",
)
_CUSTOM_SHADER_MODE = 2

# Build target group ids used as keys of per-platform importer overrides.
BUILD_TARGET_GROUP_IDS = {
    "Standalone": 1, "iPhone": 4, "iOS": 4, "Android": 7, "WebGL": 13,
    "WSA": 14, "PS4": 19, "XboxOne": 21, "tvOS": 25, "Switch": 27,
    "Stadia": 29, "PS5": 33,
}

RENDERER_TYPES = {
    "MeshRenderer", "SkinnedMeshRenderer", "ParticleSystemRenderer",
    "LineRenderer", "TrailRenderer", "SpriteRenderer", "BillboardRenderer",
}

_TEXTURE_SHAPES = {
    1: TextureDimension.TEX2D,
    2: TextureDimension.CUBE,
    4: TextureDimension.ARRAY,
    8: TextureDimension.TEX3D,
}
_MODE_FORMATS = {
    "1": PixelFormat.R8,
    "L": PixelFormat.R8,
    "P": PixelFormat.RGBA32,
    "PA": PixelFormat.RGBA32,
    "LA": PixelFormat.RG16,
    "RGB": PixelFormat.RGB24,
    "YCbCr": PixelFormat.RGB24,
    "CMYK": PixelFormat.RGB24,
    "RGBA": PixelFormat.RGBA32,
    "RGBX": PixelFormat.RGBA32,
    "I;16": PixelFormat.R16,
    "I;16B": PixelFormat.R16,
    "I;16L": PixelFormat.R16,
    "I;16N": PixelFormat.R16,
    "I": PixelFormat.R16,
    "F": PixelFormat.RFLOAT,
}
_DDS_FORMATS = {
    "DXT1": PixelFormat.DXT1,
    "DXT3": PixelFormat.DXT3,
    "DXT5": PixelFormat.DXT5,
    "ATI1": PixelFormat.BC4,
    "BC4": PixelFormat.BC4,
    "ATI2": PixelFormat.BC5,
    "BC5": PixelFormat.BC5,
    "BC6H": PixelFormat.BC6H,
    "BC7": PixelFormat.BC7,
}
_GLB_MAGIC = b"glTF"
_GLB_JSON_CHUNK = 0x4E4F534A


class HandleKind(Enum):
    TEXTURE = "texture"
    MATERIAL = "material"
    MODEL = "model"
    MESH = "mesh"
    ANIMATION_CLIP = "animation_clip"
    AUDIO_CLIP = "audio_clip"
    PREFAB = "prefab"
    SCENE = "scene"
    GENERIC = "generic"


@dataclass(frozen=True)
class TextureHandle:
    kind: ClassVar[HandleKind] = HandleKind.TEXTURE
    path: str
    width: int
    height: int
    pixel_format: PixelFormat
    dimension: TextureDimension


@dataclass(frozen=True)
class MaterialHandle:
    kind: ClassVar[HandleKind] = HandleKind.MATERIAL
    path: str
    shader_path: str
    texture_paths: Tuple[str, ...]


@dataclass(frozen=True)
class ModelHandle:
    kind: ClassVar[HandleKind] = HandleKind.MODEL
    path: str


@dataclass(frozen=True)
class MeshHandle:
    kind: ClassVar[HandleKind] = HandleKind.MESH
    path: str
    name: str
    submesh_count: int
    vertex_count: int
    triangle_count: int


@dataclass(frozen=True)
class AnimationClipHandle:
    kind: ClassVar[HandleKind] = HandleKind.ANIMATION_CLIP
    path: str
    name: str
    frame_rate: float
    length: float


@dataclass(frozen=True)
class AudioClipHandle:
    kind: ClassVar[HandleKind] = HandleKind.AUDIO_CLIP
    path: str
    length: float
    channels: int
    frequency: int
    samples: int


@dataclass(frozen=True)
class RendererInfo:
    """A renderer component found while walking an object hierarchy.

    ``filter_mesh_path`` is the mesh of a MeshFilter on the same object;
    ``mesh_path`` is the renderer's own mesh (skinned renderers).
    """

    renderer_type: str
    filter_mesh_path: Optional[str]
    mesh_path: Optional[str]
    material_paths: Tuple[Optional[str], ...]


@dataclass(frozen=True)
class PrefabHandle:
    kind: ClassVar[HandleKind] = HandleKind.PREFAB
    path: str
    renderers: Tuple[RendererInfo, ...]


@dataclass(frozen=True)
class SceneHandle:
    kind: ClassVar[HandleKind] = HandleKind.SCENE
    path: str


@dataclass(frozen=True)
class GenericHandle:
    kind: ClassVar[HandleKind] = HandleKind.GENERIC
    path: str


@dataclass(frozen=True)
class AudioImportSettings:
    compression_format: AudioCompressionFormat = AudioCompressionFormat.VORBIS
    quality: float = 1.0


@dataclass(frozen=True)
class GraphicsSettingsAssets:
    render_pipeline: Optional[str] = None
    shader_overrides: Tuple[str, ...] = ()


class AssetResolver(ABC):
    """Collaborator that types assets and reports their dependencies."""

    # False when dependencies_of() only reports direct references.
    reports_transitive_dependencies: bool = True

    @abstractmethod
    def resolve(self, path: str):
        """Return a typed handle for ``path`` or None when unresolved."""

    @abstractmethod
    def dependencies_of(self, paths: Iterable[str]) -> Set[str]:
        """Return the dependency paths of the whole batch ``paths``."""

    @abstractmethod
    def load_sub_assets(self, path: str) -> list:
        """Return every sub-asset handle stored in a compound container."""

    def unload(self, handle) -> None:
        """Release a handle returned by :meth:`resolve`."""

    def unload_unused(self) -> None:
        """Release any cached handles that are no longer referenced."""

    def audio_import_settings(self, path: str, build_target: str) -> AudioImportSettings:
        return AudioImportSettings()

    def graphics_settings_assets(self) -> GraphicsSettingsAssets:
        return GraphicsSettingsAssets()


class ProjectResolver(AssetResolver):
    """Resolve assets of an on-disk project with ``.meta`` GUID sidecars."""

    reports_transitive_dependencies = True

    def __init__(self, project_root: str, prefab_nesting_limit: int = 16):
        self.project_root = os.path.abspath(project_root)
        self.guids = GuidIndex(self.project_root)
        self._prefab_nesting_limit = prefab_nesting_limit
        self._handles: Dict[str, object] = {}
        self._documents: Dict[str, List[UnityObject]] = {}
        self._direct_deps: Dict[str, Tuple[str, ...]] = {}

    # ------------------------------------------
    # Resolution
    # ------------------------------------------

    def _abs(self, rel_path: str) -> str:
        return project_file(self.project_root, rel_path)

    def resolve(self, path: str):
        rel = normalize_path(path)
        if rel in self._handles:
            return self._handles[rel]
        abs_path = self._abs(rel)
        if not os.path.isfile(abs_path):
            logger.debug("Cannot resolve missing asset: %s", rel)
            return None

        ext = Path(rel).suffix.lower()
        try:
            if ext in IMAGE_EXTENSIONS:
                handle = self._load_texture(rel, abs_path)
            elif ext == MATERIAL_EXTENSION:
                handle = self._load_material(rel)
            elif ext in MODEL_EXTENSIONS:
                handle = ModelHandle(rel)
            elif ext in ANIMATION_EXTENSIONS:
                handle = self._load_animation_clip(rel)
            elif ext in AUDIO_EXTENSIONS:
                handle = self._load_audio_clip(rel, abs_path)
            elif ext == PREFAB_EXTENSION:
                handle = PrefabHandle(rel, tuple(self._prefab_renderers(rel, set())))
            elif ext == SCENE_EXTENSION:
                handle = SceneHandle(rel)
            else:
                handle = GenericHandle(rel)
        except (OSError, ValueError, yaml.YAMLError, MutagenError) as exc:
            logger.warning("Failed to resolve %s: %s", rel, exc)
            return None

        if handle is not None:
            self._handles[rel] = handle
        return handle

    def unload(self, handle) -> None:
        if handle is None:
            return
        self._handles.pop(handle.path, None)
        self._documents.pop(handle.path, None)

    def unload_unused(self) -> None:
        logger.debug(
            "Releasing %d cached handles and %d parsed documents",
            len(self._handles), len(self._documents),
        )
        self._handles.clear()
        self._documents.clear()

    def _documents_for(self, rel: str) -> List[UnityObject]:
        docs = self._documents.get(rel)
        if docs is None:
            docs = load_documents(self._abs(rel))
            self._documents[rel] = docs
        return docs

    def _ref_path(self, ref) -> Optional[str]:
        return self.guids.path_for(reference_guid(ref))

    @staticmethod
    def _pixel_format(img: Image.Image) -> PixelFormat:
        if img.format == "DDS":
            fourcc = str(getattr(img, "pixel_format", "") or "").upper()
            if fourcc in _DDS_FORMATS:
                return _DDS_FORMATS[fourcc]
        return _MODE_FORMATS.get(img.mode, PixelFormat.UNKNOWN)

    def _load_texture(self, rel: str, abs_path: str) -> Optional[TextureHandle]:
        try:
            with Image.open(abs_path) as img:
                width, height = img.size
                pixel_format = self._pixel_format(img)
        except (UnidentifiedImageError, Image.DecompressionBombError) as exc:
            logger.debug("Pillow cannot read %s: %s", rel, exc)
            return None
        importer = importer_section(read_meta(abs_path), "TextureImporter")
        try:
            shape = int(importer.get("textureShape", 1))
        except (TypeError, ValueError):
            shape = 1
        return TextureHandle(
            path=rel,
            width=width,
            height=height,
            pixel_format=pixel_format,
            dimension=_TEXTURE_SHAPES.get(shape, TextureDimension.TEX2D),
        )

    def _load_material(self, rel: str) -> Optional[MaterialHandle]:
        for obj in self._documents_for(rel):
            if obj.type_name != "Material":
                continue
            data = obj.data
            shader_path = self._ref_path(data.get("m_Shader")) or ""
            saved = data.get("m_SavedProperties") or {}
            textures = []
            for _, prop in _iter_tex_envs(saved.get("m_TexEnvs")):
                path = self._ref_path(prop.get("m_Texture"))
                if path:
                    textures.append(path)
            return MaterialHandle(rel, shader_path, tuple(textures))
        logger.debug("No Material document in %s", rel)
        return None

    def _load_animation_clip(self, rel: str) -> Optional[AnimationClipHandle]:
        for obj in self._documents_for(rel):
            if obj.type_name != "AnimationClip":
                continue
            data = obj.data
            settings = data.get("m_AnimationClipSettings") or {}
            start = float(settings.get("m_StartTime", 0.0) or 0.0)
            stop = float(settings.get("m_StopTime", 0.0) or 0.0)
            return AnimationClipHandle(
                path=rel,
                name=str(data.get("m_Name") or Path(rel).stem),
                frame_rate=float(data.get("m_SampleRate", 60.0) or 0.0),
                length=max(stop - start, 0.0),
            )
        logger.debug("No AnimationClip document in %s", rel)
        return None

    def _load_audio_clip(self, rel: str, abs_path: str) -> Optional[AudioClipHandle]:
        audio = MutagenFile(abs_path)
        if audio is None or audio.info is None:
            logger.debug("mutagen does not recognize %s", rel)
            return None
        info = audio.info
        length = float(getattr(info, "length", 0.0) or 0.0)
        frequency = int(getattr(info, "sample_rate", 0) or 0)
        return AudioClipHandle(
            path=rel,
            length=length,
            channels=int(getattr(info, "channels", 0) or 0),
            frequency=frequency,
            samples=int(round(length * frequency)),
        )

    def audio_import_settings(self, path: str, build_target: str) -> AudioImportSettings:
        importer = importer_section(read_meta(self._abs(path)), "AudioImporter")
        settings = importer.get("defaultSettings") or {}
        overrides = importer.get("platformSettingOverrides") or {}
        if isinstance(overrides, dict):
            target_keys = {str(build_target)}
            if build_target in BUILD_TARGET_GROUP_IDS:
                target_keys.add(str(BUILD_TARGET_GROUP_IDS[build_target]))
            for key, value in overrides.items():
                if str(key) in target_keys and isinstance(value, dict):
                    settings = value
                    break
        try:
            quality = float(settings.get("quality", 1.0))
        except (TypeError, ValueError):
            quality = 1.0
        return AudioImportSettings(
            compression_format=AudioCompressionFormat.from_importer_id(
                settings.get("compressionFormat", 1)
            ),
            quality=min(max(quality, 0.0), 1.0),
        )

    def _prefab_renderers(self, rel: str, visiting: Set[str]) -> List[RendererInfo]:
        """Collect renderers in document order, expanding nested prefab instances."""
        if rel in visiting or len(visiting) >= self._prefab_nesting_limit:
            logger.warning("Skipping recursive or too deeply nested prefab: %s", rel)
            return []
        visiting = visiting | {rel}

        docs = self._documents_for(rel)
        filter_meshes: Dict[int, Optional[str]] = {}
        for obj in docs:
            if obj.type_name == "MeshFilter":
                filter_meshes[_object_id(obj.data.get("m_GameObject"))] = (
                    self._ref_path(obj.data.get("m_Mesh"))
                )

        renderers: List[RendererInfo] = []
        for obj in docs:
            if obj.type_name in RENDERER_TYPES:
                data = obj.data
                materials = tuple(
                    self._ref_path(ref) for ref in (data.get("m_Materials") or [])
                )
                mesh_path = None
                if obj.type_name == "SkinnedMeshRenderer":
                    mesh_path = self._ref_path(data.get("m_Mesh"))
                renderers.append(RendererInfo(
                    renderer_type=obj.type_name,
                    filter_mesh_path=filter_meshes.get(_object_id(data.get("m_GameObject"))),
                    mesh_path=mesh_path,
                    material_paths=materials,
                ))
            elif obj.type_name == "PrefabInstance":
                source = self._ref_path(obj.data.get("m_SourcePrefab"))
                if source and os.path.isfile(self._abs(source)):
                    renderers.extend(self._prefab_renderers(source, visiting))
        return renderers

    # ------------------------------------------
    # Compound containers
    # ------------------------------------------

    def load_sub_assets(self, path: str) -> list:
        rel = normalize_path(path)
        abs_path = self._abs(rel)
        ext = Path(rel).suffix.lower()
        if ext not in MODEL_EXTENSIONS or not os.path.isfile(abs_path):
            return []

        handles: list = []
        try:
            scene = trimesh.load(abs_path, force="scene", process=False)
        except Exception as exc:
            logger.warning("Cannot read meshes from %s: %s", rel, exc)
        else:
            for name, geometry in scene.geometry.items():
                faces = getattr(geometry, "faces", None)
                if faces is None:
                    continue
                handles.append(MeshHandle(
                    path=rel,
                    name=str(name),
                    submesh_count=1,
                    vertex_count=int(len(geometry.vertices)),
                    triangle_count=int(len(faces)),
                ))

        if ext in (".gltf", ".glb"):
            try:
                handles.extend(
                    AnimationClipHandle(rel, name, rate, length)
                    for name, rate, length in read_gltf_animations(abs_path)
                )
            except (OSError, ValueError, KeyError, IndexError, TypeError, struct.error) as exc:
                logger.warning("Cannot read animations from %s: %s", rel, exc)
        return handles

    # ------------------------------------------
    # Dependencies
    # ------------------------------------------

    def _direct_dependencies(self, rel: str) -> Tuple[str, ...]:
        cached = self._direct_deps.get(rel)
        if cached is not None:
            return cached
        abs_path = self._abs(rel)
        deps: List[str] = []
        if os.path.isfile(abs_path) and is_text_asset(abs_path):
            try:
                text = read_text(abs_path)
            except OSError as exc:
                logger.warning("Failed to read %s: %s", rel, exc)
                text = ""
            for guid in sorted(guid_references(text)):
                if guid in BUILTIN_GUIDS:
                    continue
                dep = self.guids.path_for(guid)
                if dep is None:
                    logger.debug("%s references unknown GUID %s", rel, guid)
                    continue
                if dep != rel and os.path.isfile(self._abs(dep)):
                    deps.append(dep)
        result = tuple(deps)
        self._direct_deps[rel] = result
        return result

    def dependencies_of(self, paths: Iterable[str]) -> Set[str]:
        """Return the transitive dependency closure of the batch, inputs included."""
        result: Set[str] = set()
        pending = [normalize_path(p) for p in paths]
        while pending:
            rel = pending.pop()
            if rel in result:
                continue
            result.add(rel)
            for dep in self._direct_dependencies(rel):
                if dep not in result:
                    pending.append(dep)
        return result

    def graphics_settings_assets(self) -> GraphicsSettingsAssets:
        if not os.path.isfile(self._abs(GRAPHICS_SETTINGS_PATH)):
            return GraphicsSettingsAssets()
        try:
            docs = self._documents_for(GRAPHICS_SETTINGS_PATH)
        except (OSError, yaml.YAMLError) as exc:
            logger.warning("Failed to read %s: %s", GRAPHICS_SETTINGS_PATH, exc)
            return GraphicsSettingsAssets()

        render_pipeline = None
        shaders: List[str] = []
        for obj in docs:
            if obj.type_name != "GraphicsSettings":
                continue
            render_pipeline = self._ref_path(obj.data.get("m_CustomRenderPipeline"))
            if render_pipeline:
                logger.info("Render pipeline asset %s", render_pipeline)
            for slot in BUILTIN_SHADER_SLOTS:
                entry = obj.data.get(slot)
                if not isinstance(entry, dict) or entry.get("m_Mode") != _CUSTOM_SHADER_MODE:
                    continue
                shader = self._ref_path(entry.get("m_Shader"))
                if shader:
                    logger.info("Shader %s", shader)
                    shaders.append(shader)
        return GraphicsSettingsAssets(render_pipeline, tuple(shaders))


def _object_id(ref) -> Optional[int]:
    if isinstance(ref, dict):
        return ref.get("fileID")
    return None


def _iter_tex_envs(tex_envs):
    """Yield ``(property, mapping)`` pairs from either serialized layout."""
    if isinstance(tex_envs, list):
        for entry in tex_envs:
            if isinstance(entry, dict):
                for name, prop in entry.items():
                    if isinstance(prop, dict):
                        yield name, prop
    elif isinstance(tex_envs, dict):
        for name, prop in tex_envs.items():
            if isinstance(prop, dict):
                yield name, prop


def _read_gltf_json(path: str) -> dict:
    if path.lower().endswith(".glb"):
        with open(path, "rb") as f:
            header = f.read(12)
            magic, _version, _length = struct.unpack("<4sII", header)
            if magic != _GLB_MAGIC:
                raise ValueError(f"Not a GLB container: {path}")
            chunk_length, chunk_type = struct.unpack("<II", f.read(8))
            if chunk_type != _GLB_JSON_CHUNK:
                raise ValueError(f"GLB first chunk is not JSON: {path}")
            return json.loads(f.read(chunk_length).decode("utf-8"))
    with open(path, "r", encoding="utf-8") as f:
        return json.load(f)


def read_gltf_animations(path: str) -> List[Tuple[str, float, float]]:
    """Return ``(name, frame_rate, length)`` for each glTF animation.

    Length is the latest sampler input time; the frame rate is derived from
    the densest sampler's keyframe count.
    """
    doc = _read_gltf_json(path)
    accessors = doc.get("accessors") or []
    clips = []
    for index, animation in enumerate(doc.get("animations") or []):
        length = 0.0
        keyframes = 0
        for sampler in animation.get("samplers") or []:
            accessor = accessors[sampler["input"]]
            max_values = accessor.get("max") or [0.0]
            length = max(length, float(max_values[0]))
            keyframes = max(keyframes, int(accessor.get("count", 0)))
        frame_rate = (keyframes - 1) / length if length > 0 and keyframes > 1 else 0.0
        name = animation.get("name") or f"animation_{index}"
        clips.append((str(name), frame_rate, length))
    return clips
