"""Typed asset records and the aggregate statistics report.

Records form a tagged union keyed by :class:`AssetKind`; each variant is an
independent frozen dataclass carrying only its own fields plus the common
``relative_path`` / ``size_bytes`` pair.
"""

import dataclasses
from dataclasses import dataclass
from enum import Enum
from types import MappingProxyType
from typing import Dict, Iterable, Iterator, Mapping, Tuple, Union

from .errors import ReportParseError
from .paths import validate_relative_path

REPORT_VERSION = 1


class AssetKind(Enum):
    """Report sections, one per record variant."""

    TEXTURE = "textures"
    MATERIAL = "materials"
    MESH_BUNDLE = "mesh_bundles"
    ANIMATION_CLIP = "animation_clips"
    AUDIO_CLIP = "audio_clips"
    PREFAB = "prefabs"
    SCENE = "scenes"
    FILE = "files"


class PixelFormat(Enum):
    """Texture storage formats as reported by the resolver."""

    ALPHA8 = "alpha8"
    R8 = "r8"
    RG16 = "rg16"
    RGB24 = "rgb24"
    RGBA32 = "rgba32"
    R16 = "r16"
    RGB48 = "rgb48"
    RGBA64 = "rgba64"
    RFLOAT = "rfloat"
    DXT1 = "dxt1"
    DXT3 = "dxt3"
    DXT5 = "dxt5"
    BC4 = "bc4"
    BC5 = "bc5"
    BC6H = "bc6h"
    BC7 = "bc7"
    UNKNOWN = "unknown"


class TextureDimension(Enum):
    TEX2D = "2d"
    TEX3D = "3d"
    CUBE = "cube"
    ARRAY = "array"


class AudioCompressionFormat(Enum):
    """Audio import compression formats (numeric ids follow the importer)."""

    PCM = "pcm"
    VORBIS = "vorbis"
    ADPCM = "adpcm"
    MP3 = "mp3"
    VAG = "vag"
    HEVAG = "hevag"
    XMA = "xma"
    AAC = "aac"
    GCADPCM = "gcadpcm"
    ATRAC9 = "atrac9"

    @classmethod
    def from_importer_id(cls, value) -> "AudioCompressionFormat":
        order = list(cls)
        try:
            return order[int(value)]
        except (TypeError, ValueError, IndexError):
            return cls.VORBIS


def _checked_path(record, field_name: str = "relative_path"):
    object.__setattr__(record, field_name, validate_relative_path(getattr(record, field_name)))
    if record.size_bytes < 0:
        raise ValueError(f"size_bytes must be >= 0, got {record.size_bytes}")


@dataclass(frozen=True)
class TextureRecord:
    relative_path: str
    size_bytes: int
    width: int
    height: int
    pixel_format: PixelFormat
    dimension: TextureDimension

    def __post_init__(self):
        _checked_path(self)


@dataclass(frozen=True)
class MaterialRecord:
    relative_path: str
    size_bytes: int
    shader_path: str
    texture_paths: Tuple[str, ...] = ()

    def __post_init__(self):
        _checked_path(self)


@dataclass(frozen=True)
class MeshInfo:
    submesh_count: int
    vertex_count: int
    triangle_count: int


@dataclass(frozen=True)
class AnimationInfo:
    name: str
    frame_count: int
    duration_seconds: float


@dataclass(frozen=True)
class MeshBundleRecord:
    """Compound container (e.g. an FBX) holding meshes and animation clips."""

    relative_path: str
    size_bytes: int
    meshes: Tuple[MeshInfo, ...] = ()
    animations: Tuple[AnimationInfo, ...] = ()

    def __post_init__(self):
        _checked_path(self)

    @property
    def mesh_count(self) -> int:
        return len(self.meshes)

    @property
    def animation_count(self) -> int:
        return len(self.animations)


@dataclass(frozen=True)
class AnimationClipRecord:
    relative_path: str
    size_bytes: int
    frame_count: int
    duration_seconds: float

    def __post_init__(self):
        _checked_path(self)


@dataclass(frozen=True)
class AudioClipRecord:
    relative_path: str
    size_bytes: int
    duration_seconds: float
    channel_count: int
    sample_rate: int
    sample_count: int
    compression_format: AudioCompressionFormat
    compression_quality: float

    def __post_init__(self):
        _checked_path(self)
        if not 0.0 <= self.compression_quality <= 1.0:
            raise ValueError(
                f"compression_quality must be in [0, 1], got {self.compression_quality}"
            )


@dataclass(frozen=True)
class PrefabRecord:
    relative_path: str
    size_bytes: int
    mesh_paths: Tuple[str, ...] = ()
    material_paths: Tuple[str, ...] = ()

    def __post_init__(self):
        _checked_path(self)


@dataclass(frozen=True)
class FileRecord:
    """Scenes and any file type without type-specific metadata."""

    relative_path: str
    size_bytes: int

    def __post_init__(self):
        _checked_path(self)


AssetRecord = Union[
    TextureRecord, MaterialRecord, MeshBundleRecord, AnimationClipRecord,
    AudioClipRecord, PrefabRecord, FileRecord,
]

RECORD_TYPES: Dict[AssetKind, type] = {
    AssetKind.TEXTURE: TextureRecord,
    AssetKind.MATERIAL: MaterialRecord,
    AssetKind.MESH_BUNDLE: MeshBundleRecord,
    AssetKind.ANIMATION_CLIP: AnimationClipRecord,
    AssetKind.AUDIO_CLIP: AudioClipRecord,
    AssetKind.PREFAB: PrefabRecord,
    AssetKind.SCENE: FileRecord,
    AssetKind.FILE: FileRecord,
}

_NESTED_TYPES = {"meshes": MeshInfo, "animations": AnimationInfo}
_ENUM_FIELDS = {
    "pixel_format": PixelFormat,
    "dimension": TextureDimension,
    "compression_format": AudioCompressionFormat,
}


def record_to_dict(record) -> dict:
    """Return a JSON-ready dictionary for a record (enums as values)."""
    data = {}
    for f in dataclasses.fields(record):
        value = getattr(record, f.name)
        if isinstance(value, Enum):
            value = value.value
        elif f.name in _NESTED_TYPES:
            value = [dataclasses.asdict(item) for item in value]
        elif isinstance(value, tuple):
            value = list(value)
        data[f.name] = value
    if isinstance(record, MeshBundleRecord):
        data["mesh_count"] = record.mesh_count
        data["animation_count"] = record.animation_count
    return data


def record_from_dict(kind: AssetKind, data: Mapping):
    """Rebuild a record of ``kind``; unknown keys are ignored."""
    if not isinstance(data, Mapping):
        raise ReportParseError(
            f"{kind.value} entry must be a mapping, got {type(data).__name__}"
        )
    record_type = RECORD_TYPES[kind]
    kwargs = {}
    try:
        for f in dataclasses.fields(record_type):
            if f.name not in data:
                if f.default is not dataclasses.MISSING:
                    continue
                raise KeyError(f.name)
            value = data[f.name]
            if f.name in _ENUM_FIELDS:
                value = _ENUM_FIELDS[f.name](value)
            elif f.name in _NESTED_TYPES:
                value = tuple(_NESTED_TYPES[f.name](**item) for item in value)
            elif isinstance(value, list):
                value = tuple(value)
            kwargs[f.name] = value
        return record_type(**kwargs)
    except KeyError as exc:
        raise ReportParseError(
            f"{kind.value} entry is missing required field {exc}"
        ) from exc
    except (TypeError, ValueError) as exc:
        raise ReportParseError(f"Invalid {kind.value} entry {dict(data)!r}: {exc}") from exc


class Report:
    """Immutable mapping from asset kind to its ordered records."""

    def __init__(self, items: Mapping[AssetKind, Iterable] = None):
        frozen = {kind: () for kind in AssetKind}
        for kind, records in (items or {}).items():
            records = tuple(records)
            expected = RECORD_TYPES[kind]
            for record in records:
                if not isinstance(record, expected):
                    raise TypeError(
                        f"{kind.value} expects {expected.__name__}, "
                        f"got {type(record).__name__}"
                    )
            frozen[kind] = records
        self._items = MappingProxyType(frozen)

    def __getitem__(self, kind: AssetKind) -> Tuple:
        return self._items[kind]

    def __iter__(self) -> Iterator[Tuple[AssetKind, object]]:
        for kind in AssetKind:
            for record in self._items[kind]:
                yield kind, record

    def __len__(self) -> int:
        return sum(len(records) for records in self._items.values())

    def __eq__(self, other) -> bool:
        if not isinstance(other, Report):
            return NotImplemented
        return dict(self._items) == dict(other._items)

    def __repr__(self) -> str:
        counts = ", ".join(f"{k.value}={n}" for k, n in self.counts().items() if n)
        return f"Report({counts})"

    def counts(self) -> Dict[AssetKind, int]:
        return {kind: len(records) for kind, records in self._items.items()}

    def total_size_bytes(self) -> int:
        return sum(record.size_bytes for _, record in self)

    def to_dict(self) -> dict:
        data = {"report_version": REPORT_VERSION}
        for kind in AssetKind:
            data[kind.value] = [record_to_dict(r) for r in self._items[kind]]
        return data

    @classmethod
    def from_dict(cls, data) -> "Report":
        if not isinstance(data, Mapping):
            raise ReportParseError(
                f"Report must be a mapping, got {type(data).__name__}"
            )
        items = {}
        for kind in AssetKind:
            entries = data.get(kind.value, [])
            if not isinstance(entries, list):
                raise ReportParseError(f"Report section '{kind.value}' must be a list")
            items[kind] = [record_from_dict(kind, entry) for entry in entries]
        return cls(items)
