"""Define typed configuration models and persisted wizard settings.

Use `ReproConfig` to load, validate, and persist runtime settings, and
`PersistedSettings` for the per-project repro selection that is written
back after every change.
"""

import dataclasses
import os
import logging
import threading
import yaml
from dataclasses import dataclass, field
from typing import List, Optional, Tuple
from enum import Enum

from .core.errors import ConfigurationError, ReportParseError
from .core.manifest import DEFAULT_COMMON_FILE_PATTERNS
from .core.dependencies import DEPENDENCY_MODES
from .core.io import DIRECT_TEXTURE_EXTENSIONS, IMPORT_TEXTURE_EXTENSIONS

logger = logging.getLogger("repro_pipeline.config")

TEXTURE_SCALE_FACTORS: Tuple[int, ...] = (1, 2, 4, 8, 16)
TEXTURE_SCALE_NAMES: Tuple[str, ...] = ("Full", "Half", "Quarter", "Eighth", "Sixteenth")


@dataclass
class TextureConfig:
    """Texture extensions eligible for rescaling."""

    direct_extensions: List[str] = field(
        default_factory=lambda: list(DIRECT_TEXTURE_EXTENSIONS)
    )
    import_extensions: List[str] = field(
        default_factory=lambda: list(IMPORT_TEXTURE_EXTENSIONS)
    )
    max_image_pixels: int = 268435456  # 16384x16384


@dataclass
class CopyConfig:
    sidecar_suffix: str = ".meta"


@dataclass
class DependencyConfig:
    """How the dependency closure treats the resolver's answers.

    ``auto`` iterates to a fixed point only for resolvers that report
    direct dependencies.
    """

    mode: str = "auto"


@dataclass
class StatsConfig:
    """Project statistics scanner settings."""

    unload_interval: int = 1000
    report_filename: str = "ProjectStats.json"
    build_target: str = "Standalone"
    scan_subdir: str = "Assets"


_SUPPORTED_CONFIG_VERSION = 1


@dataclass
class ReproConfig:
    """Master configuration."""

    config_version: int = 1
    log_level: str = "INFO"
    log_file: str = ""
    show_progress: bool = True
    editor_command: str = ""
    settings_filename: str = "ReproProjectSettings.yaml"
    common_file_patterns: List[str] = field(
        default_factory=lambda: list(DEFAULT_COMMON_FILE_PATTERNS)
    )

    texture: TextureConfig = field(default_factory=TextureConfig)
    copy: CopyConfig = field(default_factory=CopyConfig)
    dependencies: DependencyConfig = field(default_factory=DependencyConfig)
    stats: StatsConfig = field(default_factory=StatsConfig)

    @classmethod
    def from_yaml(cls, path: str) -> "ReproConfig":
        """Load configuration from YAML or return defaults."""
        if not os.path.exists(path):
            logger.info("Config file '%s' not found. Using defaults.", path)
            config = cls()
            config.validate()
            return config
        try:
            with open(path, "r", encoding="utf-8") as f:
                data = yaml.safe_load(f) or {}
        except yaml.YAMLError as exc:
            raise ConfigurationError(
                f"Failed to parse YAML config '{path}': {exc}"
            ) from exc
        if not isinstance(data, dict):
            raise ConfigurationError(
                f"Config file '{path}' must contain a YAML mapping, "
                f"got {type(data).__name__}"
            )
        yaml_version = data.get("config_version", 1)
        if isinstance(yaml_version, int) and yaml_version > _SUPPORTED_CONFIG_VERSION:
            logger.warning(
                "Config file '%s' has config_version=%d, but this build only "
                "supports up to version %d. Some settings may be ignored.",
                path, yaml_version, _SUPPORTED_CONFIG_VERSION,
            )
        config = cls()
        _merge_dict_to_dataclass(config, data)
        try:
            config.validate()
        except ConfigurationError as exc:
            raise ConfigurationError(f"{path}: {exc}") from exc
        return config

    def to_yaml(self, path: str):
        """Write configuration to a YAML file."""
        _atomic_yaml_dump(dataclasses.asdict(self), path)

    def validate(self):
        """Validate configuration values. Raises ConfigurationError on invalid config."""
        errors = []

        valid_log_levels = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}
        if self.log_level.upper() not in valid_log_levels:
            errors.append(
                f"log_level must be one of {sorted(valid_log_levels)}, "
                f"got '{self.log_level}'"
            )
        if self.editor_command and "{path}" not in self.editor_command:
            errors.append("editor_command must contain a '{path}' placeholder")
        if not self.settings_filename.strip():
            errors.append("settings_filename must not be empty")
        if any(not isinstance(p, str) or not p.strip() for p in self.common_file_patterns):
            errors.append("common_file_patterns entries must be non-empty strings")

        for name in ("direct_extensions", "import_extensions"):
            for ext in getattr(self.texture, name):
                if not isinstance(ext, str) or not ext.startswith("."):
                    errors.append(f"texture.{name} entries must start with '.', got {ext!r}")
        if self.texture.max_image_pixels < 0:
            errors.append("texture.max_image_pixels must be >= 0 (0 = unlimited)")

        if not self.copy.sidecar_suffix:
            errors.append("copy.sidecar_suffix must not be empty")

        if self.dependencies.mode not in DEPENDENCY_MODES:
            errors.append(
                f"dependencies.mode must be one of {list(DEPENDENCY_MODES)}, "
                f"got '{self.dependencies.mode}'"
            )

        if self.stats.unload_interval < 0:
            errors.append("stats.unload_interval must be >= 0 (0 = never)")
        if not self.stats.report_filename.strip():
            errors.append("stats.report_filename must not be empty")
        if not self.stats.build_target.strip():
            errors.append("stats.build_target must not be empty")

        if errors:
            raise ConfigurationError(
                "Configuration validation failed:\n" +
                "\n".join(f"  - {e}" for e in errors)
            )


def _atomic_yaml_dump(data, path: str):
    os.makedirs(os.path.dirname(path) or ".", exist_ok=True)
    ext = os.path.splitext(path)[1]
    tmp_path = f"{path}.tmp.{os.getpid()}.{threading.get_ident()}{ext}"
    try:
        with open(tmp_path, "w", encoding="utf-8") as f:
            yaml.dump(data, f, default_flow_style=False, sort_keys=False)
        os.replace(tmp_path, path)
    finally:
        if os.path.exists(tmp_path):
            try:
                os.remove(tmp_path)
            except OSError:
                pass


def _merge_dict_to_dataclass(obj, data: dict, _path: str = ""):
    for key, value in data.items():
        if hasattr(obj, key):
            field_val = getattr(obj, key)
            if dataclasses.is_dataclass(field_val) and isinstance(value, dict):
                _merge_dict_to_dataclass(field_val, value, f"{_path}{key}.")
            else:
                full_key = f"{_path}{key}"
                if value is None and field_val is not None:
                    logger.warning(
                        f"Config key '{full_key}' is null but field default is "
                        f"{type(field_val).__name__}. Using default value."
                    )
                    continue
                expected_type = type(field_val)
                # Allow int->float and exact float->int promotion
                if (field_val is not None
                        and not isinstance(value, expected_type)
                        and not (expected_type is float
                                 and isinstance(value, int))
                        and not (expected_type is int
                                 and isinstance(value, float)
                                 and value == int(value))):
                    logger.warning(
                        f"Config type mismatch for '{full_key}': "
                        f"expected {expected_type.__name__}, "
                        f"got {type(value).__name__} ({value!r}). "
                        f"Using default value."
                    )
                    continue
                if (expected_type is int and isinstance(value, float)
                        and value == int(value)):
                    value = int(value)
                setattr(obj, key, value)
        else:
            full_key = f"{_path}{key}"
            logger.warning(f"Unknown config key ignored: '{full_key}'")


class InputAssetType(Enum):
    """How an input item's path is interpreted."""

    WILDCARD = "Wildcard"  # text pattern, file or directory
    SCENE = "Scene"
    PREFAB = "Prefab"
    ASSET = "Asset"

    @classmethod
    def parse(cls, value) -> "InputAssetType":
        text = str(value).strip()
        for member in cls:
            if text.lower() in (member.value.lower(), member.name.lower()):
                return member
        raise ValueError(
            f"Unknown input kind '{value}'; expected one of {[m.value for m in cls]}"
        )


@dataclass(frozen=True)
class InputSpecification:
    """One root item of a repro: a typed asset path or a wildcard."""

    kind: InputAssetType = InputAssetType.WILDCARD
    path: str = ""
    handle: object = field(default=None, compare=False, repr=False)

    @property
    def is_empty(self) -> bool:
        return not self.path or not self.path.strip()

    def resolve(self, resolver) -> "InputSpecification":
        """Return a copy whose handle is re-resolved (typed kinds only)."""
        if self.kind == InputAssetType.WILDCARD or self.is_empty:
            return dataclasses.replace(self, handle=None)
        handle = resolver.resolve(self.path)
        if handle is None:
            logger.warning("Input %s '%s' does not resolve to an asset", self.kind.value, self.path)
        return dataclasses.replace(self, handle=handle)

    @classmethod
    def parse(cls, text: str) -> "InputSpecification":
        """Parse ``Kind:path`` or a bare path (a wildcard)."""
        prefix, sep, rest = str(text).partition(":")
        if sep:
            try:
                return cls(InputAssetType.parse(prefix), rest.strip())
            except ValueError:
                pass
        return cls(InputAssetType.WILDCARD, str(text).strip())

    def to_dict(self) -> dict:
        return {"kind": self.kind.value, "path": self.path}

    @classmethod
    def from_dict(cls, data) -> "InputSpecification":
        if not isinstance(data, dict):
            raise ReportParseError(
                f"Input item must be a mapping, got {type(data).__name__}"
            )
        try:
            kind = InputAssetType.parse(data.get("kind", InputAssetType.WILDCARD.value))
        except ValueError as exc:
            raise ReportParseError(str(exc)) from exc
        path = data.get("path") or ""
        if not isinstance(path, str):
            raise ReportParseError(f"Input item path must be a string, got {path!r}")
        return cls(kind, path)


def _is_project_dir(path: str) -> bool:
    return (os.path.isdir(os.path.join(path, "Assets"))
            and os.path.isdir(os.path.join(path, "ProjectSettings")))


@dataclass
class PersistedSettings:
    """Repro selection remembered between sessions."""

    project_name: str = ""
    project_path: str = ""
    open_after_export: bool = False
    texture_scale_factor: int = 1
    input_items: List[InputSpecification] = field(default_factory=list)
    project_items: List[InputSpecification] = field(default_factory=list)

    @property
    def target_path(self) -> Optional[str]:
        """``project_path/project_name``; None when either is empty."""
        if not self.project_name or not self.project_path:
            return None
        return os.path.join(self.project_path, self.project_name)

    @property
    def texture_scale_name(self) -> str:
        return TEXTURE_SCALE_NAMES[TEXTURE_SCALE_FACTORS.index(self.texture_scale_factor)]

    def select_location(self, path: str):
        """Choose where the repro goes.

        A folder that is itself a project sets both the name and the parent
        path; any other folder only sets the parent path.
        """
        if _is_project_dir(path):
            path = os.path.normpath(path)
            self.project_name = os.path.basename(path)
            self.project_path = os.path.dirname(path)
        else:
            self.project_path = path

    def has_inputs(self) -> bool:
        return any(not item.is_empty for item in self.input_items)

    def resolve_items(self, resolver):
        self.input_items = [item.resolve(resolver) for item in self.input_items]
        self.project_items = [item.resolve(resolver) for item in self.project_items]

    def to_dict(self) -> dict:
        return {
            "project_name": self.project_name,
            "project_path": self.project_path,
            "open_after_export": self.open_after_export,
            "texture_scale_factor": self.texture_scale_factor,
            "input_items": [item.to_dict() for item in self.input_items],
            "project_items": [item.to_dict() for item in self.project_items],
        }

    @classmethod
    def from_dict(cls, data) -> "PersistedSettings":
        if not isinstance(data, dict):
            raise ReportParseError(
                f"Settings must be a mapping, got {type(data).__name__}"
            )
        settings = cls()
        for key in ("project_name", "project_path"):
            value = data.get(key)
            if value is None:
                continue
            if not isinstance(value, str):
                raise ReportParseError(f"Settings '{key}' must be a string, got {value!r}")
            setattr(settings, key, value)
        open_after = data.get("open_after_export", False)
        if not isinstance(open_after, bool):
            logger.warning(
                "Invalid open_after_export %r; expected true or false. Using false.",
                open_after,
            )
            open_after = False
        settings.open_after_export = open_after

        scale = data.get("texture_scale_factor", 1)
        if isinstance(scale, bool) or scale not in TEXTURE_SCALE_FACTORS:
            logger.warning(
                "Invalid texture_scale_factor %r; expected one of %s. Using 1.",
                scale, list(TEXTURE_SCALE_FACTORS),
            )
            scale = 1
        settings.texture_scale_factor = int(scale)

        for key in ("input_items", "project_items"):
            entries = data.get(key)
            if entries is None:
                continue
            if not isinstance(entries, list):
                raise ReportParseError(f"Settings '{key}' must be a list")
            setattr(settings, key, [InputSpecification.from_dict(e) for e in entries])
        return settings

    @classmethod
    def load(cls, path: str) -> "PersistedSettings":
        """Load settings; a missing file yields defaults."""
        if not os.path.exists(path):
            logger.debug("Settings file '%s' not found. Using defaults.", path)
            return cls()
        try:
            with open(path, "r", encoding="utf-8") as f:
                data = yaml.safe_load(f)
        except yaml.YAMLError as exc:
            raise ReportParseError(f"Malformed settings file '{path}': {exc}") from exc
        return cls.from_dict(data if data is not None else {})

    def save(self, path: str):
        _atomic_yaml_dump(self.to_dict(), path)
        logger.debug("Settings saved: %s", path)
