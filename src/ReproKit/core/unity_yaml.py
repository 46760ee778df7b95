"""Read Unity-style text-serialized assets and their ``.meta`` sidecars.

Unity text assets are a stream of YAML documents, each introduced by a
``--- !u!<classID> &<fileID>`` header that PyYAML's safe loader cannot
construct. Documents are split on those headers and each body is parsed
on its own. Asset-to-asset references are ``{fileID: N, guid: G, type: T}``
mappings whose GUID is looked up in the project's ``.meta`` index.
"""

import logging
import os
import re
from dataclasses import dataclass, field
from typing import Dict, Iterable, Iterator, List, Optional, Set

import yaml

from .paths import normalize_path, relative_to_root

logger = logging.getLogger("repro_pipeline.unity_yaml")

META_SUFFIX = ".meta"
NULL_GUID = "00000000000000000000000000000000"
BUILTIN_GUIDS: Dict[str, str] = {
    "0000000000000000e000000000000000": "Library/unity default resources",
    "0000000000000000f000000000000000": "Resources/unity_builtin_extra",
}
INDEXED_ROOTS = ("Assets", "Packages")

_HEADER_RE = re.compile(r"^--- !u!(\d+) &(-?\d+)(\s+stripped)?\s*$")
_GUID_REF_RE = re.compile(r"guid:\s*([0-9a-fA-F]{32})")
_META_GUID_RE = re.compile(r"^guid:\s*([0-9a-fA-F]{32})\s*$", re.MULTILINE)
_YAML_MAGIC = "%YAML"


@dataclass
class UnityObject:
    """One document from a Unity text asset."""

    class_id: int
    file_id: int
    type_name: str
    data: dict = field(default_factory=dict)
    stripped: bool = False


def is_text_asset(path: str) -> bool:
    """Return True when ``path`` starts with the Unity YAML magic header."""
    try:
        with open(path, "r", encoding="utf-8", errors="replace") as f:
            return f.read(len(_YAML_MAGIC)) == _YAML_MAGIC
    except OSError:
        return False


def read_text(path: str) -> str:
    with open(path, "r", encoding="utf-8", errors="replace") as f:
        return f.read()


def parse_documents(text: str) -> List[UnityObject]:
    """Split a Unity YAML stream into typed objects.

    Raises ``yaml.YAMLError`` when a document body is not valid YAML.
    """
    objects: List[UnityObject] = []
    header = None
    body: List[str] = []

    def _flush():
        if header is None:
            return
        class_id, file_id, stripped = header
        parsed = yaml.safe_load("\n".join(body)) if body else None
        if isinstance(parsed, dict) and len(parsed) == 1:
            type_name, data = next(iter(parsed.items()))
        else:
            type_name, data = "", parsed
        objects.append(UnityObject(
            class_id=class_id,
            file_id=file_id,
            type_name=str(type_name),
            data=data if isinstance(data, dict) else {},
            stripped=stripped,
        ))

    for line in text.splitlines():
        if line.startswith("%"):
            continue
        match = _HEADER_RE.match(line)
        if match:
            _flush()
            header = (int(match.group(1)), int(match.group(2)), bool(match.group(3)))
            body = []
        elif header is not None:
            body.append(line)
    _flush()
    return objects


def load_documents(path: str) -> List[UnityObject]:
    return parse_documents(read_text(path))


def guid_references(text: str) -> Set[str]:
    """Return every non-null GUID referenced in ``text`` (lowercased)."""
    refs = {g.lower() for g in _GUID_REF_RE.findall(text)}
    refs.discard(NULL_GUID)
    return refs


def reference_guid(ref) -> Optional[str]:
    """Extract the GUID from a ``{fileID, guid, type}`` reference mapping."""
    if not isinstance(ref, dict):
        return None
    guid = ref.get("guid")
    if guid is None:
        return None
    guid = str(guid).lower()
    if guid == NULL_GUID:
        return None
    return guid


def read_meta(asset_path: str) -> dict:
    """Load the ``.meta`` sidecar next to ``asset_path`` as a plain mapping.

    Missing or malformed sidecars yield an empty mapping.
    """
    meta_path = asset_path + META_SUFFIX
    if not os.path.isfile(meta_path):
        return {}
    try:
        with open(meta_path, "r", encoding="utf-8") as f:
            data = yaml.safe_load(f)
    except (OSError, yaml.YAMLError) as exc:
        logger.warning("Failed to read sidecar %s: %s", meta_path, exc)
        return {}
    return data if isinstance(data, dict) else {}


def importer_section(meta: dict, importer_name: str) -> dict:
    section = meta.get(importer_name)
    return section if isinstance(section, dict) else {}


class GuidIndex:
    """Map asset GUIDs to project-relative paths using ``.meta`` sidecars."""

    def __init__(self, project_root: str, roots: Iterable[str] = INDEXED_ROOTS):
        self.project_root = project_root
        self._roots = tuple(roots)
        self._by_guid: Optional[Dict[str, str]] = None
        self._by_path: Dict[str, str] = {}

    def _build(self):
        by_guid: Dict[str, str] = {}
        by_path: Dict[str, str] = {}
        for root_name in self._roots:
            root = os.path.join(self.project_root, root_name)
            if not os.path.isdir(root):
                continue
            for meta_path in _walk_meta_files(root):
                try:
                    with open(meta_path, "r", encoding="utf-8", errors="replace") as f:
                        match = _META_GUID_RE.search(f.read())
                except OSError as exc:
                    logger.warning("Failed to read sidecar %s: %s", meta_path, exc)
                    continue
                if not match:
                    continue
                guid = match.group(1).lower()
                rel = relative_to_root(meta_path[:-len(META_SUFFIX)], self.project_root)
                if guid in by_guid and by_guid[guid] != rel:
                    logger.warning(
                        "Duplicate GUID %s for %s and %s; keeping the first.",
                        guid, by_guid[guid], rel,
                    )
                    continue
                by_guid[guid] = rel
                by_path[rel] = guid
        logger.debug("Indexed %d GUIDs under %s", len(by_guid), self.project_root)
        self._by_guid = by_guid
        self._by_path = by_path

    def _ensure(self):
        if self._by_guid is None:
            self._build()

    def path_for(self, guid: Optional[str]) -> Optional[str]:
        """Return the asset path for ``guid`` (built-in GUIDs included)."""
        if not guid:
            return None
        guid = guid.lower()
        if guid in BUILTIN_GUIDS:
            return BUILTIN_GUIDS[guid]
        self._ensure()
        return self._by_guid.get(guid)

    def guid_for(self, rel_path: str) -> Optional[str]:
        self._ensure()
        return self._by_path.get(normalize_path(rel_path))

    def __len__(self) -> int:
        self._ensure()
        return len(self._by_guid)


def _walk_meta_files(root: str) -> Iterator[str]:
    for dirpath, dirnames, filenames in os.walk(root):
        dirnames.sort()
        for fname in sorted(filenames):
            if fname.endswith(META_SUFFIX):
                yield os.path.join(dirpath, fname)
