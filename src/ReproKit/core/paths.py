"""Path normalization and project-relative path helpers."""

import os
from pathlib import PurePosixPath, PureWindowsPath


def normalize_path(path: str) -> str:
    """Return ``path`` with forward slashes and no doubled separators.

    Pure and idempotent: backslashes become ``/`` and any run of ``//``
    collapses to a single ``/``.
    """
    result = str(path).replace("\\", "/")
    while "//" in result:
        result = result.replace("//", "/")
    return result


def relative_to_root(path: str, root: str) -> str:
    """Return ``path`` relative to ``root`` in normalized form."""
    rel = os.path.relpath(os.path.abspath(path), os.path.abspath(root))
    return normalize_path(rel)


def validate_relative_path(path: str) -> str:
    """Normalize a stored relative asset path and reject absolute or escaping paths."""
    original = str(path)
    raw = normalize_path(original)
    p = PurePosixPath(raw)
    win = PureWindowsPath(original)
    drive_like = len(raw) >= 2 and raw[1] == ":"
    if p.is_absolute() or win.is_absolute() or drive_like:
        raise ValueError(f"Asset path must be relative, got: {path}")

    parts = []
    for part in p.parts:
        if part in ("", "."):
            continue
        if part == "..":
            if not parts:
                raise ValueError(f"Asset path escapes root via '..': {path}")
            parts.pop()
            continue
        parts.append(part)

    if not parts:
        raise ValueError(f"Asset path is empty after normalization: {path}")
    return "/".join(parts)


def project_file(root: str, rel_path: str) -> str:
    """Join a normalized project-relative path onto a filesystem root."""
    return os.path.join(root, *normalize_path(rel_path).split("/"))


def is_within(path: str, root: str) -> bool:
    """Return True when ``path`` is ``root`` or lies underneath it."""
    real_path = os.path.realpath(path)
    real_root = os.path.realpath(root)
    try:
        return os.path.commonpath([real_root, real_path]) == real_root
    except ValueError:
        return False
