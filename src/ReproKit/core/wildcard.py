"""Expand input specifications (file, directory or glob) into project files."""

import fnmatch
import logging
import os
from typing import Iterable, Iterator, MutableSet, Set

from .paths import normalize_path, project_file, relative_to_root

logger = logging.getLogger("repro_pipeline.wildcard")


def _walk_matching(directory: str, pattern: str) -> Iterator[str]:
    for root, dirnames, filenames in os.walk(directory):
        dirnames.sort()
        for fname in sorted(filenames):
            if fnmatch.fnmatchcase(fname, pattern):
                yield os.path.join(root, fname)


def expand_input(project_root: str, path: str, results: MutableSet[str]) -> int:
    """Merge every project file matched by ``path`` into ``results``.

    ``path`` is project-relative and may name a file, a directory (all files
    below it, recursively) or ``<directory>/<filename pattern>`` where the
    pattern is matched against file names in that directory and all of its
    subdirectories. Nothing matching is not an error. Returns the number of
    paths that were new to ``results``.
    """
    if not path or not str(path).strip():
        return 0
    rel = normalize_path(path).strip("/")
    source = project_file(project_root, rel)
    before = len(results)

    if os.path.isfile(source):
        results.add(normalize_path(rel))
        return len(results) - before

    if os.path.isdir(source):
        directory, pattern = source, "*"
    else:
        directory, pattern = os.path.split(source)
        if not directory:
            directory = project_root

    if not os.path.isdir(directory):
        logger.debug("Wildcard %s: directory %s does not exist", path, directory)
        return 0

    for match in _walk_matching(directory, pattern):
        results.add(relative_to_root(match, project_root))
    added = len(results) - before
    logger.debug("Wildcard %s matched %d new files", path, added)
    return added


def expand_inputs(project_root: str, paths: Iterable[str]) -> Set[str]:
    """Expand each of ``paths`` and return the union."""
    results: Set[str] = set()
    for path in paths:
        expand_input(project_root, path, results)
    return results
