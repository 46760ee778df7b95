"""Dependency closure over the asset resolver's batch dependency query."""

import logging
from typing import Iterable, Set

from .paths import normalize_path
from .resolver import AssetResolver

logger = logging.getLogger("repro_pipeline.dependencies")

DEPENDENCY_MODES = ("auto", "single_pass", "fixed_point")


def wants_fixed_point(mode: str, resolver: AssetResolver) -> bool:
    """Decide whether closure must iterate for ``mode`` and ``resolver``."""
    if mode not in DEPENDENCY_MODES:
        raise ValueError(
            f"Unknown dependency mode '{mode}'; expected one of {DEPENDENCY_MODES}"
        )
    if mode == "auto":
        return not getattr(resolver, "reports_transitive_dependencies", True)
    return mode == "fixed_point"


def collect_dependencies(
    paths: Iterable[str],
    resolver: AssetResolver,
    fixed_point: bool = False,
) -> Set[str]:
    """Return ``paths`` plus every dependency the resolver reports for them.

    The resolver receives the whole set in one batch call. In single-pass
    mode that call is the only one; the resolver is trusted to report a
    transitively complete list. With ``fixed_point`` the newly discovered
    paths are queried again, batched, until no new path appears.
    """
    seed = {normalize_path(p) for p in paths if p}
    result = set(seed)
    if not seed:
        return result

    frontier = seed
    passes = 0
    while frontier:
        passes += 1
        found = {normalize_path(p) for p in resolver.dependencies_of(sorted(frontier)) if p}
        new = found - result
        result |= found
        if not fixed_point:
            break
        frontier = new

    logger.debug(
        "Dependency closure: %d seeds -> %d paths in %d pass(es)",
        len(seed), len(result), passes,
    )
    return result
