import glob
import os
from typing import Iterable, List, Optional

from setup_core.errors import DiscoveryFailure


def _contains_marker(path: str, marker: str) -> bool:
    try:
        with open(path, 'r', encoding='utf-8', errors='replace') as f:
            return marker in f.read()
    except OSError:
        return False


def expand_candidates(candidates: Iterable[str]) -> List[str]:
    """Glob-expand candidate paths, keeping their order."""
    expanded: List[str] = []
    for pattern in candidates:
        matches = sorted(glob.glob(pattern)) if glob.has_magic(pattern) else [pattern]
        expanded.extend(matches)
    return expanded


def search_compose_files(roots: Iterable[str], max_depth: int, name: str = 'docker-compose.yml') -> Iterable[str]:
    """Yield files called `name` below each root, at most `max_depth` levels down."""
    for root in roots:
        if not os.path.isdir(root):
            continue
        base_depth = root.rstrip(os.sep).count(os.sep)
        for dirpath, dirnames, filenames in os.walk(root):
            depth = dirpath.rstrip(os.sep).count(os.sep) - base_depth
            if depth + 1 >= max_depth:
                dirnames[:] = []
            dirnames.sort()
            if name in filenames:
                yield os.path.join(dirpath, name)


def find_compose_file(
    candidates: Iterable[str],
    search_roots: Iterable[str],
    max_depth: int,
    marker: str,
    logger,
    explicit: Optional[str] = None,
) -> str:
    """Locate the compose file that mentions `marker`.

    Known locations are tried first, then a bounded walk of `search_roots`.
    """
    if explicit:
        if not os.path.isfile(explicit):
            raise DiscoveryFailure(f"Compose file not found: {explicit}")
        return explicit

    candidates = list(candidates)
    for path in expand_candidates(candidates):
        if os.path.isfile(path) and _contains_marker(path, marker):
            return path

    logger.debug(f"No candidate matched; searching {', '.join(search_roots)}")
    for path in search_compose_files(search_roots, max_depth):
        if _contains_marker(path, marker):
            return path

    raise DiscoveryFailure(
        f"docker-compose.yml with {marker} configuration not found! Searched in: {' '.join(candidates)}"
    )
