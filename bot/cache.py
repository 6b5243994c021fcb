# bot/cache.py

"""On-disk artifacts: the token database and the ranked path cache."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional

from bot.artifacts import file_age_s, read_json, write_json_atomic
from bot.graph import build_graph
from bot.paths import PathEnumerator
from bot.routes import ArbPath, paths_from_json, paths_to_json

log = logging.getLogger(__name__)

TokenDatabase = Dict[str, Dict[str, Any]]


def load_token_database(path: Path) -> Optional[TokenDatabase]:
    """Return the cached token database, or None if missing or unreadable."""
    try:
        raw = read_json(path)
    except FileNotFoundError:
        return None
    except (OSError, ValueError) as e:
        log.warning("token database %s is unreadable (%s), rebuilding", path, e)
        return None
    if not isinstance(raw, dict):
        log.warning("token database %s is not an object, rebuilding", path)
        return None
    return raw


def save_token_database(path: Path, db: TokenDatabase) -> None:
    write_json_atomic(path, db)
    log.info("Token database saved to %s (%d tokens)", path, len(db))


def path_cache_is_stale(
    paths_path: Path,
    *,
    max_age_s: float,
    token_db_path: Optional[Path] = None,
    now: Optional[float] = None,
) -> bool:
    """Missing, older than max_age_s, or older than the token database it came from."""
    age = file_age_s(paths_path, now=now)
    if age is None or age > float(max_age_s):
        return True
    if token_db_path is not None:
        db_age = file_age_s(token_db_path, now=now)
        if db_age is not None and db_age < age:
            return True
    return False


def load_paths(path: Path) -> List[ArbPath]:
    return paths_from_json(read_json(path))


def save_paths(path: Path, paths: Iterable[ArbPath]) -> None:
    write_json_atomic(path, paths_to_json(paths))


def generate_and_cache_paths(
    dataset: TokenDatabase,
    hubs: Iterable[str],
    paths_path: Path,
    *,
    min_hops: int = 2,
    max_hops: int = 6,
    max_paths: Optional[int] = None,
) -> List[ArbPath]:
    graph, _report = build_graph(dataset)
    enumerator = PathEnumerator(graph, min_hops=min_hops, max_hops=max_hops)
    paths = enumerator.generate(sorted(set(hubs)), max_paths=max_paths)
    save_paths(paths_path, paths)
    log.info("Saved %d paths to %s", len(paths), paths_path)
    return paths
