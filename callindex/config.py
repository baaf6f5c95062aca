"""Resolution policy and environment overrides."""

from __future__ import annotations

import builtins
import os
from dataclasses import dataclass, replace


# Container-style methods that appear on countless unrelated types. Guessing
# their target by name alone links to the wrong definition far more often
# than not.
COMMON_CALL_NAMES = frozenset(
    {
        "add",
        "append",
        "clear",
        "copy",
        "extend",
        "get",
        "insert",
        "items",
        "keys",
        "pop",
        "push",
        "remove",
        "sort",
        "update",
        "values",
    }
)

BUILTIN_NAMES = frozenset(name for name in dir(builtins) if not name.startswith("_"))

MIN_FILES_FOR_PARALLEL = 15


@dataclass(frozen=True)
class ResolutionPolicy:
    max_heuristic_candidates: int = 8
    prefer_same_module: bool = True
    match_arity: bool = True
    ignored_names: frozenset[str] = BUILTIN_NAMES
    common_names: frozenset[str] = COMMON_CALL_NAMES
    parallel_threshold: int = MIN_FILES_FOR_PARALLEL
    workers: int | None = None

    def max_workers(self) -> int:
        if self.workers:
            return self.workers
        return min(os.cpu_count() or 4, 8)


DEFAULT_POLICY = ResolutionPolicy()


def _env_flag(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


def policy_from_env(base: ResolutionPolicy | None = None) -> ResolutionPolicy:
    policy = base or DEFAULT_POLICY
    max_candidates = os.getenv("CALLINDEX_MAX_CANDIDATES")
    workers = os.getenv("CALLINDEX_WORKERS")

    return replace(
        policy,
        max_heuristic_candidates=(
            int(max_candidates) if max_candidates else policy.max_heuristic_candidates
        ),
        prefer_same_module=_env_flag("CALLINDEX_PREFER_SAME_MODULE", policy.prefer_same_module),
        match_arity=_env_flag("CALLINDEX_MATCH_ARITY", policy.match_arity),
        workers=int(workers) if workers else policy.workers,
    )
