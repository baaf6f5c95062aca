"""File walking utilities."""

from __future__ import annotations

from pathlib import Path
from typing import Iterable


DEFAULT_EXCLUDES = {".venv", "venv", "__pycache__", ".git", ".hg", ".svn", ".tox", "node_modules"}


def iter_python_files(root: str | Path, excludes: Iterable[str] | None = None) -> list[str]:
    root_path = Path(root)
    exclude_set = set(excludes or DEFAULT_EXCLUDES)
    matches: list[str] = []

    for path in root_path.rglob("*.py"):
        relative = path.relative_to(root_path)
        if any(part in exclude_set for part in relative.parts):
            continue
        matches.append(str(path))

    return sorted(matches)


def module_name_for(path: str | Path, root: str | Path) -> tuple[str, bool]:
    """Dotted module name of ``path`` relative to ``root``.

    Returns the name and whether the file is a package ``__init__``.
    """
    relative = Path(path).resolve().relative_to(Path(root).resolve())
    parts = list(relative.with_suffix("").parts)
    is_package = bool(parts) and parts[-1] == "__init__"
    if is_package:
        parts = parts[:-1]
    if not parts:
        return Path(root).resolve().name, is_package
    return ".".join(parts), is_package
