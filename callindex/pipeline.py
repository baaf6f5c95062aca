"""End-to-end pipeline for building a call index from a source tree."""

from __future__ import annotations

import argparse
import json
from dataclasses import replace
from pathlib import Path

from loguru import logger

from .config import ResolutionPolicy, policy_from_env
from .errors import Diagnostic, diagnostics_summary
from .extract import extract_scope_tree
from .file_walker import iter_python_files, module_name_for
from .index import CancellationToken, Index, build_index
from .logging_config import setup_logging
from .parser import PythonParser
from .scope_tree import FileScopeTree
from .storage import save_graph, save_index


def load_scope_trees(root: str | Path, max_files: int | None = None) -> list[FileScopeTree]:
    root_path = Path(root)
    files = iter_python_files(root_path)
    if max_files is not None:
        files = files[:max_files]

    parser = PythonParser()
    trees = []
    for path in files:
        parsed = parser.parse_file(path)
        if parsed.has_errors:
            logger.warning(f"{path}: syntax errors, indexing the recoverable parts")
        module, is_package = module_name_for(path, root_path)
        relative = Path(path).resolve().relative_to(root_path.resolve()).as_posix()
        trees.append(
            extract_scope_tree(parsed, path=relative, module=module, is_package=is_package)
        )
    return trees


def build_index_from_root(
    root: str | Path,
    output_path: str | Path | None = None,
    max_files: int | None = None,
    policy: ResolutionPolicy | None = None,
    graph_path: str | Path | None = None,
    cancel: CancellationToken | None = None,
) -> tuple[Index, list[Diagnostic]]:
    trees = load_scope_trees(root, max_files)
    logger.info(f"Parsed {len(trees)} files under {root}")
    index, diagnostics = build_index(trees, policy=policy or policy_from_env(), cancel=cancel)

    if output_path:
        save_index(index, output_path)
    if graph_path:
        save_graph(index.graph.graph, graph_path)

    return index, diagnostics


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(description="Resolve the call graph of a Python codebase")
    parser.add_argument("--root", required=True, help="Root directory of the codebase")
    parser.add_argument(
        "--output",
        default="callindex.json",
        help="Output JSON path for the index",
    )
    parser.add_argument("--graph-output", help="Optional node-link JSON path for the call graph")
    parser.add_argument(
        "--max-files",
        type=int,
        default=None,
        help="Limit number of files parsed (for quick checks)",
    )
    parser.add_argument("--max-candidates", type=int, help="Cap on name-based guesses per call")
    parser.add_argument(
        "--any-module",
        action="store_true",
        help="Do not prefer name-based guesses from the caller's own module",
    )
    parser.add_argument("--workers", type=int, help="Worker threads for per-file stages")
    parser.add_argument("--log-level", help="Console log level")
    parser.add_argument("--quiet", action="store_true", help="Disable console logging")
    parser.add_argument("--log-file", help="Also write a rotating debug log here")
    args = parser.parse_args(argv)

    setup_logging(level=args.log_level, quiet=args.quiet or None, log_file=args.log_file)

    policy = policy_from_env()
    if args.max_candidates is not None:
        policy = replace(policy, max_heuristic_candidates=args.max_candidates)
    if args.any_module:
        policy = replace(policy, prefer_same_module=False)
    if args.workers is not None:
        policy = replace(policy, workers=args.workers)

    index, diagnostics = build_index_from_root(
        args.root,
        args.output,
        args.max_files,
        policy=policy,
        graph_path=args.graph_output,
    )
    summary = diagnostics_summary(diagnostics)
    if summary:
        logger.info(f"Diagnostics: {summary}")
    print(json.dumps(index.stats(), sort_keys=True))
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
