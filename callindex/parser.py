"""Tree-sitter based parser for Python sources."""

from __future__ import annotations

from dataclasses import dataclass
from functools import lru_cache

import tree_sitter_python as tspython
from tree_sitter import Language, Parser, Tree


@lru_cache(maxsize=1)
def load_python_language() -> Language:
    """Return the Tree-sitter Language object for Python."""
    return Language(tspython.language())


@dataclass
class ParsedSource:
    tree: Tree
    source_bytes: bytes

    @property
    def has_errors(self) -> bool:
        return self.tree.root_node.has_error


class PythonParser:
    """Thin wrapper around a tree-sitter Parser.

    Parser objects are not thread-safe; create one per worker thread.
    """

    def __init__(self) -> None:
        self._parser = Parser(load_python_language())

    def parse_bytes(self, source_bytes: bytes) -> ParsedSource:
        tree = self._parser.parse(source_bytes)
        return ParsedSource(tree=tree, source_bytes=source_bytes)

    def parse_text(self, source_text: str) -> ParsedSource:
        return self.parse_bytes(source_text.encode("utf-8"))

    def parse_file(self, path: str) -> ParsedSource:
        with open(path, "rb") as handle:
            source_bytes = handle.read()
        return self.parse_bytes(source_bytes)
