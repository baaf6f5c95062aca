"""Scope-tree node types produced by a language front-end.

A front-end turns one source file into a :class:`FileScopeTree`. Bodies are
lists of nodes in program order; nodes that open a scope (modules, classes,
functions, lambdas and blocks) carry their own body.
"""

from __future__ import annotations

import itertools
from dataclasses import dataclass, field
from enum import Enum


_node_ids = itertools.count(1)


def _next_node_id() -> str:
    return f"n{next(_node_ids)}"


@dataclass(frozen=True, order=True)
class Location:
    line: int
    column: int


UNKNOWN_LOCATION = Location(line=0, column=0)


class ParamKind(str, Enum):
    POSITIONAL = "positional"
    KEYWORD_ONLY = "keyword_only"
    VAR_POSITIONAL = "var_positional"
    VAR_KEYWORD = "var_keyword"


@dataclass(frozen=True)
class Param:
    name: str
    annotation: str | None = None
    has_default: bool = False
    kind: ParamKind = ParamKind.POSITIONAL


@dataclass(frozen=True)
class Decorator:
    name: str


@dataclass(kw_only=True)
class Node:
    node_id: str = field(default_factory=_next_node_id)
    location: Location = UNKNOWN_LOCATION


@dataclass
class ModuleNode(Node):
    body: list[Node] = field(default_factory=list)


@dataclass
class ClassNode(Node):
    name: str
    bases: tuple[str, ...] = ()
    decorators: tuple[Decorator, ...] = ()
    body: list[Node] = field(default_factory=list)


@dataclass
class FunctionNode(Node):
    name: str
    params: tuple[Param, ...] = ()
    decorators: tuple[Decorator, ...] = ()
    is_abstract: bool = False
    is_async: bool = False
    body: list[Node] = field(default_factory=list)


@dataclass
class LambdaNode(Node):
    params: tuple[Param, ...] = ()
    body: list[Node] = field(default_factory=list)


@dataclass
class BlockNode(Node):
    body: list[Node] = field(default_factory=list)


@dataclass
class CallNode(Node):
    callee: str
    receiver: str | None = None
    arg_count: int | None = 0  # None when the call unpacks *args / **kwargs


@dataclass
class AssignNode(Node):
    target: str
    value_kind: str = "other"  # call | name | lambda | other
    value: str | None = None
    annotation: str | None = None
    is_loop_target: bool = False


@dataclass
class ImportNode(Node):
    module: str
    name: str | None = None  # None for `import module`, "*" for star imports
    alias: str | None = None
    level: int = 0


@dataclass
class ReferenceNode(Node):
    expression: str


@dataclass
class SuspendNode(Node):
    pass


ASSIGN_VALUE_KINDS = {"call", "name", "lambda", "other"}


@dataclass
class FileScopeTree:
    path: str
    module: str
    root: ModuleNode
    is_package: bool = False
    # False for languages (like Python) where methods cannot reach class
    # members without an explicit receiver.
    implicit_member_access: bool = True


def iter_nodes(node: Node):
    """Yield ``node`` and every node nested below it, in program order."""
    yield node
    for child in getattr(node, "body", ()):
        yield from iter_nodes(child)
