"""Data model shared by the resolution stages."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum

from .scope_tree import Location, Param, UNKNOWN_LOCATION


class DefinitionKind(str, Enum):
    MODULE = "module"
    FUNCTION = "function"
    METHOD = "method"
    CLASS = "class"
    VARIABLE_CALLABLE = "variable-bound-callable"
    LAMBDA = "anonymous-function-literal"


CALLABLE_KINDS = frozenset(
    {
        DefinitionKind.FUNCTION,
        DefinitionKind.METHOD,
        DefinitionKind.VARIABLE_CALLABLE,
        DefinitionKind.LAMBDA,
    }
)


class ScopeKind(str, Enum):
    MODULE = "module"
    CLASS = "class"
    FUNCTION = "function"
    BLOCK = "block"


class TargetKind(str, Enum):
    DEFINITION = "definition"
    ALIAS = "alias"
    EXTERNAL = "external"
    UNRESOLVED = "unresolved"


class Confidence(str, Enum):
    EXACT = "exact"
    AMBIGUOUS = "ambiguous"
    UNKNOWN = "unknown"

    @property
    def rank(self) -> int:
        return _CONFIDENCE_RANK[self]

    def meets(self, minimum: "Confidence") -> bool:
        return self.rank >= minimum.rank


_CONFIDENCE_RANK = {
    Confidence.UNKNOWN: 0,
    Confidence.AMBIGUOUS: 1,
    Confidence.EXACT: 2,
}


class DispatchKind(str, Enum):
    STATIC = "static"
    VIRTUAL = "virtual"


class ReceiverKind(str, Enum):
    NONE = "none"
    INSTANCE_MEMBER = "instance-member"
    SELF_MEMBER = "self-member"
    INVOKED_BINDING = "invoked-binding"


@dataclass(frozen=True)
class Definition:
    def_id: str
    qualname: str
    name: str
    kind: DefinitionKind
    path: str
    scope_id: str
    location: Location = UNKNOWN_LOCATION
    owner_class: str | None = None
    is_abstract: bool = False
    decorators: tuple[str, ...] = ()
    params: tuple[Param, ...] = ()
    min_args: int = 0
    max_args: int | None = 0
    is_async: bool = False
    version: int = 0

    def accepts(self, arg_count: int | None) -> bool:
        if arg_count is None:
            return True
        if arg_count < self.min_args:
            return False
        return self.max_args is None or arg_count <= self.max_args


@dataclass(frozen=True)
class Binding:
    name: str
    scope_id: str
    target: TargetKind
    ref: str | None = None  # def id for DEFINITION, qualified name for ALIAS
    origin: str = "declaration"
    type_hint: str | None = None
    hint_scope: str | None = None
    value_ref: str | None = None
    receiver_role: str | None = None  # "self" | "cls"
    declared_class: str | None = None  # set directly for receiver bindings


@dataclass
class Scope:
    scope_id: str
    kind: ScopeKind
    path: str
    parent_id: str | None = None
    owner: str | None = None  # def id of the declaration that opened the scope
    bindings: dict[str, Binding] = field(default_factory=dict)
    aliases: dict[str, Binding] = field(default_factory=dict)
    star_imports: list[str] = field(default_factory=list)


@dataclass(frozen=True)
class ClassEntity:
    def_id: str
    qualname: str
    scope_id: str
    bases: tuple[str, ...] = ()
    resolved_bases: tuple[str, ...] = ()
    external_bases: tuple[str, ...] = ()
    linearization: tuple[str, ...] | None = None
    abstract_members: frozenset[str] = frozenset()
    overrides: dict[str, tuple[str, ...]] = field(default_factory=dict, compare=False)
    cyclic: bool = False


@dataclass(frozen=True)
class CallSite:
    site_id: str
    caller: str
    path: str
    location: Location
    order: int
    callee: str
    receiver: str | None
    receiver_kind: ReceiverKind
    arg_count: int | None
    targets: tuple[str, ...]
    confidence: Confidence
    dispatch: DispatchKind
    suspended: bool = False
    decorators: tuple[str, ...] = ()
    dependencies: frozenset[str] = field(default=frozenset(), compare=False)


@dataclass(frozen=True)
class CallEdge:
    source: str
    target: str
    site_id: str
    dispatch: DispatchKind


@dataclass(frozen=True)
class CallResolution:
    targets: frozenset[str]
    confidence: Confidence
    dispatch: DispatchKind


@dataclass(frozen=True)
class Reference:
    path: str
    scope_id: str
    expression: str
    location: Location
    target: str | None
    confidence: Confidence
