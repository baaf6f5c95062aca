"""Binding resolution: names and attribute accesses to their meaning.

Lookup order for a bare name, innermost first:

1. the local scope (parameters, assignments, loop variables),
2. enclosing function and block scopes,
3. the enclosing class scope,
4. the module scope,
5. the import/alias tables of those scopes, then their star imports.

Dotted expressions resolve their head first and then walk one member at a
time: module and package members by qualified name, class and instance
members along the class linearization. External names stay external, and
so do values built by external callables.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import TYPE_CHECKING

from .models import Binding, Confidence, DefinitionKind, Reference, Scope, ScopeKind, TargetKind
from .symbols import PendingReference, SymbolTable

if TYPE_CHECKING:
    from .inheritance import InheritanceGraph


DEFINITION = "definition"
INSTANCE = "instance"
EXTERNAL = "external"
PACKAGE = "package"
UNRESOLVED = "unresolved"

MAX_RESOLUTION_DEPTH = 16

_DOTTED_NAME = re.compile(r"[A-Za-z_][\w.]*")
_UNION = re.compile(r"^(?:typing\.)?(Optional|Union)\[(.*)\]$")
_NONE_TYPES = {"None", "NoneType"}


@dataclass(frozen=True)
class Resolved:
    state: str
    definition: str | None = None
    declared_type: str | None = None
    qualname: str | None = None
    binding: Binding | None = None
    receiver_role: str | None = None
    via_class_scope: bool = False


def _split_top_level(text: str, separator: str) -> list[str]:
    parts: list[str] = []
    depth = 0
    current: list[str] = []
    for char in text:
        if char in "[(":
            depth += 1
        elif char in "])":
            depth -= 1
        if char == separator and depth == 0:
            parts.append("".join(current).strip())
            current = []
            continue
        current.append(char)
    parts.append("".join(current).strip())
    return [part for part in parts if part]


def normalize_type_hint(hint: str | None) -> str | None:
    """Reduce an annotation to the single class name it declares, if any.

    ``"Repo"``, ``Optional[Repo]``, ``Repo | None`` and ``Union[Repo, None]``
    all give ``Repo``; unions of several types give ``None``; generic
    aliases give their origin (``Box[int]`` -> ``Box``).
    """
    if not hint:
        return None
    text = hint.strip().strip("'\"").strip()
    members = [part for part in _split_top_level(text, "|") if part not in _NONE_TYPES]
    if len(members) != 1:
        return None
    text = members[0]

    match = _UNION.match(text)
    if match:
        inner = [
            part for part in _split_top_level(match.group(2), ",") if part not in _NONE_TYPES
        ]
        if len(inner) != 1:
            return None
        return normalize_type_hint(inner[0])

    if "[" in text:
        text = text.split("[", 1)[0]
    if not _DOTTED_NAME.fullmatch(text):
        return None
    return text


class BindingResolver:
    def __init__(self, table: SymbolTable, hierarchy: "InheritanceGraph | None" = None) -> None:
        self.table = table
        self.hierarchy = hierarchy
        self._chains: dict[str, tuple[Scope, ...]] = {}

    def with_hierarchy(self, hierarchy: "InheritanceGraph") -> "BindingResolver":
        return BindingResolver(self.table, hierarchy)

    # ------------------------------------------------------------------
    # Scope-chain lookup
    # ------------------------------------------------------------------

    def scope_chain(self, scope_id: str) -> tuple[Scope, ...]:
        chain = self._chains.get(scope_id)
        if chain is None:
            scopes = []
            current = self.table.scopes.get(scope_id)
            while current is not None:
                scopes.append(current)
                current = self.table.scopes.get(current.parent_id) if current.parent_id else None
            chain = tuple(scopes)
            self._chains[scope_id] = chain
        return chain

    def lookup(self, scope_id: str, name: str) -> tuple[Binding, Scope] | None:
        chain = self.scope_chain(scope_id)
        if not chain:
            return None
        implicit = self.table.implicit_member_access(scope_id)

        for index, scope in enumerate(chain):
            if scope.kind is ScopeKind.CLASS and index > 0 and not implicit:
                continue
            binding = scope.bindings.get(name)
            if binding is not None:
                return binding, scope

        for scope in chain:
            binding = scope.aliases.get(name)
            if binding is not None:
                return binding, scope

        for scope in chain:
            for module in scope.star_imports:
                qualname = f"{module}.{name}"
                if self.table.find(qualname) is not None:
                    return (
                        Binding(
                            name=name,
                            scope_id=scope.scope_id,
                            target=TargetKind.ALIAS,
                            ref=qualname,
                            origin="import",
                        ),
                        scope,
                    )
        return None

    # ------------------------------------------------------------------
    # Resolution
    # ------------------------------------------------------------------

    def resolve_name(
        self,
        scope_id: str,
        dotted: str,
        trail: set[str] | None = None,
        depth: int = 0,
    ) -> Resolved:
        head, *rest = dotted.split(".")
        found = self.lookup(scope_id, head)
        if found is None:
            _record(trail, f"name:{head}")
            result = Resolved(UNRESOLVED, qualname=head)
        else:
            binding, scope = found
            result = self.resolve_binding(binding, trail, depth + 1)
            if scope.kind is ScopeKind.CLASS and scope.scope_id != scope_id:
                result = _replace(result, via_class_scope=True)
        for member in rest:
            result = self.member(result, member, trail, depth + 1)
        return result

    def resolve_binding(
        self,
        binding: Binding,
        trail: set[str] | None = None,
        depth: int = 0,
    ) -> Resolved:
        if depth > MAX_RESOLUTION_DEPTH:
            return Resolved(UNRESOLVED, qualname=binding.name, binding=binding)

        if binding.target is TargetKind.DEFINITION:
            definition = self.table.get(binding.ref)
            if definition is None:
                return Resolved(UNRESOLVED, qualname=binding.name, binding=binding)
            _record(trail, definition.qualname)
            if definition.kind is DefinitionKind.VARIABLE_CALLABLE and binding.type_hint:
                declared = self.resolve_type(
                    binding.type_hint, binding.hint_scope, trail, depth + 1
                )
                if declared is not None:
                    return Resolved(
                        INSTANCE,
                        definition=definition.def_id,
                        declared_type=declared,
                        binding=binding,
                    )
                # qualname carries the external type the value was built from.
                return Resolved(
                    DEFINITION,
                    definition=definition.def_id,
                    qualname=self._external_hint(binding, trail, depth),
                    binding=binding,
                )
            return Resolved(DEFINITION, definition=definition.def_id, binding=binding)

        if binding.target is TargetKind.ALIAS:
            return _replace(self.resolve_qualname(binding.ref, trail, depth + 1), binding=binding)

        if binding.target is TargetKind.EXTERNAL:
            return Resolved(EXTERNAL, qualname=binding.ref, binding=binding)

        if binding.receiver_role and binding.declared_class:
            owner = self.table.get(binding.declared_class)
            if owner is not None:
                _record(trail, owner.qualname)
            if binding.receiver_role == "cls":
                return Resolved(
                    DEFINITION,
                    definition=binding.declared_class,
                    binding=binding,
                    receiver_role="cls",
                )
            return Resolved(
                INSTANCE,
                declared_type=binding.declared_class,
                binding=binding,
                receiver_role="self",
            )

        if binding.type_hint and binding.hint_scope:
            declared = self.resolve_type(binding.type_hint, binding.hint_scope, trail, depth + 1)
            if declared is not None:
                return Resolved(INSTANCE, declared_type=declared, binding=binding)
            external = self._external_hint(binding, trail, depth)
            if external is not None:
                return Resolved(EXTERNAL, qualname=external, binding=binding)
            return Resolved(UNRESOLVED, qualname=binding.name, binding=binding)

        if binding.value_ref and binding.hint_scope:
            propagated = self.resolve_name(binding.hint_scope, binding.value_ref, trail, depth + 1)
            return _replace(propagated, binding=binding)

        return Resolved(UNRESOLVED, qualname=binding.name, binding=binding)

    def resolve_qualname(
        self,
        qualname: str,
        trail: set[str] | None = None,
        depth: int = 0,
    ) -> Resolved:
        _record(trail, qualname)
        if depth > MAX_RESOLUTION_DEPTH:
            return Resolved(UNRESOLVED, qualname=qualname)

        definition = self.table.find(qualname)
        if definition is not None:
            return Resolved(DEFINITION, definition=definition.def_id)

        if self._is_package(qualname):
            return Resolved(PACKAGE, qualname=qualname)

        head, _, tail = qualname.rpartition(".")
        if not head:
            return Resolved(EXTERNAL, qualname=qualname)

        module_scope = self.table.module_scopes.get(head)
        if module_scope is not None:
            # Re-exported through the module's own imports.
            found = self.lookup(module_scope, tail)
            if found is not None:
                return self.resolve_binding(found[0], trail, depth + 1)
            return Resolved(UNRESOLVED, qualname=qualname)

        return self.member(self.resolve_qualname(head, trail, depth + 1), tail, trail, depth + 1)

    def member(
        self,
        owner: Resolved,
        name: str,
        trail: set[str] | None = None,
        depth: int = 0,
    ) -> Resolved:
        if owner.state == EXTERNAL:
            return Resolved(EXTERNAL, qualname=f"{owner.qualname}.{name}")
        if owner.state == PACKAGE:
            qualname = f"{owner.qualname}.{name}"
            if self.table.find(qualname) is None and not self._is_package(qualname):
                # Namespace packages may also live outside the indexed tree.
                _record(trail, qualname)
                return Resolved(EXTERNAL, qualname=qualname)
            return self.resolve_qualname(qualname, trail, depth + 1)
        if owner.state == INSTANCE and owner.declared_type:
            return self._class_member(owner.declared_type, name, trail, depth)
        if owner.state == DEFINITION:
            definition = self.table.get(owner.definition)
            if definition is not None and definition.kind is DefinitionKind.MODULE:
                return self.resolve_qualname(f"{definition.qualname}.{name}", trail, depth + 1)
            if definition is not None and definition.kind is DefinitionKind.CLASS:
                return self._class_member(definition.def_id, name, trail, depth)
            if (
                definition is not None
                and definition.kind is DefinitionKind.VARIABLE_CALLABLE
                and owner.qualname
            ):
                return Resolved(EXTERNAL, qualname=f"{owner.qualname}.{name}")
        return Resolved(UNRESOLVED, qualname=name)

    def resolve_type(
        self,
        hint: str,
        scope_id: str | None,
        trail: set[str] | None = None,
        depth: int = 0,
    ) -> str | None:
        """Return the class def id a type hint declares, or None."""
        name = normalize_type_hint(hint)
        if not name or scope_id is None or scope_id not in self.table.scopes:
            return None
        resolved = self.resolve_name(scope_id, name, trail, depth + 1)
        if resolved.state != DEFINITION or resolved.receiver_role:
            return None
        definition = self.table.get(resolved.definition)
        if definition is None or definition.kind is not DefinitionKind.CLASS:
            return None
        return definition.def_id

    def _external_hint(
        self, binding: Binding, trail: set[str] | None, depth: int
    ) -> str | None:
        """Qualified name of an unindexed type the binding is annotated or built with."""
        hinted = normalize_type_hint(binding.type_hint)
        if not hinted or binding.hint_scope not in self.table.scopes:
            return None
        outer = self.resolve_name(binding.hint_scope, hinted, trail, depth + 1)
        return outer.qualname if outer.state == EXTERNAL else None

    def _is_package(self, qualname: str) -> bool:
        """True for a directory of indexed modules that has no module of its own."""
        return qualname in self.table.packages

    def find_member(self, class_id: str, name: str) -> tuple[str, Binding] | None:
        """Look ``name`` up along the linearization of ``class_id``.

        Classes without a linearization (cyclic hierarchies) only expose
        their own body.
        """
        if self.hierarchy is not None and self.hierarchy.linearization(class_id) is not None:
            return self.hierarchy.lookup(class_id, name)
        decl = self.table.classes.get(class_id)
        if decl is None:
            return None
        binding = self.table.scopes[decl.body_scope].bindings.get(name)
        if binding is None:
            return None
        return class_id, binding

    def _class_member(
        self,
        class_id: str,
        name: str,
        trail: set[str] | None,
        depth: int,
    ) -> Resolved:
        if trail is not None and self.hierarchy is not None:
            for ancestor in self.hierarchy.linearization(class_id) or (class_id,):
                _record(trail, self.table.get(ancestor).qualname)
        found = self.find_member(class_id, name)
        if found is None:
            return Resolved(UNRESOLVED, qualname=name)
        return self.resolve_binding(found[1], trail, depth + 1)

    # ------------------------------------------------------------------
    # References
    # ------------------------------------------------------------------

    def resolve_reference(self, pending: PendingReference) -> Reference:
        resolved = self.resolve_name(pending.scope_id, pending.expression)
        if resolved.definition is not None:
            target, confidence = resolved.definition, Confidence.EXACT
        elif resolved.state == INSTANCE:
            target, confidence = resolved.declared_type, Confidence.AMBIGUOUS
        else:
            target, confidence = None, Confidence.UNKNOWN
        return Reference(
            path=pending.path,
            scope_id=pending.scope_id,
            expression=pending.expression,
            location=pending.location,
            target=target,
            confidence=confidence,
        )


def _record(trail: set[str] | None, key: str | None) -> None:
    if trail is not None and key:
        trail.add(key)


def _replace(resolved: Resolved, **changes) -> Resolved:
    values = {
        "state": resolved.state,
        "definition": resolved.definition,
        "declared_type": resolved.declared_type,
        "qualname": resolved.qualname,
        "binding": resolved.binding,
        "receiver_role": resolved.receiver_role,
        "via_class_scope": resolved.via_class_scope,
    }
    values.update(changes)
    return Resolved(**values)
