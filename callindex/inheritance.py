"""Class hierarchy: base resolution, C3 linearization, cycles and the override index."""

from __future__ import annotations

from collections import deque
from typing import TYPE_CHECKING

import networkx as nx
from loguru import logger

from .errors import CyclicInheritanceError, Diagnostic, InconsistentLinearizationWarning
from .models import CALLABLE_KINDS, Binding, ClassEntity, DefinitionKind, TargetKind
from .symbols import SymbolTable

if TYPE_CHECKING:
    from .bindings import BindingResolver


IMPLICIT_ROOTS = frozenset({"object", "builtins.object"})


class InheritanceGraph:
    """Immutable snapshot of the class hierarchy of one build.

    ``graph`` holds one edge per declared extends relationship, pointing
    from subclass to base. Every lookup structure is computed when the
    snapshot is built.
    """

    def __init__(self, table: SymbolTable, graph: nx.DiGraph, entities: dict[str, ClassEntity]):
        self.table = table
        self.graph = graph
        self.entities = entities
        self._subtrees: dict[str, tuple[str, ...]] = {}

    def entity(self, class_id: str) -> ClassEntity | None:
        return self.entities.get(class_id)

    def linearization(self, class_id: str) -> tuple[str, ...] | None:
        entity = self.entities.get(class_id)
        return entity.linearization if entity else None

    def is_cyclic(self, class_id: str) -> bool:
        entity = self.entities.get(class_id)
        return bool(entity and entity.cyclic)

    def has_external_base(self, class_id: str) -> bool:
        for ancestor in self.linearization(class_id) or (class_id,):
            entity = self.entities.get(ancestor)
            if entity and entity.external_bases:
                return True
        return False

    def lookup(
        self, class_id: str, name: str, start_after: str | None = None
    ) -> tuple[str, Binding] | None:
        """First binding of ``name`` along the linearization of ``class_id``.

        With ``start_after`` the search begins after that class, which is how
        ``super()`` calls walk the order.
        """
        order = self.linearization(class_id)
        if order is None:
            return None
        if start_after is not None:
            if start_after not in order:
                return None
            order = order[order.index(start_after) + 1 :]
        for ancestor in order:
            decl = self.table.classes[ancestor]
            binding = self.table.scopes[decl.body_scope].bindings.get(name)
            if binding is not None:
                return ancestor, binding
        return None

    def subtree(self, class_id: str) -> tuple[str, ...]:
        """``class_id`` followed by its acyclic subclasses, breadth first."""
        cached = self._subtrees.get(class_id)
        if cached is not None:
            return cached
        seen = {class_id}
        order = [class_id]
        queue = deque([class_id])
        while queue:
            current = queue.popleft()
            for child in sorted(self.graph.predecessors(current), key=self._sort_key):
                if child in seen or self.is_cyclic(child):
                    continue
                seen.add(child)
                order.append(child)
                queue.append(child)
        result = tuple(order)
        self._subtrees[class_id] = result
        return result

    def descendants(self, class_id: str) -> tuple[str, ...]:
        return self.subtree(class_id)[1:]

    def dispatch_targets(self, class_id: str, member: str) -> tuple[str, ...]:
        """Concrete definitions ``member`` may run for a receiver typed ``class_id``."""
        entity = self.entities.get(class_id)
        if entity is None:
            return ()
        return entity.overrides.get(member, ())

    def is_abstract(self, class_id: str, member: str) -> bool:
        entity = self.entities.get(class_id)
        return bool(entity and member in entity.abstract_members)

    def _sort_key(self, class_id: str) -> tuple[str, str]:
        return self.table.definitions[class_id].qualname, class_id


def build_hierarchy(
    table: SymbolTable, resolver: "BindingResolver"
) -> tuple[InheritanceGraph, list[Diagnostic]]:
    """Resolve every extends list and compute the per-class lookup data."""
    from .bindings import DEFINITION, EXTERNAL

    diagnostics: list[Diagnostic] = []
    class_ids = sorted(
        table.classes, key=lambda item: (table.definitions[item].qualname, item)
    )

    graph = nx.DiGraph()
    resolved_bases: dict[str, list[str]] = {}
    external_bases: dict[str, list[str]] = {}
    for class_id in class_ids:
        graph.add_node(class_id)
        definition = table.definitions[class_id]
        resolved_bases[class_id] = []
        external_bases[class_id] = []
        for base in table.classes[class_id].bases:
            if base in IMPLICIT_ROOTS:
                continue
            result = resolver.resolve_name(definition.scope_id, base)
            target = table.get(result.definition) if result.state == DEFINITION else None
            if target is not None and target.kind is DefinitionKind.CLASS:
                if target.def_id not in resolved_bases[class_id]:
                    resolved_bases[class_id].append(target.def_id)
                    graph.add_edge(class_id, target.def_id)
            elif result.state == EXTERNAL and result.qualname:
                external_bases[class_id].append(result.qualname)
            else:
                external_bases[class_id].append(base)

    implicated: set[str] = set()
    for component in nx.strongly_connected_components(graph):
        member = next(iter(component))
        if len(component) == 1 and not graph.has_edge(member, member):
            continue
        members = sorted(component, key=lambda item: table.definitions[item].qualname)
        diagnostics.append(
            CyclicInheritanceError(table.definitions[item].qualname for item in members)
        )
        implicated.update(component)
    # Subclasses of a cyclic class inherit the broken order.
    for class_id in list(implicated):
        implicated.update(nx.ancestors(graph, class_id))

    linearizations: dict[str, tuple[str, ...]] = {}
    for class_id in class_ids:
        if class_id not in implicated:
            _linearize(class_id, resolved_bases, linearizations, table, diagnostics)

    snapshot = InheritanceGraph(table, graph, {})
    for class_id in class_ids:
        snapshot.entities[class_id] = ClassEntity(
            def_id=class_id,
            qualname=table.definitions[class_id].qualname,
            scope_id=table.classes[class_id].body_scope,
            bases=table.classes[class_id].bases,
            resolved_bases=tuple(resolved_bases[class_id]),
            external_bases=tuple(external_bases[class_id]),
            linearization=linearizations.get(class_id),
            cyclic=class_id in implicated,
        )

    for class_id in class_ids:
        if class_id in implicated:
            continue
        entity = snapshot.entities[class_id]
        members = _member_names(snapshot, class_id)
        abstract = set()
        overrides: dict[str, tuple[str, ...]] = {}
        for name in sorted(members):
            found = snapshot.lookup(class_id, name)
            if found is not None and _is_abstract(table, found[1]):
                abstract.add(name)
            concrete = _concrete_targets(snapshot, class_id, name)
            if concrete:
                overrides[name] = concrete
        snapshot.entities[class_id] = ClassEntity(
            def_id=entity.def_id,
            qualname=entity.qualname,
            scope_id=entity.scope_id,
            bases=entity.bases,
            resolved_bases=entity.resolved_bases,
            external_bases=entity.external_bases,
            linearization=entity.linearization,
            abstract_members=frozenset(abstract),
            overrides=overrides,
            cyclic=False,
        )

    logger.debug(
        f"Hierarchy: {len(class_ids)} classes, {graph.number_of_edges()} extends edges, "
        f"{len(implicated)} in cycles"
    )
    return snapshot, diagnostics


def _linearize(
    class_id: str,
    bases: dict[str, list[str]],
    done: dict[str, tuple[str, ...]],
    table: SymbolTable,
    diagnostics: list[Diagnostic],
) -> tuple[str, ...]:
    if class_id in done:
        return done[class_id]
    parents = bases[class_id]
    sequences = [list(_linearize(base, bases, done, table, diagnostics)) for base in parents]
    sequences.append(list(parents))
    merged = _c3_merge(sequences)
    if merged is None:
        diagnostics.append(InconsistentLinearizationWarning(table.definitions[class_id].qualname))
        merged = []
        for base in parents:
            for ancestor in done[base]:
                if ancestor not in merged:
                    merged.append(ancestor)
    result = (class_id, *merged)
    done[class_id] = result
    return result


def _c3_merge(sequences: list[list[str]]) -> list[str] | None:
    result: list[str] = []
    sequences = [list(seq) for seq in sequences if seq]
    while sequences:
        for seq in sequences:
            head = seq[0]
            if not any(head in other[1:] for other in sequences):
                break
        else:
            return None
        result.append(head)
        sequences = [[item for item in seq if item != head] for seq in sequences]
        sequences = [seq for seq in sequences if seq]
    return result


def _is_abstract(table: SymbolTable, binding: Binding) -> bool:
    if binding.target is not TargetKind.DEFINITION:
        return False
    definition = table.get(binding.ref)
    return bool(definition and definition.is_abstract)


def _member_names(snapshot: InheritanceGraph, class_id: str) -> set[str]:
    table = snapshot.table
    names: set[str] = set()
    for related in (*snapshot.linearization(class_id), *snapshot.subtree(class_id)):
        scope = table.scopes[table.classes[related].body_scope]
        for name, binding in scope.bindings.items():
            if binding.target is TargetKind.DEFINITION:
                names.add(name)
    return names


def _concrete_targets(snapshot: InheritanceGraph, class_id: str, name: str) -> tuple[str, ...]:
    table = snapshot.table
    targets: list[str] = []
    for related in snapshot.subtree(class_id):
        found = snapshot.lookup(related, name)
        if found is None or found[1].target is not TargetKind.DEFINITION:
            continue
        definition = table.get(found[1].ref)
        if definition is None or definition.is_abstract or definition.kind not in CALLABLE_KINDS:
            continue
        if definition.def_id not in targets:
            targets.append(definition.def_id)
    return tuple(targets)
