"""NetworkX call graph over resolved call sites."""

from __future__ import annotations

from typing import Iterable

import networkx as nx

from .models import CallEdge, CallSite, Definition, DispatchKind


EDGE_CALLS = "CALLS"


def build_call_graph(
    definitions: dict[str, Definition], sites: Iterable[CallSite]
) -> nx.MultiDiGraph:
    """One node per definition on either end of a call, one edge per target.

    Edges are keyed by call site id so parallel edges between the same pair
    of definitions stay distinct. The returned graph is frozen.
    """
    graph = nx.MultiDiGraph()
    for site in sorted(sites, key=_site_order):
        if not site.targets:
            continue
        _ensure_node(graph, definitions, site.caller)
        for target in site.targets:
            _ensure_node(graph, definitions, target)
            graph.add_edge(
                site.caller,
                target,
                key=site.site_id,
                type=EDGE_CALLS,
                site=site.site_id,
                dispatch=site.dispatch.value,
                confidence=site.confidence.value,
                order=site.order,
            )
    return nx.freeze(graph)


def _site_order(site: CallSite) -> tuple:
    return site.caller, site.location, site.order, site.site_id


def _ensure_node(graph: nx.MultiDiGraph, definitions: dict[str, Definition], def_id: str) -> None:
    if graph.has_node(def_id):
        return
    definition = definitions.get(def_id)
    if definition is None:
        graph.add_node(def_id, type="missing", qualname=def_id)
        return
    graph.add_node(
        def_id,
        type=definition.kind.value,
        name=definition.name,
        qualname=definition.qualname,
        path=definition.path,
        line=definition.location.line,
    )


class CallGraph:
    """Read-only queries over a frozen call graph and its call sites."""

    def __init__(self, graph: nx.MultiDiGraph, sites: dict[str, CallSite]):
        self.graph = graph
        self.sites = sites

    def callers_of(self, def_id: str) -> list[CallSite]:
        if not self.graph.has_node(def_id):
            return []
        site_ids = {key for _source, _target, key in self.graph.in_edges(def_id, keys=True)}
        return sorted((self.sites[site_id] for site_id in site_ids), key=_site_order)

    def callees_of(self, def_id: str) -> list[CallEdge]:
        if not self.graph.has_node(def_id):
            return []
        edges = [
            CallEdge(
                source=source,
                target=target,
                site_id=key,
                dispatch=DispatchKind(data["dispatch"]),
            )
            for source, target, key, data in self.graph.out_edges(def_id, keys=True, data=True)
        ]
        edges.sort(key=self._edge_order)
        return edges

    def _edge_order(self, edge: CallEdge) -> tuple:
        site = self.sites[edge.site_id]
        return _site_order(site), site.targets.index(edge.target)

    def has_path(self, source: str, target: str) -> bool:
        if source == target:
            return True
        if not (self.graph.has_node(source) and self.graph.has_node(target)):
            return False
        return nx.has_path(self.graph, source, target)

    def reachable_from(self, def_id: str) -> set[str]:
        if not self.graph.has_node(def_id):
            return set()
        return set(nx.descendants(self.graph, def_id))

    def unreachable(self, roots: Iterable[str], candidates: Iterable[str]) -> list[str]:
        """Candidates no call path from any root reaches."""
        reached: set[str] = set()
        for root in roots:
            reached.add(root)
            reached.update(self.reachable_from(root))
        return sorted(candidate for candidate in candidates if candidate not in reached)
