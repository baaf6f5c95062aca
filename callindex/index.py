"""Index construction, queries and incremental re-indexing."""

from __future__ import annotations

import threading
from collections import Counter
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import Callable, Iterable, Sequence, TypeVar

from loguru import logger

from .bindings import BindingResolver
from .callgraph import CallGraph, build_call_graph
from .config import DEFAULT_POLICY, ResolutionPolicy
from .errors import BuildCancelledError, Diagnostic, EmptyInputError
from .inheritance import InheritanceGraph, build_hierarchy
from .models import (
    CALLABLE_KINDS,
    CallEdge,
    CallResolution,
    CallSite,
    ClassEntity,
    Confidence,
    Definition,
    Reference,
)
from .resolver import CallSiteResolver
from .scope_tree import FileScopeTree
from .symbols import FileSymbols, PendingCall, SymbolTable, extract_file_symbols, merge_tables


T = TypeVar("T")
R = TypeVar("R")


class CancellationToken:
    """Cooperative cancellation, checked between file-level units of work."""

    def __init__(self) -> None:
        self._event = threading.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()


def _run_per_file(
    func: Callable[[T], R],
    items: Sequence[T],
    policy: ResolutionPolicy,
    cancel: CancellationToken | None,
) -> list[R]:
    """Apply ``func`` to each item, in parallel above the policy threshold.

    Results come back in input order whatever the scheduling.
    """
    total = len(items)
    if total < policy.parallel_threshold or policy.max_workers() < 2:
        results = []
        for done, item in enumerate(items):
            if cancel is not None and cancel.cancelled:
                raise BuildCancelledError(done, total)
            results.append(func(item))
        return results

    with ThreadPoolExecutor(max_workers=policy.max_workers()) as executor:
        futures = [executor.submit(func, item) for item in items]
        results = []
        for done, future in enumerate(futures):
            if cancel is not None and cancel.cancelled:
                for pending in futures[done:]:
                    pending.cancel()
                raise BuildCancelledError(done, total)
            results.append(future.result())
    return results


def _check(cancel: CancellationToken | None, completed: int, total: int) -> None:
    if cancel is not None and cancel.cancelled:
        raise BuildCancelledError(completed, total)


@dataclass
class _FileResolution:
    sites: list[CallSite] = field(default_factory=list)
    diagnostics: dict[str, list[Diagnostic]] = field(default_factory=dict)
    references: list[Reference] = field(default_factory=list)


class Index:
    """Immutable result of one build.

    ``update_file`` and ``remove_file`` return a new Index and leave this one
    untouched.
    """

    def __init__(
        self,
        table: SymbolTable,
        hierarchy: InheritanceGraph,
        sites: dict[str, CallSite],
        site_diagnostics: dict[str, list[Diagnostic]],
        references: list[Reference],
        graph: CallGraph,
        policy: ResolutionPolicy,
        generation: int,
    ) -> None:
        self.table = table
        self.hierarchy = hierarchy
        self.sites = sites
        self.references = references
        self.graph = graph
        self.policy = policy
        self.generation = generation
        self._site_diagnostics = site_diagnostics

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    @property
    def definitions(self) -> dict[str, Definition]:
        return self.table.definitions

    def definition(self, def_id: str) -> Definition | None:
        return self.table.get(def_id)

    def find(self, qualname: str) -> Definition | None:
        return self.table.find(qualname)

    def class_entity(self, def_id: str) -> ClassEntity | None:
        return self.hierarchy.entity(def_id)

    def call_site(self, site_id: str) -> CallSite:
        try:
            return self.sites[site_id]
        except KeyError:
            raise KeyError(f"Unknown call site: {site_id}") from None

    def call_sites(self) -> list[CallSite]:
        return sorted(
            self.sites.values(),
            key=lambda site: (site.path, site.location, site.order, site.site_id),
        )

    def resolve_call(self, site_id: str) -> CallResolution:
        site = self.call_site(site_id)
        return CallResolution(
            targets=frozenset(site.targets),
            confidence=site.confidence,
            dispatch=site.dispatch,
        )

    def callers_of(self, def_id: str) -> list[CallSite]:
        return self.graph.callers_of(def_id)

    def callees_of(self, def_id: str) -> list[CallEdge]:
        return self.graph.callees_of(def_id)

    def has_path(self, source: str, target: str) -> bool:
        return self.graph.has_path(source, target)

    def reachable_from(self, def_id: str) -> set[str]:
        return self.graph.reachable_from(def_id)

    def unreachable(self, roots: Iterable[str]) -> list[str]:
        """Callable definitions that no call path from ``roots`` reaches."""
        candidates = [
            def_id
            for def_id, definition in self.table.definitions.items()
            if definition.kind in CALLABLE_KINDS
        ]
        return sorted(
            self.graph.unreachable(roots, candidates),
            key=lambda def_id: (self.table.definitions[def_id].qualname, def_id),
        )

    def references_to(self, def_id: str) -> list[Reference]:
        return [reference for reference in self.references if reference.target == def_id]

    def diagnostics_for(self, site_id: str) -> list[Diagnostic]:
        return list(self._site_diagnostics.get(site_id, ()))

    def stats(self) -> dict:
        kinds = Counter(definition.kind.value for definition in self.table.definitions.values())
        confidence = Counter(site.confidence.value for site in self.sites.values())
        dispatch = Counter(
            data["dispatch"] for _source, _target, data in self.graph.graph.edges(data=True)
        )
        return {
            "files": len(self.table.files),
            "failed_files": sum(1 for item in self.table.files.values() if item.failed),
            "definitions": len(self.table.definitions),
            "definitions_by_kind": dict(sorted(kinds.items())),
            "classes": len(self.hierarchy.entities),
            "cyclic_classes": sum(
                1 for entity in self.hierarchy.entities.values() if entity.cyclic
            ),
            "call_sites": len(self.sites),
            "call_sites_by_confidence": {
                level.value: confidence.get(level.value, 0) for level in Confidence
            },
            "edges": self.graph.graph.number_of_edges(),
            "edges_by_dispatch": dict(sorted(dispatch.items())),
            "unresolved": sum(1 for site in self.sites.values() if not site.targets),
            "generation": self.generation,
        }

    # ------------------------------------------------------------------
    # Incremental re-indexing
    # ------------------------------------------------------------------

    def update_file(
        self, tree: FileScopeTree, cancel: CancellationToken | None = None
    ) -> tuple["Index", list[Diagnostic]]:
        """Re-index one changed (or new) file.

        Only the file itself is re-extracted. Call sites outside it are
        re-resolved when their recorded dependencies touch what the file
        declares, before or after the change.
        """
        generation = self.generation + 1
        partial = extract_file_symbols(tree, version=generation)
        partials = [item for path, item in self.table.files.items() if path != partial.path]
        partials.append(partial)
        previous = self.table.files.get(partial.path)
        return self._rebuild(partials, [previous, partial], generation, cancel)

    def remove_file(
        self, path: str, cancel: CancellationToken | None = None
    ) -> tuple["Index", list[Diagnostic]]:
        if path not in self.table.files:
            raise KeyError(f"File is not indexed: {path}")
        partials = [item for item_path, item in self.table.files.items() if item_path != path]
        if not partials:
            raise EmptyInputError("Cannot remove the last indexed file")
        return self._rebuild(partials, [self.table.files[path]], self.generation + 1, cancel)

    def _rebuild(
        self,
        partials: list[FileSymbols],
        changed: list[FileSymbols | None],
        generation: int,
        cancel: CancellationToken | None,
    ) -> tuple["Index", list[Diagnostic]]:
        changed = [item for item in changed if item is not None]
        changed_paths = {item.path for item in changed}
        touched_names = {
            definition.name for item in changed for definition in item.definitions.values()
        }

        def affected(table: SymbolTable, hierarchy: InheritanceGraph) -> set[str]:
            keys = {
                definition.qualname for item in changed for definition in item.definitions.values()
            }
            keys.update(f"name:{name}" for name in touched_names)
            for item in changed:
                # Enclosing packages, which may appear or vanish with the module.
                parts = item.module.split(".")
                keys.update(".".join(parts[:end]) for end in range(1, len(parts)))
            for snapshot in (self.hierarchy, hierarchy):
                for item in changed:
                    for class_id in item.classes:
                        if class_id not in snapshot.entities:
                            continue
                        related = set(snapshot.subtree(class_id))
                        related.update(snapshot.linearization(class_id) or ())
                        keys.update(snapshot.entities[class_id].qualname for class_id in related)
            return keys

        def reusable(pending: PendingCall, keys: set[str]) -> CallSite | None:
            previous = self.sites.get(pending.site_id)
            if previous is None or pending.path in changed_paths:
                return None
            if pending.callee in touched_names or previous.dependencies & keys:
                return None
            return previous

        index, diagnostics, reused = _assemble(
            partials, self.policy, generation, cancel, reuse=(affected, reusable, self)
        )
        logger.debug(
            f"Incremental update of {sorted(changed_paths)}: "
            f"{len(index.sites) - reused} call sites re-resolved, {reused} reused"
        )
        return index, diagnostics


def build_index(
    files: Iterable[FileScopeTree],
    policy: ResolutionPolicy | None = None,
    cancel: CancellationToken | None = None,
) -> tuple[Index, list[Diagnostic]]:
    """Build an Index from one scope tree per file.

    Returns the Index together with every non-fatal diagnostic. Only an
    empty input raises.
    """
    trees = list(files)
    if not trees:
        raise EmptyInputError("build_index needs at least one file")
    policy = policy or DEFAULT_POLICY
    generation = 1

    logger.debug(f"Extracting symbols from {len(trees)} files")
    partials = _run_per_file(
        lambda tree: extract_file_symbols(tree, version=generation), trees, policy, cancel
    )
    index, diagnostics, _reused = _assemble(partials, policy, generation, cancel)
    return index, diagnostics


def _assemble(
    partials: list[FileSymbols],
    policy: ResolutionPolicy,
    generation: int,
    cancel: CancellationToken | None,
    reuse=None,
) -> tuple[Index, list[Diagnostic], int]:
    total = len(partials)
    table, merge_diagnostics = merge_tables(partials)
    _check(cancel, total, total)

    base = BindingResolver(table)
    hierarchy, hierarchy_diagnostics = build_hierarchy(table, base)
    bindings = base.with_hierarchy(hierarchy)
    resolver = CallSiteResolver(table, hierarchy, bindings, policy)

    keys: set[str] = set()
    previous: Index | None = None
    reusable = None
    if reuse is not None:
        affected, reusable, previous = reuse
        keys = affected(table, hierarchy)

    reused = 0
    lock = threading.Lock()

    def resolve_file(item: FileSymbols) -> _FileResolution:
        nonlocal reused
        result = _FileResolution()
        for pending in item.calls:
            old = reusable(pending, keys) if reusable is not None else None
            if old is not None:
                result.sites.append(old)
                result.diagnostics[old.site_id] = previous.diagnostics_for(old.site_id)
                with lock:
                    reused += 1
                continue
            site, diagnostics = resolver.resolve(pending)
            result.sites.append(site)
            result.diagnostics[site.site_id] = diagnostics
        result.references = [bindings.resolve_reference(ref) for ref in item.references]
        return result

    files = list(table.files.values())
    resolutions = _run_per_file(resolve_file, files, policy, cancel)

    sites: dict[str, CallSite] = {}
    site_diagnostics: dict[str, list[Diagnostic]] = {}
    references: list[Reference] = []
    for resolution in resolutions:
        for site in resolution.sites:
            sites[site.site_id] = site
        site_diagnostics.update(resolution.diagnostics)
        references.extend(resolution.references)

    graph = CallGraph(build_call_graph(table.definitions, sites.values()), sites)
    index = Index(
        table=table,
        hierarchy=hierarchy,
        sites=sites,
        site_diagnostics=site_diagnostics,
        references=references,
        graph=graph,
        policy=policy,
        generation=generation,
    )

    diagnostics: list[Diagnostic] = []
    for item in files:
        diagnostics.extend(item.diagnostics)
    diagnostics.extend(merge_diagnostics)
    diagnostics.extend(hierarchy_diagnostics)
    for site in index.call_sites():
        diagnostics.extend(site_diagnostics.get(site.site_id, ()))

    logger.debug(
        f"Indexed {total} files: {len(table.definitions)} definitions, "
        f"{len(sites)} call sites, {graph.graph.number_of_edges()} edges, "
        f"{len(diagnostics)} diagnostics"
    )
    return index, diagnostics, reused
