"""JSON serialization of an Index and its call graph."""

from __future__ import annotations

import json
from pathlib import Path
from typing import TYPE_CHECKING

import networkx as nx
from networkx.readwrite import json_graph

from .models import CallSite, Definition

if TYPE_CHECKING:
    from .index import Index


FORMAT_VERSION = 1


def _definition_record(definition: Definition) -> dict:
    return {
        "id": definition.def_id,
        "qualname": definition.qualname,
        "name": definition.name,
        "kind": definition.kind.value,
        "path": definition.path,
        "line": definition.location.line,
        "column": definition.location.column,
        "owner_class": definition.owner_class,
        "is_abstract": definition.is_abstract,
        "is_async": definition.is_async,
        "decorators": list(definition.decorators),
        "min_args": definition.min_args,
        "max_args": definition.max_args,
    }


def _site_record(site: CallSite) -> dict:
    return {
        "id": site.site_id,
        "caller": site.caller,
        "line": site.location.line,
        "column": site.location.column,
        "order": site.order,
        "callee": site.callee,
        "receiver": site.receiver,
        "receiver_kind": site.receiver_kind.value,
        "arg_count": site.arg_count,
        "targets": list(site.targets),
        "confidence": site.confidence.value,
        "dispatch": site.dispatch.value,
        "suspended": site.suspended,
        "decorators": list(site.decorators),
    }


def index_to_dict(index: "Index") -> dict:
    """Deterministic plain-data form of an Index.

    Definitions are sorted by qualified name, call sites and edges by caller
    qualified name then source position. Generation stamps and resolution
    dependencies are left out so unchanged input always serializes the same.
    """
    definitions = index.definitions

    def caller_key(site: CallSite) -> tuple:
        caller = definitions.get(site.caller)
        qualname = caller.qualname if caller else site.caller
        return qualname, site.location, site.order, site.site_id

    ordered_sites = sorted(index.sites.values(), key=caller_key)
    edges = [
        {
            "source": site.caller,
            "target": target,
            "site": site.site_id,
            "dispatch": site.dispatch.value,
        }
        for site in ordered_sites
        for target in site.targets
    ]
    classes = []
    entities = sorted(
        index.hierarchy.entities.values(), key=lambda item: (item.qualname, item.def_id)
    )
    for entity in entities:
        classes.append(
            {
                "id": entity.def_id,
                "qualname": entity.qualname,
                "bases": list(entity.bases),
                "resolved_bases": list(entity.resolved_bases),
                "external_bases": list(entity.external_bases),
                "linearization": list(entity.linearization) if entity.linearization else None,
                "abstract_members": sorted(entity.abstract_members),
                "overrides": {
                    name: list(targets) for name, targets in sorted(entity.overrides.items())
                },
                "cyclic": entity.cyclic,
            }
        )
    return {
        "format": FORMAT_VERSION,
        "files": [
            {"path": item.path, "module": item.module, "failed": item.failed}
            for item in sorted(index.table.files.values(), key=lambda item: item.path)
        ],
        "definitions": [
            _definition_record(definition)
            for definition in sorted(
                definitions.values(), key=lambda item: (item.qualname, item.def_id)
            )
        ],
        "classes": classes,
        "call_sites": [_site_record(site) for site in ordered_sites],
        "edges": edges,
    }


def dumps_index(index: "Index") -> str:
    return json.dumps(index_to_dict(index), indent=2, sort_keys=True)


def save_index(index: "Index", path: str | Path) -> None:
    Path(path).write_text(dumps_index(index), encoding="utf-8")


def load_index_data(path: str | Path) -> dict:
    data = json.loads(Path(path).read_text(encoding="utf-8"))
    if data.get("format") != FORMAT_VERSION:
        raise ValueError(f"Unsupported index format: {data.get('format')!r}")
    return data


def save_graph(graph: nx.MultiDiGraph, path: str | Path) -> None:
    data = json_graph.node_link_data(graph, edges="links")
    Path(path).write_text(json.dumps(data, indent=2, sort_keys=True), encoding="utf-8")


def load_graph(path: str | Path) -> nx.MultiDiGraph:
    data = json.loads(Path(path).read_text(encoding="utf-8"))
    return json_graph.node_link_graph(data, directed=True, multigraph=True, edges="links")
