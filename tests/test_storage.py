from __future__ import annotations

import json
from pathlib import Path
from tempfile import TemporaryDirectory

import pytest

from callindex.index import build_index
from callindex.scope_tree import CallNode, ClassNode, FileScopeTree, FunctionNode, ModuleNode, Param
from callindex.storage import (
    FORMAT_VERSION,
    index_to_dict,
    load_graph,
    load_index_data,
    save_graph,
    save_index,
)


def _index():
    tree = FileScopeTree(
        path="app.py",
        module="app",
        root=ModuleNode(
            body=[
                ClassNode(
                    name="Worker",
                    body=[FunctionNode(name="work", params=(Param("self"),))],
                ),
                FunctionNode(
                    name="zeta",
                    params=(Param("worker", annotation="Worker"),),
                    body=[CallNode(callee="work", receiver="worker"), CallNode(callee="alpha")],
                ),
                FunctionNode(name="alpha", body=[CallNode(callee="Worker")]),
            ]
        ),
    )
    index, _ = build_index([tree])
    return index


def test_index_dict_is_sorted_by_qualified_name():
    data = index_to_dict(_index())

    assert data["format"] == FORMAT_VERSION
    qualnames = [item["qualname"] for item in data["definitions"]]
    assert qualnames == sorted(qualnames)
    callers = [item["caller"] for item in data["call_sites"]]
    assert callers == ["app.py::app.alpha", "app.py::app.zeta", "app.py::app.zeta"]
    assert [edge["target"] for edge in data["edges"]] == [
        "app.py::app.Worker",
        "app.py::app.Worker.work",
        "app.py::app.alpha",
    ]
    (worker,) = data["classes"]
    assert worker["linearization"] == ["app.py::app.Worker"]
    assert worker["overrides"] == {"work": ["app.py::app.Worker.work"]}


def test_save_and_load_index_data():
    index = _index()
    with TemporaryDirectory() as tmpdir:
        path = Path(tmpdir) / "index.json"
        save_index(index, path)

        data = load_index_data(path)

    assert data == json.loads(json.dumps(index_to_dict(index)))


def test_load_rejects_unknown_format():
    with TemporaryDirectory() as tmpdir:
        path = Path(tmpdir) / "index.json"
        path.write_text(json.dumps({"format": 99}), encoding="utf-8")

        with pytest.raises(ValueError):
            load_index_data(path)


def test_graph_round_trip_keeps_parallel_edges():
    index = _index()
    with TemporaryDirectory() as tmpdir:
        path = Path(tmpdir) / "graph.json"
        save_graph(index.graph.graph, path)

        graph = load_graph(path)

    assert graph.is_multigraph()
    assert sorted(graph.edges(keys=True)) == sorted(index.graph.graph.edges(keys=True))
    assert graph.nodes["app.py::app.Worker.work"]["qualname"] == "app.Worker.work"
