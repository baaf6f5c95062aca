from __future__ import annotations

import json
from pathlib import Path
from tempfile import TemporaryDirectory

from callindex.pipeline import build_index_from_root, main
from callindex.storage import load_graph, load_index_data


MODULE = """
class Foo:
    def method(self):
        return 1


def bar():
    foo = Foo()
    return foo.method()
"""

CLIENT = """
from pkg.mod import bar
from . import mod


def run():
    bar()
    mod.bar()
"""


def _write_project(root: Path) -> None:
    (root / "pkg").mkdir()
    (root / "pkg" / "__init__.py").write_text("", encoding="utf-8")
    (root / "pkg" / "mod.py").write_text(MODULE, encoding="utf-8")
    (root / "pkg" / "client.py").write_text(CLIENT, encoding="utf-8")


def test_build_index_from_root_saves_json():
    with TemporaryDirectory() as tmpdir:
        root = Path(tmpdir)
        _write_project(root)
        out_path = root / "index.json"
        graph_path = root / "graph.json"

        index, diagnostics = build_index_from_root(root, out_path, graph_path=graph_path)

        assert out_path.exists()
        data = load_index_data(out_path)
        assert [item["path"] for item in data["files"]] == [
            "pkg/__init__.py",
            "pkg/client.py",
            "pkg/mod.py",
        ]
        graph = load_graph(graph_path)
        assert graph.number_of_edges() == index.graph.graph.number_of_edges()

        bar = index.find("pkg.mod.bar").def_id
        callers = {index.definition(site.caller).qualname for site in index.callers_of(bar)}
        assert callers == {"pkg.client.run"}
        assert len(index.callers_of(bar)) == 2
        method = index.find("pkg.mod.Foo.method").def_id
        assert index.has_path(index.find("pkg.client.run").def_id, method)
        assert diagnostics == []


def test_main_prints_stats(capsys):
    with TemporaryDirectory() as tmpdir:
        root = Path(tmpdir)
        _write_project(root)
        out_path = root / "out.json"

        code = main(["--root", str(root), "--output", str(out_path), "--quiet"])

        assert code == 0
        stats = json.loads(capsys.readouterr().out)
        assert stats["files"] == 3
        assert stats["unresolved"] == 0
        assert out_path.exists()


UTIL = """
def helper():
    return 1
"""

MAIN = """
import pkg.util


def run():
    return pkg.util.helper()
"""


def test_directory_without_init_is_a_package():
    with TemporaryDirectory() as tmpdir:
        root = Path(tmpdir)
        (root / "pkg").mkdir()
        (root / "pkg" / "util.py").write_text(UTIL, encoding="utf-8")
        (root / "main.py").write_text(MAIN, encoding="utf-8")

        index, diagnostics = build_index_from_root(root)

        helper = index.find("pkg.util.helper").def_id
        callers = [index.definition(site.caller).qualname for site in index.callers_of(helper)]
        assert callers == ["main.run"]
        assert diagnostics == []
