from __future__ import annotations

from pathlib import Path
from tempfile import TemporaryDirectory

from callindex.file_walker import iter_python_files, module_name_for


def test_iter_python_files_filters_non_py_and_excludes():
    with TemporaryDirectory() as tmpdir:
        root = Path(tmpdir)
        (root / "b.py").write_text("print('b')", encoding="utf-8")
        (root / "a.py").write_text("print('a')", encoding="utf-8")
        (root / "notes.txt").write_text("nope", encoding="utf-8")
        sub = root / "sub"
        sub.mkdir()
        (sub / "c.py").write_text("print('c')", encoding="utf-8")
        cache = root / "__pycache__"
        cache.mkdir()
        (cache / "a.py").write_text("", encoding="utf-8")

        matches = iter_python_files(root)
        relative = [Path(path).relative_to(root).as_posix() for path in matches]

        assert relative == ["a.py", "b.py", "sub/c.py"]
        assert iter_python_files(root, excludes={"sub"})[-1].endswith("b.py")


def test_module_name_for_modules_and_packages():
    with TemporaryDirectory() as tmpdir:
        root = Path(tmpdir)
        package = root / "pkg" / "sub"
        package.mkdir(parents=True)
        init = package / "__init__.py"
        module = package / "mod.py"
        init.write_text("", encoding="utf-8")
        module.write_text("", encoding="utf-8")

        assert module_name_for(module, root) == ("pkg.sub.mod", False)
        assert module_name_for(init, root) == ("pkg.sub", True)
