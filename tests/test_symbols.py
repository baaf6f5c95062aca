from __future__ import annotations

from callindex.errors import DuplicateDefinitionWarning, MalformedInputError
from callindex.models import DefinitionKind, TargetKind
from callindex.scope_tree import (
    AssignNode,
    CallNode,
    ClassNode,
    Decorator,
    FileScopeTree,
    FunctionNode,
    LambdaNode,
    Location,
    ModuleNode,
    Param,
    SuspendNode,
)
from callindex.symbols import extract_file_symbols, merge_tables


def _tree(path, module, *body):
    return FileScopeTree(path=path, module=module, root=ModuleNode(body=list(body)))


def test_definitions_get_qualified_names_and_kinds():
    tree = _tree(
        "pkg/mod.py",
        "pkg.mod",
        ClassNode(
            name="Repo",
            body=[FunctionNode(name="save", params=(Param("self"), Param("item")))],
        ),
        FunctionNode(name="helper", params=(Param("x", has_default=True),)),
    )

    partial = extract_file_symbols(tree)

    kinds = {item.qualname: item.kind for item in partial.definitions.values()}
    assert kinds == {
        "pkg.mod": DefinitionKind.MODULE,
        "pkg.mod.Repo": DefinitionKind.CLASS,
        "pkg.mod.Repo.save": DefinitionKind.METHOD,
        "pkg.mod.helper": DefinitionKind.FUNCTION,
    }
    save = partial.definitions["pkg/mod.py::pkg.mod.Repo.save"]
    assert save.owner_class == "pkg/mod.py::pkg.mod.Repo"
    assert (save.min_args, save.max_args) == (1, 1)
    helper = partial.definitions["pkg/mod.py::pkg.mod.helper"]
    assert (helper.min_args, helper.max_args) == (0, 1)
    assert helper.accepts(0) and helper.accepts(1) and not helper.accepts(2)


def test_redeclaration_warns_and_keeps_latest():
    tree = _tree(
        "mod.py",
        "mod",
        FunctionNode(name="run", location=Location(1, 1)),
        FunctionNode(name="run", location=Location(5, 1)),
    )

    partial = extract_file_symbols(tree)

    warnings = [
        item for item in partial.diagnostics if isinstance(item, DuplicateDefinitionWarning)
    ]
    assert len(warnings) == 1
    assert warnings[0].qualname == "mod.run"
    assert partial.definitions["mod.py::mod.run"].location == Location(5, 1)


def test_property_setter_and_overload_do_not_warn():
    tree = _tree(
        "mod.py",
        "mod",
        ClassNode(
            name="Box",
            body=[
                FunctionNode(
                    name="value", params=(Param("self"),), decorators=(Decorator("property"),)
                ),
                FunctionNode(
                    name="value",
                    params=(Param("self"), Param("new")),
                    decorators=(Decorator("value.setter"),),
                ),
            ],
        ),
        FunctionNode(name="parse", decorators=(Decorator("typing.overload"),)),
        FunctionNode(name="parse"),
    )

    partial = extract_file_symbols(tree)

    assert partial.diagnostics == []


def test_decorator_chain_is_metadata_on_the_definition():
    tree = _tree(
        "mod.py",
        "mod",
        FunctionNode(
            name="fetch",
            decorators=(Decorator("functools.cache"), Decorator("trace")),
        ),
        ClassNode(
            name="Base",
            body=[
                FunctionNode(
                    name="handle",
                    params=(Param("self"),),
                    decorators=(Decorator("abc.abstractmethod"),),
                )
            ],
        ),
    )

    partial = extract_file_symbols(tree)

    fetch = partial.definitions["mod.py::mod.fetch"]
    assert fetch.kind is DefinitionKind.FUNCTION
    assert fetch.decorators == ("functools.cache", "trace")
    assert partial.definitions["mod.py::mod.Base.handle"].is_abstract


def test_lambda_assignment_binds_to_lambda_definition():
    lam = LambdaNode(params=(Param("x"),), location=Location(2, 9))
    outer = FunctionNode(
        name="outer",
        body=[lam, AssignNode(target="double", value_kind="lambda", value=lam.node_id)],
    )
    partial = extract_file_symbols(_tree("mod.py", "mod", outer))

    scope = partial.scopes[f"mod.py#{outer.node_id}"]
    binding = scope.bindings["double"]
    assert binding.target is TargetKind.DEFINITION
    lambda_def = partial.definitions[binding.ref]
    assert lambda_def.kind is DefinitionKind.LAMBDA
    assert lambda_def.qualname == "mod.outer.<lambda@2:9>"


def test_dangling_lambda_reference_fails_only_that_file():
    broken = _tree(
        "broken.py", "broken", AssignNode(target="f", value_kind="lambda", value="missing")
    )

    partial = extract_file_symbols(broken)

    assert partial.failed
    assert isinstance(partial.diagnostics[0], MalformedInputError)
    assert partial.diagnostics[0].path == "broken.py"
    assert partial.definitions == {}


def test_calls_record_program_order_and_suspension():
    worker = FunctionNode(
        name="worker",
        is_async=True,
        body=[CallNode(callee="prepare"), SuspendNode(), CallNode(callee="finish")],
    )
    partial = extract_file_symbols(_tree("mod.py", "mod", worker))

    calls = [(call.callee, call.order, call.suspended) for call in partial.calls]
    assert calls == [("prepare", 0, False), ("finish", 1, True)]
    assert partial.definitions["mod.py::mod.worker"].is_async


def test_conflicting_constructor_assignments_drop_the_type():
    func = FunctionNode(
        name="pick",
        body=[
            AssignNode(target="store", value_kind="call", value="Repo"),
            AssignNode(target="store", value_kind="call", value="Cache"),
        ],
    )
    partial = extract_file_symbols(_tree("mod.py", "mod", func))

    binding = partial.scopes[f"mod.py#{func.node_id}"].bindings["store"]
    assert binding.type_hint is None
    assert binding.value_ref is None


def test_merge_is_order_independent():
    first = extract_file_symbols(_tree("a.py", "a", FunctionNode(name="run")))
    second = extract_file_symbols(_tree("b.py", "b", FunctionNode(name="run")))

    forward, _ = merge_tables([first, second])
    backward, _ = merge_tables([second, first])

    assert list(forward.definitions) == list(backward.definitions)
    assert forward.by_name["run"] == backward.by_name["run"] == ("a.py::a.run", "b.py::b.run")
    assert forward.module_scopes.keys() == {"a", "b"}


def test_merge_reports_cross_file_duplicates():
    first = extract_file_symbols(_tree("one/util.py", "util", FunctionNode(name="run")))
    second = extract_file_symbols(_tree("two/util.py", "util", FunctionNode(name="run")))

    table, diagnostics = merge_tables([first, second])

    duplicated = {
        item.qualname for item in diagnostics if isinstance(item, DuplicateDefinitionWarning)
    }
    assert "util.run" in duplicated
    assert table.find("util.run").path == "two/util.py"


def test_redefinition_drops_members_of_the_replaced_declaration():
    stale = CallNode(callee="helper")
    tree = _tree(
        "mod.py",
        "mod",
        ClassNode(
            name="A",
            body=[FunctionNode(name="f", params=(Param("self"),), body=[stale])],
        ),
        ClassNode(name="A", body=[FunctionNode(name="g", params=(Param("self"),))]),
    )

    partial = extract_file_symbols(tree)

    qualnames = {item.qualname for item in partial.definitions.values()}
    assert qualnames == {"mod", "mod.A", "mod.A.g"}
    assert partial.calls == []
    assert [item.qualname for item in partial.diagnostics] == ["mod.A"]
