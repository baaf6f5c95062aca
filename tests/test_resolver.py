from __future__ import annotations

from callindex.config import ResolutionPolicy
from callindex.errors import CyclicInheritanceError, UnresolvedSymbolWarning
from callindex.index import build_index
from callindex.models import Confidence, DefinitionKind, DispatchKind, ReceiverKind
from callindex.scope_tree import (
    AssignNode,
    CallNode,
    ClassNode,
    Decorator,
    FileScopeTree,
    FunctionNode,
    ImportNode,
    LambdaNode,
    ModuleNode,
    Param,
    SuspendNode,
)


def _tree(path, module, *body, implicit=False):
    return FileScopeTree(
        path=path, module=module, root=ModuleNode(body=list(body)), implicit_member_access=implicit
    )


def _method(name, *body, params=(), abstract=False, decorators=()):
    return FunctionNode(
        name=name,
        params=(Param("self"), *params),
        is_abstract=abstract,
        decorators=decorators,
        body=list(body),
    )


def _site(index, path, call):
    return index.call_site(f"{path}#{call.node_id}")


def _id(index, qualname):
    return index.find(qualname).def_id


def _warnings_for(diagnostics, site):
    return [
        item
        for item in diagnostics
        if isinstance(item, UnresolvedSymbolWarning) and item.site_id == site.site_id
    ]


def test_abstract_member_with_single_override_is_exact():
    call = CallNode(callee="area", receiver="shape")
    index, _ = build_index(
        [
            _tree(
                "m.py",
                "m",
                ClassNode(name="Shape", body=[_method("area", abstract=True)]),
                ClassNode(name="Square", bases=("Shape",), body=[_method("area")]),
                FunctionNode(
                    name="total", params=(Param("shape", annotation="Shape"),), body=[call]
                ),
            )
        ]
    )

    site = _site(index, "m.py", call)
    assert site.targets == (_id(index, "m.Square.area"),)
    assert site.confidence is Confidence.EXACT
    assert site.dispatch is DispatchKind.VIRTUAL
    assert site.receiver_kind is ReceiverKind.INSTANCE_MEMBER


def test_abstract_member_without_override_is_unknown():
    call = CallNode(callee="area", receiver="shape")
    index, diagnostics = build_index(
        [
            _tree(
                "m.py",
                "m",
                ClassNode(name="Shape", body=[_method("area", abstract=True)]),
                FunctionNode(
                    name="total", params=(Param("shape", annotation="Shape"),), body=[call]
                ),
            )
        ]
    )

    site = _site(index, "m.py", call)
    assert site.targets == ()
    assert site.confidence is Confidence.UNKNOWN
    assert len(_warnings_for(diagnostics, site)) == 1


def test_concrete_member_with_overrides_is_ambiguous_virtual():
    call = CallNode(callee="render", receiver="view")
    index, _ = build_index(
        [
            _tree(
                "m.py",
                "m",
                ClassNode(name="View", body=[_method("render")]),
                ClassNode(name="Page", bases=("View",), body=[_method("render")]),
                FunctionNode(name="show", params=(Param("view", annotation="View"),), body=[call]),
            )
        ]
    )

    resolution = index.resolve_call(_site(index, "m.py", call).site_id)
    assert resolution.targets == {_id(index, "m.View.render"), _id(index, "m.Page.render")}
    assert resolution.confidence is Confidence.AMBIGUOUS
    assert resolution.dispatch is DispatchKind.VIRTUAL


def test_self_call_resolves_statically():
    call = CallNode(callee="step", receiver="self")
    index, _ = build_index(
        [_tree("m.py", "m", ClassNode(name="Job", body=[_method("run", call), _method("step")]))]
    )

    site = _site(index, "m.py", call)
    assert site.targets == (_id(index, "m.Job.step"),)
    assert site.confidence is Confidence.EXACT
    assert site.dispatch is DispatchKind.STATIC
    assert site.receiver_kind is ReceiverKind.SELF_MEMBER
    assert site.caller == _id(index, "m.Job.run")


def test_implicit_member_access_is_a_self_member_call():
    call = CallNode(callee="step")
    index, _ = build_index(
        [
            _tree(
                "Job.java",
                "app.Job",
                ClassNode(name="Job", body=[_method("run", call), _method("step")]),
                implicit=True,
            )
        ]
    )

    site = _site(index, "Job.java", call)
    assert site.receiver_kind is ReceiverKind.SELF_MEMBER
    assert site.targets == (_id(index, "app.Job.Job.step"),)
    assert site.confidence is Confidence.EXACT


def test_decorated_target_keeps_its_identity():
    call = CallNode(callee="get", receiver="api")
    index, _ = build_index(
        [
            _tree(
                "m.py",
                "m",
                FunctionNode(name="trace", params=(Param("func"),)),
                ClassNode(
                    name="Api",
                    body=[_method("get", decorators=(Decorator("cache"), Decorator("trace")))],
                ),
                FunctionNode(name="client", params=(Param("api", annotation="Api"),), body=[call]),
            )
        ]
    )

    site = _site(index, "m.py", call)
    assert site.targets == (_id(index, "m.Api.get"),)
    assert site.confidence is Confidence.EXACT
    assert site.decorators == ("cache", "trace")
    callees = index.callees_of(_id(index, "m.client"))
    assert [edge.target for edge in callees] == [_id(index, "m.Api.get")]


def test_closure_invocation_resolves_to_the_literal():
    lam = LambdaNode(params=(Param("x"),))
    call = CallNode(callee="double", arg_count=1)
    nested_call = CallNode(callee="inner")
    outer = FunctionNode(
        name="outer",
        body=[
            lam,
            AssignNode(target="double", value_kind="lambda", value=lam.node_id),
            call,
            FunctionNode(name="inner"),
            nested_call,
        ],
    )
    index, _ = build_index([_tree("m.py", "m", outer)])

    site = _site(index, "m.py", call)
    assert site.receiver_kind is ReceiverKind.INVOKED_BINDING
    assert site.confidence is Confidence.EXACT
    (target,) = site.targets
    assert index.definition(target).kind is DefinitionKind.LAMBDA
    assert _site(index, "m.py", nested_call).targets == (_id(index, "m.outer.inner"),)


def test_external_receivers_are_unknown_without_warnings():
    module_call = CallNode(callee="get", receiver="requests")
    typed_call = CallNode(callee="send", receiver="session")
    index, diagnostics = build_index(
        [
            _tree(
                "m.py",
                "m",
                ImportNode(module="requests"),
                FunctionNode(
                    name="fetch",
                    params=(Param("session", annotation="requests.Session"),),
                    body=[module_call, typed_call],
                ),
            )
        ]
    )

    for call in (module_call, typed_call):
        site = _site(index, "m.py", call)
        assert site.targets == ()
        assert site.confidence is Confidence.UNKNOWN
    assert not [item for item in diagnostics if isinstance(item, UnresolvedSymbolWarning)]


def test_cyclic_hierarchy_degrades_dispatch():
    call = CallNode(callee="run", receiver="item")
    index, diagnostics = build_index(
        [
            _tree(
                "m.py",
                "m",
                ClassNode(name="A", bases=("B",), body=[_method("run")]),
                ClassNode(name="B", bases=("A",)),
                FunctionNode(name="use", params=(Param("item", annotation="A"),), body=[call]),
            )
        ]
    )

    assert [item.classes for item in diagnostics if isinstance(item, CyclicInheritanceError)] == [
        ("m.A", "m.B")
    ]
    site = _site(index, "m.py", call)
    assert site.confidence is Confidence.UNKNOWN
    assert site.targets == ()


def test_constructor_and_super_calls():
    build = CallNode(callee="Child", arg_count=1)
    up = CallNode(callee="save", receiver="super()")
    index, _ = build_index(
        [
            _tree(
                "m.py",
                "m",
                ClassNode(name="Base", body=[_method("save")]),
                ClassNode(
                    name="Child",
                    bases=("Base",),
                    body=[_method("__init__", params=(Param("path"),)), _method("save", up)],
                ),
                FunctionNode(name="make", body=[build]),
            )
        ]
    )

    created = _site(index, "m.py", build)
    assert created.targets == (_id(index, "m.Child"), _id(index, "m.Child.__init__"))
    assert created.confidence is Confidence.EXACT
    parent = _site(index, "m.py", up)
    assert parent.targets == (_id(index, "m.Base.save"),)
    assert parent.receiver_kind is ReceiverKind.SELF_MEMBER
    assert parent.dispatch is DispatchKind.STATIC


def test_name_and_arity_fallback_for_untyped_receivers():
    call = CallNode(callee="process", receiver="item", arg_count=1)
    common = CallNode(callee="append", receiver="item", arg_count=1)
    tree = _tree(
        "m.py",
        "m",
        ClassNode(name="A", body=[_method("process", params=(Param("x"),))]),
        ClassNode(name="B", body=[_method("process", params=(Param("x"),))]),
        ClassNode(name="C", body=[_method("process")]),
        ClassNode(name="D", body=[_method("append", params=(Param("x"),))]),
        FunctionNode(name="handle", params=(Param("item"),), body=[call, common]),
    )
    index, _ = build_index([tree])

    site = _site(index, "m.py", call)
    assert site.targets == (_id(index, "m.A.process"), _id(index, "m.B.process"))
    assert site.confidence is Confidence.AMBIGUOUS
    assert site.dispatch is DispatchKind.VIRTUAL
    assert _site(index, "m.py", common).confidence is Confidence.UNKNOWN

    capped, _ = build_index([tree], policy=ResolutionPolicy(max_heuristic_candidates=1))
    assert _site(capped, "m.py", call).confidence is Confidence.UNKNOWN


def test_variable_bound_callable_and_unknown_names():
    invoke = CallNode(callee="runner")
    missing = CallNode(callee="missing_fn")
    builtin = CallNode(callee="print", arg_count=1)
    index, diagnostics = build_index(
        [
            _tree(
                "m.py",
                "m",
                ImportNode(module="functools", name="partial"),
                AssignNode(target="runner", value_kind="call", value="partial"),
                invoke,
                missing,
                builtin,
            )
        ]
    )

    site = _site(index, "m.py", invoke)
    assert site.targets == (_id(index, "m.runner"),)
    assert site.confidence is Confidence.AMBIGUOUS
    assert site.receiver_kind is ReceiverKind.INVOKED_BINDING
    assert index.definition(site.targets[0]).kind is DefinitionKind.VARIABLE_CALLABLE

    missing_site = _site(index, "m.py", missing)
    assert missing_site.confidence is Confidence.UNKNOWN
    assert len(_warnings_for(diagnostics, missing_site)) == 1
    builtin_site = _site(index, "m.py", builtin)
    assert builtin_site.confidence is Confidence.UNKNOWN
    assert _warnings_for(diagnostics, builtin_site) == []


def test_suspension_is_metadata_only():
    before = CallNode(callee="helper")
    after = CallNode(callee="helper")
    index, _ = build_index(
        [
            _tree(
                "m.py",
                "m",
                FunctionNode(name="helper"),
                FunctionNode(name="task", is_async=True, body=[before, SuspendNode(), after]),
            )
        ]
    )

    first, second = _site(index, "m.py", before), _site(index, "m.py", after)
    assert (first.suspended, second.suspended) == (False, True)
    assert first.targets == second.targets == (_id(index, "m.helper"),)
    assert (first.order, second.order) == (0, 1)


def test_module_level_values_of_external_types_are_never_guessed():
    close = CallNode(callee="close", receiver="session")
    unknown = CallNode(callee="close", receiver="thing")
    invoke = CallNode(callee="session")
    index, diagnostics = build_index(
        [
            _tree(
                "m.py",
                "m",
                ImportNode(module="requests"),
                FunctionNode(name="make"),
                AssignNode(target="session", value_kind="call", value="requests.Session"),
                AssignNode(target="thing", value_kind="call", value="make"),
                ClassNode(name="File", body=[_method("close")]),
                FunctionNode(name="shutdown", body=[close, unknown, invoke]),
            )
        ]
    )

    external = _site(index, "m.py", close)
    assert external.targets == ()
    assert external.confidence is Confidence.UNKNOWN
    assert _warnings_for(diagnostics, external) == []

    untyped = _site(index, "m.py", unknown)
    assert untyped.targets == ()
    assert untyped.confidence is Confidence.UNKNOWN
    assert len(_warnings_for(diagnostics, untyped)) == 1

    called = _site(index, "m.py", invoke)
    assert called.targets == (_id(index, "m.session"),)
    assert called.confidence is Confidence.AMBIGUOUS


def test_package_without_init_module_resolves_submodules():
    call = CallNode(callee="helper", receiver="pkg.util")
    elsewhere = CallNode(callee="helper", receiver="pkg.vendored")
    index, diagnostics = build_index(
        [
            _tree("pkg/util.py", "pkg.util", FunctionNode(name="helper")),
            _tree(
                "main.py",
                "main",
                ImportNode(module="pkg.util"),
                ImportNode(module="pkg.vendored"),
                FunctionNode(name="run", body=[call, elsewhere]),
            ),
        ]
    )

    site = _site(index, "main.py", call)
    assert site.targets == (_id(index, "pkg.util.helper"),)
    assert site.confidence is Confidence.EXACT
    outside = _site(index, "main.py", elsewhere)
    assert outside.targets == ()
    assert outside.confidence is Confidence.UNKNOWN
    assert not [item for item in diagnostics if isinstance(item, UnresolvedSymbolWarning)]


def test_cls_call_covers_subclass_constructors():
    build = CallNode(callee="cls")
    index, _ = build_index(
        [
            _tree(
                "m.py",
                "m",
                ClassNode(
                    name="Base",
                    body=[
                        FunctionNode(
                            name="make",
                            params=(Param("cls"),),
                            decorators=(Decorator("classmethod"),),
                            body=[build],
                        )
                    ],
                ),
                ClassNode(
                    name="Sub",
                    bases=("Base",),
                    body=[_method("__init__", params=(Param("path"),))],
                ),
            )
        ]
    )

    site = _site(index, "m.py", build)
    assert site.targets == (
        _id(index, "m.Base"),
        _id(index, "m.Sub"),
        _id(index, "m.Sub.__init__"),
    )
    assert site.confidence is Confidence.AMBIGUOUS
    assert site.dispatch is DispatchKind.VIRTUAL
    assert site.receiver_kind is ReceiverKind.INVOKED_BINDING


def test_super_call_follows_every_subclass_linearization():
    up = CallNode(callee="save", receiver="super()")
    index, _ = build_index(
        [
            _tree(
                "m.py",
                "m",
                ClassNode(name="A", body=[_method("save")]),
                ClassNode(name="B", bases=("A",), body=[_method("save", up)]),
                ClassNode(name="C", bases=("A",), body=[_method("save")]),
                ClassNode(name="D", bases=("B", "C")),
            )
        ]
    )

    site = _site(index, "m.py", up)
    assert set(site.targets) == {_id(index, "m.A.save"), _id(index, "m.C.save")}
    assert site.confidence is Confidence.AMBIGUOUS
    assert site.dispatch is DispatchKind.VIRTUAL
    assert site.receiver_kind is ReceiverKind.SELF_MEMBER
