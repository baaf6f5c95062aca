"""Symbol table construction from per-file scope trees."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Iterable

from loguru import logger

from .errors import Diagnostic, DuplicateDefinitionWarning, MalformedInputError
from .models import Binding, Definition, DefinitionKind, Scope, ScopeKind, TargetKind
from .scope_tree import (
    ASSIGN_VALUE_KINDS,
    AssignNode,
    BlockNode,
    CallNode,
    ClassNode,
    FileScopeTree,
    FunctionNode,
    ImportNode,
    LambdaNode,
    Location,
    ModuleNode,
    Node,
    Param,
    ParamKind,
    ReferenceNode,
    SuspendNode,
    iter_nodes,
)


SETTER_SUFFIXES = ("setter", "getter", "deleter")


@dataclass(frozen=True)
class ClassDecl:
    def_id: str
    bases: tuple[str, ...]
    body_scope: str


@dataclass(frozen=True)
class PendingCall:
    site_id: str
    caller: str
    scope_id: str
    path: str
    location: Location
    order: int
    callee: str
    receiver: str | None
    arg_count: int | None
    suspended: bool


@dataclass(frozen=True)
class PendingReference:
    path: str
    scope_id: str
    expression: str
    location: Location


@dataclass
class FileSymbols:
    path: str
    module: str
    implicit_member_access: bool = True
    definitions: dict[str, Definition] = field(default_factory=dict)
    scopes: dict[str, Scope] = field(default_factory=dict)
    classes: dict[str, ClassDecl] = field(default_factory=dict)
    calls: list[PendingCall] = field(default_factory=list)
    references: list[PendingReference] = field(default_factory=list)
    diagnostics: list[Diagnostic] = field(default_factory=list)
    failed: bool = False


def decorator_tail(name: str) -> str:
    return name.rsplit(".", 1)[-1]


def extract_file_symbols(tree: FileScopeTree, version: int = 0) -> FileSymbols:
    """Build the partial symbol table of one file.

    A structurally invalid tree yields an empty, ``failed`` partial carrying
    the :class:`MalformedInputError`; it never affects other files.
    """
    try:
        return _FileBuilder(tree, version).build()
    except MalformedInputError as exc:
        logger.warning(f"Skipping {exc.path}: {exc.message}")
        return FileSymbols(
            path=tree.path or "<unknown>",
            module=tree.module or "",
            diagnostics=[exc],
            failed=True,
        )


@dataclass
class _Context:
    scope: Scope
    prefix: str
    caller: Definition
    owner_class: str | None = None


class _FileBuilder:
    def __init__(self, tree: FileScopeTree, version: int) -> None:
        self.tree = tree
        self.path = tree.path
        self.version = version
        self.result = FileSymbols(
            path=tree.path,
            module=tree.module,
            implicit_member_access=tree.implicit_member_access,
        )
        self._orders: dict[str, int] = {}
        self._suspended: set[str] = set()
        self._lambda_defs: dict[str, str] = {}
        self._conflicted: set[tuple[str, str]] = set()

    def build(self) -> FileSymbols:
        self._validate()
        root = self.tree.root
        module = self.tree.module
        scope = self._open_scope(root, ScopeKind.MODULE, parent=None)
        module_def = Definition(
            def_id=self._def_id(module),
            qualname=module,
            name=module.rsplit(".", 1)[-1],
            kind=DefinitionKind.MODULE,
            path=self.path,
            scope_id=scope.scope_id,
            location=root.location,
            version=self.version,
        )
        scope.owner = module_def.def_id
        self.result.definitions[module_def.def_id] = module_def
        self._walk(root.body, _Context(scope=scope, prefix=module, caller=module_def))
        logger.debug(
            f"{self.path}: {len(self.result.definitions)} definitions, "
            f"{len(self.result.scopes)} scopes, {len(self.result.calls)} calls"
        )
        return self.result

    # ------------------------------------------------------------------
    # Validation
    # ------------------------------------------------------------------

    def _validate(self) -> None:
        tree = self.tree
        if not tree.path:
            raise MalformedInputError("<unknown>", "scope tree has no path")
        if not tree.module:
            raise MalformedInputError(tree.path, "scope tree has no module name")
        if not isinstance(tree.root, ModuleNode):
            raise MalformedInputError(tree.path, "root node is not a module")

        seen: set[str] = set()
        lambdas: set[str] = set()
        for node in iter_nodes(tree.root):
            if not isinstance(node, Node):
                raise MalformedInputError(tree.path, f"unexpected node {node!r}")
            if not node.node_id or node.node_id in seen:
                raise MalformedInputError(tree.path, "missing or duplicate node id", node.node_id)
            seen.add(node.node_id)

            if isinstance(node, (ClassNode, FunctionNode)) and not node.name:
                raise MalformedInputError(tree.path, "declaration without a name", node.node_id)
            if isinstance(node, LambdaNode):
                lambdas.add(node.node_id)
            elif isinstance(node, CallNode) and not node.callee:
                raise MalformedInputError(tree.path, "call without a callee", node.node_id)
            elif isinstance(node, ImportNode) and (
                node.level < 0 or not (node.module or node.name)
            ):
                raise MalformedInputError(tree.path, "import without a target", node.node_id)
            elif isinstance(node, AssignNode):
                if not node.target or node.value_kind not in ASSIGN_VALUE_KINDS:
                    raise MalformedInputError(tree.path, "invalid assignment", node.node_id)
                if node.value_kind == "lambda" and node.value not in lambdas:
                    raise MalformedInputError(
                        tree.path,
                        f"assignment references unknown lambda node {node.value!r}",
                        node.node_id,
                    )

    # ------------------------------------------------------------------
    # Walk
    # ------------------------------------------------------------------

    def _walk(self, nodes: Iterable[Node], ctx: _Context) -> None:
        for node in nodes:
            if isinstance(node, ClassNode):
                self._class(node, ctx)
            elif isinstance(node, FunctionNode):
                self._function(node, ctx)
            elif isinstance(node, LambdaNode):
                self._lambda(node, ctx)
            elif isinstance(node, BlockNode):
                block = self._open_scope(node, ScopeKind.BLOCK, parent=ctx.scope)
                self._walk(node.body, _Context(block, ctx.prefix, ctx.caller))
            elif isinstance(node, CallNode):
                self._call(node, ctx)
            elif isinstance(node, AssignNode):
                self._assign(node, ctx)
            elif isinstance(node, ImportNode):
                self._import(node, ctx)
            elif isinstance(node, ReferenceNode):
                self.result.references.append(
                    PendingReference(self.path, ctx.scope.scope_id, node.expression, node.location)
                )
            elif isinstance(node, SuspendNode):
                self._suspended.add(ctx.caller.def_id)

    def _class(self, node: ClassNode, ctx: _Context) -> None:
        qualname = f"{ctx.prefix}.{node.name}"
        body = self._open_scope(node, ScopeKind.CLASS, parent=ctx.scope)
        definition = Definition(
            def_id=self._def_id(qualname),
            qualname=qualname,
            name=node.name,
            kind=DefinitionKind.CLASS,
            path=self.path,
            scope_id=ctx.scope.scope_id,
            location=node.location,
            owner_class=ctx.owner_class,
            decorators=tuple(item.name for item in node.decorators),
            version=self.version,
        )
        body.owner = definition.def_id
        self._declare(ctx.scope, node.name, definition)
        self.result.classes[definition.def_id] = ClassDecl(
            def_id=definition.def_id,
            bases=tuple(node.bases),
            body_scope=body.scope_id,
        )
        # Class bodies run at definition time, on behalf of the enclosing caller.
        self._walk(node.body, _Context(body, qualname, ctx.caller, owner_class=definition.def_id))

    def _function(self, node: FunctionNode, ctx: _Context) -> None:
        qualname = f"{ctx.prefix}.{node.name}"
        decorators = tuple(item.name for item in node.decorators)
        tails = {decorator_tail(name) for name in decorators}
        is_method = ctx.owner_class is not None
        has_receiver = is_method and "staticmethod" not in tails and bool(node.params)
        min_args, max_args = _arity(node.params[1:] if has_receiver else node.params)

        scope = self._open_scope(node, ScopeKind.FUNCTION, parent=ctx.scope)
        definition = Definition(
            def_id=self._def_id(qualname),
            qualname=qualname,
            name=node.name,
            kind=DefinitionKind.METHOD if is_method else DefinitionKind.FUNCTION,
            path=self.path,
            scope_id=ctx.scope.scope_id,
            location=node.location,
            owner_class=ctx.owner_class,
            is_abstract=node.is_abstract or "abstractmethod" in tails,
            decorators=decorators,
            params=tuple(node.params),
            min_args=min_args,
            max_args=max_args,
            is_async=node.is_async,
            version=self.version,
        )
        scope.owner = definition.def_id
        self._declare(ctx.scope, node.name, definition)

        params = list(node.params)
        if has_receiver:
            receiver = params.pop(0)
            role = "cls" if "classmethod" in tails else "self"
            scope.bindings[receiver.name] = Binding(
                name=receiver.name,
                scope_id=scope.scope_id,
                target=TargetKind.UNRESOLVED,
                origin="receiver",
                receiver_role=role,
                declared_class=ctx.owner_class,
            )
        self._bind_params(scope, params, hint_scope=ctx.scope.scope_id)
        self._walk(node.body, _Context(scope, qualname, definition))

    def _lambda(self, node: LambdaNode, ctx: _Context) -> None:
        qualname = f"{ctx.prefix}.<lambda@{node.location.line}:{node.location.column}>"
        if self._def_id(qualname) in self.result.definitions:
            qualname = f"{qualname}#{node.node_id}"
        min_args, max_args = _arity(node.params)
        scope = self._open_scope(node, ScopeKind.FUNCTION, parent=ctx.scope)
        definition = Definition(
            def_id=self._def_id(qualname),
            qualname=qualname,
            name="<lambda>",
            kind=DefinitionKind.LAMBDA,
            path=self.path,
            scope_id=ctx.scope.scope_id,
            location=node.location,
            params=tuple(node.params),
            min_args=min_args,
            max_args=max_args,
            version=self.version,
        )
        scope.owner = definition.def_id
        self.result.definitions[definition.def_id] = definition
        self._lambda_defs[node.node_id] = definition.def_id
        self._bind_params(scope, node.params, hint_scope=ctx.scope.scope_id)
        self._walk(node.body, _Context(scope, qualname, definition))

    def _call(self, node: CallNode, ctx: _Context) -> None:
        caller = ctx.caller.def_id
        order = self._orders.get(caller, 0)
        self._orders[caller] = order + 1
        self.result.calls.append(
            PendingCall(
                site_id=f"{self.path}#{node.node_id}",
                caller=caller,
                scope_id=ctx.scope.scope_id,
                path=self.path,
                location=node.location,
                order=order,
                callee=node.callee,
                receiver=node.receiver,
                arg_count=node.arg_count,
                suspended=caller in self._suspended,
            )
        )

    def _assign(self, node: AssignNode, ctx: _Context) -> None:
        target = node.target
        if "." in target:
            self._assign_attribute(node, ctx)
            return

        scope = ctx.scope
        if node.is_loop_target:
            scope.bindings[target] = Binding(
                name=target, scope_id=scope.scope_id, target=TargetKind.UNRESOLVED, origin="loop"
            )
            return

        if node.value_kind == "lambda":
            scope.bindings[target] = Binding(
                name=target,
                scope_id=scope.scope_id,
                target=TargetKind.DEFINITION,
                ref=self._lambda_defs[node.value],
                origin="assignment",
            )
            return

        hint, value_ref = _value_hint(node)
        if node.value_kind == "call" and not node.annotation and scope.kind in (
            ScopeKind.MODULE,
            ScopeKind.CLASS,
        ):
            qualname = f"{ctx.prefix}.{target}"
            definition = Definition(
                def_id=self._def_id(qualname),
                qualname=qualname,
                name=target,
                kind=DefinitionKind.VARIABLE_CALLABLE,
                path=self.path,
                scope_id=scope.scope_id,
                location=node.location,
                owner_class=ctx.owner_class,
                max_args=None,
                version=self.version,
            )
            self.result.definitions[definition.def_id] = definition
            scope.bindings[target] = Binding(
                name=target,
                scope_id=scope.scope_id,
                target=TargetKind.DEFINITION,
                ref=definition.def_id,
                origin="assignment",
                type_hint=hint,
                hint_scope=scope.scope_id,
            )
            return

        self._bind_value(scope, target, hint, value_ref, hint_scope=scope.scope_id)

    def _assign_attribute(self, node: AssignNode, ctx: _Context) -> None:
        head, _, attribute = node.target.partition(".")
        if "." in attribute:
            return
        receiver = self._local_lookup(ctx.scope, head)
        if receiver is None or receiver.receiver_role != "self" or not receiver.declared_class:
            return
        decl = self.result.classes.get(receiver.declared_class)
        if decl is None:
            return
        class_scope = self.result.scopes[decl.body_scope]
        existing = class_scope.bindings.get(attribute)
        if existing is not None and existing.target is TargetKind.DEFINITION:
            return
        hint, value_ref = _value_hint(node)
        self._bind_value(class_scope, attribute, hint, value_ref, hint_scope=ctx.scope.scope_id)

    def _bind_value(
        self,
        scope: Scope,
        name: str,
        hint: str | None,
        value_ref: str | None,
        hint_scope: str,
    ) -> None:
        key = (scope.scope_id, name)
        existing = scope.bindings.get(name)
        if (
            existing is not None
            and existing.origin == "assignment"
            and existing.target is TargetKind.UNRESOLVED
        ):
            if (existing.type_hint, existing.value_ref) != (hint, value_ref):
                self._conflicted.add(key)
        if key in self._conflicted:
            hint, value_ref = None, None
        scope.bindings[name] = Binding(
            name=name,
            scope_id=scope.scope_id,
            target=TargetKind.UNRESOLVED,
            origin="assignment",
            type_hint=hint,
            hint_scope=hint_scope,
            value_ref=value_ref,
        )

    def _import(self, node: ImportNode, ctx: _Context) -> None:
        base = self._absolute_module(node.module, node.level)
        scope = ctx.scope
        if node.name == "*":
            if base and base not in scope.star_imports:
                scope.star_imports.append(base)
            return
        if node.name is None:
            if node.alias:
                local, target = node.alias, base
            else:
                local = base.split(".", 1)[0]
                target = local
        else:
            local = node.alias or node.name
            target = f"{base}.{node.name}" if base else node.name
        scope.aliases[local] = Binding(
            name=local,
            scope_id=scope.scope_id,
            target=TargetKind.ALIAS,
            ref=target,
            origin="import",
        )

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _def_id(self, qualname: str) -> str:
        return f"{self.path}::{qualname}"

    def _open_scope(self, node: Node, kind: ScopeKind, parent: Scope | None) -> Scope:
        scope = Scope(
            scope_id=f"{self.path}#{node.node_id}",
            kind=kind,
            path=self.path,
            parent_id=parent.scope_id if parent else None,
        )
        self.result.scopes[scope.scope_id] = scope
        return scope

    def _declare(self, scope: Scope, name: str, definition: Definition) -> None:
        existing = scope.bindings.get(name)
        if (
            existing is not None
            and existing.target is TargetKind.DEFINITION
            and existing.origin == "declaration"
        ):
            previous = self.result.definitions.get(existing.ref)
            if previous is not None and not _supersedes(previous, definition):
                self.result.diagnostics.append(
                    DuplicateDefinitionWarning(definition.qualname, self.path)
                )
                self._discard_nested(previous)
        scope.bindings[name] = Binding(
            name=name,
            scope_id=scope.scope_id,
            target=TargetKind.DEFINITION,
            ref=definition.def_id,
            origin="declaration",
        )
        self.result.definitions[definition.def_id] = definition

    def _discard_nested(self, previous: Definition) -> None:
        """Drop everything declared inside a redefined class or function."""
        prefix = f"{previous.qualname}."
        removed = {
            def_id
            for def_id, definition in self.result.definitions.items()
            if definition.qualname.startswith(prefix)
        }
        if not removed:
            return
        for def_id in removed:
            del self.result.definitions[def_id]
            self.result.classes.pop(def_id, None)
        self.result.calls = [call for call in self.result.calls if call.caller not in removed]

    def _bind_params(self, scope: Scope, params: Iterable[Param], hint_scope: str) -> None:
        for param in params:
            scope.bindings[param.name] = Binding(
                name=param.name,
                scope_id=scope.scope_id,
                target=TargetKind.UNRESOLVED,
                origin="parameter",
                type_hint=param.annotation,
                hint_scope=hint_scope,
            )

    def _local_lookup(self, scope: Scope, name: str) -> Binding | None:
        current: Scope | None = scope
        while current is not None:
            if name in current.bindings:
                return current.bindings[name]
            current = self.result.scopes.get(current.parent_id) if current.parent_id else None
        return None

    def _absolute_module(self, module: str, level: int) -> str:
        if level == 0:
            return module
        parts = self.tree.module.split(".")
        if not self.tree.is_package:
            parts = parts[:-1]
        if level > 1:
            parts = parts[: max(len(parts) - (level - 1), 0)]
        return ".".join(part for part in (".".join(parts), module) if part)


def _value_hint(node: AssignNode) -> tuple[str | None, str | None]:
    if node.annotation:
        return node.annotation, None
    if node.value_kind == "call":
        return node.value, None
    if node.value_kind == "name":
        return None, node.value
    return None, None


def _supersedes(previous: Definition, current: Definition) -> bool:
    if any(decorator_tail(name) == "overload" for name in previous.decorators):
        return True
    accessors = {f"{current.name}.{suffix}" for suffix in SETTER_SUFFIXES}
    return any(name in accessors for name in current.decorators)


def _arity(params: Iterable[Param]) -> tuple[int, int | None]:
    required = 0
    total = 0
    variadic = False
    for param in params:
        if param.kind in (ParamKind.VAR_POSITIONAL, ParamKind.VAR_KEYWORD):
            variadic = True
            continue
        total += 1
        if not param.has_default:
            required += 1
    return required, None if variadic else total


@dataclass
class SymbolTable:
    definitions: dict[str, Definition]
    scopes: dict[str, Scope]
    classes: dict[str, ClassDecl]
    files: dict[str, FileSymbols]
    by_qualname: dict[str, str]
    by_name: dict[str, tuple[str, ...]]
    module_scopes: dict[str, str]
    # Dotted prefixes of indexed modules that are not modules themselves.
    packages: frozenset[str] = frozenset()

    def get(self, def_id: str | None) -> Definition | None:
        if def_id is None:
            return None
        return self.definitions.get(def_id)

    def find(self, qualname: str) -> Definition | None:
        return self.get(self.by_qualname.get(qualname))

    def named(self, name: str) -> list[Definition]:
        return [self.definitions[def_id] for def_id in self.by_name.get(name, ())]

    def implicit_member_access(self, scope_id: str) -> bool:
        scope = self.scopes[scope_id]
        return self.files[scope.path].implicit_member_access


def merge_tables(partials: Iterable[FileSymbols]) -> tuple[SymbolTable, list[Diagnostic]]:
    """Merge per-file partial tables into the frozen global table.

    Merging is order-independent: partials and definitions are sorted by
    path, then qualified name and source position, before indexing.
    """
    files = {partial.path: partial for partial in sorted(partials, key=lambda item: item.path)}
    diagnostics: list[Diagnostic] = []

    ordered = sorted(
        (definition for partial in files.values() for definition in partial.definitions.values()),
        key=lambda item: (item.qualname, item.path, item.location, item.def_id),
    )
    definitions: dict[str, Definition] = {}
    by_qualname: dict[str, str] = {}
    by_name: dict[str, list[str]] = {}
    for definition in ordered:
        definitions[definition.def_id] = definition
        previous = by_qualname.get(definition.qualname)
        if previous is not None and definitions[previous].path != definition.path:
            diagnostics.append(
                DuplicateDefinitionWarning(
                    definition.qualname, definition.path, definitions[previous].path
                )
            )
        by_qualname[definition.qualname] = definition.def_id
        by_name.setdefault(definition.name, []).append(definition.def_id)

    scopes: dict[str, Scope] = {}
    classes: dict[str, ClassDecl] = {}
    module_scopes: dict[str, str] = {}
    for partial in files.values():
        scopes.update(partial.scopes)
        classes.update(partial.classes)
        module_def = definitions.get(f"{partial.path}::{partial.module}")
        if module_def is not None:
            module_scopes[partial.module] = module_def.scope_id

    packages = {
        ".".join(parts[:end])
        for parts in (module.split(".") for module in module_scopes)
        for end in range(1, len(parts))
    }
    logger.debug(
        f"Merged {len(files)} files into {len(definitions)} definitions and {len(scopes)} scopes"
    )
    table = SymbolTable(
        definitions=definitions,
        scopes=scopes,
        classes=classes,
        files=files,
        by_qualname=by_qualname,
        by_name={name: tuple(ids) for name, ids in by_name.items()},
        module_scopes=module_scopes,
        packages=frozenset(packages - module_scopes.keys()),
    )
    return table, diagnostics
