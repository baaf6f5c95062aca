"""Build scope trees from a Python Tree-sitter AST."""

from __future__ import annotations

import ast
from typing import Iterable

from .parser import ParsedSource
from .scope_tree import (
    AssignNode,
    BlockNode,
    CallNode,
    ClassNode,
    Decorator,
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
)


IMPORT_TYPES = {"import_statement", "import_from_statement", "future_import_statement"}
COMPREHENSION_TYPES = {
    "list_comprehension",
    "set_comprehension",
    "dictionary_comprehension",
    "generator_expression",
}
NAME_TYPES = {"identifier", "attribute"}
SPLAT_TYPES = {"list_splat", "dictionary_splat"}
PATTERN_TYPES = {
    "pattern_list",
    "tuple_pattern",
    "list_pattern",
    "list_splat_pattern",
    "as_pattern_target",
    "parenthesized_expression",
    "tuple",
    "list",
}


def extract_scope_tree(
    parsed: ParsedSource,
    path: str,
    module: str,
    is_package: bool = False,
) -> FileScopeTree:
    """Turn one parsed file into the scope tree the index consumes.

    Python methods reach their class only through ``self``/``cls``, so the
    tree is marked without implicit member access.
    """
    builder = _ScopeTreeBuilder(parsed.source_bytes)
    root = parsed.tree.root_node
    module_node = ModuleNode(node_id=builder.next_id(), location=_location(root))
    builder.visit_block(root.children, module_node.body)
    return FileScopeTree(
        path=path,
        module=module,
        root=module_node,
        is_package=is_package,
        implicit_member_access=False,
    )


class _ScopeTreeBuilder:
    def __init__(self, source_bytes: bytes) -> None:
        self.source_bytes = source_bytes
        self._counter = 0

    def next_id(self) -> str:
        self._counter += 1
        return f"n{self._counter}"

    def text(self, node) -> str:
        return _node_text(node, self.source_bytes)

    # ------------------------------------------------------------------
    # Statements
    # ------------------------------------------------------------------

    def visit_block(self, nodes: Iterable, body: list[Node]) -> None:
        for node in nodes:
            self.visit(node, body)

    def visit(self, node, body: list[Node], decorators: tuple[Decorator, ...] = ()) -> None:
        node_type = node.type

        if node_type == "decorated_definition":
            found = tuple(
                self._decorator(child) for child in node.children if child.type == "decorator"
            )
            definition = node.child_by_field_name("definition")
            if definition is not None:
                self.visit(definition, body, decorators=found)
            return

        if node_type == "class_definition":
            self._class(node, body, decorators)
            return

        if node_type == "function_definition":
            self._function(node, body, decorators)
            return

        if node_type in IMPORT_TYPES:
            body.extend(self._imports(node))
            return

        if node_type == "assignment":
            self._assignment(node, body)
            return

        if node_type == "augmented_assignment":
            right = node.child_by_field_name("right")
            if right is not None:
                self.visit(right, body)
            return

        if node_type == "for_statement":
            self._for(node, body)
            return

        if node_type == "with_statement":
            self._with(node, body)
            return

        if node_type == "lambda":
            self._lambda(node, body)
            return

        if node_type == "call":
            self._call(node, body)
            return

        if node_type == "await":
            body.append(SuspendNode(node_id=self.next_id(), location=_location(node)))
            self.visit_block(node.named_children, body)
            return

        if node_type in COMPREHENSION_TYPES:
            self._comprehension(node, body)
            return

        self.visit_block(node.named_children, body)

    def _class(self, node, body: list[Node], decorators: tuple[Decorator, ...]) -> None:
        name_node = node.child_by_field_name("name")
        if name_node is None:
            return
        bases: list[str] = []
        superclasses = node.child_by_field_name("superclasses")
        if superclasses is not None:
            for child in superclasses.named_children:
                if child.type == "subscript":
                    child = child.child_by_field_name("value") or child
                base = _dotted_name(child, self.source_bytes)
                if base:
                    bases.append(base)
                elif child.type != "keyword_argument":
                    self.visit(child, body)
        class_node = ClassNode(
            node_id=self.next_id(),
            location=_location(node),
            name=self.text(name_node),
            bases=tuple(bases),
            decorators=decorators,
        )
        body.append(class_node)
        block = node.child_by_field_name("body")
        if block is not None:
            self.visit_block(block.named_children, class_node.body)

    def _function(self, node, body: list[Node], decorators: tuple[Decorator, ...]) -> None:
        name_node = node.child_by_field_name("name")
        if name_node is None:
            return
        params_node = node.child_by_field_name("parameters")
        # Defaults are evaluated by the enclosing code.
        for default in _parameter_defaults(params_node):
            self.visit(default, body)
        block = node.child_by_field_name("body")
        function_node = FunctionNode(
            node_id=self.next_id(),
            location=_location(node),
            name=self.text(name_node),
            params=self._params(params_node),
            decorators=decorators,
            is_abstract=block is not None and _raises_not_implemented(block, self.source_bytes),
            is_async=any(child.type == "async" for child in node.children),
        )
        body.append(function_node)
        if block is not None:
            self.visit_block(block.named_children, function_node.body)

    def _lambda(self, node, body: list[Node]) -> LambdaNode:
        params_node = node.child_by_field_name("parameters")
        for default in _parameter_defaults(params_node):
            self.visit(default, body)
        lambda_node = LambdaNode(
            node_id=self.next_id(),
            location=_location(node),
            params=self._params(params_node),
        )
        body.append(lambda_node)
        expression = node.child_by_field_name("body")
        if expression is not None:
            self.visit(expression, lambda_node.body)
        return lambda_node

    def _assignment(self, node, body: list[Node]) -> None:
        targets = []
        current = node
        annotation = None
        # a = b = value nests assignments on the right.
        while current is not None and current.type == "assignment":
            left = current.child_by_field_name("left")
            if left is not None:
                targets.append(left)
            type_node = current.child_by_field_name("type")
            if type_node is not None and annotation is None:
                annotation = self.text(type_node)
            current = current.child_by_field_name("right")

        value_kind, value = "other", None
        if current is not None:
            if current.type == "lambda":
                value_kind, value = "lambda", self._lambda(current, body).node_id
            else:
                value_kind, value = self._value_of(current)
                self.visit(current, body)

        for target in targets:
            names = _target_names(target, self.source_bytes)
            single = len(names) == 1 and target.type in NAME_TYPES
            for name in names:
                body.append(
                    AssignNode(
                        node_id=self.next_id(),
                        location=_location(target),
                        target=name,
                        value_kind=value_kind if single else "other",
                        value=value if single else None,
                        annotation=annotation if single else None,
                    )
                )

    def _for(self, node, body: list[Node]) -> None:
        right = node.child_by_field_name("right")
        if right is not None:
            self.visit(right, body)
        if any(child.type == "async" for child in node.children):
            body.append(SuspendNode(node_id=self.next_id(), location=_location(node)))
        left = node.child_by_field_name("left")
        if left is not None:
            self._loop_targets(left, body)
        for field in ("body", "alternative"):
            child = node.child_by_field_name(field)
            if child is not None:
                self.visit(child, body)

    def _with(self, node, body: list[Node]) -> None:
        is_async = any(child.type == "async" for child in node.children)
        for clause in node.named_children:
            if clause.type != "with_clause":
                continue
            for item in clause.named_children:
                value = item.child_by_field_name("value") or item
                if value.type == "as_pattern":
                    expression = value.named_children[0] if value.named_children else None
                    if expression is not None:
                        self.visit(expression, body)
                    for target in value.named_children[1:]:
                        for name in _target_names(target, self.source_bytes):
                            body.append(
                                AssignNode(
                                    node_id=self.next_id(),
                                    location=_location(target),
                                    target=name,
                                )
                            )
                else:
                    self.visit(value, body)
        if is_async:
            body.append(SuspendNode(node_id=self.next_id(), location=_location(node)))
        block = node.child_by_field_name("body")
        if block is not None:
            self.visit_block(block.named_children, body)

    def _comprehension(self, node, body: list[Node]) -> None:
        block = BlockNode(node_id=self.next_id(), location=_location(node))
        body.append(block)
        clauses = [child for child in node.named_children if child.type == "for_in_clause"]
        for clause in clauses:
            right = clause.child_by_field_name("right")
            if right is not None:
                self.visit(right, block.body)
            if any(child.type == "async" for child in clause.children):
                block.body.append(SuspendNode(node_id=self.next_id(), location=_location(clause)))
            left = clause.child_by_field_name("left")
            if left is not None:
                self._loop_targets(left, block.body)
        for child in node.named_children:
            if child.type != "for_in_clause":
                self.visit(child, block.body)

    def _loop_targets(self, target, body: list[Node]) -> None:
        for name in _target_names(target, self.source_bytes):
            if "." in name:
                continue
            body.append(
                AssignNode(
                    node_id=self.next_id(),
                    location=_location(target),
                    target=name,
                    is_loop_target=True,
                )
            )

    # ------------------------------------------------------------------
    # Calls
    # ------------------------------------------------------------------

    def _call(self, node, body: list[Node]) -> None:
        function = node.child_by_field_name("function")
        arguments = node.child_by_field_name("arguments")
        callee, receiver = "<expr>", None

        if function is not None and function.type == "identifier":
            callee = self.text(function)
        elif function is not None and function.type == "attribute":
            attribute = function.child_by_field_name("attribute")
            target = function.child_by_field_name("object")
            callee = self.text(attribute) if attribute is not None else "<expr>"
            receiver = _dotted_name(target, self.source_bytes) if target is not None else None
            if receiver is None:
                if target is not None and _is_bare_super(target, self.source_bytes):
                    receiver = "super()"
                else:
                    receiver = "<expr>"
                    if target is not None:
                        self.visit(target, body)
        elif function is not None:
            self.visit(function, body)

        arg_count: int | None = 0
        if arguments is not None:
            if arguments.type == "generator_expression":
                arg_count = 1
                self.visit(arguments, body)
            else:
                for argument in arguments.named_children:
                    if argument.type == "comment":
                        continue
                    if argument.type in SPLAT_TYPES:
                        arg_count = None
                    elif arg_count is not None:
                        arg_count += 1
                    self._argument(argument, body)

        body.append(
            CallNode(
                node_id=self.next_id(),
                location=_location(node),
                callee=callee,
                receiver=receiver,
                arg_count=arg_count,
            )
        )

    def _argument(self, argument, body: list[Node]) -> None:
        value = argument
        if argument.type == "keyword_argument":
            value = argument.child_by_field_name("value")
            if value is None:
                return
        if value.type in NAME_TYPES:
            expression = _dotted_name(value, self.source_bytes)
            if expression:
                body.append(
                    ReferenceNode(
                        node_id=self.next_id(),
                        location=_location(value),
                        expression=expression,
                    )
                )
                return
        self.visit(value, body)

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _value_of(self, node) -> tuple[str, str | None]:
        if node.type == "call":
            function = node.child_by_field_name("function")
            name = _dotted_name(function, self.source_bytes) if function is not None else None
            if name:
                return "call", name
            return "other", None
        if node.type in NAME_TYPES:
            name = _dotted_name(node, self.source_bytes)
            if name:
                return "name", name
        return "other", None

    def _decorator(self, node) -> Decorator:
        expression = node.named_children[0] if node.named_children else None
        if expression is not None and expression.type == "call":
            # Decorator factories record the factory name.
            expression = expression.child_by_field_name("function")
        name = _dotted_name(expression, self.source_bytes) if expression is not None else None
        return Decorator(name=name or self.text(node).lstrip("@").strip())

    def _params(self, params_node) -> tuple[Param, ...]:
        if params_node is None:
            return ()
        params: list[Param] = []
        keyword_only = False
        for child in params_node.named_children:
            kind = ParamKind.KEYWORD_ONLY if keyword_only else ParamKind.POSITIONAL
            annotation = None
            has_default = child.type in ("default_parameter", "typed_default_parameter")
            target = child
            if child.type in ("typed_parameter", "typed_default_parameter"):
                type_node = child.child_by_field_name("type")
                annotation = self.text(type_node) if type_node is not None else None
            if child.type in ("default_parameter", "typed_default_parameter"):
                target = child.child_by_field_name("name") or child
            elif child.type == "typed_parameter":
                target = child.named_children[0] if child.named_children else child

            if child.type == "keyword_separator":
                keyword_only = True
                continue
            if child.type == "positional_separator":
                continue
            if target.type == "list_splat_pattern":
                kind = ParamKind.VAR_POSITIONAL
                keyword_only = True
            elif target.type == "dictionary_splat_pattern":
                kind = ParamKind.VAR_KEYWORD
            elif target.type != "identifier":
                continue

            name = _splat_name(target, self.source_bytes)
            if name:
                params.append(
                    Param(name=name, annotation=annotation, has_default=has_default, kind=kind)
                )
        return tuple(params)

    def _imports(self, node) -> list[ImportNode]:
        text = self.text(node)
        try:
            module = ast.parse(text)
        except SyntaxError:
            return []

        imports: list[ImportNode] = []
        for stmt in module.body:
            if isinstance(stmt, ast.Import):
                for alias in stmt.names:
                    imports.append(
                        ImportNode(
                            node_id=self.next_id(),
                            location=_location(node),
                            module=alias.name,
                            alias=alias.asname,
                        )
                    )
            elif isinstance(stmt, ast.ImportFrom):
                for alias in stmt.names:
                    imports.append(
                        ImportNode(
                            node_id=self.next_id(),
                            location=_location(node),
                            module=stmt.module or "",
                            name=alias.name,
                            alias=alias.asname,
                            level=stmt.level,
                        )
                    )
        return imports


def _location(node) -> Location:
    line, column = node.start_point
    return Location(line=line + 1, column=column + 1)


def _node_text(node, source_bytes: bytes) -> str:
    return source_bytes[node.start_byte : node.end_byte].decode("utf-8")


def _dotted_name(node, source_bytes: bytes) -> str | None:
    """``a.b.c`` for plain name chains, ``None`` for anything else."""
    if node.type == "identifier":
        return _node_text(node, source_bytes)
    if node.type == "attribute":
        obj = node.child_by_field_name("object")
        attr = node.child_by_field_name("attribute")
        if obj is None or attr is None:
            return None
        head = _dotted_name(obj, source_bytes)
        if head is None:
            return None
        return f"{head}.{_node_text(attr, source_bytes)}"
    return None


def _is_bare_super(node, source_bytes: bytes) -> bool:
    if node.type != "call":
        return False
    function = node.child_by_field_name("function")
    arguments = node.child_by_field_name("arguments")
    return (
        function is not None
        and function.type == "identifier"
        and _node_text(function, source_bytes) == "super"
        and (arguments is None or arguments.named_child_count <= 2)
    )


def _target_names(node, source_bytes: bytes) -> list[str]:
    if node.type in NAME_TYPES:
        name = _dotted_name(node, source_bytes)
        return [name] if name else []
    if node.type not in PATTERN_TYPES:
        return []
    names: list[str] = []
    for child in node.named_children:
        names.extend(_target_names(child, source_bytes))
    return names


def _splat_name(node, source_bytes: bytes) -> str | None:
    if node.type == "identifier":
        return _node_text(node, source_bytes)
    for child in node.named_children:
        if child.type == "identifier":
            return _node_text(child, source_bytes)
    return None


def _parameter_defaults(params_node) -> list:
    if params_node is None:
        return []
    defaults = []
    for child in params_node.named_children:
        if child.type in ("default_parameter", "typed_default_parameter"):
            value = child.child_by_field_name("value")
            if value is not None:
                defaults.append(value)
    return defaults


def _raises_not_implemented(block, source_bytes: bytes) -> bool:
    """A body that only raises NotImplementedError (after an optional docstring)."""
    statements = [child for child in block.named_children if child.type != "comment"]
    if statements and statements[0].type == "expression_statement":
        first = statements[0].named_children
        if first and first[0].type == "string":
            statements = statements[1:]
    if len(statements) != 1 or statements[0].type != "raise_statement":
        return False
    raised = statements[0].named_children
    if not raised:
        return False
    exception = raised[0]
    if exception.type == "call":
        exception = exception.child_by_field_name("function") or exception
    return _node_text(exception, source_bytes) == "NotImplementedError"
