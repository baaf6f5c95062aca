"""Call site resolution: every call expression to a target set and a confidence."""

from __future__ import annotations

import re
from dataclasses import dataclass

from .bindings import DEFINITION, EXTERNAL, INSTANCE, PACKAGE, BindingResolver, Resolved
from .config import DEFAULT_POLICY, ResolutionPolicy
from .errors import Diagnostic, UnresolvedSymbolWarning
from .inheritance import InheritanceGraph
from .models import (
    Binding,
    CallSite,
    Confidence,
    Definition,
    DefinitionKind,
    DispatchKind,
    ReceiverKind,
    ScopeKind,
    TargetKind,
)
from .symbols import PendingCall, SymbolTable


_IDENTIFIER = re.compile(r"[A-Za-z_]\w*")
_DOTTED = re.compile(r"[A-Za-z_]\w*(\.[A-Za-z_]\w*)*")

SUPER_RECEIVER = "super()"
CONSTRUCTOR = "__init__"
CALL_OPERATOR = "__call__"

_INVOKED_ORIGINS = frozenset({"parameter", "assignment", "loop", "receiver"})


@dataclass(frozen=True)
class _Outcome:
    targets: tuple[str, ...]
    confidence: Confidence
    dispatch: DispatchKind = DispatchKind.STATIC
    reason: str | None = None  # set when the failure deserves a warning


def _unknown(reason: str | None = None) -> _Outcome:
    return _Outcome((), Confidence.UNKNOWN, DispatchKind.STATIC, reason)


def _exact(*targets: str) -> _Outcome:
    return _Outcome(tuple(targets), Confidence.EXACT, DispatchKind.STATIC)


class CallSiteResolver:
    """Resolves pending calls against a frozen table and hierarchy snapshot.

    Instances hold no mutable state besides the binding resolver's caches,
    so one resolver can serve several worker threads.
    """

    def __init__(
        self,
        table: SymbolTable,
        hierarchy: InheritanceGraph,
        bindings: BindingResolver,
        policy: ResolutionPolicy = DEFAULT_POLICY,
    ) -> None:
        self.table = table
        self.hierarchy = hierarchy
        self.bindings = bindings
        self.policy = policy

    def resolve(self, pending: PendingCall) -> tuple[CallSite, list[Diagnostic]]:
        trail: set[str] = set()
        caller = self.table.get(pending.caller)
        receiver_kind, outcome = self._classify_and_resolve(pending, caller, trail)

        diagnostics: list[Diagnostic] = []
        if outcome.confidence is Confidence.UNKNOWN and outcome.reason:
            diagnostics.append(
                UnresolvedSymbolWarning(
                    pending.callee, pending.path, site_id=pending.site_id, reason=outcome.reason
                )
            )

        decorators: list[str] = []
        for target in outcome.targets:
            definition = self.table.get(target)
            trail.add(definition.qualname)
            for name in definition.decorators:
                if name not in decorators:
                    decorators.append(name)

        site = CallSite(
            site_id=pending.site_id,
            caller=pending.caller,
            path=pending.path,
            location=pending.location,
            order=pending.order,
            callee=pending.callee,
            receiver=pending.receiver,
            receiver_kind=receiver_kind,
            arg_count=pending.arg_count,
            targets=outcome.targets,
            confidence=outcome.confidence,
            dispatch=outcome.dispatch,
            suspended=pending.suspended,
            decorators=tuple(decorators),
            dependencies=frozenset(trail),
        )
        return site, diagnostics

    # ------------------------------------------------------------------
    # Classification
    # ------------------------------------------------------------------

    def _classify_and_resolve(
        self, pending: PendingCall, caller: Definition | None, trail: set[str]
    ) -> tuple[ReceiverKind, _Outcome]:
        callee = pending.callee
        receiver = pending.receiver

        if receiver is None:
            if not _IDENTIFIER.fullmatch(callee):
                return ReceiverKind.NONE, _unknown()
            return self._free_call(pending, caller, trail)

        if not _IDENTIFIER.fullmatch(callee):
            return ReceiverKind.INSTANCE_MEMBER, _unknown()

        if receiver == SUPER_RECEIVER:
            return ReceiverKind.SELF_MEMBER, self._super_call(pending, caller, trail)

        if not _DOTTED.fullmatch(receiver):
            return ReceiverKind.INSTANCE_MEMBER, self._heuristic(pending, member=True, trail=trail)

        resolved = self.bindings.resolve_name(pending.scope_id, receiver, trail)
        implicit_receiver = resolved.receiver_role is not None and "." not in receiver
        member_kind = (
            ReceiverKind.SELF_MEMBER if implicit_receiver else ReceiverKind.INSTANCE_MEMBER
        )

        if resolved.state == DEFINITION:
            definition = self.table.get(resolved.definition)
            if definition.kind is DefinitionKind.MODULE:
                value = self.bindings.member(resolved, callee, trail)
                return ReceiverKind.NONE, self._invoke(value, pending, trail, invoked=False)
            if definition.kind is DefinitionKind.CLASS:
                if resolved.receiver_role == "cls":
                    return member_kind, self._dispatch_member(
                        definition.def_id, callee, pending, trail
                    )
                return ReceiverKind.INSTANCE_MEMBER, self._class_object_call(
                    definition.def_id, callee, pending, trail
                )
            if definition.kind is DefinitionKind.VARIABLE_CALLABLE:
                # Built by an unindexed callable when qualname is set.
                if resolved.qualname:
                    return ReceiverKind.INSTANCE_MEMBER, _unknown()
                return ReceiverKind.INSTANCE_MEMBER, _unknown(
                    f"{definition.qualname} holds a value of unknown type"
                )
            return ReceiverKind.INSTANCE_MEMBER, self._heuristic(pending, member=True, trail=trail)

        if resolved.state == PACKAGE:
            value = self.bindings.member(resolved, callee, trail)
            return ReceiverKind.NONE, self._invoke(value, pending, trail, invoked=False)

        if resolved.state == INSTANCE:
            return member_kind, self._dispatch_member(
                resolved.declared_type, callee, pending, trail
            )

        if resolved.state == EXTERNAL:
            return ReceiverKind.INSTANCE_MEMBER, _unknown()

        return ReceiverKind.INSTANCE_MEMBER, self._heuristic(pending, member=True, trail=trail)

    def _free_call(
        self, pending: PendingCall, caller: Definition | None, trail: set[str]
    ) -> tuple[ReceiverKind, _Outcome]:
        found = self.bindings.lookup(pending.scope_id, pending.callee)
        if found is None:
            return ReceiverKind.NONE, self._heuristic(pending, member=False, trail=trail)

        binding, scope = found
        if (
            scope.kind is ScopeKind.CLASS
            and scope.scope_id != pending.scope_id
            and caller is not None
            and caller.kind is DefinitionKind.METHOD
            and scope.owner
        ):
            # Implicit receiver: a bare name inside a method found on the class.
            return ReceiverKind.SELF_MEMBER, self._dispatch_member(
                scope.owner, pending.callee, pending, trail
            )

        invoked = binding.origin in _INVOKED_ORIGINS
        kind = ReceiverKind.INVOKED_BINDING if invoked else ReceiverKind.NONE
        value = self.bindings.resolve_binding(binding, trail)
        return kind, self._invoke(value, pending, trail, invoked=invoked)

    # ------------------------------------------------------------------
    # Resolution rules
    # ------------------------------------------------------------------

    def _invoke(
        self, value: Resolved, pending: PendingCall, trail: set[str], invoked: bool
    ) -> _Outcome:
        """Outcome of calling whatever ``value`` denotes."""
        if value.state == DEFINITION:
            definition = self.table.get(value.definition)
            if definition.kind is DefinitionKind.CLASS:
                if value.receiver_role == "cls":
                    return self._construct_runtime_class(definition.def_id, trail)
                return self._construct(definition.def_id)
            if definition.kind is DefinitionKind.MODULE:
                return _unknown(f"module {definition.qualname} is not callable")
            if definition.kind is DefinitionKind.VARIABLE_CALLABLE:
                return _Outcome((definition.def_id,), Confidence.AMBIGUOUS, DispatchKind.STATIC)
            if definition.is_abstract:
                return _unknown(f"{definition.qualname} is abstract")
            return _exact(definition.def_id)

        if value.state == INSTANCE:
            outcome = self._dispatch_member(
                value.declared_type, CALL_OPERATOR, pending, trail, report=False
            )
            if outcome.targets:
                return outcome
            if value.definition is not None:
                return _Outcome((value.definition,), Confidence.AMBIGUOUS, DispatchKind.STATIC)
            return _unknown(f"{self._qualname(value.declared_type)} defines no __call__")

        if value.state == EXTERNAL:
            return _unknown()

        if value.state == PACKAGE:
            return _unknown(f"package {value.qualname} is not callable")

        if invoked:
            return _unknown("binding holds a value of unknown type")
        if value.binding is None and value.qualname == pending.callee:
            return self._heuristic(pending, member=False, trail=trail)
        return _unknown("name not found")

    def _construct(self, class_id: str) -> _Outcome:
        found = self.bindings.find_member(class_id, CONSTRUCTOR)
        if found is not None and found[1].target is TargetKind.DEFINITION:
            initializer = self.table.get(found[1].ref)
            if initializer is not None and not initializer.is_abstract:
                return _exact(class_id, initializer.def_id)
        return _exact(class_id)

    def _construct_runtime_class(self, class_id: str, trail: set[str]) -> _Outcome:
        """``cls()`` builds whichever class of the subtree the method runs on."""
        related = self.hierarchy.subtree(class_id)
        for item in related:
            trail.add(self._qualname(item))
        if len(related) == 1:
            return self._construct(class_id)
        targets: list[str] = []
        for item in related:
            for target in self._construct(item).targets:
                if target not in targets:
                    targets.append(target)
        return _Outcome(tuple(targets), Confidence.AMBIGUOUS, DispatchKind.VIRTUAL)

    def _dispatch_member(
        self,
        class_id: str,
        member: str,
        pending: PendingCall,
        trail: set[str],
        report: bool = True,
    ) -> _Outcome:
        """Dispatch ``member`` on a receiver whose declared type is ``class_id``."""
        for related in self.hierarchy.subtree(class_id):
            trail.add(self._qualname(related))
        if self.hierarchy.is_cyclic(class_id):
            return _unknown(f"{self._qualname(class_id)} is part of an inheritance cycle")

        found = self.hierarchy.lookup(class_id, member)
        targets = self.hierarchy.dispatch_targets(class_id, member)

        if found is None:
            if targets:
                return _Outcome(targets, Confidence.AMBIGUOUS, DispatchKind.VIRTUAL)
            if self.hierarchy.has_external_base(class_id) or not report:
                return _unknown()
            return _unknown(f"{self._qualname(class_id)} has no member {member!r}")

        _owner, binding = found
        if binding.target is not TargetKind.DEFINITION:
            value = self.bindings.resolve_binding(binding, trail)
            return self._invoke(value, pending, trail, invoked=True)

        definition = self.table.get(binding.ref)
        if definition.kind is DefinitionKind.CLASS:
            return self._construct(definition.def_id)
        if definition.kind is DefinitionKind.VARIABLE_CALLABLE:
            return _Outcome((definition.def_id,), Confidence.AMBIGUOUS, DispatchKind.STATIC)

        overrides = [target for target in targets if target != definition.def_id]
        if not overrides:
            if definition.is_abstract:
                return _unknown(f"{definition.qualname} is abstract and never overridden")
            return _exact(definition.def_id)
        confidence = Confidence.EXACT if definition.is_abstract else Confidence.AMBIGUOUS
        return _Outcome(targets, confidence, DispatchKind.VIRTUAL)

    def _super_call(
        self, pending: PendingCall, caller: Definition | None, trail: set[str]
    ) -> _Outcome:
        owner = caller.owner_class if caller is not None else None
        if owner is None:
            return _unknown("super() outside a method")
        trail.add(self._qualname(owner))
        if self.hierarchy.is_cyclic(owner):
            return _unknown(f"{self._qualname(owner)} is part of an inheritance cycle")
        # A subclass linearization may put other classes between owner and its bases.
        found: list[tuple[str, Binding]] = []
        for related in self.hierarchy.subtree(owner):
            trail.add(self._qualname(related))
            hit = self.hierarchy.lookup(related, pending.callee, start_after=owner)
            if hit is not None and all(hit[0] != ancestor for ancestor, _ in found):
                found.append(hit)
        if not found:
            if self.hierarchy.has_external_base(owner):
                return _unknown()
            return _unknown(f"no base of {self._qualname(owner)} defines {pending.callee!r}")
        if len(found) == 1:
            return self._static_member(found[0][1], pending, trail)

        targets: list[str] = []
        for _ancestor, binding in found:
            for target in self._static_member(binding, pending, trail).targets:
                if target not in targets:
                    targets.append(target)
        if not targets:
            return _unknown(f"no concrete {pending.callee!r} after {self._qualname(owner)}")
        return _Outcome(tuple(targets), Confidence.AMBIGUOUS, DispatchKind.VIRTUAL)

    def _class_object_call(
        self, class_id: str, member: str, pending: PendingCall, trail: set[str]
    ) -> _Outcome:
        """``Base.method(...)``: a static lookup through the linearization."""
        trail.add(self._qualname(class_id))
        if self.hierarchy.is_cyclic(class_id):
            return _unknown(f"{self._qualname(class_id)} is part of an inheritance cycle")
        found = self.hierarchy.lookup(class_id, member)
        if found is None:
            targets = self.hierarchy.dispatch_targets(class_id, member)
            if targets:
                return _Outcome(targets, Confidence.AMBIGUOUS, DispatchKind.VIRTUAL)
            if self.hierarchy.has_external_base(class_id):
                return _unknown()
            return _unknown(f"{self._qualname(class_id)} has no member {member!r}")
        return self._static_member(found[1], pending, trail)

    def _static_member(self, binding, pending: PendingCall, trail: set[str]) -> _Outcome:
        value = self.bindings.resolve_binding(binding, trail)
        return self._invoke(
            value, pending, trail, invoked=binding.target is not TargetKind.DEFINITION
        )

    def _heuristic(self, pending: PendingCall, member: bool, trail: set[str]) -> _Outcome:
        """Name and arity fallback for receivers of unknown type."""
        name = pending.callee
        trail.add(f"name:{name}")
        policy = self.policy
        if name in policy.ignored_names or name in policy.common_names:
            return _unknown()

        kinds = (DefinitionKind.METHOD,) if member else (DefinitionKind.FUNCTION,)
        candidates = [
            definition
            for definition in self.table.named(name)
            if definition.kind in kinds
            and not definition.is_abstract
            and (not policy.match_arity or definition.accepts(pending.arg_count))
        ]
        if policy.prefer_same_module and candidates:
            caller_path = pending.path
            local = [definition for definition in candidates if definition.path == caller_path]
            if local:
                candidates = local
        if not candidates:
            return _unknown("no definition with a matching name")
        if len(candidates) > policy.max_heuristic_candidates:
            return _unknown(f"{len(candidates)} candidates exceed the heuristic limit")

        targets = tuple(
            definition.def_id
            for definition in sorted(candidates, key=lambda item: (item.qualname, item.def_id))
        )
        dispatch = DispatchKind.STATIC if len(targets) == 1 and not member else DispatchKind.VIRTUAL
        return _Outcome(targets, Confidence.AMBIGUOUS, dispatch)

    def _qualname(self, def_id: str) -> str:
        definition = self.table.get(def_id)
        return definition.qualname if definition else def_id
