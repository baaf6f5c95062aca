"""Call resolution engine for source-code indexing."""

from .config import DEFAULT_POLICY, ResolutionPolicy, policy_from_env
from .errors import (
    BuildCancelledError,
    CallIndexError,
    CallIndexWarning,
    CyclicInheritanceError,
    DuplicateDefinitionWarning,
    EmptyInputError,
    InconsistentLinearizationWarning,
    MalformedInputError,
    UnresolvedSymbolWarning,
)
from .extract import extract_scope_tree
from .index import CancellationToken, Index, build_index
from .models import CallEdge, CallResolution, CallSite, Confidence, Definition, DispatchKind
from .parser import PythonParser
from .storage import dumps_index, load_graph, load_index_data, save_graph, save_index

__all__ = [
    "DEFAULT_POLICY",
    "ResolutionPolicy",
    "policy_from_env",
    "BuildCancelledError",
    "CallIndexError",
    "CallIndexWarning",
    "CyclicInheritanceError",
    "DuplicateDefinitionWarning",
    "EmptyInputError",
    "InconsistentLinearizationWarning",
    "MalformedInputError",
    "UnresolvedSymbolWarning",
    "extract_scope_tree",
    "CancellationToken",
    "Index",
    "build_index",
    "CallEdge",
    "CallResolution",
    "CallSite",
    "Confidence",
    "Definition",
    "DispatchKind",
    "PythonParser",
    "dumps_index",
    "load_graph",
    "load_index_data",
    "save_graph",
    "save_index",
]
