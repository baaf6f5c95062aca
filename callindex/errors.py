# Errors and diagnostics for callindex

from __future__ import annotations

from collections import Counter
from typing import Iterable


class CallIndexError(Exception):
    """Base exception for all application-specific errors."""
    pass


class MalformedInputError(CallIndexError):
    """Raised when a scope tree is structurally invalid. Fatal for its file only."""
    def __init__(self, path: str, message: str, node_id: str | None = None):
        self.path = path
        self.node_id = node_id
        self.message = message
        where = f"{path}#{node_id}" if node_id else path
        super().__init__(f"Malformed scope tree {where}: {message}")


class CyclicInheritanceError(CallIndexError):
    """Reported once per extends cycle. The classes degrade to unknown dispatch."""
    def __init__(self, classes: Iterable[str]):
        self.classes = tuple(classes)
        super().__init__(f"Cyclic inheritance between {', '.join(self.classes)}")


class EmptyInputError(CallIndexError):
    """Raised when build_index is called without any files."""
    pass


class BuildCancelledError(CallIndexError):
    """Raised when a build is abandoned through its cancellation token."""
    def __init__(self, completed: int, total: int):
        self.completed = completed
        self.total = total
        super().__init__(f"Build cancelled after {completed} of {total} files")


class CallIndexWarning(UserWarning):
    """Base class for non-fatal diagnostics."""
    pass


class DuplicateDefinitionWarning(CallIndexWarning):
    def __init__(self, qualname: str, path: str, previous_path: str | None = None):
        self.qualname = qualname
        self.path = path
        self.previous_path = previous_path or path
        super().__init__(
            f"{qualname} declared again in {path} "
            f"(previous declaration in {self.previous_path}); keeping the latest"
        )


class UnresolvedSymbolWarning(CallIndexWarning):
    def __init__(self, name: str, path: str, site_id: str | None = None, reason: str = ""):
        self.name = name
        self.path = path
        self.site_id = site_id
        self.reason = reason
        message = f"Could not resolve {name!r} in {path}"
        if reason:
            message += f": {reason}"
        super().__init__(message)


class InconsistentLinearizationWarning(CallIndexWarning):
    """C3 merge failed; a depth-first left-to-right order was used instead."""
    def __init__(self, qualname: str):
        self.qualname = qualname
        super().__init__(f"No consistent linearization for {qualname}; using depth-first order")


Diagnostic = CallIndexError | CallIndexWarning


def diagnostics_summary(diagnostics: Iterable[Diagnostic]) -> dict[str, int]:
    counts = Counter(type(item).__name__ for item in diagnostics)
    return dict(sorted(counts.items()))
