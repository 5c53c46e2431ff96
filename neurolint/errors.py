"""
NeuroLint — Exceptions
======================
Only programmer errors (bad input, a cyclic layer table) escape the public
operations. Everything else is raised inside a layer run, caught by the
executor and reported on the LayerOutcome.
"""

from typing import List, Optional


class NeuroLintError(Exception):
    """Base class for all NeuroLint errors."""


class InvalidLayerError(NeuroLintError, ValueError):
    """Raised when a requested layer id is not in the catalog."""

    def __init__(self, layer_ids: List[object]):
        self.layer_ids = layer_ids
        super().__init__(f"Unknown layer id(s): {layer_ids}")


class InvalidOptionsError(NeuroLintError, ValueError):
    """Raised when execution options are malformed."""


class DependencyCycleError(NeuroLintError, ValueError):
    """The static layer table is not a DAG."""

    def __init__(self, cycle: List[int]):
        self.cycle = cycle
        path = " -> ".join(str(layer_id) for layer_id in cycle)
        super().__init__(f"Layer dependency cycle detected: {path}")


class LayerBackendError(NeuroLintError):
    """A layer backend reported failure or could not be reached."""

    def __init__(self, layer_id: int, message: str):
        self.layer_id = layer_id
        super().__init__(f"Layer {layer_id} failed: {message}")


class LayerTimeoutError(NeuroLintError, TimeoutError):
    def __init__(self, layer_id: int, timeout_ms: float):
        self.layer_id = layer_id
        self.timeout_ms = timeout_ms
        super().__init__(f"Layer {layer_id} timed out after {timeout_ms:.0f}ms")


class ASTParsingError(NeuroLintError):
    """Source could not be parsed into a usable AST for a structural edit."""


class PatternApplicationError(NeuroLintError):
    def __init__(self, pattern_name: str, message: str):
        self.pattern_name = pattern_name
        super().__init__(f"Pattern {pattern_name} could not be applied: {message}")


class StorageUnavailableError(NeuroLintError):
    """The pattern store could not be read or written."""

    def __init__(self, message: str, cause: Optional[BaseException] = None):
        self.cause = cause
        super().__init__(message)


class PipelineTimeoutError(NeuroLintError, TimeoutError):
    """The overall transformation deadline expired while a layer was running."""

    def __init__(self, layer_id: int, timeout_ms: float):
        self.layer_id = layer_id
        self.timeout_ms = timeout_ms
        super().__init__(f"Pipeline deadline exceeded while layer {layer_id} was running ({timeout_ms:.0f}ms left)")
