"""
NeuroLint — Layer Engine (Base + Registry)
==========================================
Every local layer is a deterministic transformer registered against its
layer id. The executor never calls layers directly; it goes through a
LayerBackend (local registry here, or the remote API client).

SAFETY DESIGN:
- Layers are deterministic: same input -> same output
- Layers never validate their own output; the SafetyValidator does
- Layers are idempotent: running one twice changes nothing the second time
"""

import logging
from typing import Any, Dict, List, Optional, Protocol, Tuple, Type

from neurolint.errors import InvalidLayerError
from neurolint.models import LayerExecution

logger = logging.getLogger(__name__)


def count_changes(before: str, after: str) -> int:
    """Line-level change count: length difference plus differing aligned lines."""
    before_lines = before.split("\n")
    after_lines = after.split("\n")
    shared = min(len(before_lines), len(after_lines))
    differing = sum(1 for i in range(shared) if before_lines[i] != after_lines[i])
    return abs(len(before_lines) - len(after_lines)) + differing


class BaseLayer:
    """Base class for all local NeuroLint layers."""

    layer_id: int = 0
    requires_learner: bool = False

    def apply(self, source_code: str, params: Dict[str, Any]) -> Tuple[str, List[str]]:
        """
        Apply the layer to source code.
        Returns (transformed_code, improvements).
        """
        raise NotImplementedError

    def describe(self) -> str:
        raise NotImplementedError


# Registry of all local layers
_LAYER_REGISTRY: Dict[int, Type[BaseLayer]] = {}


def register_layer(cls: Type[BaseLayer]) -> Type[BaseLayer]:
    """Decorator to register a layer implementation."""
    _LAYER_REGISTRY[cls.layer_id] = cls
    return cls


def get_layer_class(layer_id: int) -> Type[BaseLayer]:
    if layer_id not in _LAYER_REGISTRY:
        raise InvalidLayerError([layer_id])
    return _LAYER_REGISTRY[layer_id]


def list_layers() -> List[int]:
    return sorted(_LAYER_REGISTRY.keys())


class LayerBackend(Protocol):
    def execute(self, layer_id: int, code: str, options: Dict[str, Any]) -> LayerExecution: ...


class LocalLayerBackend:
    """
    Runs layers in process from the registry. Layer 7 needs the pattern
    learner; it is handed over when the layer is built.
    """

    def __init__(self, learner=None):
        # Importing the layer modules registers them.
        import neurolint.layers.configuration  # noqa
        import neurolint.layers.entity_cleanup  # noqa
        import neurolint.layers.components  # noqa
        import neurolint.layers.hydration  # noqa
        import neurolint.layers.nextjs_router  # noqa
        import neurolint.layers.testing  # noqa
        import neurolint.layers.adaptive  # noqa

        self.learner = learner
        self._layers: Dict[int, BaseLayer] = {}

    def _layer(self, layer_id: int) -> BaseLayer:
        layer = self._layers.get(layer_id)
        if layer is None:
            cls = get_layer_class(layer_id)
            layer = cls(learner=self.learner) if cls.requires_learner else cls()
            self._layers[layer_id] = layer
        return layer

    def execute(self, layer_id: int, code: str, options: Optional[Dict[str, Any]] = None) -> LayerExecution:
        layer = self._layer(layer_id)
        transformed, improvements = layer.apply(code, dict(options or {}))
        return LayerExecution(
            success=True,
            transformed_code=transformed,
            change_count=count_changes(code, transformed),
            improvements=improvements,
            description=layer.describe(),
        )
