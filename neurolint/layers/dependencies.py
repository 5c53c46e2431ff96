"""
NeuroLint — Layer Catalog and Dependency Resolver
=================================================
The catalog is the single static description of the seven layers and the
DAG between them:

  1 Configuration         -> (none)
  2 Entity Cleanup        -> 1
  3 Components            -> 1, 2
  4 Hydration & SSR       -> 1, 2, 3
  5 Next.js App Router    -> 1
  6 Testing & Validation  -> 1
  7 Adaptive Learning     -> 1, 2, 3, 4, 5, 6

The resolver closes a requested layer set over these dependencies.
"""

import logging
from typing import Dict, Iterable, List, Mapping, Optional, Set

from neurolint.errors import DependencyCycleError, InvalidLayerError
from neurolint.models import LayerKind, LayerResolution, LayerSpec

logger = logging.getLogger(__name__)


LAYER_CATALOG: Dict[int, LayerSpec] = {
    spec.id: spec
    for spec in (
        LayerSpec(1, "Configuration", LayerKind.CONFIG, frozenset(),
                  "Updates tsconfig, next.config and package.json settings",
                  critical=True),
        LayerSpec(2, "Entity Cleanup", LayerKind.ENTITY, frozenset({1}),
                  "Fixes HTML entity corruption and console statements"),
        LayerSpec(3, "Components", LayerKind.COMPONENT, frozenset({1, 2}),
                  "Adds missing key props to list renders", supports_ast=True),
        LayerSpec(4, "Hydration & SSR", LayerKind.HYDRATION, frozenset({1, 2, 3}),
                  "Guards browser-only APIs for server rendering", supports_ast=True),
        LayerSpec(5, "Next.js App Router", LayerKind.ROUTER, frozenset({1}),
                  "Moves misplaced 'use client' directives to the top"),
        LayerSpec(6, "Testing & Validation", LayerKind.TESTING, frozenset({1}),
                  "Adds error handling to async functions", supports_ast=True),
        LayerSpec(7, "Adaptive Learning", LayerKind.ADAPTIVE, frozenset({1, 2, 3, 4, 5, 6}),
                  "Applies patterns learned from earlier transformations"),
    )
}


def get_layer_spec(layer_id: int) -> LayerSpec:
    if layer_id not in LAYER_CATALOG:
        raise InvalidLayerError([layer_id])
    return LAYER_CATALOG[layer_id]


class DependencyResolver:
    """
    Normalises a requested layer set into a complete, ordered,
    dependency-closed set. The catalog is checked for cycles once, when
    the resolver is built.
    """

    def __init__(self, catalog: Optional[Mapping[int, LayerSpec]] = None):
        self.catalog: Dict[int, LayerSpec] = dict(catalog if catalog is not None else LAYER_CATALOG)
        self._order = self._topological_sort()

    def resolve(self, requested: Iterable[int]) -> LayerResolution:
        requested_ids = self._validate_ids(requested)
        present: Set[int] = set(requested_ids)
        auto_added: List[int] = []
        warnings: List[str] = []
        visited: Set[int] = set()

        def visit(layer_id: int) -> None:
            if layer_id in visited:
                return
            visited.add(layer_id)
            spec = self.catalog[layer_id]
            for dep in sorted(spec.depends_on):
                if dep not in present:
                    present.add(dep)
                    auto_added.append(dep)
                    dep_spec = self.catalog[dep]
                    warnings.append(
                        f"Layer {layer_id} ({spec.name}) requires Layer {dep} ({dep_spec.name}). "
                        f"Auto-added missing dependency."
                    )
                visit(dep)

        for layer_id in sorted(requested_ids):
            visit(layer_id)

        if auto_added:
            logger.info(f"[DependencyResolver] Auto-added layers {sorted(auto_added)}")

        return LayerResolution(
            corrected_layers=tuple(sorted(present)),
            auto_added=tuple(sorted(auto_added)),
            warnings=tuple(warnings),
        )

    def topological_order(self) -> List[int]:
        return list(self._order)

    def dependents_of(self, layer_id: int) -> List[int]:
        """Layers that (directly or transitively) depend on layer_id."""
        self._validate_ids([layer_id])
        dependents: Set[int] = set()
        frontier = [layer_id]
        while frontier:
            current = frontier.pop()
            for spec in self.catalog.values():
                if current in spec.depends_on and spec.id not in dependents:
                    dependents.add(spec.id)
                    frontier.append(spec.id)
        return sorted(dependents)

    # ── Internals ─────────────────────────────────────────────────────────

    def _validate_ids(self, requested: Iterable[int]) -> Set[int]:
        if isinstance(requested, (str, bytes)):
            raise InvalidLayerError([requested])
        try:
            items = list(requested)
        except TypeError:
            raise InvalidLayerError([requested]) from None
        bad = [
            item for item in items
            if isinstance(item, bool) or not isinstance(item, int) or item not in self.catalog
        ]
        if bad:
            raise InvalidLayerError(bad)
        return set(items)

    def _topological_sort(self) -> List[int]:
        for spec in self.catalog.values():
            unknown = [dep for dep in spec.depends_on if dep not in self.catalog]
            if unknown:
                raise InvalidLayerError(unknown)

        WHITE, GREY, BLACK = 0, 1, 2
        color = {layer_id: WHITE for layer_id in self.catalog}
        order: List[int] = []
        path: List[int] = []

        def dfs(layer_id: int) -> None:
            color[layer_id] = GREY
            path.append(layer_id)
            for dep in sorted(self.catalog[layer_id].depends_on):
                if color[dep] == GREY:
                    raise DependencyCycleError(path[path.index(dep):] + [dep])
                if color[dep] == WHITE:
                    dfs(dep)
            path.pop()
            color[layer_id] = BLACK
            order.append(layer_id)

        for layer_id in sorted(self.catalog):
            if color[layer_id] == WHITE:
                dfs(layer_id)
        return order
