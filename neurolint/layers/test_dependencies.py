"""
Unit tests for the layer catalog and DependencyResolver.
"""
import pytest

from neurolint.errors import DependencyCycleError, InvalidLayerError
from neurolint.layers.dependencies import LAYER_CATALOG, DependencyResolver, get_layer_spec
from neurolint.models import LayerKind, LayerSpec

resolver = DependencyResolver()


# ─── Catalog ─────────────────────────────────────────────────────────────────

class TestCatalog:
    def test_has_seven_layers(self):
        assert sorted(LAYER_CATALOG) == [1, 2, 3, 4, 5, 6, 7]

    def test_configuration_has_no_dependencies(self):
        assert get_layer_spec(1).depends_on == frozenset()

    def test_adaptive_depends_on_everything_before_it(self):
        assert get_layer_spec(7).depends_on == frozenset({1, 2, 3, 4, 5, 6})

    def test_unknown_layer_spec_raises(self):
        with pytest.raises(InvalidLayerError):
            get_layer_spec(99)

    def test_topological_order_respects_dependencies(self):
        order = resolver.topological_order()
        assert sorted(order) == [1, 2, 3, 4, 5, 6, 7]
        for spec in LAYER_CATALOG.values():
            for dep in spec.depends_on:
                assert order.index(dep) < order.index(spec.id)

    def test_dependents_of_configuration(self):
        assert resolver.dependents_of(1) == [2, 3, 4, 5, 6, 7]

    def test_dependents_of_leaf(self):
        assert resolver.dependents_of(7) == []


# ─── Resolve ─────────────────────────────────────────────────────────────────

class TestResolve:
    def test_hydration_pulls_in_its_chain(self):
        resolution = resolver.resolve([4])
        assert resolution.corrected_layers == (1, 2, 3, 4)
        assert resolution.auto_added == (1, 2, 3)
        assert len(resolution.warnings) == 3

    def test_warning_text(self):
        resolution = resolver.resolve([2])
        assert resolution.warnings == (
            "Layer 2 (Entity Cleanup) requires Layer 1 (Configuration). Auto-added missing dependency.",
        )

    def test_complete_request_needs_no_additions(self):
        resolution = resolver.resolve([3, 1, 2])
        assert resolution.corrected_layers == (1, 2, 3)
        assert resolution.auto_added == ()
        assert resolution.warnings == ()

    def test_duplicates_collapse(self):
        assert resolver.resolve([1, 1, 1]).corrected_layers == (1,)

    def test_empty_request(self):
        resolution = resolver.resolve([])
        assert resolution.corrected_layers == ()
        assert resolution.auto_added == ()

    def test_adaptive_pulls_in_everything(self):
        assert resolver.resolve([7]).corrected_layers == (1, 2, 3, 4, 5, 6, 7)

    def test_result_is_closed_over_dependencies(self):
        for layer_id in LAYER_CATALOG:
            corrected = set(resolver.resolve([layer_id]).corrected_layers)
            for member in corrected:
                assert LAYER_CATALOG[member].depends_on <= corrected

    def test_resolve_is_idempotent(self):
        first = resolver.resolve([6, 3])
        second = resolver.resolve(first.corrected_layers)
        assert second.corrected_layers == first.corrected_layers
        assert second.auto_added == ()

    def test_to_dict_uses_camel_case(self):
        data = resolver.resolve([2]).to_dict()
        assert data["correctedLayers"] == [1, 2]
        assert data["autoAdded"] == [1]


# ─── Invalid Input ───────────────────────────────────────────────────────────

class TestInvalidInput:
    @pytest.mark.parametrize("layers", [[0], [8], [-1], [1, 99]])
    def test_unknown_ids(self, layers):
        with pytest.raises(InvalidLayerError):
            resolver.resolve(layers)

    def test_non_integer_id(self):
        with pytest.raises(InvalidLayerError):
            resolver.resolve(["2"])

    def test_bool_is_not_a_layer_id(self):
        with pytest.raises(InvalidLayerError):
            resolver.resolve([True])

    def test_string_request(self):
        with pytest.raises(InvalidLayerError):
            resolver.resolve("123")

    def test_invalid_layer_error_is_a_value_error(self):
        with pytest.raises(ValueError):
            resolver.resolve([42])


# ─── Catalog Checks ──────────────────────────────────────────────────────────

class TestCatalogChecks:
    def test_cycle_is_rejected(self):
        catalog = {
            1: LayerSpec(1, "A", LayerKind.CONFIG, frozenset({2})),
            2: LayerSpec(2, "B", LayerKind.ENTITY, frozenset({1})),
        }
        with pytest.raises(DependencyCycleError) as exc_info:
            DependencyResolver(catalog)
        assert exc_info.value.cycle[0] == exc_info.value.cycle[-1]

    def test_dangling_dependency_is_rejected(self):
        catalog = {1: LayerSpec(1, "A", LayerKind.CONFIG, frozenset({5}))}
        with pytest.raises(InvalidLayerError):
            DependencyResolver(catalog)
