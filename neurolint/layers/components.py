"""
NeuroLint — Layer 3: Components
===============================
Adds missing `key` props to JSX elements returned from `.map()` callbacks.

Key expression, by callback signature:
  (item, index) => <li>       ->  key={item.id ?? index}
  (item) => <li>              ->  key={item.id ?? item}
  ({ id, name }) => <li>      ->  key={id}
  ({ name }, i) => <li>       ->  key={i}

Edits are made on tree-sitter node ranges, never by regex over JSX.
"""

import logging
from typing import Any, Dict, List, Optional, Tuple

import tree_sitter

from neurolint.errors import ASTParsingError
from neurolint.layers.base import BaseLayer, register_layer
from neurolint.parsing.js_parser import (
    ParsedSource,
    has_jsx_attribute,
    map_callbacks,
    opening_tag,
    parse_source,
    returned_elements,
)

logger = logging.getLogger(__name__)


def _parameter_nodes(callback: tree_sitter.Node) -> List[tree_sitter.Node]:
    single = callback.child_by_field_name("parameter")
    if single is not None:
        return [single]
    params = callback.child_by_field_name("parameters")
    if params is None:
        return []
    nodes = []
    for child in params.named_children:
        if child.type == "comment":
            continue
        if child.type in ("required_parameter", "optional_parameter"):
            pattern = child.child_by_field_name("pattern")
            child = pattern if pattern is not None else child
        if child.type == "assignment_pattern":
            left = child.child_by_field_name("left")
            child = left if left is not None else child
        nodes.append(child)
    return nodes


def _destructures_id(parsed: ParsedSource, pattern: tree_sitter.Node) -> bool:
    for child in pattern.named_children:
        if child.type == "shorthand_property_identifier_pattern" and parsed.text(child) == "id":
            return True
    return False


def key_expression(parsed: ParsedSource, callback: tree_sitter.Node) -> Optional[str]:
    params = _parameter_nodes(callback)
    item = params[0] if params else None
    index = params[1] if len(params) > 1 and params[1].type == "identifier" else None
    index_name = parsed.text(index) if index is not None else None

    if item is not None and item.type == "identifier":
        name = parsed.text(item)
        return f"{name}.id ?? {index_name or name}"
    if item is not None and item.type == "object_pattern" and _destructures_id(parsed, item):
        return "id"
    return index_name


@register_layer
class ComponentsLayer(BaseLayer):
    layer_id = 3

    def apply(self, source_code: str, params: Dict[str, Any]) -> Tuple[str, List[str]]:
        if ".map(" not in source_code:
            return source_code, []
        parsed = parse_source(source_code)
        if not parsed.ok or parsed.tree is None:
            raise ASTParsingError(
                f"Components layer could not parse source (line {parsed.error_line})"
            )

        edits: List[Tuple[int, bytes]] = []
        skipped = 0
        for callback in map_callbacks(parsed):
            elements = [el for el in returned_elements(callback) if not has_jsx_attribute(parsed, el, "key")]
            if not elements:
                continue
            expression = key_expression(parsed, callback)
            if expression is None:
                skipped += len(elements)
                continue
            for element in elements:
                tag = opening_tag(element)
                name = tag.child_by_field_name("name") if tag is not None else None
                if name is None:
                    skipped += 1
                    continue
                edits.append((name.end_byte, f" key={{{expression}}}".encode("utf-8")))

        if skipped:
            logger.debug(f"[ComponentsLayer] {skipped} list render(s) have no usable key expression")
        if not edits:
            return source_code, []

        source = parsed.source
        for offset, insertion in sorted(edits, reverse=True):
            source = source[:offset] + insertion + source[offset:]
        return source.decode("utf-8"), [f"Added key prop to {len(edits)} list item(s)"]

    def describe(self) -> str:
        return "React list rendering keys"
