"""
NeuroLint — Layer 4: Hydration & SSR
====================================
Guards browser-only storage and media-query calls so they do not run
during server rendering:

  const v = localStorage.getItem("k")   ->  const v = typeof window !== "undefined" && localStorage.getItem("k")
  "a:" + localStorage.getItem("k")      ->  "a:" + (typeof window !== "undefined" && localStorage.getItem("k"))

Calls that stand alone (statement, initializer, assignment value, return
value) take the bare guard; any other position is parenthesized so the
surrounding operators keep their meaning. Calls already reachable only
through a guard are left alone.
"""

import logging
from typing import Any, Dict, List, Optional, Tuple

import tree_sitter

from neurolint.errors import ASTParsingError
from neurolint.layers.base import BaseLayer, register_layer
from neurolint.parsing.js_parser import ParsedSource, is_guarded_access, iter_nodes, parse_source

logger = logging.getLogger(__name__)

SSR_GUARD = 'typeof window !== "undefined" && '

_STORAGE_METHODS = frozenset({"getItem", "setItem", "removeItem", "clear"})
GUARDED_CALLS = {
    "localStorage": _STORAGE_METHODS,
    "sessionStorage": _STORAGE_METHODS,
    "window": frozenset({"matchMedia"}),
}

# parent type -> field that holds a call in standalone position
_STANDALONE_FIELDS = {
    "variable_declarator": "value",
    "assignment_expression": "right",
}
_STANDALONE_PARENTS = frozenset({"expression_statement", "return_statement"})


def _browser_call_target(parsed: ParsedSource, call: tree_sitter.Node) -> Optional[tree_sitter.Node]:
    """Returns the `obj.method` member node when call is one of GUARDED_CALLS."""
    function = call.child_by_field_name("function")
    if function is None or function.type != "member_expression":
        return None
    obj = function.child_by_field_name("object")
    prop = function.child_by_field_name("property")
    if obj is None or prop is None or obj.type != "identifier":
        return None
    methods = GUARDED_CALLS.get(parsed.text(obj))
    if methods is None or parsed.text(prop) not in methods:
        return None
    return function


def _is_standalone(call: tree_sitter.Node) -> bool:
    parent = call.parent
    if parent is None:
        return False
    if parent.type in _STANDALONE_PARENTS:
        return True
    field = _STANDALONE_FIELDS.get(parent.type)
    if field is None:
        return False
    holder = parent.child_by_field_name(field)
    return holder is not None and (holder.start_byte, holder.end_byte) == (call.start_byte, call.end_byte)


@register_layer
class HydrationLayer(BaseLayer):
    layer_id = 4

    def apply(self, source_code: str, params: Dict[str, Any]) -> Tuple[str, List[str]]:
        if not any(name in source_code for name in GUARDED_CALLS):
            return source_code, []
        parsed = parse_source(source_code)
        if not parsed.ok or parsed.root is None:
            raise ASTParsingError(
                f"Hydration layer could not parse source (line {parsed.error_line})"
            )

        edits: List[Tuple[int, bytes]] = []
        guarded = 0
        guard = SSR_GUARD.encode("utf-8")
        for node in iter_nodes(parsed.root):
            if node.type != "call_expression":
                continue
            target = _browser_call_target(parsed, node)
            if target is None or is_guarded_access(parsed, target):
                continue
            if _is_standalone(node):
                edits.append((node.start_byte, guard))
            else:
                edits.append((node.start_byte, b"(" + guard))
                edits.append((node.end_byte, b")"))
            guarded += 1

        if not edits:
            return source_code, []
        logger.debug(f"[HydrationLayer] Guarding {guarded} browser API call(s)")
        source = parsed.source
        for offset, insertion in sorted(edits, key=lambda edit: edit[0], reverse=True):
            source = source[:offset] + insertion + source[offset:]
        return source.decode("utf-8"), [f"Added SSR guards to {guarded} browser API calls"]

    def describe(self) -> str:
        return "SSR guards for localStorage, sessionStorage and matchMedia"
