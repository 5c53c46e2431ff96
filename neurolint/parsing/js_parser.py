"""
NeuroLint — JavaScript / TypeScript Parser
==========================================
Permissive tree-sitter parse of JS, TS and JSX source. The TSX grammar is
tried first, then the plain JavaScript grammar; JSON documents (tsconfig,
package.json) are accepted as-is.

Parses are cached per source string so a layer's before/after pair is only
parsed once per step, however many checks look at it.

AST metrics exposed here:
  - map_render_stats     : JSX returned from .map() callbacks, keyed vs not
  - browser_api_stats    : localStorage/sessionStorage/window/document
                           member accesses, guarded vs unguarded
  - unhandled_async_functions : async functions that await outside try
"""

import json
import logging
from dataclasses import dataclass
from functools import lru_cache
from typing import Iterator, List, Optional, Tuple

import tree_sitter
import tree_sitter_javascript
import tree_sitter_typescript

logger = logging.getLogger(__name__)

TSX_LANGUAGE = tree_sitter.Language(tree_sitter_typescript.language_tsx())
JS_LANGUAGE = tree_sitter.Language(tree_sitter_javascript.language())

BROWSER_GLOBALS = ("localStorage", "sessionStorage", "window", "document")

FUNCTION_TYPES = frozenset({
    "function_declaration",
    "function_expression",
    "function",
    "arrow_function",
    "method_definition",
    "generator_function_declaration",
    "generator_function",
})

JSX_ELEMENT_TYPES = frozenset({"jsx_element", "jsx_self_closing_element"})


@dataclass(frozen=True)
class ParsedSource:
    """One parse of one code version."""
    code: str
    source: bytes
    tree: Optional[tree_sitter.Tree]
    language: str              # tsx | javascript | json
    ok: bool
    error_line: Optional[int] = None

    @property
    def root(self) -> Optional[tree_sitter.Node]:
        return self.tree.root_node if self.tree is not None else None

    def text(self, node: tree_sitter.Node) -> str:
        return self.source[node.start_byte:node.end_byte].decode("utf-8", errors="replace")


@dataclass(frozen=True)
class MapRenderStats:
    rendered: int
    keyed: int

    @property
    def missing(self) -> int:
        return self.rendered - self.keyed


@dataclass(frozen=True)
class BrowserApiStats:
    guarded: int
    unguarded: int
    apis: Tuple[str, ...] = ()


def _parse_with(language: tree_sitter.Language, source: bytes) -> tree_sitter.Tree:
    parser = tree_sitter.Parser(language)
    return parser.parse(source)


@lru_cache(maxsize=256)
def parse_source(code: str) -> ParsedSource:
    """Parse code with the most permissive grammar that accepts it."""
    source = code.encode("utf-8")

    tree = _parse_with(TSX_LANGUAGE, source)
    if not tree.root_node.has_error:
        return ParsedSource(code, source, tree, "tsx", True)

    js_tree = _parse_with(JS_LANGUAGE, source)
    if not js_tree.root_node.has_error:
        return ParsedSource(code, source, js_tree, "javascript", True)

    stripped = code.strip()
    if stripped[:1] in ("{", "["):
        try:
            json.loads(stripped)
            return ParsedSource(code, source, None, "json", True)
        except ValueError:
            pass

    return ParsedSource(code, source, tree, "tsx", False, _first_error_line(tree.root_node))


def is_parseable(code: str) -> bool:
    return parse_source(code).ok


def _first_error_line(root: tree_sitter.Node) -> Optional[int]:
    for node in iter_nodes(root):
        if node.is_error or node.is_missing:
            return node.start_point[0] + 1
    return None


# ── Traversal helpers ────────────────────────────────────────────────────────

def iter_nodes(root: tree_sitter.Node) -> Iterator[tree_sitter.Node]:
    """Pre-order walk of every node under root."""
    stack = [root]
    while stack:
        node = stack.pop()
        yield node
        stack.extend(reversed(node.children))


def iter_scope(node: tree_sitter.Node) -> Iterator[tree_sitter.Node]:
    """Walk descendants of node without entering nested functions."""
    stack = list(reversed(node.children))
    while stack:
        current = stack.pop()
        yield current
        if current.type in FUNCTION_TYPES:
            continue
        stack.extend(reversed(current.children))


def same_node(a: Optional[tree_sitter.Node], b: Optional[tree_sitter.Node]) -> bool:
    if a is None or b is None:
        return False
    return (a.start_byte, a.end_byte, a.type) == (b.start_byte, b.end_byte, b.type)


def is_async(node: tree_sitter.Node) -> bool:
    return any(child.type == "async" for child in node.children)


# ── .map() renders ───────────────────────────────────────────────────────────

def map_callbacks(parsed: ParsedSource) -> Iterator[tree_sitter.Node]:
    """Function nodes passed as the first argument of a `.map(...)` call."""
    if parsed.root is None:
        return
    for node in iter_nodes(parsed.root):
        if node.type != "call_expression":
            continue
        function = node.child_by_field_name("function")
        if function is None or function.type != "member_expression":
            continue
        prop = function.child_by_field_name("property")
        if prop is None or parsed.text(prop) != "map":
            continue
        arguments = node.child_by_field_name("arguments")
        if arguments is None or not arguments.named_children:
            continue
        callback = arguments.named_children[0]
        if callback.type in FUNCTION_TYPES:
            yield callback


def _unwrap_rendered(node: Optional[tree_sitter.Node]) -> List[tree_sitter.Node]:
    if node is None:
        return []
    if node.type in JSX_ELEMENT_TYPES:
        return [node]
    if node.type == "parenthesized_expression":
        return [el for child in node.named_children for el in _unwrap_rendered(child)]
    if node.type == "ternary_expression":
        return (_unwrap_rendered(node.child_by_field_name("consequence"))
                + _unwrap_rendered(node.child_by_field_name("alternative")))
    if node.type == "binary_expression":
        return _unwrap_rendered(node.child_by_field_name("right"))
    return []


def returned_elements(callback: tree_sitter.Node) -> List[tree_sitter.Node]:
    """JSX elements a callback returns (expression body or return statements)."""
    body = callback.child_by_field_name("body")
    if body is None:
        return []
    if body.type != "statement_block":
        return _unwrap_rendered(body)
    elements: List[tree_sitter.Node] = []
    for node in iter_scope(body):
        if node.type == "return_statement" and node.named_children:
            elements.extend(_unwrap_rendered(node.named_children[0]))
    return elements


def opening_tag(element: tree_sitter.Node) -> Optional[tree_sitter.Node]:
    if element.type == "jsx_self_closing_element":
        return element
    tag = element.child_by_field_name("open_tag")
    if tag is not None:
        return tag
    for child in element.named_children:
        if child.type == "jsx_opening_element":
            return child
    return None


def has_jsx_attribute(parsed: ParsedSource, element: tree_sitter.Node, name: str) -> bool:
    tag = opening_tag(element)
    if tag is None:
        return False
    for child in tag.named_children:
        if child.type == "jsx_attribute" and child.named_children:
            if parsed.text(child.named_children[0]) == name:
                return True
    return False


def map_render_stats(parsed: ParsedSource) -> MapRenderStats:
    rendered = keyed = 0
    for callback in map_callbacks(parsed):
        for element in returned_elements(callback):
            rendered += 1
            if has_jsx_attribute(parsed, element, "key"):
                keyed += 1
    return MapRenderStats(rendered=rendered, keyed=keyed)


# ── Browser API guards ───────────────────────────────────────────────────────

def strip_parens(node: Optional[tree_sitter.Node]) -> Optional[tree_sitter.Node]:
    while node is not None and node.type == "parenthesized_expression" and node.named_children:
        node = node.named_children[0]
    return node


def _is_typeof_identifier(node: Optional[tree_sitter.Node]) -> bool:
    if node is None or node.type != "unary_expression":
        return False
    operator = node.child_by_field_name("operator")
    argument = strip_parens(node.child_by_field_name("argument"))
    return (operator is not None and operator.type == "typeof"
            and argument is not None and argument.type == "identifier")


def _is_undefined_string(parsed: ParsedSource, node: Optional[tree_sitter.Node]) -> bool:
    return node is not None and node.type == "string" and parsed.text(node)[1:-1] == "undefined"


def is_ssr_guard(parsed: ParsedSource, node: Optional[tree_sitter.Node]) -> bool:
    """
    True when node is `typeof X !== "undefined"` (or `!=`, either operand
    order), possibly parenthesized or joined to other conditions with `&&`.
    """
    node = strip_parens(node)
    if node is None or node.type != "binary_expression":
        return False
    operator = node.child_by_field_name("operator")
    op = operator.type if operator is not None else ""
    left = strip_parens(node.child_by_field_name("left"))
    right = strip_parens(node.child_by_field_name("right"))
    if op == "&&":
        return is_ssr_guard(parsed, left) or is_ssr_guard(parsed, right)
    if op not in ("!==", "!="):
        return False
    return ((_is_typeof_identifier(left) and _is_undefined_string(parsed, right))
            or (_is_typeof_identifier(right) and _is_undefined_string(parsed, left)))


def is_guarded_access(parsed: ParsedSource, node: tree_sitter.Node) -> bool:
    """An access is guarded when it only runs after an SSR guard succeeded."""
    child = node
    parent = node.parent
    while parent is not None:
        if parent.type == "binary_expression":
            operator = parent.child_by_field_name("operator")
            if (operator is not None and operator.type == "&&"
                    and same_node(parent.child_by_field_name("right"), child)
                    and is_ssr_guard(parsed, parent.child_by_field_name("left"))):
                return True
        elif parent.type in ("if_statement", "ternary_expression"):
            if (same_node(parent.child_by_field_name("consequence"), child)
                    and is_ssr_guard(parsed, parent.child_by_field_name("condition"))):
                return True
        child = parent
        parent = parent.parent
    return False


def browser_api_stats(parsed: ParsedSource) -> BrowserApiStats:
    if parsed.root is None:
        return BrowserApiStats(0, 0)
    guarded = unguarded = 0
    apis = set()
    for node in iter_nodes(parsed.root):
        if node.type != "member_expression":
            continue
        obj = node.child_by_field_name("object")
        if obj is None or obj.type != "identifier":
            continue
        name = parsed.text(obj)
        if name not in BROWSER_GLOBALS:
            continue
        parent = node.parent
        if parent is not None and parent.type == "unary_expression" and parsed.text(parent).startswith("typeof"):
            continue
        apis.add(name)
        if is_guarded_access(parsed, node):
            guarded += 1
        else:
            unguarded += 1
    return BrowserApiStats(guarded=guarded, unguarded=unguarded, apis=tuple(sorted(apis)))


# ── Async error handling ─────────────────────────────────────────────────────

def _inside_try(node: tree_sitter.Node) -> bool:
    parent = node.parent
    while parent is not None:
        if parent.type == "try_statement":
            return True
        parent = parent.parent
    return False


def unhandled_async_functions(parsed: ParsedSource) -> List[tree_sitter.Node]:
    """
    Async functions with a block body that await without any try statement,
    either in their own body or around their definition.
    """
    if parsed.root is None:
        return []
    found = []
    for node in iter_nodes(parsed.root):
        if node.type not in FUNCTION_TYPES or not is_async(node):
            continue
        body = node.child_by_field_name("body")
        if body is None or body.type != "statement_block" or _inside_try(node):
            continue
        scope = list(iter_scope(body))
        if any(n.type == "try_statement" for n in scope):
            continue
        if any(n.type == "await_expression" for n in scope):
            found.append(node)
    return found
