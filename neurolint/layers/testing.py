"""
NeuroLint — Layer 6: Testing & Validation
=========================================
Wraps the body of async functions that await without any error handling
in try/catch. Errors are logged and re-thrown, so callers see the same
failure they saw before.

Lines are re-indented one level, except lines that begin inside a
template literal: those belong to the string's value and stay verbatim.
"""

from typing import Any, Dict, List, Tuple

from neurolint.errors import ASTParsingError
from neurolint.layers.base import BaseLayer, register_layer
from neurolint.parsing.js_parser import iter_nodes, parse_source, unhandled_async_functions

INDENT = "  "

# (text, starts inside a template literal)
BodyLine = Tuple[str, bool]


def _line_indent(source: bytes, offset: int) -> str:
    line_start = source.rfind(b"\n", 0, offset) + 1
    line = source[line_start:offset].decode("utf-8")
    return line[: len(line) - len(line.lstrip())]


def body_lines(source: bytes, start: int, end: int, literals: List[Tuple[int, int]]) -> List[BodyLine]:
    lines = []
    offset = start
    for raw in source[start:end].split(b"\n"):
        inside = any(lo < offset < hi for lo, hi in literals)
        lines.append((raw.decode("utf-8"), inside))
        offset += len(raw) + 1
    return lines


def wrap_body(lines: List[BodyLine], base: str) -> str:
    """Rebuild a `{ ... }` block whose statements sit inside try/catch."""
    while lines and not lines[0][1] and not lines[0][0].strip():
        lines = lines[1:]
    while lines and not lines[-1][1] and not lines[-1][0].strip():
        lines = lines[:-1]
    if lines and not lines[-1][1]:
        lines = lines[:-1] + [(lines[-1][0].rstrip(), False)]
    body = "\n".join(
        text if frozen else ((INDENT + text) if text.strip() else "")
        for text, frozen in lines
    )
    return (
        "{\n"
        f"{base}{INDENT}try {{\n"
        f"{body}\n"
        f"{base}{INDENT}}} catch (error) {{\n"
        f"{base}{INDENT}{INDENT}console.error(\"Error:\", error);\n"
        f"{base}{INDENT}{INDENT}throw error;\n"
        f"{base}{INDENT}}}\n"
        f"{base}}}"
    )


@register_layer
class TestingLayer(BaseLayer):
    layer_id = 6

    def apply(self, source_code: str, params: Dict[str, Any]) -> Tuple[str, List[str]]:
        if "async" not in source_code or "await" not in source_code:
            return source_code, []
        parsed = parse_source(source_code)
        if not parsed.ok or parsed.tree is None:
            raise ASTParsingError(
                f"Testing layer could not parse source (line {parsed.error_line})"
            )

        bodies = [fn.child_by_field_name("body") for fn in unhandled_async_functions(parsed)]
        # Only outermost bodies are rewritten; nested ones move along with them.
        bodies.sort(key=lambda b: (b.start_byte, -b.end_byte))
        outermost = []
        for body in bodies:
            if outermost and body.end_byte <= outermost[-1].end_byte:
                continue
            outermost.append(body)
        if not outermost:
            return source_code, []

        literals = [(n.start_byte, n.end_byte) for n in iter_nodes(parsed.root) if n.type == "template_string"]
        source = parsed.source
        for body in reversed(outermost):
            lines = body_lines(source, body.start_byte + 1, body.end_byte - 1, literals)
            base = _line_indent(source, body.start_byte)
            source = source[:body.start_byte] + wrap_body(lines, base).encode("utf-8") + source[body.end_byte:]

        return source.decode("utf-8"), [f"Added error handling to {len(outermost)} async function(s)"]

    def describe(self) -> str:
        return "Error handling for async/await functions"
