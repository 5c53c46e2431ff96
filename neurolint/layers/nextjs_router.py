"""
NeuroLint — Layer 5: Next.js App Router
=======================================
A 'use client' directive only works as the first statement of a module.
Misplaced directives are moved to the top (comments and blank lines may
still precede it).
"""

import re
from typing import Any, Dict, List, Tuple

from neurolint.layers.base import BaseLayer, register_layer

USE_CLIENT_RE = re.compile(r"""^[ \t]*(['"])use client\1;?[ \t]*$""", re.MULTILINE)
_LEADING_TRIVIA_RE = re.compile(r"\A(?:\s*(?://[^\n]*|/\*[\s\S]*?\*/))*\s*")


def misplaced_use_client_line(code: str) -> int:
    """1-based line of a misplaced directive, or 0 if absent or in place."""
    match = USE_CLIENT_RE.search(code)
    if match is None:
        return 0
    trivia = _LEADING_TRIVIA_RE.match(code)
    if trivia is not None and match.start() <= trivia.end():
        return 0
    return code.count("\n", 0, match.start()) + 1


@register_layer
class NextJsRouterLayer(BaseLayer):
    layer_id = 5

    def apply(self, source_code: str, params: Dict[str, Any]) -> Tuple[str, List[str]]:
        if not misplaced_use_client_line(source_code):
            return source_code, []
        without = USE_CLIENT_RE.sub("", source_code)
        without = re.sub(r"\n{3,}", "\n\n", without).lstrip("\n")
        return "'use client';\n\n" + without, ["Moved 'use client' directive to the top of the file"]

    def describe(self) -> str:
        return "Next.js App Router directive placement"
