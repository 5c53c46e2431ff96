"""
NeuroLint — Layer 2: Entity Cleanup
===================================
Repairs HTML entity corruption left behind by copy/paste and editors, and
downgrades console.log calls to console.debug.

Redundant wrapping is collapsed first ("&quot;x&quot;" -> "x"), then any
remaining entities are decoded. &amp; is decoded last so "&amp;lt;" is
only decoded once.
"""

import re
from typing import Any, Dict, List, Tuple

from neurolint.layers.base import BaseLayer, register_layer

_WRAPPED_ENTITIES = (
    (re.compile(r'"&quot;(.*?)&quot;"'), r'"\1"'),
    (re.compile(r"'&#x27;(.*?)&#x27;'"), r"'\1'"),
    (re.compile(r"'&#39;(.*?)&#39;'"), r"'\1'"),
)

_ENTITIES = (
    ("&quot;", '"'),
    ("&#x27;", "'"),
    ("&#39;", "'"),
    ("&lt;", "<"),
    ("&gt;", ">"),
    ("&amp;", "&"),
)

ENTITY_RE = re.compile(r"&(?:quot|#x27|#39|lt|gt|amp);")
CONSOLE_LOG_RE = re.compile(r"\bconsole\.log\(")


@register_layer
class EntityCleanupLayer(BaseLayer):
    layer_id = 2

    def apply(self, source_code: str, params: Dict[str, Any]) -> Tuple[str, List[str]]:
        code = source_code
        improvements = []

        unwrapped = 0
        for pattern, replacement in _WRAPPED_ENTITIES:
            code, count = pattern.subn(replacement, code)
            unwrapped += count
        if unwrapped:
            improvements.append(f"Removed {unwrapped} redundant entity-wrapped quotes")

        decoded = len(ENTITY_RE.findall(code))
        for entity, char in _ENTITIES:
            code = code.replace(entity, char)
        if decoded:
            improvements.append(f"Decoded {decoded} HTML entities")

        code, logs = CONSOLE_LOG_RE.subn("console.debug(", code)
        if logs:
            improvements.append(f"Replaced {logs} console.log calls with console.debug")

        return code, improvements

    def describe(self) -> str:
        return "HTML entity cleanup and console.log removal"
