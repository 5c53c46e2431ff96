"""
NeuroLint — Layer 1: Configuration
==================================
Modernises tsconfig / next.config / package settings:
  - "target": "es5"            -> "target": "ES2020"
  - reactStrictMode: false     -> reactStrictMode: true
  - experimental.appDir flag   -> removed (stable since Next.js 13.4)
"""

import re
from typing import Any, Dict, List, Tuple

from neurolint.layers.base import BaseLayer, register_layer

_CONFIG_FIXES = (
    (re.compile(r'"target"\s*:\s*"es5"', re.IGNORECASE), '"target": "ES2020"',
     "Upgraded TypeScript target from ES5 to ES2020"),
    (re.compile(r"\breactStrictMode\s*:\s*false\b"), "reactStrictMode: true",
     "Enabled React strict mode"),
    (re.compile(r"^[ \t]*appDir\s*:\s*true\s*,?[ \t]*\n", re.MULTILINE), "",
     "Removed deprecated experimental.appDir flag"),
)

OUTDATED_SETTINGS = {
    "es5 target": _CONFIG_FIXES[0][0],
    "reactStrictMode disabled": _CONFIG_FIXES[1][0],
    "experimental.appDir": _CONFIG_FIXES[2][0],
}


@register_layer
class ConfigurationLayer(BaseLayer):
    layer_id = 1

    def apply(self, source_code: str, params: Dict[str, Any]) -> Tuple[str, List[str]]:
        code = source_code
        improvements = []
        for pattern, replacement, description in _CONFIG_FIXES:
            code, count = pattern.subn(replacement, code)
            if count:
                improvements.append(description)
        return code, improvements

    def describe(self) -> str:
        return "Configuration fixes (tsconfig target, strict mode, deprecated flags)"
