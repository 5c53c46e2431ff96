"""
NeuroLint — Safety Validator
============================
Judges whether a layer's before/after pair may be committed.

Tiers (first failure wins):
  1. no-op            : identical code is accepted with a warning
  2. empty output     : non-empty input must not become empty
  3. syntax           : after must parse (TSX, JS or JSON)
  4. corruption       : known corruption signatures new in `after`
  5. integrity        : critical anchors must not drop below 50%
  6. AST semantics    : component / hydration layers only

Both versions are parsed at most once; parse artifacts are shared between
the syntax tier and the AST tier through the parser cache.
"""

import logging
import re
from typing import Dict, List, Pattern, Tuple

from neurolint.layers.dependencies import LAYER_CATALOG
from neurolint.models import FailureKind, LayerKind, ValidationVerdict
from neurolint.parsing.js_parser import (
    browser_api_stats,
    map_render_stats,
    parse_source,
)

logger = logging.getLogger(__name__)


CORRUPTION_SIGNATURES: Tuple[Tuple[str, Pattern], ...] = (
    ("Double function calls", re.compile(r"on\w+=\{[^}]*\([^)]*\)\s*=>\s*\(\)\s*=>")),
    ("Malformed event handlers", re.compile(r"on\w+=\{[^}]*\)\([^)]*\)$", re.MULTILINE)),
    ("Invalid JSX attributes", re.compile(r"\w+=\{[^}(]*\)[^}]*\}")),
    ("Broken import statements", re.compile(r"import\s*\{\s*\n\s*import\s*\{")),
    ("Duplicated SSR guards", re.compile(
        r"""(?:typeof\s+window\s*!==?\s*["']undefined["']\s*&&\s*){2,}""")),
)

INTEGRITY_ANCHORS: Tuple[Tuple[str, Pattern], ...] = (
    ("export default", re.compile(r"\bexport\s+default\b")),
    ("export {", re.compile(r"\bexport\s*\{")),
    ("import", re.compile(r"^\s*import\b", re.MULTILINE)),
    ("function NAME", re.compile(r"\bfunction\s*\*?\s*[A-Za-z_$][\w$]*\s*\(")),
    ("const NAME =", re.compile(r"\bconst\s+[A-Za-z_$][\w$]*\s*=")),
)

CRITICAL_IMPORTS = ("React", "useState", "useEffect")

INTEGRITY_RATIO = 0.5


class SafetyValidator:
    """
    Tiered before/after validation. Stateless apart from counters, so one
    instance can serve concurrent transformations.
    """

    def __init__(self, integrity_ratio: float = INTEGRITY_RATIO):
        self.integrity_ratio = integrity_ratio
        self.checks_run = 0
        self.reverts = 0

    def check(self, before: str, after: str, layer_id: int) -> ValidationVerdict:
        self.checks_run += 1
        verdict = self._check(before, after, layer_id)
        if verdict.should_revert:
            self.reverts += 1
            logger.warning(f"[SafetyValidator] Layer {layer_id} reverted: {verdict.reason}")
        else:
            logger.debug(f"[SafetyValidator] Layer {layer_id} accepted: {verdict.reason}")
        return verdict

    def _check(self, before: str, after: str, layer_id: int) -> ValidationVerdict:
        # ── Tier 1: no-op ─────────────────────────────────────────────────
        if before == after:
            return ValidationVerdict.accept("no changes", warnings=["no changes"])

        # ── Tier 2: empty output ──────────────────────────────────────────
        if before.strip() and not after.strip():
            return ValidationVerdict.revert(
                "transformation produced empty output",
                FailureKind.STRUCTURAL_INTEGRITY_VIOLATION,
            )

        # ── Tier 3: syntax ────────────────────────────────────────────────
        parsed_after = parse_source(after)
        if not parsed_after.ok:
            where = f" near line {parsed_after.error_line}" if parsed_after.error_line else ""
            return ValidationVerdict.revert(f"syntax error{where}", FailureKind.SYNTAX_ERROR)

        # ── Tier 4: corruption signatures ─────────────────────────────────
        corruption = self.detect_corruption(before, after)
        if corruption:
            return ValidationVerdict.revert(
                f"corruption detected: {', '.join(corruption)}",
                FailureKind.CORRUPTION_DETECTED,
                errors=[f"Corruption detected: {name}" for name in corruption],
            )

        # ── Tier 5: structural integrity ──────────────────────────────────
        integrity_errors = self.integrity_violations(before, after)
        if integrity_errors:
            return ValidationVerdict.revert(
                "critical pattern significantly reduced",
                FailureKind.STRUCTURAL_INTEGRITY_VIOLATION,
                errors=integrity_errors,
            )

        # ── Tier 6: AST semantic check ────────────────────────────────────
        spec = LAYER_CATALOG.get(layer_id)
        if spec is not None and spec.kind in (LayerKind.COMPONENT, LayerKind.HYDRATION):
            return self._semantic_check(before, after, spec.kind)

        return ValidationVerdict.accept("validation passed")

    # ── Tier helpers ──────────────────────────────────────────────────────

    def detect_corruption(self, before: str, after: str) -> List[str]:
        return [
            name for name, pattern in CORRUPTION_SIGNATURES
            if pattern.search(after) and not pattern.search(before)
        ]

    def integrity_violations(self, before: str, after: str) -> List[str]:
        errors = []
        for name, pattern in INTEGRITY_ANCHORS:
            before_count = len(pattern.findall(before))
            if before_count == 0:
                continue
            after_count = len(pattern.findall(after))
            if after_count < before_count * self.integrity_ratio:
                errors.append(
                    f"Critical pattern '{name}' significantly reduced: {before_count} -> {after_count}"
                )
        for name in CRITICAL_IMPORTS:
            pattern = re.compile(rf"import[^;]*\b{name}\b")
            if pattern.search(before) and not pattern.search(after):
                errors.append(f"Critical import removed: {name}")
        return errors

    def _semantic_check(self, before: str, after: str, kind: LayerKind) -> ValidationVerdict:
        parsed_before = parse_source(before)
        parsed_after = parse_source(after)
        if not parsed_before.ok or parsed_before.tree is None or parsed_after.tree is None:
            return ValidationVerdict.accept(
                "validation passed",
                warnings=["AST semantic check skipped: input is not a parseable module"],
            )

        if kind == LayerKind.COMPONENT:
            b, a = map_render_stats(parsed_before), map_render_stats(parsed_after)
            metrics = {
                "rendered_before": b.rendered,
                "rendered_after": a.rendered,
                "keyed_before": b.keyed,
                "keyed_after": a.keyed,
                "missing_keys_before": b.missing,
                "missing_keys_after": a.missing,
            }
            if b.missing > 0 and a.keyed <= b.keyed:
                return ValidationVerdict.revert(
                    f"component layer left {a.missing} list render(s) without key",
                    FailureKind.STRUCTURAL_INTEGRITY_VIOLATION,
                    metrics=metrics,
                )
            return ValidationVerdict.accept("validation passed", metrics=metrics)

        b, a = browser_api_stats(parsed_before), browser_api_stats(parsed_after)
        metrics = {
            "guarded_before": b.guarded,
            "guarded_after": a.guarded,
            "unguarded_before": b.unguarded,
            "unguarded_after": a.unguarded,
        }
        if b.unguarded > 0 and a.guarded <= b.guarded:
            return ValidationVerdict.revert(
                f"hydration layer guarded no browser API accesses ({b.guarded} -> {a.guarded} guarded)",
                FailureKind.STRUCTURAL_INTEGRITY_VIOLATION,
                metrics=metrics,
            )
        if a.unguarded > b.unguarded:
            return ValidationVerdict.revert(
                f"hydration layer introduced unguarded browser API accesses ({b.unguarded} -> {a.unguarded})",
                FailureKind.STRUCTURAL_INTEGRITY_VIOLATION,
                metrics=metrics,
            )
        return ValidationVerdict.accept("validation passed", metrics=metrics)

    def get_stats(self) -> Dict[str, int]:
        return {"checks_run": self.checks_run, "reverts": self.reverts}
