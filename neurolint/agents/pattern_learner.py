"""
NeuroLint — Pattern Learner
===========================
Turns accepted layer diffs into reusable rewrite rules and re-applies them.

Learning:
  - the edit span is found by trimming the longest common prefix and suffix
  - an unwrap edit (replacement strictly inside the removed text) becomes a
    capture-group rule:  &quot;(.+?)&quot;  ->  \\1
  - a pure insertion is anchored on the rest of its line, guarded by a
    lookbehind so re-applying it is a no-op
  - anything else becomes a literal rule, anchored on the member chain
    it belongs to (console.log, not log)
  - rules are deduplicated on (category, matcher); new rules start at 0.8

Scoring:
  confidence = success / (success + failure)
  if success > 10 and confidence > 0.8: confidence = min(0.95, confidence + 0.05)

Application uses rules with confidence >= 0.7, best score first, where
score = confidence * max(success_count, 1).
"""

import logging
import math
import re
import time
import uuid
from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Optional, Tuple

from neurolint.layers.dependencies import LAYER_CATALOG
from neurolint.models import LearnedPattern, PatternApplication
from neurolint.storage.repository import PatternRepository

logger = logging.getLogger(__name__)

INITIAL_CONFIDENCE = 0.8
MIN_APPLY_CONFIDENCE = 0.7
MAX_PATTERNS = 1000
EVICTION_FRACTION = 0.1
MAX_SPAN_CHARS = 2000

_CHAIN_TAIL_RE = re.compile(r"[\w$.]*\Z")


@dataclass(frozen=True)
class EditSpan:
    prefix: str
    removed: str
    inserted: str
    suffix: str


def _is_word(ch: str) -> bool:
    return ch.isalnum() or ch in "_$"


def minimal_edit_span(before: str, after: str) -> Optional[EditSpan]:
    """
    Trim the longest common prefix and suffix of before/after, then widen
    the span so it never cuts through an identifier.
    """
    if before == after:
        return None
    limit = min(len(before), len(after))
    p = 0
    while p < limit and before[p] == after[p]:
        p += 1
    s = 0
    while s < limit - p and before[len(before) - 1 - s] == after[len(after) - 1 - s]:
        s += 1

    def cuts_left() -> bool:
        if p == 0 or not _is_word(before[p - 1]):
            return False
        return ((p < len(before) - s and _is_word(before[p]))
                or (p < len(after) - s and _is_word(after[p])))

    def cuts_right() -> bool:
        if s == 0 or not _is_word(before[len(before) - s]):
            return False
        b_last, a_last = len(before) - s - 1, len(after) - s - 1
        return ((b_last >= p and _is_word(before[b_last]))
                or (a_last >= p and _is_word(after[a_last])))

    while cuts_left():
        p -= 1
    while cuts_right():
        s -= 1
    return EditSpan(
        prefix=before[:p],
        removed=before[p:len(before) - s],
        inserted=after[p:len(after) - s],
        suffix=before[len(before) - s:],
    )


def _escape_replacement(text: str) -> str:
    return text.replace("\\", "\\\\")


def rule_from_span(span: EditSpan) -> Optional[Tuple[str, str, str]]:
    """Return (kind, matcher, replacement) for an edit span, or None."""
    removed, inserted = span.removed, span.inserted
    if len(removed) > MAX_SPAN_CHARS or len(inserted) > MAX_SPAN_CHARS:
        return None

    if not removed:
        line_rest = span.suffix.split("\n", 1)[0]
        if line_rest.strip():
            matcher = f"(?<!{re.escape(inserted)}){re.escape(line_rest)}"
            return "insertion", matcher, _escape_replacement(inserted + line_rest)
        line_head = span.prefix.rsplit("\n", 1)[-1]
        if line_head.strip():
            matcher = f"{re.escape(line_head)}(?!{re.escape(inserted)})"
            return "insertion", matcher, _escape_replacement(line_head + inserted)
        return None

    if inserted and inserted != removed:
        start = removed.find(inserted)
        if start > 0 and start + len(inserted) < len(removed):
            head, tail = removed[:start], removed[start + len(inserted):]
            return "unwrap", f"{re.escape(head)}(.+?){re.escape(tail)}", r"\g<1>"

    if removed in inserted:
        # Re-applying would keep growing the code.
        return None
    context = _CHAIN_TAIL_RE.search(span.prefix).group(0)
    anchor = context + removed
    matcher = re.escape(anchor)
    if _is_word(anchor[0]):
        matcher = r"(?<![\w$.])" + matcher
    if _is_word(removed[-1]):
        matcher += r"(?![\w$])"
    return "literal", matcher, _escape_replacement(context + inserted)


def _category_for(layer_id: int) -> str:
    spec = LAYER_CATALOG.get(layer_id)
    return spec.kind.value if spec is not None else f"layer-{layer_id}"


def _recompute_confidence(pattern: LearnedPattern) -> None:
    total = pattern.success_count + pattern.failure_count
    if total == 0:
        return
    confidence = pattern.success_count / total
    if pattern.success_count > 10 and confidence > 0.8:
        confidence = min(0.95, confidence + 0.05)
    pattern.confidence = confidence


class PatternLearner:
    """
    Learns rules from accepted diffs and applies them to new code.
    The rule set lives in the injected PatternRepository.
    """

    def __init__(
        self,
        repository: Optional[PatternRepository] = None,
        min_confidence: float = MIN_APPLY_CONFIDENCE,
        max_patterns: int = MAX_PATTERNS,
        autosave: bool = True,
    ):
        self.repository = repository if repository is not None else PatternRepository()
        self.min_confidence = min_confidence
        self.max_patterns = max_patterns
        self.autosave = autosave

    def learn(self, before: str, after: str, layer_id: int) -> Optional[LearnedPattern]:
        span = minimal_edit_span(before, after)
        if span is None:
            return None
        rule = rule_from_span(span)
        if rule is None:
            logger.debug(f"[PatternLearner] Layer {layer_id}: diff not generalisable, skipped")
            return None
        kind, matcher, replacement = rule
        category = _category_for(layer_id)

        def create() -> LearnedPattern:
            pattern_id = uuid.uuid4().hex
            return LearnedPattern(
                id=pattern_id,
                name=f"{category}-{kind}-{pattern_id[:8]}",
                matcher=matcher,
                replacement=replacement,
                category=category,
                source_layer=layer_id,
                confidence=INITIAL_CONFIDENCE,
                description=f"Learned from layer {layer_id}: {span.removed[:40]!r} -> {span.inserted[:40]!r}",
            )

        def reinforce(pattern: LearnedPattern) -> None:
            pattern.success_count += 1
            pattern.last_used_at = time.time()
            _recompute_confidence(pattern)

        pattern, created = self.repository.upsert((category, matcher), create, reinforce)
        if created:
            logger.info(f"[PatternLearner] New {kind} pattern {pattern.name} from layer {layer_id}")
            self._evict_if_needed()
        else:
            logger.debug(f"[PatternLearner] Reinforced {pattern.name} (successes={pattern.success_count})")

        if self.autosave:
            self.repository.persist()
        return pattern

    def apply(
        self,
        code: str,
        skip: Iterable[str] = (),
        record: bool = True,
    ) -> PatternApplication:
        """
        Substitutes every applicable rule in turn. Rules whose id is in skip
        are not tried at all. With record=False (dry runs) hit and miss
        counters are left untouched and nothing is persisted.
        """
        skipped = set(skip)
        rules = [p for p in self.repository.snapshot()
                 if p.confidence >= self.min_confidence and p.id not in skipped]
        rules.sort(key=lambda p: p.confidence * max(p.success_count, 1), reverse=True)

        current = code
        applied: List[str] = []
        for rule in rules:
            try:
                updated = re.sub(rule.matcher, rule.replacement, current)
            except (re.error, IndexError) as e:
                logger.warning(f"[PatternLearner] Pattern {rule.name} failed: {e}")
                if record:
                    self._record_attempt(rule, changed=False)
                continue
            if updated == current:
                if record:
                    self._record_attempt(rule, changed=False)
                continue
            current = updated
            applied.append(rule.name)
            if record:
                self._record_attempt(rule, changed=True)

        if record and rules and self.autosave:
            self.repository.persist()
        return PatternApplication(code=current, applied_rule_names=applied)

    def _record_attempt(self, rule: LearnedPattern, changed: bool) -> None:
        def mutate(pattern: LearnedPattern) -> None:
            if changed:
                pattern.success_count += 1
                pattern.last_used_at = time.time()
            else:
                pattern.failure_count += 1
            _recompute_confidence(pattern)

        self.repository.update(rule.key, mutate)

    def _evict_if_needed(self) -> None:
        patterns = self.repository.snapshot()
        if len(patterns) <= self.max_patterns:
            return
        drop = max(1, math.floor(len(patterns) * EVICTION_FRACTION))
        patterns.sort(key=lambda p: p.confidence * p.usage)
        removed = self.repository.remove([p.key for p in patterns[:drop]])
        logger.info(f"[PatternLearner] Evicted {removed} low-value patterns")

    def rules(self) -> List[LearnedPattern]:
        return sorted(self.repository.snapshot(), key=lambda p: p.confidence * max(p.success_count, 1),
                      reverse=True)

    def statistics(self) -> Dict[str, Any]:
        patterns = self.repository.snapshot()
        by_category: Dict[str, int] = {}
        for p in patterns:
            by_category[p.category] = by_category.get(p.category, 0) + 1
        return {
            "total_patterns": len(patterns),
            "average_confidence": (sum(p.confidence for p in patterns) / len(patterns)) if patterns else 0.0,
            "by_category": by_category,
            "applicable_patterns": sum(1 for p in patterns if p.confidence >= self.min_confidence),
            "store_degraded": self.repository.degraded,
            "top_patterns": [
                {"name": p.name, "confidence": round(p.confidence, 3), "successCount": p.success_count}
                for p in self.rules()[:5]
            ],
        }
