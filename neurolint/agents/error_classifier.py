"""
NeuroLint — Error Classifier
============================
Maps exceptions raised while running a layer onto a bounded taxonomy,
with severity and recovery hints, and drives bounded automatic recovery.

Classification order (first match wins):
  syntax → ast-parsing → type-error → reference-error → jsx-error
  → import-error → timeout → memory → unknown

Recovery:
  - at most MAX_RECOVERY_ATTEMPTS attempts per layer
  - backoff before attempt n is base * 2^(n-1) seconds (1s, 2s, 4s)
  - a recovered candidate is kept only if the SafetyValidator accepts it
"""

import logging
import re
import traceback
from collections import Counter
from dataclasses import dataclass
from typing import Any, Callable, Dict, Iterable, List, Optional, Tuple

from neurolint.models import (
    ErrorCategory,
    ErrorRecord,
    LayerOutcome,
    RecoveryOutcome,
    Severity,
)

logger = logging.getLogger(__name__)

MAX_RECOVERY_ATTEMPTS = 3
DEFAULT_BACKOFF_BASE_S = 1.0
_CHAIN_DEPTH = 5


@dataclass(frozen=True)
class RecoveryStrategy:
    category: ErrorCategory
    name: str
    severity: Severity
    suggestion: str
    recovery_options: Tuple[str, ...]
    patterns: Tuple[re.Pattern, ...]
    automated: bool = False
    retryable: bool = False
    recover: Optional[Callable[[str], str]] = None


# ── Recovery hooks ───────────────────────────────────────────────────────────

_CLOSERS = {"{": "}", "(": ")", "[": "]"}
_STATEMENT_NEEDS_SEMICOLON = re.compile(r"^(\s*(?:const|let|var)\s.*[\w'\"`)\]])[ \t]*$", re.MULTILINE)


def _repair_syntax(code: str) -> str:
    """Terminate bare declarations and close unbalanced brackets."""
    repaired = _STATEMENT_NEEDS_SEMICOLON.sub(r"\1;", code)
    repaired = re.sub(r"\{\s+\}", "{}", repaired)

    stack: List[str] = []
    quote: Optional[str] = None
    i = 0
    while i < len(repaired):
        ch = repaired[i]
        if quote:
            if ch == "\\":
                i += 2
                continue
            if ch == quote:
                quote = None
        elif ch in ("'", '"', "`"):
            quote = ch
        elif repaired.startswith("//", i):
            newline = repaired.find("\n", i)
            i = len(repaired) if newline == -1 else newline
            continue
        elif ch in _CLOSERS:
            stack.append(_CLOSERS[ch])
        elif stack and ch == stack[-1]:
            stack.pop()
        i += 1

    if stack:
        repaired = repaired.rstrip() + "\n" + "".join(reversed(stack)) + "\n"
    return repaired


def _normalize_jsx(code: str) -> str:
    normalized = re.sub(r"<\s+/", "</", code)
    normalized = re.sub(r"/\s+>", "/>", normalized)
    return "\n".join(line.rstrip() for line in normalized.split("\n"))


def _unchanged(code: str) -> str:
    return code


def _strip_comments(code: str) -> str:
    stripped = re.sub(r"/\*[\s\S]*?\*/", "", code)
    stripped = re.sub(r"^\s*//.*$", "", stripped, flags=re.MULTILINE)
    return "\n".join(line for line in stripped.split("\n") if line.strip()) + "\n"


def _compile(*patterns: str, flags: int = re.IGNORECASE) -> Tuple[re.Pattern, ...]:
    return tuple(re.compile(p, flags) for p in patterns)


STRATEGIES: Tuple[RecoveryStrategy, ...] = (
    RecoveryStrategy(
        ErrorCategory.SYNTAX, "syntax-repair", Severity.HIGH,
        "Fix syntax errors in the source before running this layer",
        ("Check for missing brackets or semicolons", "Validate JSX syntax", "Run layers individually"),
        _compile(r"SyntaxError", r"Unexpected token", r"Unexpected end of input", r"invalid syntax"),
        automated=True, retryable=True, recover=_repair_syntax,
    ),
    RecoveryStrategy(
        ErrorCategory.AST_PARSING, "ast-parsing-fallback", Severity.MEDIUM,
        "AST parsing failed; retry the layer with the unchanged input",
        ("Retry with regex-based fallback", "Simplify complex expressions"),
        _compile(r"\bAST\b", flags=0) + _compile(r"\bparse", r"\btransform", r"\bbabel\b", r"tree-sitter"),
        automated=True, retryable=True, recover=_unchanged,
    ),
    RecoveryStrategy(
        ErrorCategory.TYPE_ERROR, "type-error", Severity.HIGH,
        "A value had an unexpected type; check for null or undefined values",
        ("Add null checks", "Verify variable types"),
        _compile(r"TypeError", r"Cannot read prop", r"undefined is not a function",
                 r"AttributeError", r"NoneType"),
    ),
    RecoveryStrategy(
        ErrorCategory.REFERENCE_ERROR, "reference-error", Severity.HIGH,
        "A referenced name is not defined; check imports and declarations",
        ("Check variable declarations", "Verify imports"),
        _compile(r"ReferenceError", r"NameError", r"is not defined", r"Cannot access"),
    ),
    RecoveryStrategy(
        ErrorCategory.JSX_ERROR, "jsx-normalize", Severity.MEDIUM,
        "JSX structure could not be processed; normalise tag formatting",
        ("Check JSX tag closure", "Validate component structure"),
        _compile(r"\bJSX\b", r"\bReact\b", r"\belement\b", r"\bcomponent\b"),
        automated=True, retryable=True, recover=_normalize_jsx,
    ),
    RecoveryStrategy(
        ErrorCategory.IMPORT_ERROR, "import-error", Severity.HIGH,
        "A module could not be resolved; check import paths and installed packages",
        ("Verify import paths", "Install missing packages"),
        _compile(r"Cannot resolve", r"Module not found", r"ModuleNotFoundError",
                 r"ImportError", r"\bimport\b"),
    ),
    RecoveryStrategy(
        ErrorCategory.TIMEOUT, "timeout-retry", Severity.LOW,
        "The layer took too long; retry or raise the layer timeout",
        ("Retry the layer", "Increase layerTimeoutMs", "Process smaller files"),
        _compile(r"timeout", r"timed out", r"exceeded"),
        automated=True, retryable=True, recover=_unchanged,
    ),
    RecoveryStrategy(
        ErrorCategory.MEMORY, "memory-reduce", Severity.CRITICAL,
        "Processing ran out of memory; strip comments and retry on a smaller input",
        ("Process smaller files", "Strip comments and blank lines"),
        _compile(r"MemoryError", r"\bmemory\b", r"\bheap\b", r"out of memory"),
        automated=True, retryable=True, recover=_strip_comments,
    ),
)

_STRATEGY_BY_CATEGORY: Dict[ErrorCategory, RecoveryStrategy] = {s.category: s for s in STRATEGIES}


def error_text(error: Any) -> str:
    """Message plus a summary of the exception chain."""
    if not isinstance(error, BaseException):
        return str(error)
    parts: List[str] = []
    current: Optional[BaseException] = error
    depth = 0
    while current is not None and depth < _CHAIN_DEPTH:
        parts.extend(
            line.strip() for line in traceback.format_exception_only(type(current), current)
        )
        current = current.__cause__ or current.__context__
        depth += 1
    return "\n".join(parts)


def error_message(error: Any) -> str:
    if isinstance(error, BaseException):
        text = str(error)
        return f"{type(error).__name__}: {text}" if text else type(error).__name__
    return str(error)


class ErrorClassifier:
    """
    Classifies layer errors and attempts bounded, validated recovery.
    """

    def __init__(
        self,
        validator=None,
        max_attempts: int = MAX_RECOVERY_ATTEMPTS,
        backoff_base_s: float = DEFAULT_BACKOFF_BASE_S,
    ):
        self.validator = validator
        self.max_attempts = max_attempts
        self.backoff_base_s = backoff_base_s
        self._category_counts: Counter = Counter()
        self._recovery_attempts = 0
        self._recovery_successes = 0

    def classify(self, error: Any, layer_id: Optional[int] = None) -> ErrorRecord:
        try:
            text = error_text(error)
            message = error_message(error)
        except Exception as e:  # str() of a hostile exception
            text = message = f"<unprintable error: {type(e).__name__}>"

        for strategy in STRATEGIES:
            hits = sum(1 for pattern in strategy.patterns if pattern.search(text))
            if hits:
                self._category_counts[strategy.category] += 1
                return ErrorRecord(
                    category=strategy.category,
                    severity=strategy.severity,
                    message=message,
                    suggestion=strategy.suggestion,
                    recovery_options=strategy.recovery_options,
                    retryable=strategy.retryable,
                    automated=strategy.automated,
                    layer_id=layer_id,
                    confidence=min(1.0, 0.5 + 0.25 * hits),
                )

        self._category_counts[ErrorCategory.UNKNOWN] += 1
        return ErrorRecord(
            category=ErrorCategory.UNKNOWN,
            severity=Severity.MEDIUM,
            message=message,
            suggestion="Unexpected error; run the layer on its own to narrow it down",
            recovery_options=("Run layers individually", "Report the failing input"),
            layer_id=layer_id,
            confidence=0.1,
        )

    def backoff_delay(self, attempt: int) -> float:
        return self.backoff_base_s * (2 ** (attempt - 1))

    def attempt_recovery(
        self,
        error: Any,
        layer_id: int,
        code: str,
        attempt: int = 1,
    ) -> RecoveryOutcome:
        if attempt > self.max_attempts:
            return RecoveryOutcome(False, attempt, message="maximum recovery attempts exceeded")

        record = self.classify(error, layer_id)
        strategy = _STRATEGY_BY_CATEGORY.get(record.category)
        if strategy is None or not strategy.automated or strategy.recover is None:
            return RecoveryOutcome(False, attempt, message=f"no automated recovery for {record.category.value}")

        self._recovery_attempts += 1
        logger.info(f"[ErrorClassifier] Layer {layer_id}: attempt {attempt} using {strategy.name}")
        try:
            recovered = strategy.recover(code)
        except Exception as e:
            logger.warning(f"[ErrorClassifier] Recovery hook {strategy.name} failed: {e}")
            return RecoveryOutcome(False, attempt, strategy=strategy.name, message=str(e))

        if self.validator is not None:
            verdict = self.validator.check(code, recovered, layer_id)
            if verdict.should_revert:
                return RecoveryOutcome(
                    False, attempt, strategy=strategy.name,
                    message=f"recovered code rejected: {verdict.reason}",
                )

        self._recovery_successes += 1
        return RecoveryOutcome(True, attempt, recovered_code=recovered, strategy=strategy.name,
                               message="recovered")

    def suggestions_for(self, outcomes: Iterable[LayerOutcome]) -> List[Dict[str, Any]]:
        """Recovery advice for every failed outcome that carries a classification."""
        suggestions = []
        for outcome in outcomes:
            if outcome.success or outcome.error_record is None:
                continue
            record = outcome.error_record
            suggestions.append({
                "layerId": outcome.layer_id,
                "category": record.category.value,
                "severity": record.severity.value,
                "suggestion": record.suggestion,
                "actions": list(record.recovery_options),
            })
        return suggestions

    def statistics(self) -> Dict[str, Any]:
        return {
            "errors_by_category": {c.value: n for c, n in self._category_counts.items()},
            "total_errors": sum(self._category_counts.values()),
            "recovery_attempts": self._recovery_attempts,
            "recovery_successes": self._recovery_successes,
        }
