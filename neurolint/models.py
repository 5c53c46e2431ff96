"""
NeuroLint — Shared Models
=========================
Dataclasses shared by the layers, agents and orchestrator components.
"""

from dataclasses import dataclass, field, asdict
from typing import Any, Dict, FrozenSet, List, Mapping, Optional, Tuple, Union
from enum import Enum
import time

from neurolint.errors import InvalidOptionsError


class LayerKind(str, Enum):
    CONFIG = "config"
    ENTITY = "entity"
    COMPONENT = "component"
    HYDRATION = "hydration"
    ROUTER = "router"
    TESTING = "testing"
    ADAPTIVE = "adaptive"


class PipelineState(str, Enum):
    IDLE = "idle"
    RUNNING = "running"
    VALIDATING = "validating"
    COMMITTED = "committed"
    ROLLED_BACK = "rolled_back"
    COMPLETED = "completed"
    TIMED_OUT = "timed_out"
    CANCELLED = "cancelled"


class FailureKind(str, Enum):
    SYNTAX_ERROR = "SyntaxError"
    AST_PARSING_ERROR = "ASTParsingError"
    CORRUPTION_DETECTED = "CorruptionDetected"
    STRUCTURAL_INTEGRITY_VIOLATION = "StructuralIntegrityViolation"
    LAYER_BACKEND_FAILURE = "LayerBackendFailure"
    LAYER_TIMEOUT = "LayerTimeout"
    PIPELINE_TIMEOUT = "PipelineTimeout"
    DEPENDENCY_CYCLE = "DependencyCycle"
    PATTERN_APPLICATION_ERROR = "PatternApplicationError"
    STORAGE_UNAVAILABLE = "StorageUnavailable"


class ErrorCategory(str, Enum):
    SYNTAX = "syntax"
    AST_PARSING = "ast-parsing"
    TYPE_ERROR = "type-error"
    REFERENCE_ERROR = "reference-error"
    JSX_ERROR = "jsx-error"
    IMPORT_ERROR = "import-error"
    TIMEOUT = "timeout"
    MEMORY = "memory"
    UNKNOWN = "unknown"


class Severity(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


DEFAULT_TIMEOUT_MS = 30_000
DEFAULT_LAYER_TIMEOUT_MS = 10_000


@dataclass(frozen=True)
class LayerSpec:
    """Static description of one layer in the catalog."""
    id: int
    name: str
    kind: LayerKind
    depends_on: FrozenSet[int] = frozenset()
    description: str = ""
    supports_ast: bool = False
    critical: bool = False


@dataclass(frozen=True)
class ExecutionOptions:
    verbose: bool = False
    dry_run: bool = False
    timeout_ms: float = DEFAULT_TIMEOUT_MS
    layer_timeout_ms: float = DEFAULT_LAYER_TIMEOUT_MS
    enable_learning: bool = True
    enable_recovery: bool = False

    _ALIASES = {
        "dryRun": "dry_run",
        "timeoutMs": "timeout_ms",
        "layerTimeoutMs": "layer_timeout_ms",
        "enableLearning": "enable_learning",
        "enableRecovery": "enable_recovery",
    }

    def validate(self) -> "ExecutionOptions":
        for name in ("verbose", "dry_run", "enable_learning", "enable_recovery"):
            if not isinstance(getattr(self, name), bool):
                raise InvalidOptionsError(f"{name} must be a bool, got {getattr(self, name)!r}")
        for name in ("timeout_ms", "layer_timeout_ms"):
            value = getattr(self, name)
            if isinstance(value, bool) or not isinstance(value, (int, float)):
                raise InvalidOptionsError(f"{name} must be a number, got {value!r}")
            if value <= 0:
                raise InvalidOptionsError(f"{name} must be positive, got {value}")
        return self

    @classmethod
    def normalize_keys(cls, data: Mapping[str, Any]) -> Dict[str, Any]:
        """Map camelCase or snake_case option keys onto field names."""
        kwargs: Dict[str, Any] = {}
        allowed = {"verbose", "dry_run", "timeout_ms", "layer_timeout_ms",
                   "enable_learning", "enable_recovery"}
        for key, value in data.items():
            name = cls._ALIASES.get(key, key)
            if name not in allowed:
                raise InvalidOptionsError(f"Unknown option: {key}")
            if value is None:
                continue
            kwargs[name] = value
        return kwargs

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "ExecutionOptions":
        return cls(**cls.normalize_keys(data)).validate()

    def to_dict(self) -> Dict[str, Any]:
        return {
            "verbose": self.verbose,
            "dryRun": self.dry_run,
            "timeoutMs": self.timeout_ms,
            "layerTimeoutMs": self.layer_timeout_ms,
            "enableLearning": self.enable_learning,
            "enableRecovery": self.enable_recovery,
        }


@dataclass(frozen=True)
class ExecutionRequest:
    source_code: str
    requested_layers: Tuple[int, ...]
    options: ExecutionOptions = field(default_factory=ExecutionOptions)


@dataclass(frozen=True)
class StepState:
    """One immutable entry of the step history."""
    step: int
    layer_id: Optional[int]
    code: str
    timestamp: float
    success: bool
    execution_time_ms: float = 0.0
    change_count: int = 0
    error: Optional[str] = None
    description: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return {
            "step": self.step,
            "layerId": self.layer_id,
            "code": self.code,
            "timestamp": self.timestamp,
            "success": self.success,
            "executionTimeMs": self.execution_time_ms,
            "changeCount": self.change_count,
            "error": self.error,
            "description": self.description,
        }


@dataclass
class LayerExecution:
    """What a layer backend hands back for one layer call."""
    success: bool
    transformed_code: Optional[str] = None
    change_count: int = 0
    improvements: List[str] = field(default_factory=list)
    error: Optional[str] = None
    description: str = ""


@dataclass
class ValidationVerdict:
    valid: bool
    should_revert: bool
    reason: str = ""
    errors: List[str] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)
    failure_kind: Optional[FailureKind] = None
    metrics: Dict[str, int] = field(default_factory=dict)

    @classmethod
    def accept(cls, reason: str, warnings: Optional[List[str]] = None,
               metrics: Optional[Dict[str, int]] = None) -> "ValidationVerdict":
        return cls(valid=True, should_revert=False, reason=reason,
                   warnings=list(warnings or []), metrics=dict(metrics or {}))

    @classmethod
    def revert(cls, reason: str, kind: FailureKind, errors: Optional[List[str]] = None,
               metrics: Optional[Dict[str, int]] = None) -> "ValidationVerdict":
        return cls(valid=False, should_revert=True, reason=reason,
                   errors=list(errors or [reason]), failure_kind=kind,
                   metrics=dict(metrics or {}))

    def to_dict(self) -> Dict[str, Any]:
        return {
            "valid": self.valid,
            "shouldRevert": self.should_revert,
            "reason": self.reason,
            "errors": list(self.errors),
            "warnings": list(self.warnings),
            "failureKind": self.failure_kind.value if self.failure_kind else None,
            "metrics": dict(self.metrics),
        }


@dataclass(frozen=True)
class ErrorRecord:
    """Classified view of an exception raised while running a layer."""
    category: ErrorCategory
    severity: Severity
    message: str
    suggestion: str
    recovery_options: Tuple[str, ...] = ()
    retryable: bool = False
    automated: bool = False
    layer_id: Optional[int] = None
    confidence: float = 0.0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "category": self.category.value,
            "severity": self.severity.value,
            "message": self.message,
            "suggestion": self.suggestion,
            "recoveryOptions": list(self.recovery_options),
            "retryable": self.retryable,
            "automated": self.automated,
            "layerId": self.layer_id,
            "confidence": self.confidence,
        }


@dataclass(frozen=True)
class RecoveryOutcome:
    success: bool
    attempt: int
    recovered_code: Optional[str] = None
    strategy: Optional[str] = None
    message: str = ""


@dataclass
class LayerOutcome:
    """Per-layer result reported back to the caller."""
    layer_id: int
    layer_name: str
    success: bool
    code: str
    execution_time_ms: float = 0.0
    change_count: int = 0
    improvements: List[str] = field(default_factory=list)
    revert_reason: Optional[str] = None
    error: Optional[str] = None
    failure_kind: Optional[FailureKind] = None
    error_record: Optional[ErrorRecord] = None
    verdict: Optional[ValidationVerdict] = None
    recovery_attempts: int = 0

    @property
    def state(self) -> PipelineState:
        return PipelineState.COMMITTED if self.success else PipelineState.ROLLED_BACK

    def to_dict(self, include_code: bool = False) -> Dict[str, Any]:
        data = {
            "layerId": self.layer_id,
            "layerName": self.layer_name,
            "success": self.success,
            "state": self.state.value,
            "executionTimeMs": round(self.execution_time_ms, 3),
            "changeCount": self.change_count,
            "improvements": list(self.improvements),
            "revertReason": self.revert_reason,
            "error": self.error,
            "failureKind": self.failure_kind.value if self.failure_kind else None,
            "errorRecord": self.error_record.to_dict() if self.error_record else None,
            "recoveryAttempts": self.recovery_attempts,
        }
        if include_code:
            data["code"] = self.code
        return data


@dataclass(frozen=True)
class LayerResolution:
    corrected_layers: Tuple[int, ...]
    auto_added: Tuple[int, ...] = ()
    warnings: Tuple[str, ...] = ()

    def to_dict(self) -> Dict[str, Any]:
        return {
            "correctedLayers": list(self.corrected_layers),
            "autoAdded": list(self.auto_added),
            "warnings": list(self.warnings),
        }


@dataclass
class TransformationResult:
    """Aggregate result of one transform() call."""
    original_code: str
    final_code: str
    outcomes: List[LayerOutcome] = field(default_factory=list)
    successful_layers: int = 0
    total_execution_time_ms: float = 0.0
    step_history: Tuple[StepState, ...] = ()
    resolution: Optional[LayerResolution] = None
    final_state: PipelineState = PipelineState.COMPLETED
    session_id: str = ""

    @property
    def changed(self) -> bool:
        return self.final_code != self.original_code

    def code_at(self, step: int) -> str:
        """Code as it stood after the given step (0 is the original input)."""
        if step < 0 or step >= len(self.step_history):
            raise IndexError(f"Invalid step: {step}")
        return self.step_history[step].code

    def to_dict(self, include_history: bool = False) -> Dict[str, Any]:
        data = {
            "sessionId": self.session_id,
            "originalCode": self.original_code,
            "finalCode": self.final_code,
            "successfulLayers": self.successful_layers,
            "totalExecutionTimeMs": round(self.total_execution_time_ms, 3),
            "finalState": self.final_state.value,
            "outcomes": [o.to_dict() for o in self.outcomes],
            "resolution": self.resolution.to_dict() if self.resolution else None,
        }
        if include_history:
            data["stepHistory"] = [s.to_dict() for s in self.step_history]
        return data


@dataclass
class LearnedPattern:
    """A confidence-scored before/after rewrite rule."""
    id: str
    name: str
    matcher: str
    replacement: str
    category: str
    source_layer: int
    confidence: float = 0.8
    success_count: int = 1
    failure_count: int = 0
    last_used_at: float = field(default_factory=time.time)
    created_at: float = field(default_factory=time.time)
    description: str = ""

    @property
    def key(self) -> Tuple[str, str]:
        return (self.category, self.matcher)

    @property
    def usage(self) -> int:
        return self.success_count + self.failure_count

    def to_record(self) -> Dict[str, Any]:
        """Persisted shape understood by every pattern store."""
        return {
            "id": self.id,
            "name": self.name,
            "pattern": self.matcher,
            "replacement": self.replacement,
            "confidence": self.confidence,
            "successCount": self.success_count,
            "failureCount": self.failure_count,
            "lastUsed": self.last_used_at,
            "createdAt": self.created_at,
            "category": self.category,
            "sourceLayer": self.source_layer,
            "description": self.description,
        }

    @classmethod
    def from_record(cls, record: Mapping[str, Any]) -> "LearnedPattern":
        return cls(
            id=str(record["id"]),
            name=str(record.get("name") or record["id"]),
            matcher=str(record["pattern"]),
            replacement=str(record.get("replacement", "")),
            category=str(record.get("category", "unknown")),
            source_layer=int(record.get("sourceLayer", 0)),
            confidence=float(record.get("confidence", 0.8)),
            success_count=int(record.get("successCount", 1)),
            failure_count=int(record.get("failureCount", 0)),
            last_used_at=float(record.get("lastUsed", time.time())),
            created_at=float(record.get("createdAt", time.time())),
            description=str(record.get("description", "")),
        )


@dataclass
class PatternApplication:
    code: str
    applied_rule_names: List[str] = field(default_factory=list)

    @property
    def rule_count(self) -> int:
        return len(self.applied_rule_names)


# ── Analysis issues ──────────────────────────────────────────────────────────
# Each variant names the layer that fixes it; `kind` is the union tag.

@dataclass(frozen=True)
class OutdatedConfigIssue:
    setting: str
    kind: str = "outdated-config"
    fixed_by_layer: int = 1
    severity: Severity = Severity.MEDIUM

    @property
    def description(self) -> str:
        return f"Outdated configuration setting: {self.setting}"


@dataclass(frozen=True)
class HtmlEntityIssue:
    occurrences: int
    kind: str = "html-entity"
    fixed_by_layer: int = 2
    severity: Severity = Severity.LOW

    @property
    def description(self) -> str:
        return f"HTML entity corruption ({self.occurrences} occurrences)"


@dataclass(frozen=True)
class ConsoleLogIssue:
    occurrences: int
    kind: str = "console-log"
    fixed_by_layer: int = 2
    severity: Severity = Severity.LOW

    @property
    def description(self) -> str:
        return f"console.log statements left in code ({self.occurrences})"


@dataclass(frozen=True)
class MissingKeyIssue:
    element_count: int
    kind: str = "missing-key"
    fixed_by_layer: int = 3
    severity: Severity = Severity.MEDIUM

    @property
    def description(self) -> str:
        return f"List items rendered by .map() without key prop ({self.element_count})"


@dataclass(frozen=True)
class UnguardedBrowserApiIssue:
    apis: Tuple[str, ...]
    access_count: int
    kind: str = "unguarded-browser-api"
    fixed_by_layer: int = 4
    severity: Severity = Severity.HIGH

    @property
    def description(self) -> str:
        return f"Browser APIs used without SSR guard: {', '.join(self.apis)} ({self.access_count})"


@dataclass(frozen=True)
class MisplacedUseClientIssue:
    line: int
    kind: str = "misplaced-use-client"
    fixed_by_layer: int = 5
    severity: Severity = Severity.HIGH

    @property
    def description(self) -> str:
        return f"'use client' directive is not the first statement (line {self.line})"


@dataclass(frozen=True)
class UnhandledAsyncIssue:
    function_count: int
    kind: str = "unhandled-async"
    fixed_by_layer: int = 6
    severity: Severity = Severity.MEDIUM

    @property
    def description(self) -> str:
        return f"Async functions awaiting without error handling ({self.function_count})"


DetectedIssue = Union[
    OutdatedConfigIssue,
    HtmlEntityIssue,
    ConsoleLogIssue,
    MissingKeyIssue,
    UnguardedBrowserApiIssue,
    MisplacedUseClientIssue,
    UnhandledAsyncIssue,
]


@dataclass(frozen=True)
class EstimatedImpact:
    level: str                # low | medium | high
    description: str
    estimated_fix_time: str


@dataclass
class AnalysisResult:
    detected_issues: List[DetectedIssue] = field(default_factory=list)
    recommended_layers: List[int] = field(default_factory=list)
    confidence: float = 0.3
    estimated_impact: Optional[EstimatedImpact] = None
    reasoning: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        issues = []
        for issue in self.detected_issues:
            data = asdict(issue)
            data["severity"] = issue.severity.value
            data["description"] = issue.description
            issues.append(data)
        return {
            "detectedIssues": issues,
            "recommendedLayers": list(self.recommended_layers),
            "confidence": self.confidence,
            "estimatedImpact": asdict(self.estimated_impact) if self.estimated_impact else None,
            "reasoning": list(self.reasoning),
        }
