"""
NeuroLint — Transformation Executor
===================================
Coordinates the full layer pipeline:

1. Resolve requested layers into a dependency-closed, ordered set
2. For each layer, in order:
   a. Running    : call the layer backend in a worker thread (per-layer timeout)
   b. Validating : SafetyValidator judges the before/after pair
   c. Committed  : keep the new code, feed the diff to the PatternLearner
      RolledBack : keep the previous code, record why
3. Stop early on the overall deadline (TimedOut) or cancellation (Cancelled)
4. Aggregate a TransformationResult from the step history

A failing layer is never fatal; only invalid input raises.
"""

import asyncio
import logging
import threading
import time
import uuid
from collections import abc, deque
from concurrent.futures import ThreadPoolExecutor
from dataclasses import replace
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional, Union

from neurolint.agents.analyzer import CodeAnalyzer
from neurolint.agents.error_classifier import ErrorClassifier
from neurolint.agents.pattern_learner import PatternLearner
from neurolint.agents.safety_validator import SafetyValidator
from neurolint.config import NeuroLintSettings
from neurolint.errors import (
    ASTParsingError,
    InvalidLayerError,
    InvalidOptionsError,
    LayerBackendError,
    LayerTimeoutError,
    PatternApplicationError,
    PipelineTimeoutError,
)
from neurolint.layers.base import LayerBackend, LocalLayerBackend, count_changes
from neurolint.layers.dependencies import LAYER_CATALOG, DependencyResolver
from neurolint.models import (
    AnalysisResult,
    ExecutionOptions,
    ExecutionRequest,
    FailureKind,
    LayerExecution,
    LearnedPattern,
    LayerOutcome,
    LayerResolution,
    PipelineState,
    TransformationResult,
)
from neurolint.orchestrator.step_history import StepHistory
from neurolint.telemetry.collector import TelemetryCollector

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[LayerOutcome], None]
OptionsLike = Union[ExecutionOptions, Mapping[str, Any], None]


def failure_kind_for(error: BaseException) -> FailureKind:
    if isinstance(error, PipelineTimeoutError):
        return FailureKind.PIPELINE_TIMEOUT
    if isinstance(error, LayerTimeoutError):
        return FailureKind.LAYER_TIMEOUT
    if isinstance(error, ASTParsingError):
        return FailureKind.AST_PARSING_ERROR
    if isinstance(error, PatternApplicationError):
        return FailureKind.PATTERN_APPLICATION_ERROR
    return FailureKind.LAYER_BACKEND_FAILURE


class TransformationExecutor:
    """
    Main NeuroLint orchestrator. One instance may serve concurrent
    transform() calls; each call owns its own history and outcomes.
    """

    def __init__(
        self,
        backend: Optional[LayerBackend] = None,
        validator: Optional[SafetyValidator] = None,
        learner: Optional[PatternLearner] = None,
        classifier: Optional[ErrorClassifier] = None,
        telemetry: Optional[TelemetryCollector] = None,
        resolver: Optional[DependencyResolver] = None,
        analyzer: Optional[CodeAnalyzer] = None,
        settings: Optional[NeuroLintSettings] = None,
        workers: int = 4,
    ):
        self.settings = (settings or NeuroLintSettings()).validate()
        self.learner = learner or PatternLearner(
            min_confidence=self.settings.min_confidence,
            max_patterns=self.settings.max_patterns,
        )
        self.backend = backend or LocalLayerBackend(learner=self.learner)
        self.validator = validator or SafetyValidator()
        self.classifier = classifier or ErrorClassifier(
            validator=self.validator,
            backoff_base_s=self.settings.recovery_backoff_s,
        )
        self.telemetry = telemetry or TelemetryCollector()
        self.resolver = resolver or DependencyResolver()
        self.analyzer = analyzer or CodeAnalyzer()

        # Owned pool: an abandoned (timed out) layer call never blocks a result.
        self._pool = ThreadPoolExecutor(max_workers=workers, thread_name_prefix="neurolint-layer")
        self._recent = deque(maxlen=20)
        self._stats_lock = threading.Lock()
        self._runs = 0
        self._active: Dict[str, PipelineState] = {}

    # ── Public surface ────────────────────────────────────────────────────

    def transform(
        self,
        code: str,
        layers: Iterable[int],
        options: OptionsLike = None,
        progress: Optional[ProgressCallback] = None,
        cancel_event: Optional[threading.Event] = None,
    ) -> TransformationResult:
        """
        Run the requested layers over code synchronously.

        Args:
            code: JS/TS/JSX source
            layers: requested layer ids (dependencies are added)
            options: ExecutionOptions or a camelCase/snake_case mapping
            progress: called once per committed or reverted layer
            cancel_event: set from another thread to stop before the next layer

        Returns:
            TransformationResult; never raises for layer failures
        """
        request, resolution = self._prepare(code, layers, options)
        return asyncio.run(self._run(request, resolution, progress, cancel_event))

    async def transform_async(
        self,
        code: str,
        layers: Iterable[int],
        options: OptionsLike = None,
        progress: Optional[ProgressCallback] = None,
        cancel_event: Optional[threading.Event] = None,
    ) -> TransformationResult:
        request, resolution = self._prepare(code, layers, options)
        return await self._run(request, resolution, progress, cancel_event)

    def analyze(self, code: str) -> AnalysisResult:
        return self.analyzer.analyze(code)

    def resolve_layers(self, requested: Iterable[int]) -> LayerResolution:
        return self.resolver.resolve(requested)

    def default_options(self) -> ExecutionOptions:
        return ExecutionOptions(
            timeout_ms=self.settings.timeout_ms,
            layer_timeout_ms=self.settings.layer_timeout_ms,
        )

    def get_status(self) -> Dict[str, Any]:
        with self._stats_lock:
            runs = self._runs
            recent = list(self._recent)
            active = {sid: state.value for sid, state in self._active.items()}
        return {
            "status": "ready",
            "backend": type(self.backend).__name__,
            "transformations": runs,
            "recent": recent,
            "active": active,
            "patterns": self.learner.statistics(),
            "errors": self.classifier.statistics(),
            "validation": self.validator.get_stats(),
            "events": self.telemetry.summary(),
        }

    def close(self) -> None:
        self._pool.shutdown(wait=False)

    def __enter__(self) -> "TransformationExecutor":
        return self

    def __exit__(self, *exc) -> None:
        self.close()

    # ── Pipeline ──────────────────────────────────────────────────────────

    def _prepare(self, code: str, layers: Iterable[int], options: OptionsLike):
        if not isinstance(code, str):
            raise TypeError(f"code must be a str, got {type(code).__name__}")
        if isinstance(layers, (str, bytes)) or not isinstance(layers, abc.Iterable):
            raise InvalidLayerError([layers])
        layer_ids = tuple(layers)
        resolution = self.resolver.resolve(layer_ids)
        opts = self._coerce_options(options)
        request = ExecutionRequest(source_code=code, requested_layers=layer_ids, options=opts)
        return request, resolution

    def _coerce_options(self, options: OptionsLike) -> ExecutionOptions:
        if options is None:
            return self.default_options()
        if isinstance(options, ExecutionOptions):
            return options.validate()
        if isinstance(options, Mapping):
            return replace(self.default_options(), **ExecutionOptions.normalize_keys(options)).validate()
        raise InvalidOptionsError(
            f"options must be ExecutionOptions or a mapping, got {type(options).__name__}"
        )

    async def _run(
        self,
        request: ExecutionRequest,
        resolution: LayerResolution,
        progress: Optional[ProgressCallback],
        cancel_event: Optional[threading.Event],
    ) -> TransformationResult:
        session_id = uuid.uuid4().hex[:12]
        self._set_state(session_id, PipelineState.IDLE)
        options = request.options
        started = time.monotonic()
        deadline = started + options.timeout_ms / 1000
        history = StepHistory(request.source_code)
        outcomes = []
        learned_ids: List[str] = []
        current = request.source_code
        final_state = PipelineState.COMPLETED

        logger.info(f"[Executor] Session {session_id}: layers {list(resolution.corrected_layers)}")
        for warning in resolution.warnings:
            logger.info(f"[Executor] {warning}")
        self.telemetry.emit(
            "transformation_started", session_id,
            layers=list(resolution.corrected_layers), auto_added=list(resolution.auto_added),
            dry_run=options.dry_run,
        )

        try:
            for layer_id in resolution.corrected_layers:
                if cancel_event is not None and cancel_event.is_set():
                    final_state = PipelineState.CANCELLED
                    logger.warning(f"[Executor] Session {session_id}: cancelled before layer {layer_id}")
                    break
                if time.monotonic() >= deadline:
                    final_state = PipelineState.TIMED_OUT
                    logger.warning(f"[Executor] Session {session_id}: deadline reached before layer {layer_id}")
                    break

                outcome = await self._execute_layer(session_id, layer_id, current, options, deadline, learned_ids)
                if outcome.success:
                    current = outcome.code
                history.record(
                    layer_id,
                    current,
                    outcome.success,
                    execution_time_ms=outcome.execution_time_ms,
                    change_count=outcome.change_count,
                    error=outcome.revert_reason or outcome.error,
                )
                outcomes.append(outcome)
                self._report(session_id, outcome, progress)

                if outcome.failure_kind == FailureKind.PIPELINE_TIMEOUT:
                    final_state = PipelineState.TIMED_OUT
                    break
        except asyncio.CancelledError:
            final_state = PipelineState.CANCELLED
            logger.warning(f"[Executor] Session {session_id}: cancelled")

        total_ms = (time.monotonic() - started) * 1000
        result = TransformationResult(
            original_code=request.source_code,
            final_code=history.current_code,
            outcomes=outcomes,
            successful_layers=sum(1 for o in outcomes if o.success and o.change_count > 0),
            total_execution_time_ms=total_ms,
            step_history=history.states,
            resolution=resolution,
            final_state=final_state,
            session_id=session_id,
        )
        self._finish(result)
        return result

    async def _execute_layer(
        self,
        session_id: str,
        layer_id: int,
        code: str,
        options: ExecutionOptions,
        deadline: float,
        learned_ids: List[str],
    ) -> LayerOutcome:
        spec = LAYER_CATALOG[layer_id]
        log = logger.info if options.verbose else logger.debug
        t_start = time.monotonic()
        self.telemetry.emit("layer_started", session_id, layer_id, layer_name=spec.name)
        log(f"[Executor] Layer {layer_id} ({spec.name}): running")

        # ── Running ───────────────────────────────────────────────────────
        self._set_state(session_id, PipelineState.RUNNING)
        layer_input = code
        attempts = 0
        while True:
            try:
                execution = await self._call_backend(layer_id, layer_input, options, deadline, learned_ids)
                if not execution.success:
                    raise LayerBackendError(layer_id, execution.error or "layer reported failure")
                break
            except asyncio.CancelledError:
                raise
            except Exception as e:
                record = self.classifier.classify(e, layer_id)
                kind = failure_kind_for(e)
                self.telemetry.emit(
                    "error_classified", session_id, layer_id,
                    category=record.category.value, severity=record.severity.value, message=record.message,
                )
                logger.warning(f"[Executor] Layer {layer_id} failed ({record.category.value}): {record.message}")

                recovered = None
                if options.enable_recovery and record.automated and kind != FailureKind.PIPELINE_TIMEOUT:
                    recovered = await self._recover(e, layer_id, layer_input, attempts + 1, deadline)
                if recovered is not None:
                    attempts += 1
                    layer_input = recovered
                    continue
                self._set_state(session_id, PipelineState.ROLLED_BACK)
                return LayerOutcome(
                    layer_id=layer_id,
                    layer_name=spec.name,
                    success=False,
                    code=code,
                    execution_time_ms=(time.monotonic() - t_start) * 1000,
                    error=record.message,
                    failure_kind=kind,
                    error_record=record,
                    recovery_attempts=attempts,
                )

        # ── Validating ────────────────────────────────────────────────────
        self._set_state(session_id, PipelineState.VALIDATING)
        after = execution.transformed_code if execution.transformed_code is not None else layer_input
        verdict = self.validator.check(code, after, layer_id)
        elapsed_ms = (time.monotonic() - t_start) * 1000

        if verdict.should_revert:
            self._set_state(session_id, PipelineState.ROLLED_BACK)
            self.telemetry.emit(
                "validation_reverted", session_id, layer_id,
                reason=verdict.reason, failure_kind=verdict.failure_kind.value if verdict.failure_kind else None,
            )
            return LayerOutcome(
                layer_id=layer_id,
                layer_name=spec.name,
                success=False,
                code=code,
                execution_time_ms=elapsed_ms,
                revert_reason=verdict.reason,
                failure_kind=verdict.failure_kind,
                verdict=verdict,
                recovery_attempts=attempts,
            )

        # ── Committed ─────────────────────────────────────────────────────
        self._set_state(session_id, PipelineState.COMMITTED)
        change_count = count_changes(code, after)
        if change_count > 0 and options.enable_learning and not options.dry_run:
            pattern = self._learn(session_id, code, after, layer_id)
            if pattern is not None:
                learned_ids.append(pattern.id)

        detail = f" ({execution.description})" if execution.description else ""
        log(f"[Executor] Layer {layer_id} committed{detail}: {change_count} change(s) in {elapsed_ms:.1f}ms")
        return LayerOutcome(
            layer_id=layer_id,
            layer_name=spec.name,
            success=True,
            code=after,
            execution_time_ms=elapsed_ms,
            change_count=change_count,
            improvements=list(execution.improvements),
            verdict=verdict,
            recovery_attempts=attempts,
        )

    async def _call_backend(
        self,
        layer_id: int,
        code: str,
        options: ExecutionOptions,
        deadline: float,
        learned_ids: List[str],
    ) -> LayerExecution:
        remaining_ms = (deadline - time.monotonic()) * 1000
        timeout_ms = min(options.layer_timeout_ms, remaining_ms)
        if timeout_ms <= 0:
            raise PipelineTimeoutError(layer_id, max(remaining_ms, 0.0))

        loop = asyncio.get_running_loop()
        payload = options.to_dict()
        if learned_ids:
            payload["skipPatterns"] = list(learned_ids)
        future = loop.run_in_executor(self._pool, self.backend.execute, layer_id, code, payload)
        try:
            return await asyncio.wait_for(future, timeout=timeout_ms / 1000)
        except asyncio.TimeoutError:
            if timeout_ms < options.layer_timeout_ms:
                raise PipelineTimeoutError(layer_id, timeout_ms) from None
            raise LayerTimeoutError(layer_id, timeout_ms) from None

    async def _recover(
        self,
        error: BaseException,
        layer_id: int,
        code: str,
        attempt: int,
        deadline: float,
    ) -> Optional[str]:
        if attempt > self.classifier.max_attempts:
            return None
        delay = self.classifier.backoff_delay(attempt)
        if time.monotonic() + delay >= deadline:
            logger.info(f"[Executor] Layer {layer_id}: no time left for recovery attempt {attempt}")
            return None
        await asyncio.sleep(delay)
        outcome = self.classifier.attempt_recovery(error, layer_id, code, attempt)
        if not outcome.success:
            logger.info(f"[Executor] Layer {layer_id}: recovery attempt {attempt} failed: {outcome.message}")
            return None
        return outcome.recovered_code

    def _learn(self, session_id: str, before: str, after: str, layer_id: int) -> Optional[LearnedPattern]:
        try:
            pattern = self.learner.learn(before, after, layer_id)
        except Exception as e:
            logger.warning(f"[Executor] Pattern learning failed for layer {layer_id}: {e}")
            return None
        if pattern is not None:
            self.telemetry.emit(
                "pattern_learned", session_id, layer_id,
                pattern=pattern.name, confidence=pattern.confidence,
            )
        return pattern

    def _set_state(self, session_id: str, state: PipelineState) -> None:
        with self._stats_lock:
            self._active[session_id] = state
        logger.debug(f"[Executor] Session {session_id}: {state.value}")

    def _report(self, session_id: str, outcome: LayerOutcome, progress: Optional[ProgressCallback]) -> None:
        self.telemetry.emit(
            "layer_completed", session_id, outcome.layer_id,
            success=outcome.success,
            change_count=outcome.change_count,
            execution_time_ms=round(outcome.execution_time_ms, 3),
            state=outcome.state.value,
            revert_reason=outcome.revert_reason,
            error=outcome.error,
        )
        if progress is None:
            return
        try:
            progress(outcome)
        except Exception as e:
            logger.warning(f"[Executor] Progress callback raised: {e}")

    def _finish(self, result: TransformationResult) -> None:
        self.telemetry.emit(
            "transformation_completed", result.session_id,
            final_state=result.final_state.value,
            successful_layers=result.successful_layers,
            total_execution_time_ms=round(result.total_execution_time_ms, 3),
        )
        with self._stats_lock:
            self._active.pop(result.session_id, None)
            self._runs += 1
            self._recent.append({
                "session_id": result.session_id,
                "final_state": result.final_state.value,
                "layers": [o.layer_id for o in result.outcomes],
                "successful_layers": result.successful_layers,
                "total_execution_time_ms": round(result.total_execution_time_ms, 3),
            })
        logger.info(
            f"[Executor] Session {result.session_id} {result.final_state.value}: "
            f"{result.successful_layers} layer(s) changed code in {result.total_execution_time_ms:.1f}ms"
        )
