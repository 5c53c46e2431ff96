"""
NeuroLint — Configuration
=========================
Runtime settings, read from NEUROLINT_* environment variables by the CLI
and the API server, and the wiring that turns them into an executor.
"""

import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Mapping, Optional

from neurolint.models import DEFAULT_LAYER_TIMEOUT_MS, DEFAULT_TIMEOUT_MS

logger = logging.getLogger(__name__)

LOG_FORMAT = "%(asctime)s [%(name)s] %(levelname)s: %(message)s"
DEFAULT_PATTERN_PATH = Path.home() / ".neurolint" / "learned-patterns.json"


@dataclass(frozen=True)
class NeuroLintSettings:
    backend: str = "local"                  # local | remote
    api_url: str = "http://localhost:8000"
    api_key: Optional[str] = None
    api_timeout_s: float = 30.0
    pattern_store: str = "memory"           # memory | file | http
    pattern_path: Path = DEFAULT_PATTERN_PATH
    max_patterns: int = 1000
    min_confidence: float = 0.7
    timeout_ms: float = DEFAULT_TIMEOUT_MS
    layer_timeout_ms: float = DEFAULT_LAYER_TIMEOUT_MS
    recovery_backoff_s: float = 1.0
    telemetry_dir: Optional[Path] = None
    log_level: str = "INFO"

    def validate(self) -> "NeuroLintSettings":
        if self.backend not in ("local", "remote"):
            raise ValueError(f"backend must be 'local' or 'remote', got {self.backend!r}")
        if self.pattern_store not in ("memory", "file", "http"):
            raise ValueError(f"pattern_store must be memory, file or http, got {self.pattern_store!r}")
        if self.max_patterns <= 0:
            raise ValueError(f"max_patterns must be positive, got {self.max_patterns}")
        if not 0.0 <= self.min_confidence <= 1.0:
            raise ValueError(f"min_confidence must be in [0, 1], got {self.min_confidence}")
        if self.timeout_ms <= 0 or self.layer_timeout_ms <= 0:
            raise ValueError("timeouts must be positive")
        if self.recovery_backoff_s < 0:
            raise ValueError(f"recovery_backoff_s must be >= 0, got {self.recovery_backoff_s}")
        if self.api_timeout_s <= 0:
            raise ValueError(f"api_timeout_s must be positive, got {self.api_timeout_s}")
        return self

    @classmethod
    def from_env(cls, env: Optional[Mapping[str, str]] = None) -> "NeuroLintSettings":
        env = os.environ if env is None else env
        telemetry_dir = env.get("NEUROLINT_TELEMETRY_DIR")
        return cls(
            backend=env.get("NEUROLINT_BACKEND", "local"),
            api_url=env.get("NEUROLINT_API_URL", "http://localhost:8000"),
            api_key=env.get("NEUROLINT_API_KEY") or None,
            api_timeout_s=float(env.get("NEUROLINT_API_TIMEOUT_S", "30")),
            pattern_store=env.get("NEUROLINT_PATTERN_STORE", "memory"),
            pattern_path=Path(env.get("NEUROLINT_PATTERN_PATH", str(DEFAULT_PATTERN_PATH))),
            max_patterns=int(env.get("NEUROLINT_MAX_PATTERNS", "1000")),
            min_confidence=float(env.get("NEUROLINT_MIN_CONFIDENCE", "0.7")),
            timeout_ms=float(env.get("NEUROLINT_TIMEOUT_MS", str(DEFAULT_TIMEOUT_MS))),
            layer_timeout_ms=float(env.get("NEUROLINT_LAYER_TIMEOUT_MS", str(DEFAULT_LAYER_TIMEOUT_MS))),
            recovery_backoff_s=float(env.get("NEUROLINT_RECOVERY_BACKOFF_S", "1.0")),
            telemetry_dir=Path(telemetry_dir) if telemetry_dir else None,
            log_level=env.get("NEUROLINT_LOG_LEVEL", "INFO").upper(),
        ).validate()


def configure_logging(settings: NeuroLintSettings) -> None:
    logging.basicConfig(
        level=getattr(logging, settings.log_level, logging.INFO),
        format=LOG_FORMAT,
        datefmt="%H:%M:%S",
    )


def build_executor(settings: Optional[NeuroLintSettings] = None):
    """Wire stores, learner, backend and telemetry into a TransformationExecutor."""
    from neurolint.agents.pattern_learner import PatternLearner
    from neurolint.clients.remote_backend import RemoteLayerBackend
    from neurolint.layers.base import LocalLayerBackend
    from neurolint.orchestrator.executor import TransformationExecutor
    from neurolint.storage.pattern_store import (
        HttpPatternStore,
        InMemoryPatternStore,
        JsonFilePatternStore,
    )
    from neurolint.storage.repository import PatternRepository
    from neurolint.telemetry.collector import TelemetryCollector

    settings = (settings or NeuroLintSettings()).validate()

    if settings.pattern_store == "file":
        store = JsonFilePatternStore(settings.pattern_path)
    elif settings.pattern_store == "http":
        store = HttpPatternStore(settings.api_url, api_key=settings.api_key, timeout_s=settings.api_timeout_s)
    else:
        store = InMemoryPatternStore()

    learner = PatternLearner(
        repository=PatternRepository(store),
        min_confidence=settings.min_confidence,
        max_patterns=settings.max_patterns,
    )
    local = LocalLayerBackend(learner=learner)
    if settings.backend == "remote":
        backend = RemoteLayerBackend(
            base_url=settings.api_url,
            api_key=settings.api_key,
            timeout_s=settings.api_timeout_s,
            fallback=local,
        )
    else:
        backend = local

    logger.info(f"[Config] backend={settings.backend} pattern_store={settings.pattern_store}")
    return TransformationExecutor(
        backend=backend,
        learner=learner,
        telemetry=TelemetryCollector(settings.telemetry_dir),
        settings=settings,
    )
