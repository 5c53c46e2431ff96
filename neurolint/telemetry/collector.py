"""
NeuroLint — Telemetry Collector
===============================
Observability sink for the executor. Events are kept in memory and, when
an output directory is configured, appended to a JSONL file.

Event names:
  transformation_started, transformation_completed,
  layer_started, layer_completed, validation_reverted,
  pattern_learned, error_classified
"""

import json
import logging
import threading
import time
from collections import Counter
from pathlib import Path
from typing import Any, Dict, List, Optional

logger = logging.getLogger(__name__)


class TelemetryCollector:
    """
    Collects structured events from all NeuroLint components.
    """

    def __init__(self, output_dir: Optional[Path] = None, max_events: int = 10_000):
        self.output_dir = Path(output_dir) if output_dir is not None else None
        self.max_events = max_events
        self._events: List[Dict[str, Any]] = []
        self._lock = threading.Lock()
        self._log_file: Optional[Path] = None
        if self.output_dir is not None:
            self.output_dir.mkdir(parents=True, exist_ok=True)
            self._log_file = self.output_dir / "telemetry.jsonl"

    def emit(
        self,
        event: str,
        session_id: Optional[str] = None,
        layer_id: Optional[int] = None,
        **fields: Any,
    ) -> Dict[str, Any]:
        """Record a single telemetry event."""
        record = {
            "timestamp": time.time(),
            "event": event,
            "session_id": session_id,
            "layer_id": layer_id,
            **fields,
        }
        with self._lock:
            self._events.append(record)
            if len(self._events) > self.max_events:
                del self._events[: len(self._events) - self.max_events]
            if self._log_file is not None:
                try:
                    with open(self._log_file, "a") as f:
                        f.write(json.dumps(record, default=str) + "\n")
                except OSError as e:
                    logger.warning(f"[Telemetry] Could not write {self._log_file}: {e}")
        return record

    def get_all_events(self) -> List[Dict[str, Any]]:
        with self._lock:
            return self._events.copy()

    def events_for(self, session_id: str) -> List[Dict[str, Any]]:
        return [e for e in self.get_all_events() if e.get("session_id") == session_id]

    def summary(self) -> Dict[str, int]:
        return dict(Counter(e["event"] for e in self.get_all_events()))

    def load_from_disk(self) -> List[Dict[str, Any]]:
        """Load all telemetry events from the JSONL file."""
        events = []
        if self._log_file is not None and self._log_file.exists():
            with open(self._log_file) as f:
                for line in f:
                    line = line.strip()
                    if line:
                        try:
                            events.append(json.loads(line))
                        except json.JSONDecodeError:
                            logger.debug(f"[Telemetry] Skipping corrupt line in {self._log_file}")
        return events
