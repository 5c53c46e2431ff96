"""
NeuroLint — Step History
========================
Append-only log of the code after every pipeline step. Entry 0 is always
the original input; a failed or reverted step records the code it left
untouched, so the last entry is always the current code.
"""

import threading
import time
from typing import Any, Dict, Optional, Tuple

from neurolint.models import StepState


class StepHistory:
    def __init__(self, initial_code: str):
        self._lock = threading.Lock()
        self._states = [
            StepState(
                step=0,
                layer_id=None,
                code=initial_code,
                timestamp=time.time(),
                success=True,
                description="Initial state",
            )
        ]

    def record(
        self,
        layer_id: int,
        code: str,
        success: bool,
        execution_time_ms: float = 0.0,
        change_count: int = 0,
        error: Optional[str] = None,
    ) -> StepState:
        with self._lock:
            state = StepState(
                step=len(self._states),
                layer_id=layer_id,
                code=code,
                timestamp=time.time(),
                success=success,
                execution_time_ms=execution_time_ms,
                change_count=change_count,
                error=error,
                description=f"After Layer {layer_id}" if success else f"Layer {layer_id} failed",
            )
            self._states.append(state)
            return state

    @property
    def states(self) -> Tuple[StepState, ...]:
        with self._lock:
            return tuple(self._states)

    @property
    def current_code(self) -> str:
        with self._lock:
            return self._states[-1].code

    def get(self, step: int) -> StepState:
        with self._lock:
            if step < 0 or step >= len(self._states):
                raise IndexError(f"Invalid step: {step}")
            return self._states[step]

    def rollback_to(self, step: int) -> str:
        """Code as it stood after `step`. Nothing is removed from the log."""
        return self.get(step).code

    def __len__(self) -> int:
        with self._lock:
            return len(self._states)

    def summary(self) -> Dict[str, Any]:
        states = self.states
        layer_steps = states[1:]
        return {
            "total_steps": len(layer_steps),
            "successful_steps": sum(1 for s in layer_steps if s.success),
            "failed_steps": sum(1 for s in layer_steps if not s.success),
            "total_changes": sum(s.change_count for s in layer_steps),
            "total_execution_time_ms": sum(s.execution_time_ms for s in layer_steps),
        }
