"""
Unit tests for the append-only step history.
"""
import pytest

from neurolint.orchestrator.step_history import StepHistory


class TestStepHistory:
    def test_initial_state(self):
        history = StepHistory("original")
        assert len(history) == 1
        state = history.get(0)
        assert state.code == "original"
        assert state.layer_id is None
        assert state.description == "Initial state"

    def test_record_appends(self):
        history = StepHistory("v0")
        history.record(1, "v1", True, change_count=1)
        history.record(2, "v1", False, error="syntax error")
        assert len(history) == 3
        assert history.get(1).description == "After Layer 1"
        assert history.get(2).description == "Layer 2 failed"
        assert history.get(2).error == "syntax error"
        assert [s.step for s in history.states] == [0, 1, 2]

    def test_current_code_is_last_entry(self):
        history = StepHistory("v0")
        history.record(1, "v1", True)
        assert history.current_code == "v1"

    def test_rollback_returns_earlier_code_without_truncating(self):
        history = StepHistory("v0")
        history.record(1, "v1", True)
        history.record(2, "v2", True)
        assert history.rollback_to(0) == "v0"
        assert history.rollback_to(1) == "v1"
        assert len(history) == 3

    @pytest.mark.parametrize("step", [-1, 3, 100])
    def test_invalid_step(self, step):
        history = StepHistory("v0")
        history.record(1, "v1", True)
        history.record(2, "v2", True)
        with pytest.raises(IndexError):
            history.rollback_to(step)

    def test_summary(self):
        history = StepHistory("v0")
        history.record(1, "v1", True, execution_time_ms=2.0, change_count=3)
        history.record(2, "v1", False, execution_time_ms=1.0)
        summary = history.summary()
        assert summary["total_steps"] == 2
        assert summary["successful_steps"] == 1
        assert summary["failed_steps"] == 1
        assert summary["total_changes"] == 3
        assert summary["total_execution_time_ms"] == pytest.approx(3.0)

    def test_states_are_immutable_snapshots(self):
        history = StepHistory("v0")
        snapshot = history.states
        history.record(1, "v1", True)
        assert len(snapshot) == 1
        with pytest.raises(AttributeError):
            snapshot[0].code = "changed"
