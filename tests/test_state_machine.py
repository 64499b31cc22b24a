import pytest

from core import rollback
from core.state_machine import TweakStateMachine
from core.tweak_state import TweakState, can_transition


@pytest.fixture
def history_id(db_path):
    rollback.init_db(db_path)
    return rollback.create_history_entry("t.flag", "apply", 0, db_path=db_path)


class TestTweakStateEnum:

    def test_valid_transitions(self):
        assert can_transition(TweakState.PENDING, "apply")
        assert can_transition(TweakState.APPLYING, "rollback")
        assert can_transition(TweakState.REVERTING, "recover")

    def test_invalid_transitions(self):
        assert not can_transition(TweakState.PENDING, "success")
        assert not can_transition(TweakState.REVERTING, "rollback")

    def test_terminal_states_have_no_exit(self):
        for state in (TweakState.APPLIED, TweakState.REVERTED, TweakState.FAILED):
            assert not can_transition(state, "apply")


class TestStateMachineExecution:

    def test_simple_flow_success(self, db_path, history_id):
        sm = TweakStateMachine(history_id, db_path)

        assert sm.transition("apply") is TweakState.APPLYING
        assert sm.transition("success") is TweakState.APPLIED

        entry = rollback.get_history_entry(history_id, db_path)
        assert entry["status"] == "applied"
        assert entry["finished_at"] is not None

    def test_error_message_recorded(self, db_path, history_id):
        sm = TweakStateMachine(history_id, db_path)
        sm.transition("apply")
        sm.transition("rollback", {"error_message": "write denied"})

        entry = rollback.get_history_entry(history_id, db_path)
        assert entry["status"] == "rolled_back"
        assert entry["error_message"] == "write denied"

    def test_illegal_transition_raises(self, db_path, history_id):
        sm = TweakStateMachine(history_id, db_path)
        with pytest.raises(AssertionError):
            sm.transition("success")
        assert sm.get_current_state() is TweakState.PENDING

    def test_unknown_history_id(self, db_path, history_id):
        sm = TweakStateMachine(history_id + 100, db_path)
        with pytest.raises(AssertionError):
            sm.transition("apply")
        assert sm.get_current_state() is TweakState.ORPHANED
