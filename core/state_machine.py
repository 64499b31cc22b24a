import logging
from pathlib import Path
from typing import Optional, Dict, Any

from . import rollback
from .tweak_state import TweakState, TRANSITIONS
from .time import DEFAULT_TIME_PROVIDER as TIME

logger = logging.getLogger(__name__)

_TERMINAL = {
    TweakState.APPLIED,
    TweakState.FAILED,
    TweakState.ROLLED_BACK,
    TweakState.REVERTED,
    TweakState.RECOVERED,
}


class TweakStateMachine:

    def __init__(self, history_id: int, db_path: Optional[Path] = None):
        self.history_id = history_id
        self.db_path = db_path

    def transition(self, action: str, context: Optional[Dict[str, Any]] = None) -> TweakState:
        conn = rollback.connect(self.db_path)
        cursor = conn.cursor()

        try:
            conn.execute("BEGIN IMMEDIATE")

            cursor.execute("SELECT status FROM tweak_history WHERE id = ?", (self.history_id,))
            row = cursor.fetchone()

            if not row:
                raise AssertionError(f"ORPHANED history_id: {self.history_id}")

            current_state = TweakState(row[0])

            valid_actions = TRANSITIONS.get(current_state, {})
            if action not in valid_actions:
                valid = list(valid_actions.keys())
                raise AssertionError(
                    f"INVALID TRANSITION: {current_state.value} --[{action}]--> ? "
                    f"Valid: {valid}"
                )

            next_state = valid_actions[action]

            cursor.execute("""
                UPDATE tweak_history
                SET status = ?
                WHERE id = ?
            """, (next_state.value, self.history_id))

            if next_state in _TERMINAL:
                cursor.execute("""
                    UPDATE tweak_history
                    SET finished_at = ?
                    WHERE id = ?
                """, (TIME.now(), self.history_id))

            if context and "error_message" in context:
                cursor.execute("""
                    UPDATE tweak_history
                    SET error_message = ?
                    WHERE id = ?
                """, (context["error_message"], self.history_id))

            conn.commit()
            logger.debug(
                "history %s: %s -> %s", self.history_id, current_state.value, next_state.value
            )
            return next_state

        except Exception:
            conn.rollback()
            raise
        finally:
            conn.close()

    def get_current_state(self) -> TweakState:
        entry = rollback.get_history_entry(self.history_id, self.db_path)
        if not entry:
            return TweakState.ORPHANED
        return TweakState(entry["status"])
