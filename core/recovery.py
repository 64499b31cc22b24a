import logging
from pathlib import Path
from typing import Any, Dict, List, Optional

from . import rollback
from .actions.base import ActionSnapshot
from .catalog import TweakCatalog
from .errors import RollbackFailure
from .snapshot import SnapshotStore, TweakSnapshot
from .state_machine import TweakStateMachine
from .tweak_state import IN_FLIGHT
from .time import DEFAULT_TIME_PROVIDER as TIME

logger = logging.getLogger(__name__)


class RecoveryManager:
    """
    Strict recovery scanner and executor.

    Policy:
    - An interrupted operation is undone by restoring captured state
    - Any restore failure is fatal and surfaces as RollbackFailure
    """

    def __init__(self, store: SnapshotStore, db_path: Optional[Path] = None):
        self.store = store
        self.db_path = db_path

    def scan_for_issues(self) -> List[Dict[str, Any]]:
        issues: List[Dict[str, Any]] = []
        entries = rollback.get_entries_with_status(
            [s.value for s in IN_FLIGHT], self.db_path
        )
        for entry in entries:
            issues.append({
                "type": f"stuck_{entry['status']}",
                "history_id": entry["id"],
                "tweak_id": entry["tweak_id"],
                "operation": entry["operation"],
                "started_at": entry["started_at"],
                "pre_state": entry["pre_state"],
            })
        return issues

    def recover_all(self) -> Dict[str, int]:
        issues = self.scan_for_issues()

        results = {
            "issues_found": len(issues),
            "recovered": 0,
        }

        for issue in issues:
            sm = TweakStateMachine(issue["history_id"], self.db_path)

            if issue["type"] == "stuck_pending":
                sm.transition(
                    "recover",
                    {"error_message": "Recovered from pending state (no execution)"},
                )
                results["recovered"] += 1
                continue

            try:
                self._restore(issue)
            except RollbackFailure as e:
                sm.transition("fail", {"error_message": f"Recovery failed: {e}"})
                raise RollbackFailure(
                    f"Critical recovery failure for {issue['tweak_id']}: {e}",
                    failures=e.failures,
                ) from e

            sm.transition(
                "recover",
                {"error_message": f"Recovered from interrupted {issue['operation']} (rollback executed)"},
            )
            results["recovered"] += 1

        return results

    def _restore(self, issue: Dict[str, Any]) -> None:
        tweak_id = issue["tweak_id"]

        if issue["pre_state"] is not None:
            # Interrupted switch: return to the state before the switch began.
            pre_switch = TweakSnapshot(
                tweak_id=tweak_id,
                applied_option_index=-1,
                applied_option_label="",
                created_at=TIME.now(),
                os_version=0,
                resources=[ActionSnapshot.from_dict(r) for r in issue["pre_state"]],
            )
            self.store.restore(pre_switch)
            logger.warning("%s: interrupted switch undone", tweak_id)
            return

        snapshot = self.store.load(tweak_id)
        if snapshot is None:
            logger.warning("%s: interrupted %s left no snapshot", tweak_id, issue["operation"])
            return
        self.store.restore(snapshot)
        self.store.delete(tweak_id)
        logger.warning("%s: interrupted %s undone", tweak_id, issue["operation"])

    def run_startup(self, catalog: TweakCatalog, os_version: int) -> Dict[str, int]:
        results = self.recover_all()
        results["stale_removed"] = self.store.validate_all(catalog, os_version)
        return results
