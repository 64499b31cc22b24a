import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable, Dict, Iterable, List, Optional

from . import rollback
from .actions.factory import create_action
from .adapters import Adapters
from .catalog import TweakCatalog
from .changes import Change, Phase
from .detector import StateDetector
from .errors import (
    ElevationRequiredError,
    NothingToRevertError,
    RollbackFailure,
    RuntimeFailure,
    TweakError,
)
from .executor import Executor, FailurePolicy, StepFailed
from .locks import TweakLockRegistry
from .snapshot import SnapshotStore, TweakSnapshot
from .state_machine import TweakStateMachine
from .tweak_state import TweakState
from .tweak import PrivilegeLevel, TweakDefinition, TweakOption
from .validation import TweakValidator

logger = logging.getLogger(__name__)


def _hook(event: str, ctx: Dict[str, Any]) -> None:
    pass


@dataclass
class ApplyOutcome:
    tweak_id: str
    option_index: int
    option_label: str
    requires_reboot: bool = False
    warnings: List[str] = field(default_factory=list)
    first_apply: bool = False
    already_applied: bool = False


@dataclass
class RevertOutcome:
    tweak_id: str
    reverted_option_label: str
    restored_resources: int = 0
    requires_reboot: bool = False
    warnings: List[str] = field(default_factory=list)


def _as_tweak_error(error: BaseException) -> TweakError:
    if isinstance(error, TweakError):
        return error
    wrapped = RuntimeFailure(str(error))
    wrapped.__cause__ = error
    return wrapped


class TweakManager:
    """
    Applies, switches and reverts tweaks.

    Execution order is fixed: capture, pre commands, registry, services,
    scheduled tasks, post commands. Registry, services and tasks form the
    atomic block: a failure there restores the captured state before the
    error reaches the caller.
    """

    def __init__(
        self,
        adapters: Adapters,
        catalog: TweakCatalog,
        os_version: int,
        privilege: PrivilegeLevel = PrivilegeLevel.ADMIN,
        db_path: Optional[Path] = None,
        store: Optional[SnapshotStore] = None,
        detector: Optional[StateDetector] = None,
        locks: Optional[TweakLockRegistry] = None,
    ):
        self.adapters = adapters
        self.catalog = catalog
        self.os_version = os_version
        self.privilege = privilege
        self.db_path = db_path
        self.store = store or SnapshotStore(adapters, db_path)
        self.detector = detector or StateDetector(adapters.registry, adapters.services)
        self.locks = locks or TweakLockRegistry()
        self.validator = TweakValidator()

    def check_privilege(self, tweak: TweakDefinition) -> None:
        if not self.privilege.satisfies(tweak.privilege):
            raise ElevationRequiredError(
                f"'{tweak.id}' requires {tweak.privilege.name} privileges "
                f"(running as {self.privilege.name})",
                required=tweak.privilege,
                held=self.privilege,
            )

    def apply_option(self, tweak: TweakDefinition, option_index: int) -> ApplyOutcome:
        ctx: Dict[str, Any] = {
            "command": "apply",
            "tweak_id": tweak.id,
            "option_index": option_index,
        }

        try:
            self.validator.validate_definition(tweak)
            option = tweak.option(option_index)
            self.check_privilege(tweak)

            with self.locks.hold(tweak.id):
                outcome = self._apply_locked(tweak, option_index, option, ctx)

            ctx["result"] = "noop" if outcome.already_applied else "success"
            return outcome

        except Exception as e:
            ctx["result"] = "failure"
            ctx["error"] = e
            raise
        finally:
            _hook("apply", dict(ctx))

    def _apply_locked(
        self,
        tweak: TweakDefinition,
        option_index: int,
        option: TweakOption,
        ctx: Dict[str, Any],
    ) -> ApplyOutcome:
        if self.detector.detect(tweak, self.os_version) == option_index:
            logger.info("%s already at '%s'", tweak.id, option.label)
            return ApplyOutcome(
                tweak_id=tweak.id,
                option_index=option_index,
                option_label=option.label,
                already_applied=True,
            )

        first_apply = not self.store.exists(tweak.id)
        restore_target = self.store.capture(tweak, self.os_version, option_index)
        if first_apply:
            self.store.persist(restore_target)
            pre_state = None
        else:
            # Switching options: the original snapshot stays untouched and the
            # pre-switch capture lives only in the journal.
            pre_state = [r.to_dict() for r in restore_target.resources]

        history_id = rollback.create_history_entry(
            tweak.id, "apply", option_index, pre_state, self.db_path
        )
        ctx["history_id"] = history_id
        sm = TweakStateMachine(history_id, self.db_path)
        sm.transition("apply")

        try:
            return self._execute_option(
                tweak, option_index, option, restore_target, first_apply, sm
            )
        except Exception as e:
            # StepFailed paths journal their own outcome.
            if sm.get_current_state() is TweakState.APPLYING:
                error = _as_tweak_error(e)
                logger.error("%s: unexpected failure, rolling back: %s", tweak.id, e)
                self._roll_back(tweak, restore_target, first_apply, sm, error)
            raise

    def _execute_option(
        self,
        tweak: TweakDefinition,
        option_index: int,
        option: TweakOption,
        restore_target: TweakSnapshot,
        first_apply: bool,
        sm: TweakStateMachine,
    ) -> ApplyOutcome:
        warnings: List[str] = []
        if option.deletes_tasks:
            warnings.append(
                f"Option '{option.label}' deletes scheduled tasks; "
                "deleted tasks cannot be restored by revert"
            )

        try:
            warnings += self._run_phase(
                option.commands(Phase.PRE), tweak, lambda c: FailurePolicy.ABORT
            )
        except StepFailed as failed:
            error = _as_tweak_error(failed.error)
            logger.error("%s: pre command failed, nothing changed: %s", tweak.id, error)
            if first_apply:
                self.store.delete(tweak.id)
            sm.transition("fail", {"error_message": str(error)})
            raise error

        block: List[Change] = []
        block += [c for c in option.registry_changes if c.applies_to(self.os_version)]
        block += option.service_changes
        block += option.scheduler_changes

        try:
            warnings += self._run_phase(block, tweak, self._block_policy)
        except StepFailed as failed:
            error = _as_tweak_error(failed.error)
            logger.error("%s: %s; rolling back", tweak.id, failed)
            self._roll_back(tweak, restore_target, first_apply, sm, error)
            raise error

        warnings += self._run_phase(
            option.commands(Phase.POST), tweak, lambda c: FailurePolicy.WARN
        )

        if not first_apply:
            self.store.update_applied_option(tweak.id, option_index, option.label)
        sm.transition("success")

        logger.info("%s applied '%s'", tweak.id, option.label)
        return ApplyOutcome(
            tweak_id=tweak.id,
            option_index=option_index,
            option_label=option.label,
            requires_reboot=tweak.requires_reboot,
            warnings=warnings,
            first_apply=first_apply,
        )

    @staticmethod
    def _block_policy(change: Change) -> FailurePolicy:
        if getattr(change, "exclude_from_validation", False):
            return FailurePolicy.WARN
        return FailurePolicy.ROLLBACK

    def _run_phase(
        self,
        changes: Iterable[Change],
        tweak: TweakDefinition,
        policy_for: Callable[[Change], FailurePolicy],
    ) -> List[str]:
        class ApplyStep:
            def __init__(self, action, policy):
                self.action = action
                self.policy = policy
                self.description = action.get_description()

            def execute(self):
                return self.action.apply()

        steps = [
            ApplyStep(create_action(c, self.adapters, tweak.privilege), policy_for(c))
            for c in changes
        ]

        executor = Executor()
        return executor.run_steps(steps)

    def _roll_back(
        self,
        tweak: TweakDefinition,
        restore_target: TweakSnapshot,
        first_apply: bool,
        sm: TweakStateMachine,
        error: TweakError,
    ) -> None:
        try:
            self.store.restore(restore_target)
        except RollbackFailure as rb_err:
            logger.critical("%s: rollback failed: %s", tweak.id, rb_err.failures)
            sm.transition("fail", {"error_message": f"Apply: {error} | Rollback: {rb_err}"})
            raise RollbackFailure(
                f"'{tweak.id}' failed ({error}) and could not be rolled back",
                failures=rb_err.failures,
                original_error=error,
            ) from error

        if first_apply:
            self.store.delete(tweak.id)
        sm.transition("rollback", {"error_message": str(error)})
        logger.info("%s rolled back", tweak.id)

    def revert_tweak(self, tweak_id: str) -> RevertOutcome:
        ctx: Dict[str, Any] = {
            "command": "revert",
            "tweak_id": tweak_id,
        }

        try:
            tweak, _ = self.catalog.resolve(tweak_id)
            live_id = tweak.id if tweak else tweak_id
            ctx["tweak_id"] = live_id
            if tweak is not None:
                self.check_privilege(tweak)

            with self.locks.hold(live_id):
                outcome = self._revert_locked(live_id, tweak, ctx)

            ctx["result"] = "success"
            return outcome

        except Exception as e:
            ctx["result"] = "failure"
            ctx["error"] = e
            raise
        finally:
            _hook("revert", dict(ctx))

    def _revert_locked(
        self, tweak_id: str, tweak: Optional[TweakDefinition], ctx: Dict[str, Any]
    ) -> RevertOutcome:
        snapshot = self.store.load(tweak_id)
        if snapshot is None:
            raise NothingToRevertError(f"No snapshot for '{tweak_id}'; nothing to revert")

        history_id = rollback.create_history_entry(
            tweak_id, "revert", snapshot.applied_option_index, db_path=self.db_path
        )
        ctx["history_id"] = history_id
        sm = TweakStateMachine(history_id, self.db_path)
        sm.transition("revert")

        try:
            restored = self.store.restore(snapshot)
            self.store.delete(tweak_id)
        except RollbackFailure as e:
            logger.critical("%s: revert incomplete: %s", tweak_id, e.failures)
            sm.transition("fail", {"error_message": str(e)})
            raise
        except Exception as e:
            logger.error("%s: revert failed: %s", tweak_id, e)
            sm.transition("fail", {"error_message": str(e)})
            raise

        sm.transition("success")
        logger.info("%s reverted (%d resources restored)", tweak_id, restored)

        return RevertOutcome(
            tweak_id=tweak_id,
            reverted_option_label=snapshot.applied_option_label,
            restored_resources=restored,
            requires_reboot=tweak.requires_reboot if tweak else False,
        )

    def status(self, tweak: TweakDefinition) -> Dict[str, Any]:
        snapshot = self.store.load(tweak.id)
        index = self.detector.detect(tweak, self.os_version)
        return {
            "tweak_id": tweak.id,
            "detected_index": index,
            "detected_label": tweak.options[index].label if index is not None else None,
            "has_snapshot": snapshot is not None,
            "snapshot_option": snapshot.applied_option_label if snapshot else None,
            "snapshot_created_at": snapshot.created_at if snapshot else None,
        }

    def history(self, tweak_id: str) -> List[Dict[str, Any]]:
        return rollback.get_history_by_tweak_id(tweak_id, self.db_path)
