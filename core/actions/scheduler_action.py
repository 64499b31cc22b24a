import logging
from typing import List

from ..adapters import Adapters
from ..changes import SchedulerChange, TaskAction, TaskState
from ..errors import ResourceNotFound
from .base import Action, ActionSnapshot, os_errors_as_failures

logger = logging.getLogger(__name__)


class SchedulerAction(Action):

    action_type = "scheduler"

    def __init__(self, change: SchedulerChange, adapters: Adapters) -> None:
        super().__init__(change, adapters)
        self.folder = change.folder_path

    def resolve_targets(self) -> List[str]:
        """Existing task names this change addresses."""
        scheduler = self.adapters.scheduler
        with os_errors_as_failures(f"Querying {self.change.describe()}"):
            if self.change.task_name is not None:
                state = scheduler.get_state(self.folder, self.change.task_name)
                return [] if state is TaskState.NOT_FOUND else [self.change.task_name]
            return list(scheduler.find_tasks(self.folder, self.change.task_name_pattern))

    def snapshot(self) -> List[ActionSnapshot]:
        records = []
        for name in self.resolve_targets():
            with os_errors_as_failures(f"Querying task {self.folder}\\{name}"):
                state = self.adapters.scheduler.get_state(self.folder, name)
            if state is TaskState.RUNNING:
                state = TaskState.READY
            records.append(ActionSnapshot("scheduler", {
                "folder_path": self.folder,
                "task_name": name,
                "previous_state": state.value,
            }))
        return records

    def apply(self) -> List[str]:
        warnings: List[str] = []
        targets = self.resolve_targets()

        if not targets:
            msg = f"{self.change.describe()} not found"
            if not self.change.tolerates_missing_target:
                raise ResourceNotFound(msg)
            warnings.append(f"{msg}; skipped")
            return warnings

        scheduler = self.adapters.scheduler
        for name in targets:
            with os_errors_as_failures(f"Updating task {self.folder}\\{name}"):
                if self.change.action is TaskAction.DELETE:
                    scheduler.delete(self.folder, name)
                    warnings.append(
                        f"Task '{self.folder}\\{name}' was deleted; this cannot be rolled back"
                    )
                else:
                    scheduler.set_enabled(
                        self.folder, name, self.change.action is TaskAction.ENABLE
                    )
        return warnings

    def matches(self) -> bool:
        targets = self.resolve_targets()
        if self.change.action is TaskAction.DELETE:
            return not targets
        if not targets:
            return False
        want_enabled = self.change.action is TaskAction.ENABLE
        for name in targets:
            state = self.adapters.scheduler.get_state(self.folder, name)
            if state.is_enabled != want_enabled:
                return False
        return True

    def rollback(self, snapshot: ActionSnapshot) -> None:
        meta = snapshot.metadata
        previous = TaskState(meta["previous_state"])
        if previous is TaskState.NOT_FOUND:
            return

        folder, name = meta["folder_path"], meta["task_name"]
        with os_errors_as_failures(f"Restoring task {folder}\\{name}"):
            current = self.adapters.scheduler.get_state(folder, name)
            if current is TaskState.NOT_FOUND:
                logger.warning(
                    "task %s\\%s no longer exists; deletion is not reversible", folder, name
                )
                return
            self.adapters.scheduler.set_enabled(folder, name, previous.is_enabled)

    def current_value(self) -> str:
        targets = self.resolve_targets()
        if not targets:
            return TaskState.NOT_FOUND.value
        states = {
            self.adapters.scheduler.get_state(self.folder, n).value for n in targets
        }
        return ", ".join(sorted(states))

    def target_value(self) -> str:
        return {
            TaskAction.ENABLE: TaskState.READY.value,
            TaskAction.DISABLE: TaskState.DISABLED.value,
            TaskAction.DELETE: "(deleted)",
        }[self.change.action]

    @classmethod
    def from_snapshot(cls, snapshot: ActionSnapshot, adapters: Adapters) -> "SchedulerAction":
        meta = snapshot.metadata
        previous = TaskState(meta["previous_state"])
        change = SchedulerChange(
            folder_path=meta["folder_path"],
            task_name=meta["task_name"],
            action=TaskAction.ENABLE if previous.is_enabled else TaskAction.DISABLE,
            tolerates_missing_target=True,
        )
        return cls(change, adapters)
