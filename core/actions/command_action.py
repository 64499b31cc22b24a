import logging
from typing import List

from ..adapters import Adapters
from ..changes import CommandInvocation
from ..errors import ConfigurationError
from ..tweak import PrivilegeLevel
from .base import Action, ActionSnapshot, os_errors_as_failures

logger = logging.getLogger(__name__)


class CommandAction(Action):
    """Commands capture nothing and cannot be rolled back."""

    action_type = "command"

    def __init__(
        self,
        change: CommandInvocation,
        adapters: Adapters,
        elevation: PrivilegeLevel = PrivilegeLevel.ADMIN,
    ) -> None:
        super().__init__(change, adapters)
        self.elevation = elevation

    def snapshot(self) -> List[ActionSnapshot]:
        return []

    def apply(self) -> List[str]:
        with os_errors_as_failures(f"Launching {self.change.describe()}"):
            status = self.adapters.commands.run(
                self.change.text, self.change.interpreter, self.elevation
            )
        if status != 0:
            logger.warning("command exited with %s: %s", status, self.change.text)
            return [f"Command exited with status {status}: {self.change.text}"]
        return []

    def matches(self) -> bool:
        return False

    def rollback(self, snapshot: ActionSnapshot) -> None:
        raise ConfigurationError("Commands have no captured state to restore")

    def target_value(self) -> str:
        return self.change.text

    @classmethod
    def from_snapshot(cls, snapshot: ActionSnapshot, adapters: Adapters) -> "CommandAction":
        raise ConfigurationError("Commands have no captured state to restore")
