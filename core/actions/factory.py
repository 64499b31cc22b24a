from typing import Dict, Type

from ..adapters import Adapters
from ..changes import Change, CommandInvocation
from ..errors import ConfigurationError
from ..tweak import PrivilegeLevel
from .base import Action, ActionSnapshot
from .command_action import CommandAction
from .registry_action import RegistryAction
from .scheduler_action import SchedulerAction
from .service_action import ServiceAction


# Registry of all available action types
ACTION_REGISTRY: Dict[str, Type[Action]] = {
    "registry": RegistryAction,
    "service": ServiceAction,
    "scheduler": SchedulerAction,
    "command": CommandAction,
}


def create_action(
    change: Change,
    adapters: Adapters,
    elevation: PrivilegeLevel = PrivilegeLevel.ADMIN,
) -> Action:
    action_class = ACTION_REGISTRY.get(getattr(change, "kind", None))

    if not action_class:
        available = ", ".join(ACTION_REGISTRY.keys())
        raise ConfigurationError(
            f"Unknown change: {change!r}. Available types: {available}"
        )

    if isinstance(change, CommandInvocation):
        return CommandAction(change, adapters, elevation)
    return action_class(change, adapters)


def create_action_from_snapshot(snapshot: ActionSnapshot, adapters: Adapters) -> Action:
    action_class = ACTION_REGISTRY.get(snapshot.action_type)

    if not action_class:
        raise ConfigurationError(f"Unknown action type in snapshot: {snapshot.action_type}")

    return action_class.from_snapshot(snapshot, adapters)
