from .base import Action, ActionSnapshot
from .factory import (
    create_action,
    create_action_from_snapshot,
    ACTION_REGISTRY
)
from .registry_action import RegistryAction
from .service_action import ServiceAction
from .scheduler_action import SchedulerAction
from .command_action import CommandAction

__all__ = [
    'Action',
    'ActionSnapshot',
    'create_action',
    'create_action_from_snapshot',
    'ACTION_REGISTRY',
    'RegistryAction',
    'ServiceAction',
    'SchedulerAction',
    'CommandAction',
]
