from dataclasses import dataclass
from typing import List, Optional, Protocol

from .changes import Hive, Interpreter, StartupMode, TaskState
from .tweak import PrivilegeLevel
from .values import RegistryValue


class RegistryStore(Protocol):
    def read_value(self, hive: Hive, path: str, name: str) -> Optional[RegistryValue]:
        """None when the key or the value does not exist."""
        ...

    def write_value(self, hive: Hive, path: str, name: str, value: RegistryValue) -> None:
        ...

    def delete_value(self, hive: Hive, path: str, name: str) -> None:
        """Deleting a missing value is not an error."""
        ...


class ServiceControl(Protocol):
    def get_startup_mode(self, name: str) -> StartupMode:
        """Raises ResourceNotFound for an unknown service."""
        ...

    def set_startup_mode(self, name: str, mode: StartupMode) -> None:
        ...

    def is_running(self, name: str) -> bool:
        ...

    def start(self, name: str) -> None:
        ...

    def stop(self, name: str) -> None:
        ...


class SchedulerControl(Protocol):
    def get_state(self, folder: str, name: str) -> TaskState:
        ...

    def set_enabled(self, folder: str, name: str, enabled: bool) -> None:
        ...

    def delete(self, folder: str, name: str) -> None:
        ...

    def find_tasks(self, folder: str, pattern: str) -> List[str]:
        """Names of tasks directly in ``folder`` whose name matches ``pattern``."""
        ...


class CommandRunner(Protocol):
    def run(self, text: str, interpreter: Interpreter, elevation: PrivilegeLevel) -> int:
        """Exit status. Raises RuntimeFailure when the command cannot be launched."""
        ...


@dataclass
class Adapters:
    """The four OS surfaces the engine talks to."""

    registry: RegistryStore
    services: ServiceControl
    scheduler: SchedulerControl
    commands: CommandRunner
