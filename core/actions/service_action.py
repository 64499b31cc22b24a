import logging
from typing import List

from ..adapters import Adapters
from ..changes import ServiceChange, StartupMode
from ..errors import ResourceNotFound, TweakError
from .base import Action, ActionSnapshot, os_errors_as_failures

logger = logging.getLogger(__name__)


class ServiceAction(Action):

    action_type = "service"

    def __init__(self, change: ServiceChange, adapters: Adapters) -> None:
        super().__init__(change, adapters)
        self.service_name = change.service_name

    def snapshot(self) -> List[ActionSnapshot]:
        with os_errors_as_failures(f"Querying service {self.service_name}"):
            mode = self.adapters.services.get_startup_mode(self.service_name)
            running = self.adapters.services.is_running(self.service_name)
        return [ActionSnapshot("service", {
            "service_name": self.service_name,
            "previous_startup_mode": mode.value,
            "was_running": running,
        })]

    def apply(self) -> List[str]:
        warnings: List[str] = []
        services = self.adapters.services

        with os_errors_as_failures(f"Configuring service {self.service_name}"):
            services.set_startup_mode(self.service_name, self.change.startup_mode)

        # Run-state changes are best effort; the startup mode is the contract.
        if self.change.stop_after:
            try:
                with os_errors_as_failures(f"Stopping {self.service_name}"):
                    services.stop(self.service_name)
            except TweakError as e:
                warnings.append(f"Could not stop service '{self.service_name}': {e}")
        elif self.change.start_after:
            try:
                with os_errors_as_failures(f"Starting {self.service_name}"):
                    services.start(self.service_name)
            except TweakError as e:
                warnings.append(f"Could not start service '{self.service_name}': {e}")

        return warnings

    def matches(self) -> bool:
        try:
            with os_errors_as_failures(f"Querying service {self.service_name}"):
                mode = self.adapters.services.get_startup_mode(self.service_name)
        except ResourceNotFound:
            return False
        return mode is self.change.startup_mode

    def rollback(self, snapshot: ActionSnapshot) -> None:
        meta = snapshot.metadata
        name = meta["service_name"]
        services = self.adapters.services

        with os_errors_as_failures(f"Restoring service {name}"):
            services.set_startup_mode(name, StartupMode(meta["previous_startup_mode"]))

        try:
            with os_errors_as_failures(f"Restoring run state of {name}"):
                running = services.is_running(name)
                if meta.get("was_running") and not running:
                    services.start(name)
                elif not meta.get("was_running") and running:
                    services.stop(name)
        except TweakError as e:
            logger.warning("service %s: run state not restored: %s", name, e)

    def current_value(self) -> str:
        try:
            return self.adapters.services.get_startup_mode(self.service_name).value
        except ResourceNotFound:
            return "(not installed)"

    def target_value(self) -> str:
        return self.change.startup_mode.value

    @classmethod
    def from_snapshot(cls, snapshot: ActionSnapshot, adapters: Adapters) -> "ServiceAction":
        meta = snapshot.metadata
        change = ServiceChange(
            service_name=meta["service_name"],
            startup_mode=StartupMode(meta["previous_startup_mode"]),
        )
        return cls(change, adapters)
