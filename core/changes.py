import re
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Optional, Tuple, Union

from .errors import ConfigurationError
from .values import RegistryValue


class Hive(Enum):
    HKCU = "HKCU"
    HKLM = "HKLM"
    HKCR = "HKCR"
    HKU = "HKU"
    HKCC = "HKCC"

    @classmethod
    def parse(cls, raw: str) -> "Hive":
        text = str(raw).strip().upper()
        text = _HIVE_ALIASES.get(text, text)
        try:
            return cls(text)
        except ValueError:
            raise ConfigurationError(f"Invalid registry hive: '{raw}'") from None


_HIVE_ALIASES = {
    "HKEY_CURRENT_USER": "HKCU",
    "HKEY_LOCAL_MACHINE": "HKLM",
    "HKEY_CLASSES_ROOT": "HKCR",
    "HKEY_USERS": "HKU",
    "HKEY_CURRENT_CONFIG": "HKCC",
}


class StartupMode(Enum):
    DISABLED = "disabled"
    MANUAL = "manual"
    AUTOMATIC = "automatic"
    BOOT = "boot"
    SYSTEM = "system"


class TaskAction(Enum):
    ENABLE = "enable"
    DISABLE = "disable"
    DELETE = "delete"


class TaskState(Enum):
    READY = "Ready"
    RUNNING = "Running"
    DISABLED = "Disabled"
    NOT_FOUND = "NotFound"

    @property
    def is_enabled(self) -> bool:
        return self in (TaskState.READY, TaskState.RUNNING)


class Interpreter(Enum):
    SHELL = "shell"
    SCRIPT_HOST = "script_host"


class Phase(Enum):
    PRE = "pre"
    POST = "post"


def _parse_enum(enum_cls, raw: Any, field_name: str):
    try:
        return enum_cls(raw)
    except ValueError:
        valid = ", ".join(str(e.value) for e in enum_cls)
        raise ConfigurationError(
            f"Invalid {field_name}: '{raw}'. Valid values: {valid}"
        ) from None


@dataclass(frozen=True)
class RegistryChange:
    hive: Hive
    path: str
    value_name: str
    target: RegistryValue
    os_versions: Optional[Tuple[int, ...]] = None
    exclude_from_validation: bool = False

    kind = "registry"

    @property
    def resource_key(self) -> str:
        return f"registry:{self.hive.value}\\{self.path.lower()}\\{self.value_name.lower()}"

    @property
    def full_path(self) -> str:
        return f"{self.hive.value}\\{self.path}"

    def applies_to(self, os_version: int) -> bool:
        return self.os_versions is None or os_version in self.os_versions

    def describe(self) -> str:
        name = self.value_name or "(Default)"
        return f"{self.full_path}\\{name}"

    def to_dict(self) -> Dict[str, Any]:
        data = {
            "type": self.kind,
            "hive": self.hive.value,
            "path": self.path,
            "value_name": self.value_name,
            "target": self.target.to_json(),
        }
        if self.os_versions is not None:
            data["os_versions"] = list(self.os_versions)
        if self.exclude_from_validation:
            data["exclude_from_validation"] = True
        return data


@dataclass(frozen=True)
class ServiceChange:
    service_name: str
    startup_mode: StartupMode
    stop_after: bool = False
    start_after: bool = False
    exclude_from_validation: bool = False

    kind = "service"

    @property
    def resource_key(self) -> str:
        return f"service:{self.service_name.lower()}"

    def describe(self) -> str:
        return f"Service '{self.service_name}'"

    def to_dict(self) -> Dict[str, Any]:
        data = {
            "type": self.kind,
            "service_name": self.service_name,
            "startup_mode": self.startup_mode.value,
        }
        if self.stop_after:
            data["stop_after"] = True
        if self.start_after:
            data["start_after"] = True
        if self.exclude_from_validation:
            data["exclude_from_validation"] = True
        return data


@dataclass(frozen=True)
class SchedulerChange:
    folder_path: str
    action: TaskAction
    task_name: Optional[str] = None
    task_name_pattern: Optional[str] = None
    exclude_from_validation: bool = False
    tolerates_missing_target: bool = False

    kind = "scheduler"

    def __post_init__(self) -> None:
        if (self.task_name is None) == (self.task_name_pattern is None):
            raise ConfigurationError(
                f"Scheduler change in '{self.folder_path}' needs exactly one of "
                "task_name or task_name_pattern"
            )
        if self.task_name_pattern is not None:
            try:
                re.compile(self.task_name_pattern)
            except re.error as e:
                raise ConfigurationError(
                    f"Invalid task name pattern '{self.task_name_pattern}': {e}"
                ) from None

    @property
    def resource_key(self) -> str:
        name = self.task_name if self.task_name is not None else f"~{self.task_name_pattern}"
        return f"scheduler:{self.folder_path.lower()}\\{name.lower()}"

    def describe(self) -> str:
        if self.task_name is not None:
            return f"Task '{self.folder_path}\\{self.task_name}'"
        return f"Tasks '{self.folder_path}\\{self.task_name_pattern}'"

    def to_dict(self) -> Dict[str, Any]:
        data = {
            "type": self.kind,
            "folder_path": self.folder_path,
            "action": self.action.value,
        }
        if self.task_name is not None:
            data["task_name"] = self.task_name
        else:
            data["task_name_pattern"] = self.task_name_pattern
        if self.exclude_from_validation:
            data["exclude_from_validation"] = True
        if self.tolerates_missing_target:
            data["tolerates_missing_target"] = True
        return data


@dataclass(frozen=True)
class CommandInvocation:
    text: str
    interpreter: Interpreter = Interpreter.SHELL
    phase: Phase = Phase.POST

    kind = "command"

    @property
    def resource_key(self) -> str:
        return f"command:{self.phase.value}:{self.text}"

    def describe(self) -> str:
        return f"[{self.phase.value}/{self.interpreter.value}] {self.text}"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "type": self.kind,
            "text": self.text,
            "interpreter": self.interpreter.value,
            "phase": self.phase.value,
        }


Change = Union[RegistryChange, ServiceChange, SchedulerChange, CommandInvocation]


def _os_versions(raw: Any) -> Optional[Tuple[int, ...]]:
    if raw is None:
        return None
    if not isinstance(raw, (list, tuple)):
        raise ConfigurationError("os_versions must be a list of integers")
    return tuple(int(v) for v in raw)


def change_from_dict(data: Dict[str, Any]) -> Change:
    if not isinstance(data, dict):
        raise ConfigurationError(f"Change must be an object, got {type(data).__name__}")

    change_type = data.get("type")
    if not change_type:
        raise ConfigurationError("Change definition missing 'type' field")

    try:
        if change_type == "registry":
            return RegistryChange(
                hive=Hive.parse(data["hive"]),
                path=data["path"],
                value_name=data.get("value_name", ""),
                target=RegistryValue.from_json(data["target"]),
                os_versions=_os_versions(data.get("os_versions")),
                exclude_from_validation=bool(data.get("exclude_from_validation", False)),
            )
        if change_type == "service":
            return ServiceChange(
                service_name=data["service_name"],
                startup_mode=_parse_enum(StartupMode, data["startup_mode"], "startup_mode"),
                stop_after=bool(data.get("stop_after", False)),
                start_after=bool(data.get("start_after", False)),
                exclude_from_validation=bool(data.get("exclude_from_validation", False)),
            )
        if change_type == "scheduler":
            return SchedulerChange(
                folder_path=data["folder_path"],
                action=_parse_enum(TaskAction, data["action"], "task action"),
                task_name=data.get("task_name"),
                task_name_pattern=data.get("task_name_pattern"),
                exclude_from_validation=bool(data.get("exclude_from_validation", False)),
                tolerates_missing_target=bool(data.get("tolerates_missing_target", False)),
            )
        if change_type == "command":
            return CommandInvocation(
                text=data["text"],
                interpreter=_parse_enum(
                    Interpreter, data.get("interpreter", "shell"), "interpreter"
                ),
                phase=_parse_enum(Phase, data.get("phase", "post"), "phase"),
            )
    except KeyError as e:
        raise ConfigurationError(
            f"{change_type} change missing required field {e}"
        ) from None

    raise ConfigurationError(
        f"Unknown change type: '{change_type}'. "
        "Available types: registry, service, scheduler, command"
    )
