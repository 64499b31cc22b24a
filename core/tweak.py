import hashlib
import json
from dataclasses import dataclass, field
from enum import Enum, IntEnum
from typing import Any, Dict, List, Optional, Tuple

from .changes import (
    Change,
    CommandInvocation,
    Phase,
    RegistryChange,
    SchedulerChange,
    ServiceChange,
    TaskAction,
    change_from_dict,
)
from .errors import ConfigurationError


class RiskLevel(Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class PrivilegeLevel(IntEnum):
    """Ordered: each level implies every level below it."""

    NONE = 0
    ADMIN = 1
    SYSTEM = 2
    TRUSTED_INSTALLER = 3

    @classmethod
    def parse(cls, raw: str) -> "PrivilegeLevel":
        key = str(raw).strip().upper()
        if key == "TI":
            key = "TRUSTED_INSTALLER"
        try:
            return cls[key]
        except KeyError:
            raise ConfigurationError(f"Invalid privilege level: '{raw}'") from None

    def satisfies(self, required: "PrivilegeLevel") -> bool:
        return self >= required


@dataclass(frozen=True)
class TweakOption:
    label: str
    changes: Tuple[Change, ...] = ()

    @property
    def registry_changes(self) -> List[RegistryChange]:
        return [c for c in self.changes if isinstance(c, RegistryChange)]

    @property
    def service_changes(self) -> List[ServiceChange]:
        return [c for c in self.changes if isinstance(c, ServiceChange)]

    @property
    def scheduler_changes(self) -> List[SchedulerChange]:
        return [c for c in self.changes if isinstance(c, SchedulerChange)]

    def commands(self, phase: Phase) -> List[CommandInvocation]:
        return [
            c for c in self.changes
            if isinstance(c, CommandInvocation) and c.phase is phase
        ]

    @property
    def deletes_tasks(self) -> bool:
        return any(c.action is TaskAction.DELETE for c in self.scheduler_changes)

    def content_hash(self) -> str:
        """
        Stable fingerprint of what the option writes.

        Registry and service targets only, keyed and sorted by resource so
        labels, flags and declaration order do not change it.
        """
        records = []
        for c in self.registry_changes:
            records.append({"key": c.resource_key, "target": c.target.to_json()})
        for c in self.service_changes:
            records.append({"key": c.resource_key, "startup": c.startup_mode.value})
        records.sort(key=lambda r: r["key"])

        canonical = json.dumps(records, sort_keys=True, separators=(",", ":"))
        return hashlib.sha256(canonical.encode("utf-8")).hexdigest()

    def to_dict(self) -> Dict[str, Any]:
        return {"label": self.label, "changes": [c.to_dict() for c in self.changes]}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "TweakOption":
        if "label" not in data:
            raise ConfigurationError("Option missing 'label'")
        return cls(
            label=data["label"],
            changes=tuple(change_from_dict(c) for c in data.get("changes", [])),
        )


@dataclass(frozen=True)
class TweakDefinition:
    id: str
    name: str
    options: Tuple[TweakOption, ...]
    description: str = ""
    risk_level: RiskLevel = RiskLevel.LOW
    privilege: PrivilegeLevel = PrivilegeLevel.ADMIN
    requires_reboot: bool = False
    is_toggle: bool = False
    aliases: Tuple[str, ...] = ()
    supported_os_versions: Optional[Tuple[int, ...]] = None
    category: str = field(default="", compare=False)

    def option(self, index: int) -> TweakOption:
        if not 0 <= index < len(self.options):
            raise ConfigurationError(
                f"Option index {index} out of range for '{self.id}' "
                f"({len(self.options)} options)"
            )
        return self.options[index]

    def find_options_by_hash(self, content_hash: str) -> List[int]:
        """Every option index whose content hash matches, in order."""
        return [
            i for i, opt in enumerate(self.options)
            if opt.content_hash() == content_hash
        ]

    def find_option_by_label(self, label: str) -> Optional[int]:
        wanted = label.casefold()
        for i, opt in enumerate(self.options):
            if opt.label.casefold() == wanted:
                return i
        return None

    def supports_os(self, os_version: int) -> bool:
        return self.supported_os_versions is None or os_version in self.supported_os_versions

    def touched_changes(self, os_version: Optional[int] = None) -> List[Change]:
        """Registry, service and scheduler changes across all options, one per resource."""
        seen = set()
        result: List[Change] = []
        for opt in self.options:
            for c in opt.changes:
                if isinstance(c, CommandInvocation):
                    continue
                if (
                    os_version is not None
                    and isinstance(c, RegistryChange)
                    and not c.applies_to(os_version)
                ):
                    continue
                if c.resource_key in seen:
                    continue
                seen.add(c.resource_key)
                result.append(c)
        return result

    def to_dict(self) -> Dict[str, Any]:
        data = {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "risk_level": self.risk_level.value,
            "privilege": self.privilege.name.lower(),
            "requires_reboot": self.requires_reboot,
            "is_toggle": self.is_toggle,
            "aliases": list(self.aliases),
            "options": [o.to_dict() for o in self.options],
        }
        if self.supported_os_versions is not None:
            data["supported_os_versions"] = list(self.supported_os_versions)
        if self.category:
            data["category"] = self.category
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "TweakDefinition":
        missing = {"id", "name", "options"} - set(data.keys())
        if missing:
            raise ConfigurationError(
                f"Missing mandatory fields: {', '.join(sorted(missing))}"
            )

        try:
            risk = RiskLevel(data.get("risk_level", "low"))
        except ValueError:
            raise ConfigurationError(
                f"Invalid risk_level: {data.get('risk_level')}"
            ) from None

        supported = data.get("supported_os_versions")
        return cls(
            id=data["id"],
            name=data["name"],
            description=data.get("description", ""),
            risk_level=risk,
            privilege=PrivilegeLevel.parse(data.get("privilege", "admin")),
            requires_reboot=bool(data.get("requires_reboot", False)),
            is_toggle=bool(data.get("is_toggle", False)),
            options=tuple(TweakOption.from_dict(o) for o in data["options"]),
            aliases=tuple(data.get("aliases", [])),
            supported_os_versions=tuple(int(v) for v in supported) if supported else None,
            category=data.get("category", ""),
        )
