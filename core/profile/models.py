"""Profile records: the portable selection list and everything derived from it."""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Tuple

from ..constants import PROFILE_SCHEMA_VERSION
from ..tweak import RiskLevel


@dataclass
class ProfileMetadata:
    name: str
    created_at: str
    source_os_version: int
    producing_app_version: str
    description: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        data = {
            "name": self.name,
            "created_at": self.created_at,
            "source_os_version": self.source_os_version,
            "producing_app_version": self.producing_app_version,
        }
        if self.description is not None:
            data["description"] = self.description
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ProfileMetadata":
        if not isinstance(data, dict):
            raise TypeError(f"metadata must be an object, got {type(data).__name__}")
        return cls(
            name=data.get("name", ""),
            created_at=data.get("created_at", ""),
            source_os_version=int(data.get("source_os_version") or 0),
            producing_app_version=data.get("producing_app_version", ""),
            description=data.get("description"),
        )


@dataclass
class TweakSelection:
    tweak_id: str
    selected_option_index: int
    option_content_hash: Optional[str] = None
    selected_option_label: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {
            "tweak_id": self.tweak_id,
            "selected_option_index": self.selected_option_index,
        }
        if self.option_content_hash is not None:
            data["option_content_hash"] = self.option_content_hash
        if self.selected_option_label is not None:
            data["selected_option_label"] = self.selected_option_label
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "TweakSelection":
        tweak_id = data["tweak_id"]
        index = data["selected_option_index"]
        if not isinstance(tweak_id, str) or not tweak_id:
            raise ValueError(f"tweak_id must be a non-empty string, got {tweak_id!r}")
        if isinstance(index, bool) or not isinstance(index, int):
            raise ValueError(f"selected_option_index must be an integer, got {index!r}")
        content_hash = data.get("option_content_hash")
        if content_hash is not None and not isinstance(content_hash, str):
            raise ValueError(f"option_content_hash must be a string, got {content_hash!r}")
        return cls(
            tweak_id=tweak_id,
            selected_option_index=index,
            option_content_hash=content_hash,
            selected_option_label=data.get("selected_option_label"),
        )


@dataclass
class BaselineSystemState:
    """Live values of every resource the exported tweaks reference, at export time."""

    captured_at: str
    os_version: int
    registry: List[Dict[str, Any]] = field(default_factory=list)
    services: List[Dict[str, Any]] = field(default_factory=list)
    tasks: List[Dict[str, Any]] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "captured_at": self.captured_at,
            "os_version": self.os_version,
            "registry": self.registry,
            "services": self.services,
            "tasks": self.tasks,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "BaselineSystemState":
        return cls(
            captured_at=data.get("captured_at", ""),
            os_version=int(data.get("os_version") or 0),
            registry=list(data.get("registry", [])),
            services=list(data.get("services", [])),
            tasks=list(data.get("tasks", [])),
        )


@dataclass
class ConfigurationProfile:
    metadata: ProfileMetadata
    selections: List[TweakSelection] = field(default_factory=list)
    baseline_system_state: Optional[BaselineSystemState] = None
    schema_version: int = PROFILE_SCHEMA_VERSION

    def to_dict(self, include_baseline: bool = True) -> Dict[str, Any]:
        data: Dict[str, Any] = {
            "schema_version": self.schema_version,
            "metadata": self.metadata.to_dict(),
            "selections": [s.to_dict() for s in self.selections],
        }
        if include_baseline and self.baseline_system_state is not None:
            data["baseline_system_state"] = self.baseline_system_state.to_dict()
        return data


class WarningCode(Enum):
    TWEAK_SCHEMA_CHANGED = "TWEAK_SCHEMA_CHANGED"
    OS_VERSION_MISMATCH = "OS_VERSION_MISMATCH"
    RESOURCE_MISSING_TOLERATED = "RESOURCE_MISSING_TOLERATED"
    ALREADY_APPLIED = "ALREADY_APPLIED"
    OPTION_RESOLVED_BY_HASH = "OPTION_RESOLVED_BY_HASH"
    TWEAK_RESOLVED_BY_ALIAS = "TWEAK_RESOLVED_BY_ALIAS"


class ErrorCode(Enum):
    TWEAK_NOT_FOUND = "TWEAK_NOT_FOUND"
    INVALID_OPTION_INDEX = "INVALID_OPTION_INDEX"
    SERVICE_NOT_FOUND = "SERVICE_NOT_FOUND"
    TASK_NOT_FOUND = "TASK_NOT_FOUND"
    INSUFFICIENT_PERMISSIONS = "INSUFFICIENT_PERMISSIONS"
    OS_VERSION_INCOMPATIBLE = "OS_VERSION_INCOMPATIBLE"
    SCHEMA_VERSION_TOO_NEW = "SCHEMA_VERSION_TOO_NEW"
    INVALID_ARCHIVE = "INVALID_ARCHIVE"
    CHECKSUM_MISMATCH = "CHECKSUM_MISMATCH"


_BLOCKING = {
    ErrorCode.SCHEMA_VERSION_TOO_NEW,
    ErrorCode.INVALID_ARCHIVE,
    ErrorCode.CHECKSUM_MISMATCH,
}


@dataclass
class ValidationIssue:
    code: Enum
    message: str
    tweak_id: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return {"code": self.code.value, "message": self.message, "tweak_id": self.tweak_id}


class ChangeType(Enum):
    REGISTRY = "registry"
    SERVICE = "service"
    SCHEDULED_TASK = "scheduled_task"
    COMMAND = "command"


@dataclass
class ChangeDetail:
    change_type: ChangeType
    description: str
    current_value: str
    new_value: str


@dataclass
class TweakChangePreview:
    tweak_id: str
    tweak_name: str
    target_option_index: int
    target_option_label: str
    risk_level: RiskLevel
    current_option_index: Optional[int] = None
    current_option_label: Optional[str] = None
    applicable: bool = True
    skip_reason: Optional[str] = None
    already_applied: bool = False
    requires_reboot: bool = False
    has_warnings: bool = False
    changes: List[ChangeDetail] = field(default_factory=list)


@dataclass
class ValidationStats:
    total: int = 0
    applicable: int = 0
    skipped: int = 0
    already_applied: int = 0
    with_warnings: int = 0


@dataclass
class ProfileValidation:
    is_valid: bool
    warnings: List[ValidationIssue] = field(default_factory=list)
    errors: List[ValidationIssue] = field(default_factory=list)
    preview: List[TweakChangePreview] = field(default_factory=list)
    # Selections that never reached the preview (unknown tweak or option).
    unresolved: int = 0

    @property
    def stats(self) -> ValidationStats:
        stats = ValidationStats(total=len(self.preview) + self.unresolved)
        for item in self.preview:
            if item.applicable:
                stats.applicable += 1
            else:
                stats.skipped += 1
            if item.already_applied:
                stats.already_applied += 1
            if item.has_warnings:
                stats.with_warnings += 1
        stats.skipped += self.unresolved
        return stats

    @property
    def is_partially_applicable(self) -> bool:
        return any(p.applicable for p in self.preview)

    @property
    def blocks_apply(self) -> bool:
        """Profile-level errors; nothing from such a profile may be applied."""
        return any(e.code in _BLOCKING for e in self.errors)

    def preview_for(self, tweak_id: str) -> Optional[TweakChangePreview]:
        for item in self.preview:
            if item.tweak_id == tweak_id:
                return item
        return None


@dataclass
class ApplyOptions:
    skip_ids: Tuple[str, ...] = ()
    skip_already_applied: bool = True
    create_restore_point_hook: Optional[Callable[[], None]] = None
    max_workers: int = 1


@dataclass
class ApplyResult:
    applied_count: int = 0
    skipped_count: int = 0
    failed_tweaks: List[Tuple[str, str]] = field(default_factory=list)
    rollback_failures: List[str] = field(default_factory=list)
    requires_reboot: bool = False
    reboot_required_tweaks: List[str] = field(default_factory=list)
    touched_snapshot_ids: List[str] = field(default_factory=list)
    warnings: Dict[str, List[str]] = field(default_factory=dict)

    @property
    def success(self) -> bool:
        return not self.failed_tweaks


@dataclass
class MigrationNote:
    from_version: int
    to_version: int
    message: str
