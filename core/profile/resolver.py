import logging
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple, Union

from ..actions.factory import create_action
from ..actions.scheduler_action import SchedulerAction
from ..adapters import Adapters
from ..catalog import TweakCatalog
from ..changes import (
    CommandInvocation,
    RegistryChange,
    SchedulerChange,
    ServiceChange,
)
from ..constants import PROFILE_SCHEMA_VERSION
from ..detector import StateDetector
from ..errors import (
    ChecksumMismatch,
    InvalidArchive,
    ResourceNotFound,
    SchemaError,
    SchemaVersionTooNew,
)
from ..tweak import PrivilegeLevel, TweakDefinition, TweakOption
from .archive import read_archive
from .migration import migrate
from .models import (
    ChangeDetail,
    ChangeType,
    ConfigurationProfile,
    ErrorCode,
    MigrationNote,
    ProfileValidation,
    TweakChangePreview,
    TweakSelection,
    ValidationIssue,
    WarningCode,
)

logger = logging.getLogger(__name__)


class ProfileResolver:
    """
    Maps portable selections onto live tweaks and checks they can be applied
    here. Every call reads live state afresh; nothing is cached between calls.
    """

    def __init__(
        self,
        catalog: TweakCatalog,
        adapters: Adapters,
        privilege: PrivilegeLevel = PrivilegeLevel.ADMIN,
        detector: Optional[StateDetector] = None,
    ):
        self.catalog = catalog
        self.adapters = adapters
        self.privilege = privilege
        self.detector = detector or StateDetector(adapters.registry, adapters.services)

    def validate(self, profile: ConfigurationProfile, os_version: int) -> ProfileValidation:
        validation = ProfileValidation(is_valid=True)

        if profile.schema_version > PROFILE_SCHEMA_VERSION:
            validation.errors.append(ValidationIssue(
                ErrorCode.SCHEMA_VERSION_TOO_NEW,
                f"Profile schema version {profile.schema_version} is newer than "
                f"supported version {PROFILE_SCHEMA_VERSION}",
            ))
            validation.is_valid = False
            return validation

        source_os = profile.metadata.source_os_version
        if source_os and source_os != os_version:
            validation.warnings.append(ValidationIssue(
                WarningCode.OS_VERSION_MISMATCH,
                f"Profile was created on Windows {source_os}, "
                f"current system is Windows {os_version}",
            ))

        for selection in profile.selections:
            preview = self._validate_selection(selection, os_version, validation)
            if preview is None:
                validation.unresolved += 1
            else:
                validation.preview.append(preview)

        validation.is_valid = not validation.errors
        return validation

    def _validate_selection(
        self,
        selection: TweakSelection,
        os_version: int,
        validation: ProfileValidation,
    ) -> Optional[TweakChangePreview]:
        warnings: List[ValidationIssue] = []
        errors: List[ValidationIssue] = []
        sel_id = selection.tweak_id

        try:
            # 1. tweak identity
            tweak, via_alias = self.catalog.resolve(sel_id)
            if tweak is None:
                errors.append(ValidationIssue(
                    ErrorCode.TWEAK_NOT_FOUND,
                    f"Tweak '{sel_id}' not found in current app version",
                    sel_id,
                ))
                return None
            if via_alias:
                warnings.append(ValidationIssue(
                    WarningCode.TWEAK_RESOLVED_BY_ALIAS,
                    f"Tweak '{sel_id}' is now '{tweak.id}'",
                    tweak.id,
                ))

            # 2. option identity
            index = self._resolve_option(tweak, selection, warnings, errors)
            if index is None:
                return None
            option = tweak.options[index]

            preview = TweakChangePreview(
                tweak_id=tweak.id,
                tweak_name=tweak.name,
                target_option_index=index,
                target_option_label=option.label,
                risk_level=tweak.risk_level,
                requires_reboot=tweak.requires_reboot,
            )

            # 3. compatibility
            skip_reason = self._check_compatibility(tweak, option, os_version, warnings)
            if skip_reason is None and not self.privilege.satisfies(tweak.privilege):
                errors.append(ValidationIssue(
                    ErrorCode.INSUFFICIENT_PERMISSIONS,
                    f"'{tweak.name}' requires {tweak.privilege.name} privileges",
                    tweak.id,
                ))
                skip_reason = "Insufficient permissions"

            # 4. resource existence
            if skip_reason is None:
                skip_reason = self._check_resources(tweak, option, warnings, errors)

            # 5. already applied
            current = self.detector.detect(tweak, os_version)
            preview.current_option_index = current
            preview.current_option_label = (
                tweak.options[current].label if current is not None else None
            )
            if current == index:
                preview.already_applied = True
                warnings.append(ValidationIssue(
                    WarningCode.ALREADY_APPLIED,
                    f"Tweak '{tweak.name}' is already at desired state",
                    tweak.id,
                ))

            # 6. preview
            preview.changes = self._build_changes(option, os_version, tweak.privilege)
            preview.applicable = skip_reason is None
            preview.skip_reason = skip_reason
            preview.has_warnings = bool(warnings)
            return preview

        finally:
            validation.warnings.extend(warnings)
            validation.errors.extend(errors)

    def _resolve_option(
        self,
        tweak: TweakDefinition,
        selection: TweakSelection,
        warnings: List[ValidationIssue],
        errors: List[ValidationIssue],
    ) -> Optional[int]:
        wanted = selection.selected_option_index
        in_range = 0 <= wanted < len(tweak.options)

        if selection.option_content_hash:
            matches = tweak.find_options_by_hash(selection.option_content_hash)
            if wanted in matches:
                return wanted
            if matches:
                by_hash = matches[0]
                message = (
                    f"Option '{tweak.options[by_hash].label}' of '{tweak.name}' "
                    f"moved from index {wanted} to {by_hash}"
                )
                if len(matches) > 1:
                    message += f" (ambiguous: options {matches} share this hash)"
                warnings.append(ValidationIssue(
                    WarningCode.OPTION_RESOLVED_BY_HASH, message, tweak.id,
                ))
                return by_hash
            if in_range:
                warnings.append(ValidationIssue(
                    WarningCode.TWEAK_SCHEMA_CHANGED,
                    f"Options of '{tweak.name}' changed since export; "
                    f"using option {wanted} ('{tweak.options[wanted].label}')",
                    tweak.id,
                ))

        if in_range:
            return wanted

        errors.append(ValidationIssue(
            ErrorCode.INVALID_OPTION_INDEX,
            f"Option index {wanted} is out of bounds "
            f"(tweak has {len(tweak.options)} options)",
            tweak.id,
        ))
        return None

    def _check_compatibility(
        self,
        tweak: TweakDefinition,
        option: TweakOption,
        os_version: int,
        warnings: List[ValidationIssue],
    ) -> Optional[str]:
        registry = option.registry_changes
        applicable_registry = [c for c in registry if c.applies_to(os_version)]
        effective = (
            len(applicable_registry)
            + len(option.service_changes)
            + len(option.scheduler_changes)
            + len([c for c in option.changes if isinstance(c, CommandInvocation)])
        )

        if effective == 0:
            warnings.append(ValidationIssue(
                WarningCode.OS_VERSION_MISMATCH,
                f"'{option.label}' of '{tweak.name}' has no changes for Windows {os_version}",
                tweak.id,
            ))
            return f"Not applicable to Windows {os_version}"

        if not tweak.supports_os(os_version) or len(applicable_registry) < len(registry):
            warnings.append(ValidationIssue(
                WarningCode.OS_VERSION_MISMATCH,
                f"'{tweak.name}' is only partially supported on Windows {os_version}",
                tweak.id,
            ))
        return None

    def _check_resources(
        self,
        tweak: TweakDefinition,
        option: TweakOption,
        warnings: List[ValidationIssue],
        errors: List[ValidationIssue],
    ) -> Optional[str]:
        skip_reason = None

        for c in option.service_changes:
            try:
                self.adapters.services.get_startup_mode(c.service_name)
            except ResourceNotFound:
                if c.exclude_from_validation:
                    warnings.append(ValidationIssue(
                        WarningCode.RESOURCE_MISSING_TOLERATED,
                        f"Service '{c.service_name}' not found; it will be skipped",
                        tweak.id,
                    ))
                    continue
                errors.append(ValidationIssue(
                    ErrorCode.SERVICE_NOT_FOUND,
                    f"Service '{c.service_name}' not found on this system",
                    tweak.id,
                ))
                skip_reason = skip_reason or f"Service '{c.service_name}' not found"

        for c in option.scheduler_changes:
            if SchedulerAction(c, self.adapters).resolve_targets():
                continue
            if c.tolerates_missing_target or c.exclude_from_validation:
                warnings.append(ValidationIssue(
                    WarningCode.RESOURCE_MISSING_TOLERATED,
                    f"{c.describe()} not found; it will be skipped",
                    tweak.id,
                ))
                continue
            errors.append(ValidationIssue(
                ErrorCode.TASK_NOT_FOUND,
                f"{c.describe()} not found on this system",
                tweak.id,
            ))
            skip_reason = skip_reason or f"{c.describe()} not found"

        return skip_reason

    def _build_changes(
        self, option: TweakOption, os_version: int, elevation: PrivilegeLevel
    ) -> List[ChangeDetail]:
        details: List[ChangeDetail] = []
        for c in option.changes:
            if isinstance(c, RegistryChange) and not c.applies_to(os_version):
                continue
            action = create_action(c, self.adapters, elevation)

            if isinstance(c, RegistryChange):
                verb = "Delete" if c.target.is_absent else "Set"
                details.append(ChangeDetail(
                    ChangeType.REGISTRY,
                    f"{verb} {c.describe()}",
                    action.current_value(),
                    action.target_value(),
                ))
            elif isinstance(c, ServiceChange):
                details.append(ChangeDetail(
                    ChangeType.SERVICE,
                    f"Set service '{c.service_name}' startup to {c.startup_mode.value}",
                    action.current_value(),
                    action.target_value(),
                ))
            elif isinstance(c, SchedulerChange):
                details.append(ChangeDetail(
                    ChangeType.SCHEDULED_TASK,
                    f"{c.action.value.capitalize()} {c.describe()}",
                    action.current_value(),
                    action.target_value(),
                ))
            else:
                details.append(ChangeDetail(
                    ChangeType.COMMAND,
                    f"Run ({c.phase.value}): {c.text}",
                    "",
                    action.target_value(),
                ))
        return details


def _failed_import(code: ErrorCode, message: str) -> ProfileValidation:
    return ProfileValidation(
        is_valid=False,
        errors=[ValidationIssue(code, message)],
    )


def import_profile(
    source: Union[Path, str, Dict[str, Any]],
    resolver: ProfileResolver,
    os_version: int,
) -> Tuple[Optional[ConfigurationProfile], ProfileValidation, List[MigrationNote]]:
    """
    Read (when given a path), migrate and validate a profile.

    Container and schema failures come back as an invalid validation with no
    profile, so callers have nothing to apply.
    """
    try:
        raw = source if isinstance(source, dict) else read_archive(Path(source))
        profile, notes = migrate(raw)
    except SchemaVersionTooNew as e:
        logger.warning("profile rejected: %s", e)
        return None, _failed_import(ErrorCode.SCHEMA_VERSION_TOO_NEW, str(e)), []
    except ChecksumMismatch as e:
        logger.warning("profile rejected: %s", e)
        return None, _failed_import(ErrorCode.CHECKSUM_MISMATCH, str(e)), []
    except (InvalidArchive, SchemaError) as e:
        logger.warning("profile rejected: %s", e)
        return None, _failed_import(ErrorCode.INVALID_ARCHIVE, str(e)), []

    return profile, resolver.validate(profile, os_version), notes
