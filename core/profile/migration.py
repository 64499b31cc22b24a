import copy
import logging
from typing import Any, Callable, Dict, List, Tuple

from ..constants import PROFILE_SCHEMA_VERSION
from ..errors import SchemaError, SchemaVersionTooNew
from .models import (
    BaselineSystemState,
    ConfigurationProfile,
    MigrationNote,
    ProfileMetadata,
    TweakSelection,
)

logger = logging.getLogger(__name__)


def _v1_to_v2(raw: Dict[str, Any]) -> str:
    for sel in raw.get("selections", []):
        if "option_index" in sel:
            sel["selected_option_index"] = sel.pop("option_index")
        if "option_label" in sel:
            sel["selected_option_label"] = sel.pop("option_label")
        sel.setdefault("option_content_hash", None)
    return "Renamed selection fields; option content hashes unavailable"


def _v2_to_v3(raw: Dict[str, Any]) -> str:
    meta = raw.setdefault("metadata", {})
    if "windows_version" in meta:
        meta["source_os_version"] = meta.pop("windows_version")
    if "app_version" in meta:
        meta["producing_app_version"] = meta.pop("app_version")
    raw.setdefault("baseline_system_state", None)
    return "Renamed metadata fields; baseline system state unavailable"


# version -> step that upgrades an envelope from that version to the next
MIGRATIONS: Dict[int, Callable[[Dict[str, Any]], str]] = {
    1: _v1_to_v2,
    2: _v2_to_v3,
}


def migrate(raw: Dict[str, Any]) -> Tuple[ConfigurationProfile, List[MigrationNote]]:
    """
    Upgrade a raw envelope to the current schema and parse it.

    Pure: ``raw`` is not modified. Refuses envelopes newer than this build.
    """
    if not isinstance(raw, dict):
        raise SchemaError("Profile envelope must be an object")

    version = raw.get("schema_version", 1)
    if isinstance(version, bool) or not isinstance(version, int) or version < 1:
        raise SchemaError(f"Invalid profile schema_version: {version!r}")

    if version > PROFILE_SCHEMA_VERSION:
        raise SchemaVersionTooNew(version, PROFILE_SCHEMA_VERSION)

    data = copy.deepcopy(raw)
    notes: List[MigrationNote] = []

    while version < PROFILE_SCHEMA_VERSION:
        step = MIGRATIONS.get(version)
        if step is None:
            raise SchemaError(f"Unsupported profile schema version: {version}")
        try:
            message = step(data)
        except (AttributeError, KeyError, TypeError, ValueError) as e:
            raise SchemaError(
                f"Malformed v{version} profile: {type(e).__name__}: {e}"
            ) from None
        notes.append(MigrationNote(version, version + 1, message))
        logger.info("profile migrated v%d -> v%d", version, version + 1)
        version += 1
        data["schema_version"] = version

    return _parse(data), notes


def _parse(data: Dict[str, Any]) -> ConfigurationProfile:
    raw_selections = data.get("selections", [])
    if not isinstance(raw_selections, list):
        raise SchemaError("Profile selections must be a list")
    try:
        selections = [TweakSelection.from_dict(s) for s in raw_selections]
    except (AttributeError, KeyError, TypeError, ValueError) as e:
        raise SchemaError(f"Malformed selection in profile: {e}") from None

    try:
        metadata = ProfileMetadata.from_dict(data.get("metadata", {}))
        baseline = data.get("baseline_system_state")
        baseline_state = BaselineSystemState.from_dict(baseline) if baseline else None
    except (AttributeError, KeyError, TypeError, ValueError) as e:
        raise SchemaError(f"Malformed profile metadata: {e}") from None

    return ConfigurationProfile(
        schema_version=PROFILE_SCHEMA_VERSION,
        metadata=metadata,
        selections=selections,
        baseline_system_state=baseline_state,
    )
