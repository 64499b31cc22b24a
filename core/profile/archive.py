import json
import logging
import zipfile
from pathlib import Path
from typing import Any, Dict, Optional

from utils.manifest import generate_manifest, verify_manifest

from ..constants import MAX_ARCHIVE_BYTES, MAX_MEMBER_BYTES
from ..errors import InvalidArchive
from .models import ConfigurationProfile

logger = logging.getLogger(__name__)

PROFILE_MEMBER = "profile.json"
STATE_MEMBER = "system_state.json"
MANIFEST_MEMBER = "manifest.json"


def _dump(data: Dict[str, Any]) -> bytes:
    return json.dumps(data, indent=2, ensure_ascii=False).encode("utf-8")


def write_archive(path: Path, profile: ConfigurationProfile) -> None:
    """Write ``profile`` as a zip with a checksummed manifest."""
    path = Path(path)
    logger.info("writing profile archive %s", path)

    profile_json = _dump(profile.to_dict(include_baseline=False))
    state_json = None
    if profile.baseline_system_state is not None:
        state_json = _dump(profile.baseline_system_state.to_dict())

    manifest = generate_manifest(profile_json, state_json)

    with zipfile.ZipFile(path, "w", compression=zipfile.ZIP_DEFLATED) as zf:
        zf.writestr(PROFILE_MEMBER, profile_json)
        if state_json is not None:
            zf.writestr(STATE_MEMBER, state_json)
        zf.writestr(MANIFEST_MEMBER, _dump(manifest))


def _read_member(zf: zipfile.ZipFile, name: str) -> bytes:
    try:
        info = zf.getinfo(name)
    except KeyError:
        raise InvalidArchive(f"Archive is missing {name}") from None
    if info.file_size > MAX_MEMBER_BYTES:
        raise InvalidArchive(
            f"{name} exceeds maximum allowed size: {info.file_size} bytes "
            f"(max {MAX_MEMBER_BYTES} bytes)"
        )
    return zf.read(name)


def _load_json(raw: bytes, name: str) -> Any:
    try:
        return json.loads(raw.decode("utf-8"))
    except (UnicodeDecodeError, json.JSONDecodeError) as e:
        raise InvalidArchive(f"Invalid {name}: {e}") from None


def read_archive(path: Path) -> Dict[str, Any]:
    """
    Read and verify an archive; returns the raw envelope (not yet migrated)
    with the baseline merged back in.
    """
    path = Path(path)
    logger.info("reading profile archive %s", path)

    try:
        size = path.stat().st_size
    except OSError as e:
        raise InvalidArchive(f"Cannot read {path}: {e}") from None
    if size > MAX_ARCHIVE_BYTES:
        raise InvalidArchive(
            f"Profile file too large: {size} bytes (max {MAX_ARCHIVE_BYTES} bytes)"
        )

    try:
        with zipfile.ZipFile(path, "r") as zf:
            manifest = _load_json(_read_member(zf, MANIFEST_MEMBER), MANIFEST_MEMBER)
            if not isinstance(manifest, dict):
                raise InvalidArchive("Invalid manifest.json")
            profile_json = _read_member(zf, PROFILE_MEMBER)
            state_json: Optional[bytes] = None
            if manifest.get("includes_system_state"):
                state_json = _read_member(zf, STATE_MEMBER)
    except zipfile.BadZipFile as e:
        raise InvalidArchive(f"Invalid archive: {e}") from None

    verify_manifest(manifest, profile_json, state_json)

    envelope = _load_json(profile_json, PROFILE_MEMBER)
    if not isinstance(envelope, dict):
        raise InvalidArchive("profile.json must contain an object")
    if state_json is not None:
        envelope["baseline_system_state"] = _load_json(state_json, STATE_MEMBER)
    return envelope
