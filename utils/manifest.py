import hashlib
import io
from typing import Any, Dict, Optional

from core.constants import ARCHIVE_FORMAT_VERSION
from core.errors import ChecksumMismatch, InvalidArchive


def calculate_hash(data: bytes) -> str:
    sha256 = hashlib.sha256()
    stream = io.BytesIO(data)
    for byte_block in iter(lambda: stream.read(4096), b""):
        sha256.update(byte_block)
    return sha256.hexdigest()


def generate_manifest(profile_json: bytes, state_json: Optional[bytes] = None) -> Dict[str, Any]:
    return {
        "format_version": ARCHIVE_FORMAT_VERSION,
        "profile_checksum": calculate_hash(profile_json),
        "includes_system_state": state_json is not None,
        "system_state_checksum": calculate_hash(state_json) if state_json is not None else None,
    }


def verify_manifest(
    manifest: Dict[str, Any],
    profile_json: bytes,
    state_json: Optional[bytes] = None,
) -> None:
    if "profile_checksum" not in manifest:
        raise InvalidArchive("Manifest has no profile checksum")

    if calculate_hash(profile_json) != manifest["profile_checksum"]:
        raise ChecksumMismatch("Profile checksum mismatch")

    expected = manifest.get("system_state_checksum")
    if state_json is not None and expected and calculate_hash(state_json) != expected:
        raise ChecksumMismatch("System state checksum mismatch")
