import os
import sys
from pathlib import Path

APP_NAME = "TweakCore"
ENGINE_VERSION = "1.2.0"

# Profile envelope versions this engine can read and write.
PROFILE_SCHEMA_VERSION = 3
ARCHIVE_FORMAT_VERSION = 1

PROFILE_EXTENSION = ".tcp"
MAX_ARCHIVE_BYTES = 10 * 1024 * 1024
MAX_MEMBER_BYTES = 10 * 1024 * 1024

DB_FILENAME = "tweakcore.db"
HOME_ENV_VAR = "TWEAKCORE_HOME"


def data_dir() -> Path:
    """Directory holding the database, tweak definitions and profiles."""
    override = os.environ.get(HOME_ENV_VAR)
    if override:
        return Path(override)
    if getattr(sys, "frozen", False):
        return Path(sys.executable).resolve().parent
    return Path(__file__).resolve().parent.parent


DB_PATH = data_dir() / DB_FILENAME
