from .archive import read_archive, write_archive
from .export import ProfileExporter
from .importer import ProfileApplier
from .migration import migrate
from .models import (
    ApplyOptions,
    ApplyResult,
    ConfigurationProfile,
    ErrorCode,
    ProfileValidation,
    WarningCode,
)
from .resolver import ProfileResolver, import_profile

__all__ = [
    'read_archive',
    'write_archive',
    'ProfileExporter',
    'ProfileApplier',
    'migrate',
    'ApplyOptions',
    'ApplyResult',
    'ConfigurationProfile',
    'ErrorCode',
    'ProfileValidation',
    'WarningCode',
    'ProfileResolver',
    'import_profile',
]
