from typing import List, Optional


class TweakError(Exception):
    """Base class for every engine error. ``code`` is stable across releases."""

    code = "TWEAK_ERROR"

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class ConfigurationError(TweakError):
    """Malformed definition or profile, rejected before anything runs."""

    code = "CONFIGURATION_ERROR"


class ElevationRequiredError(TweakError):
    code = "PERMISSION_ERROR"

    def __init__(self, message: str, required=None, held=None) -> None:
        super().__init__(message)
        self.required = required
        self.held = held


class ResourceNotFound(TweakError):
    code = "RESOURCE_NOT_FOUND"


class RuntimeFailure(TweakError):
    code = "RUNTIME_FAILURE"


class NothingToRevertError(TweakError):
    code = "NOT_FOUND"


class RollbackFailure(TweakError):
    """
    Restoring captured state did not complete.

    ``failures`` lists one message per resource that could not be restored.
    ``original_error`` is the failure that triggered the rollback, if any.
    """

    code = "ROLLBACK_FAILURE"

    def __init__(
        self,
        message: str,
        failures: Optional[List[str]] = None,
        original_error: Optional[BaseException] = None,
    ) -> None:
        super().__init__(message)
        self.failures = list(failures or [])
        self.original_error = original_error


class SchemaError(TweakError):
    code = "SCHEMA_ERROR"


class SchemaVersionTooNew(SchemaError):
    code = "SCHEMA_VERSION_TOO_NEW"

    def __init__(self, found: int, supported: int) -> None:
        super().__init__(
            f"Profile schema v{found} is newer than supported v{supported}. "
            "Update the application to import it."
        )
        self.found = found
        self.supported = supported


class ChecksumMismatch(SchemaError):
    code = "CHECKSUM_MISMATCH"


class InvalidArchive(SchemaError):
    code = "INVALID_ARCHIVE"
