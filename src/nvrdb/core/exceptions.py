"""Custom exceptions for nvrdb."""


class NvrDbError(Exception):
    """Base exception for all nvrdb errors."""

    pass


class ConfigError(NvrDbError):
    """Configuration value is invalid."""

    pass


class DatabaseError(NvrDbError):
    """Database operation failed."""

    pass


class UpgradeError(DatabaseError):
    """Schema upgrade failed."""

    pass


class VersionOutOfRangeError(UpgradeError):
    """Database version is beyond what this build can upgrade to."""

    def __init__(self, observed: int, expected: int):
        """Initialize exception with observed and expected versions.

        Args:
            observed: Version recorded in the database.
            expected: Highest version this build can reach (or the requested target).
        """
        self.observed = observed
        self.expected = expected
        super().__init__(
            f"Database is at version {observed}, later than expected {expected}"
        )


class InvalidTargetError(UpgradeError):
    """Requested target version is outside what this build can reach."""

    def __init__(self, target: int, expected: int):
        self.target = target
        self.expected = expected
        super().__init__(
            f"Cannot upgrade to version {target}; target must be between 0 and {expected}"
        )


class CorruptVersionError(UpgradeError):
    """Version log is empty or holds an impossible version."""

    def __init__(self, observed: int | None):
        self.observed = observed
        if observed is None:
            message = "Database has no version rows"
        else:
            message = f"Database is at negative version {observed}!"
        super().__init__(message)


class StepFailureError(UpgradeError):
    """A single version step failed and was rolled back."""

    def __init__(self, version: int, cause: BaseException):
        """Initialize exception with the failing transition.

        Args:
            version: Version the step started from; the database remains here.
            cause: Underlying exception raised by the step or the commit.
        """
        self.version = version
        self.cause = cause
        super().__init__(
            f"Upgrade from version {version} to version {version + 1} failed: {cause}"
        )


class PragmaMismatchError(UpgradeError):
    """SQLite granted a different pragma value than requested."""

    def __init__(self, pragma: str, requested: object, actual: object):
        self.pragma = pragma
        self.requested = requested
        self.actual = actual
        super().__init__(
            f"pragma {pragma}: requested {requested!r}, got {actual!r}"
        )


class CompactionError(UpgradeError):
    """Post-upgrade vacuum failed; committed versions are unaffected."""

    pass


class RegistryError(UpgradeError):
    """Step registry is malformed."""

    pass
