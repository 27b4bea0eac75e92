# ABOUTME: Custom exception hierarchy for foxflow error handling
# ABOUTME: Provides per-object and run-level failures with recovery hints
"""Custom exceptions for foxflow"""


class MigrationError(Exception):
    """Base exception for all foxflow errors"""

    def __init__(self, message: str, recovery_hint: str | None = None):
        super().__init__(message)
        self.recovery_hint = recovery_hint

    def __str__(self):
        base = super().__str__()
        if self.recovery_hint:
            return f"{base}\nHint: {self.recovery_hint}"
        return base


class ParseError(MigrationError):
    """Malformed or unexpected FOXML structure"""

    pass


class ContentUnavailableError(MigrationError):
    """Content backing a datastream version could not be found"""

    pass


class UnresolvableIDError(ContentUnavailableError):
    """An internal content id matched zero or several stored files"""

    pass


class FetchError(MigrationError):
    """Transport failure while fetching externally hosted content"""

    pass


class DigestMismatchError(MigrationError):
    """Declared and computed checksums disagree"""

    pass


class StorageCommitError(MigrationError):
    """Destination storage refused or failed a transaction"""

    pass


class ConfigurationError(MigrationError):
    """Invalid run configuration"""

    pass


class PidListError(MigrationError):
    """Pid list or resume file is inconsistent"""

    pass
