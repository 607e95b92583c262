"""
Defines custom exceptions for the application to allow for more specific error handling.
"""


class ModShelfError(Exception):
    """Base exception for all application-specific errors."""


class BackendUnavailable(ModShelfError):
    """Raised when the external 7-Zip executable cannot be located or spawned."""


class ArchiveError(ModShelfError):
    """Base class for failures reported by the archive backend."""


class ArchiveReadError(ArchiveError):
    """Raised on a non-zero backend exit or unparsable listing output."""


class ArchiveWriteError(ArchiveError):
    """Raised when adding, deleting or renaming an archive entry fails."""


class TargetExists(ModShelfError):
    """Raised when a rename or conversion destination is already occupied."""


class NotConfigured(ModShelfError):
    """Raised when the mods root (or assets root) is unset or missing."""


class ParseError(ModShelfError):
    """
    Raised internally when embedded metadata cannot be decoded.
    Callers always treat it as "no metadata".
    """


class ModNotFound(ModShelfError):
    """Raised when a character or mod cannot be located under the mods root."""


class InvalidName(ModShelfError):
    """Raised when a requested name is not a valid file or folder name."""


class ConfigurationError(ModShelfError):
    """Raised for issues related to settings loading or validation."""


class DownloadError(ModShelfError):
    """Raised when an HTTP download fails after all retries."""
