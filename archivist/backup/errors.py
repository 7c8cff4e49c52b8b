"""
Exception hierarchy for the archive transfer pipeline.

Every error raised by a pipeline stage derives from ArchivistError so the
executor can report it uniformly to the execution gate.
"""


class ArchivistError(Exception):
    """Base class for all pipeline errors."""
    pass


class ConfigError(ArchivistError):
    """Raised when a task references an unknown or unsupported backend."""
    pass


class SourceMissingError(ArchivistError):
    """Raised when the source location is absent at run time."""
    pass


class EncryptionConfigError(ArchivistError):
    """Raised when encryption is enabled without a password."""
    pass


class CipherFormatError(ArchivistError):
    """Raised when an encrypted stream has a bad header or invalid padding."""
    pass


class CompressionError(ArchivistError):
    """Raised when archive creation fails."""
    pass


class StorageError(ArchivistError):
    """Raised when a list, write or delete against a backend fails."""
    pass


class UploadError(StorageError):
    """Raised when writing an archive to a backend fails."""
    pass
