"""
Error kinds raised by the archive engine.

Every engine failure is an ArchiveError subclass. The CLI maps the
``exit_code`` of each kind to the process exit status, so callers can
tell usage problems, storage problems and destination conflicts apart.
"""

from enum import IntEnum


class ExitCode(IntEnum):
    OK = 0
    FAILURE = 1      # Unexpected error
    USAGE = 2        # Bad input, unknown record
    STORAGE = 3      # Database state or integrity
    CONFLICT = 4     # Recovery target already exists
    IO = 5           # Filesystem read/write failure


class ArchiveError(Exception):
    """Base class for all engine errors."""

    exit_code = ExitCode.FAILURE

    @property
    def kind(self) -> str:
        return type(self).__name__


class ValidationError(ArchiveError, ValueError):
    """Raised when an input or setting is not acceptable."""

    exit_code = ExitCode.USAGE


class NotFound(ArchiveError, LookupError):
    """Raised when no archived record matches a reference."""

    exit_code = ExitCode.USAGE

    def __init__(self, ref):
        self.ref = ref
        super().__init__(f"No archived record matches '{ref}'")


class AlreadyInitialized(ArchiveError):
    """Raised by init when a database already exists at the location."""

    exit_code = ExitCode.STORAGE

    def __init__(self, db_path):
        self.db_path = db_path
        super().__init__(
            f"Archive already exists at {db_path}\n"
            f"  Use 'env-archive init --clean' to discard it and start over."
        )


class NotInitialized(ArchiveError):
    """Raised when a command needs a database that does not exist yet."""

    exit_code = ExitCode.STORAGE

    def __init__(self, db_path):
        self.db_path = db_path
        super().__init__(
            f"No archive at {db_path}\n"
            f"  Run 'env-archive init' to create one, or use '-d <path>' to choose another."
        )


class StorageCorrupt(ArchiveError):
    """Raised when the database file is unreadable or not an archive."""

    exit_code = ExitCode.STORAGE


class TagCollision(ArchiveError):
    """Raised when (path, archived_at) is already taken after the retry."""

    exit_code = ExitCode.STORAGE

    def __init__(self, original_path, archived_at):
        self.original_path = original_path
        self.archived_at = archived_at
        super().__init__(
            f"Tag collision: {original_path} is already archived at {archived_at.isoformat()}"
        )


class DestinationExists(ArchiveError, FileExistsError):
    """Raised when recovery would overwrite a live file without force."""

    exit_code = ExitCode.CONFLICT

    def __init__(self, path):
        self.path = path
        super().__init__(
            f"Refusing to overwrite existing file: {path}\n"
            f"  Pass --force to replace it, or give another destination."
        )

    def __str__(self):
        return self.args[0]


class IoFailure(ArchiveError, OSError):
    """Raised when a file cannot be read or written."""

    exit_code = ExitCode.IO

    def __str__(self):
        return self.args[0] if self.args else "I/O failure"
