# qbsync Errors
# Exception taxonomy shared by the engine, the remote client and the CLI

from typing import Optional


class QbsyncError(Exception):
    """Base class for all qbsync errors."""

    def __init__(self, message: str):
        self.message = message
        super().__init__(message)


class TransportError(QbsyncError):
    """
    Remote call failed.

    Raised for malformed responses, exception-shaped payloads and HTTP
    failures. Usually caught per item: the item is skipped and the run goes on.
    """

    def __init__(self, message: str, debuginfo: Optional[str] = None):
        self.debuginfo = debuginfo
        super().__init__(message)

    def describe(self) -> str:
        """Message followed by debug info, if the server sent any."""
        if self.debuginfo:
            return f"{self.message}\n{self.debuginfo}"
        return self.message


class FilesystemError(QbsyncError):
    """A file or directory could not be read or written."""


class MarkerNotFoundError(FilesystemError):
    """Directory has no category marker file."""


class MarkerParseError(FilesystemError):
    """Category marker exists but does not declare a category."""


class DocumentError(QbsyncError):
    """Remote question document could not be split into categories and question."""


class FatalConfigError(QbsyncError):
    """Error that leaves later items inconsistent. Aborts the whole run."""


class ConfigError(FatalConfigError):
    """Invalid or incomplete configuration."""


class ManifestNotFoundError(FatalConfigError):
    """Manifest file does not exist."""


class ManifestParseError(FatalConfigError):
    """Manifest file is not valid manifest JSON."""


class StagingLogError(FatalConfigError):
    """Staging log could not be written or read."""


class CategoryImportError(FatalConfigError):
    """Creating a category on the remote failed during import."""


class VersionConflictError(FatalConfigError):
    """Questions changed on the remote since they were last exported."""

    def __init__(self, message: str, entity_ids: Optional[list[str]] = None):
        self.entity_ids = entity_ids or []
        super().__init__(message)


class QuizStructureError(FatalConfigError):
    """Quiz structure file cannot be read or refers to untracked questions."""
