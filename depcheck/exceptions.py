"""Exception hierarchy shared by the identity analyzers and the local store.

Dependency-scoped errors (digest validation, lookups, downloads) are handled
at the analyzer boundary. Store-scoped errors are fatal for a scan.
"""


class AnalysisError(Exception):
    """Raised when an analyzer cannot process a dependency."""

    pass


class PomParseError(AnalysisError):
    """Raised when a POM document is malformed or unreadable."""

    pass


class InvalidDigestError(ValueError):
    """Raised when a dependency digest is not a well-formed SHA-1 hash."""

    pass


class ArtifactNotFoundError(LookupError):
    """Raised when the remote index has no artifact for a digest."""

    pass


class CentralSearchError(Exception):
    """Raised when the Central search index cannot be reached or answers badly."""

    pass


class DownloadError(Exception):
    """Base class for descriptor download failures."""

    pass


class DownloadNotFoundError(DownloadError):
    """Raised when the requested resource does not exist (HTTP 404)."""

    pass


class DownloadFailedError(DownloadError):
    """Raised on transport failures or unexpected HTTP status codes."""

    pass


class DatabaseError(Exception):
    """Base class for local store errors."""

    pass


class DriverLoadError(DatabaseError):
    """Raised when a configured database driver cannot be loaded."""

    pass


class StoreBootstrapError(DatabaseError):
    """Raised when the local store cannot be created, opened or validated."""

    pass
