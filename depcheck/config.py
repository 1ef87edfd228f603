"""Runtime configuration for depcheck.

Covers where the local vulnerability store lives and how it is opened, where
POM downloads are staged, how Maven Central is reached and how verbose the
CLI logs are. Values come from ``DB_*``, ``CENTRAL_*``, ``DATA_DIRECTORY``,
``TEMP_DIRECTORY`` and ``LOG_LEVEL`` variables or a ``.env`` file; the CLI
reads them once through ``get_settings()``.
"""

from functools import lru_cache
from pathlib import Path

from pydantic_settings import BaseSettings, SettingsConfigDict

# Version of the local store schema. Embedded in the data file name so
# stores written by an incompatible release never collide.
DB_SCHEMA_VERSION = "2.9"

# Substitution placeholder for the data file in ``db_connection_string``.
DATA_FILE_PLACEHOLDER = "%s"


class Settings(BaseSettings):
    """Application settings loaded from environment variables.

    Attributes:
        db_connection_string: SQLAlchemy URL template for the local store. When
            it contains ``%s`` the canonical versioned data file path is
            substituted in.
        db_user: Database username, applied when the URL carries none.
        db_password: Database password, applied when the URL carries none.
        db_driver_name: Importable DBAPI module to load before connecting.
        db_driver_path: Optional file or directory the driver module is loaded
            from instead of the import path.
        db_timeout_seconds: Busy/connect timeout for the store connection.
        data_directory: Directory holding the embedded store files.
        temp_directory: Directory for scoped temporary downloads. Uses the
            system temporary directory when unset.
        central_enabled: Enable the Maven Central analyzer.
        central_url: Maven Central search endpoint.
        central_content_url: Maven Central content endpoint used to build POM
            and JAR download locations.
        central_timeout_seconds: Request timeout for Central calls.
        log_level: Logging level (debug, info, warning, error, critical).
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Database
    db_connection_string: str = "sqlite:///%s"
    db_user: str = ""
    db_password: str = ""
    db_driver_name: str = ""
    db_driver_path: str = ""
    db_timeout_seconds: float = 30.0

    # Paths
    data_directory: Path = Path.home() / ".depcheck" / "data"
    temp_directory: Path | None = None

    # Maven Central
    central_enabled: bool = True
    central_url: str = "https://search.maven.org/solrsearch/select"
    central_content_url: str = "https://search.maven.org/remotecontent"
    central_timeout_seconds: float = 30.0

    # Logging
    log_level: str = "info"

    @property
    def data_file(self) -> Path:
        """Canonical path of the versioned embedded store file.

        Returns:
            ``<data_directory>/cve.<DB_SCHEMA_VERSION>.db`` resolved to an
            absolute path.
        """
        return (self.data_directory / f"cve.{DB_SCHEMA_VERSION}.db").resolve()


@lru_cache
def get_settings() -> Settings:
    """Get or create the cached settings singleton.

    Returns:
        Cached Settings instance.
    """
    return Settings()
