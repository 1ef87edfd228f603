"""Local store connection management.

``ConnectionFactory.get_connection()`` returns a SQLAlchemy connection to the
local store and guarantees that its schema matches this release:

    * When the connection string template contains ``%s`` the canonical
      versioned data file (``cve.<DB_SCHEMA_VERSION>.db``) is substituted in.
      If that file does not exist yet the bundled schema script is executed
      to create it, in a single transaction and under a lock file shared by
      every process using the same data directory. A store whose creation
      fails is removed again.
    * Otherwise, and for existing files, the ``version`` row of the
      ``properties`` table must equal ``DB_SCHEMA_VERSION``. A verbatim
      SQLite target whose file does not exist is rejected without opening it.

Any failure to load the driver, connect, create or validate is raised as
``StoreBootstrapError``; a scan must not continue against a store of the
wrong shape.
"""

import importlib
import importlib.resources
import importlib.util
import logging
import re
import threading
from enum import Enum
from pathlib import Path
from types import ModuleType

from filelock import FileLock, Timeout
from sqlalchemy import create_engine, inspect, select
from sqlalchemy.engine import Connection, make_url
from sqlalchemy.exc import ArgumentError, SQLAlchemyError
from sqlalchemy.pool import NullPool

from depcheck.config import (
    DATA_FILE_PLACEHOLDER,
    DB_SCHEMA_VERSION,
    Settings,
    get_settings,
)
from depcheck.exceptions import DriverLoadError, StoreBootstrapError
from depcheck.models.database import Property

logger = logging.getLogger(__name__)

# Bundled schema definition, relative to the depcheck package.
DB_STRUCTURE_RESOURCE = "data/initialize.sql"

# Query flag requesting an exclusive multi-process server mode.
SERVER_MODE_PATTERN = re.compile(r"([?&])auto_server=true(&?)", re.IGNORECASE)

# Error message fragments that mean the database host could not be reached.
HOST_FAILURE_SIGNATURES = (
    "unknownhostexception",
    "unknown host",
    "could not translate host name",
    "name or service not known",
    "nodename nor servname provided",
    "temporary failure in name resolution",
    "no such host is known",
)

# Failures raised while building an engine or opening a connection.
CONNECT_ERRORS = (SQLAlchemyError, ValueError, TypeError)

# Suffix of the lock file guarding creation of an embedded store.
LOCK_FILE_SUFFIX = ".lock"

# One in-process creation lock per resolved connection target. Other
# processes are excluded by the lock file next to the data file.
_creation_locks: dict[str, threading.Lock] = {}
_creation_locks_guard = threading.Lock()


class StoreState(str, Enum):
    """Lifecycle of a store acquisition."""
    UNINITIALIZED = "uninitialized"
    CREATING = "creating"
    VALIDATING = "validating"
    READY = "ready"
    FAILED = "failed"


def _creation_lock(target: str) -> threading.Lock:
    with _creation_locks_guard:
        return _creation_locks.setdefault(target, threading.Lock())


def has_server_mode(target: str) -> bool:
    """Check whether a connection string requests server mode."""
    return SERVER_MODE_PATTERN.search(target) is not None


def strip_server_mode(target: str) -> str:
    """Remove the server mode flag from a connection string."""

    def _replace(match: re.Match) -> str:
        separator, trailing = match.group(1), match.group(2)
        return separator if trailing else ""

    return SERVER_MODE_PATTERN.sub(_replace, target)


def is_host_failure(error: BaseException) -> bool:
    """Check whether a connection error was caused by an unreachable host."""
    message = str(error).lower()
    return any(signature in message for signature in HOST_FAILURE_SIGNATURES)


def read_schema_script() -> str:
    """Read the bundled schema definition script."""
    resource = importlib.resources.files("depcheck").joinpath(DB_STRUCTURE_RESOURCE)
    return resource.read_text(encoding="utf-8")


def load_driver(driver_name: str, driver_path: str = "") -> ModuleType:
    """Load a DBAPI driver module.

    Args:
        driver_name: Importable module name (e.g. ``psycopg2``)
        driver_path: Optional file or directory to load the module from
            instead of the import path

    Returns:
        The loaded module

    Raises:
        DriverLoadError: If the module cannot be found or imported
    """
    if not driver_path:
        try:
            return importlib.import_module(driver_name)
        except ImportError as e:
            raise DriverLoadError(f"Unable to load database driver '{driver_name}': {e}") from e

    location = Path(driver_path)
    if location.is_dir():
        relative = Path(*driver_name.split("."))
        package_init = location / relative / "__init__.py"
        location = package_init if package_init.exists() else location / relative.with_suffix(".py")
    if not location.is_file():
        raise DriverLoadError(f"Database driver '{driver_name}' not found at {driver_path}")

    spec = importlib.util.spec_from_file_location(driver_name, location)
    if spec is None or spec.loader is None:
        raise DriverLoadError(f"Unable to load database driver '{driver_name}' from {location}")
    module = importlib.util.module_from_spec(spec)
    try:
        spec.loader.exec_module(module)
    except Exception as e:
        raise DriverLoadError(
            f"Unable to load database driver '{driver_name}' from {location}: {e}"
        ) from e
    return module


class ConnectionFactory:
    """Opens schema-checked connections to the local store."""

    def __init__(self, settings: Settings | None = None):
        """Initialize the factory.

        Args:
            settings: Settings to use (defaults to the cached settings). The
                factory may rewrite ``db_connection_string`` on it when
                falling back from server mode.
        """
        self.settings = settings or get_settings()
        self.state = StoreState.UNINITIALIZED

    def get_data_directory(self) -> Path:
        """Return the data directory, creating it if necessary.

        Raises:
            OSError: If the directory cannot be created
        """
        path = self.settings.data_directory
        path.mkdir(parents=True, exist_ok=True)
        return path.resolve()

    def get_connection_string(self) -> tuple[str, Path | None]:
        """Resolve the effective connection string.

        Returns:
            Tuple of (connection string, data file). The data file is only
            set when the template contained the data file placeholder.

        Raises:
            OSError: If the data directory cannot be created
        """
        template = self.settings.db_connection_string
        if DATA_FILE_PLACEHOLDER not in template:
            return template, None

        self.get_data_directory()
        data_file = self.settings.data_file
        logger.debug(f"File path for embedded store: '{data_file}'")
        return template.replace(DATA_FILE_PLACEHOLDER, data_file.as_posix(), 1), data_file

    def get_connection(self) -> Connection:
        """Open a connection to the local store, creating or validating its schema.

        Returns:
            An open connection to a store at ``DB_SCHEMA_VERSION``

        Raises:
            StoreBootstrapError: If the store cannot be opened, created or
                does not match the expected schema version
        """
        try:
            target, data_file = self.get_connection_string()
        except OSError as e:
            self.state = StoreState.FAILED
            raise StoreBootstrapError(f"Unable to load database: {e}") from e

        logger.debug("Loading database connection")
        logger.debug(f"Database user: {self.settings.db_user or '<none>'}")

        database_file = self._sqlite_file(target)
        if data_file is None or database_file is None:
            if database_file is not None and not database_file.exists():
                self.state = StoreState.FAILED
                raise StoreBootstrapError(f"Database file not found: {database_file}")
            return self._open_and_check(target, create=False)

        lock_file = f"{data_file}{LOCK_FILE_SUFFIX}"
        try:
            with _creation_lock(target), FileLock(lock_file, timeout=self.settings.db_timeout_seconds):
                create = not data_file.exists()
                logger.debug(f"Need to create DB structure: {create}")
                return self._open_and_check(target, create=create, data_file=data_file)
        except Timeout as e:
            self.state = StoreState.FAILED
            raise StoreBootstrapError(f"Timed out waiting for the database lock {lock_file}") from e

    def _open_and_check(self, target: str, create: bool, data_file: Path | None = None) -> Connection:
        """Open ``target`` and create or validate its schema.

        When ``create`` is set and creation fails, ``data_file`` is removed so
        the next acquisition starts from an absent store again.
        """
        self.state = StoreState.CREATING if create else StoreState.VALIDATING
        try:
            module = self._load_configured_driver()
            conn = self._connect(target, module)
        except StoreBootstrapError:
            self._fail(data_file)
            raise

        try:
            if create and not self._has_schema(conn):
                self._create_tables(conn)
            else:
                if create:
                    logger.debug("Store already has a schema; validating instead")
                    self.state = StoreState.VALIDATING
                self._ensure_schema_version(conn)
        except StoreBootstrapError:
            conn.close()
            self._fail(data_file)
            raise

        self.state = StoreState.READY
        return conn

    def _fail(self, data_file: Path | None) -> None:
        """Mark the acquisition failed, discarding a store this run was creating."""
        if self.state is StoreState.CREATING and data_file is not None:
            try:
                data_file.unlink(missing_ok=True)
            except OSError as e:
                logger.warning(f"Unable to remove incomplete database {data_file}: {e}")
            else:
                logger.debug(f"Removed incomplete database {data_file}")
        self.state = StoreState.FAILED

    @staticmethod
    def _sqlite_file(target: str) -> Path | None:
        """Return the file behind a file-backed SQLite target, if it is one."""
        try:
            url = make_url(target)
        except ArgumentError:
            return None
        if url.get_backend_name() != "sqlite" or url.database in (None, "", ":memory:"):
            return None
        return Path(url.database)

    def _load_configured_driver(self) -> ModuleType | None:
        driver_name = self.settings.db_driver_name
        if not driver_name:
            return None

        driver_path = self.settings.db_driver_path
        logger.debug(f"Loading driver: {driver_name}")
        if driver_path:
            logger.debug(f"Loading driver from: {driver_path}")
        try:
            return load_driver(driver_name, driver_path)
        except DriverLoadError as e:
            logger.debug(f"Driver load failed: {e}")
            raise StoreBootstrapError("Unable to load database driver") from e

    def _connect(self, target: str, module: ModuleType | None) -> Connection:
        """Connect, falling back once from server mode when the host is unreachable."""
        try:
            return self._open_connection(target, module)
        except CONNECT_ERRORS as e:
            if not (is_host_failure(e) and has_server_mode(target)):
                logger.debug(f"Unable to connect to the database: {e}")
                raise StoreBootstrapError("Unable to connect to the database") from e
            original_error = e

        single_user_target = strip_server_mode(target)
        try:
            conn = self._open_connection(single_user_target, module)
        except CONNECT_ERRORS as e:
            logger.debug(f"Single user mode connection failed: {e}")
            raise StoreBootstrapError("Unable to connect to the database") from original_error

        self.settings.db_connection_string = strip_server_mode(self.settings.db_connection_string)
        logger.warning("Unable to start the database in server mode; reverting to single user mode")
        return conn

    def _open_connection(self, target: str, module: ModuleType | None) -> Connection:
        """Create an engine for ``target`` and open a connection on it."""
        url = make_url(target)
        connect_args = {}
        if url.get_backend_name() == "sqlite":
            connect_args["timeout"] = self.settings.db_timeout_seconds
        elif url.username is None and self.settings.db_user:
            url = url.set(
                username=self.settings.db_user,
                password=self.settings.db_password or None,
            )

        engine_kwargs = {"poolclass": NullPool, "connect_args": connect_args}
        if module is not None:
            engine_kwargs["module"] = module
        engine = create_engine(url, **engine_kwargs)
        return engine.connect()

    @staticmethod
    def _has_schema(conn: Connection) -> bool:
        try:
            return inspect(conn).has_table(Property.__tablename__)
        except SQLAlchemyError as e:
            raise StoreBootstrapError("Unable to inspect the database structure") from e

    def _create_tables(self, conn: Connection) -> None:
        """Execute the bundled schema script as a single transaction.

        SQLite runs the script under ``BEGIN IMMEDIATE`` so other connections
        never observe a partially created schema, and a failing statement
        rolls back every table created before it.
        """
        logger.debug("Creating database structure")
        try:
            script = read_schema_script()
        except OSError as e:
            raise StoreBootstrapError("Unable to create database schema") from e

        driver_error = conn.dialect.dbapi.Error
        try:
            conn.rollback()
            if conn.dialect.name == "sqlite":
                raw = conn.connection.driver_connection
                try:
                    raw.executescript(f"BEGIN IMMEDIATE;\n{script}\nCOMMIT;\n")
                except driver_error:
                    raw.rollback()
                    raise
            else:
                conn.exec_driver_sql(script)
            conn.commit()
        except (SQLAlchemyError, driver_error) as e:
            logger.debug(f"Schema creation failed: {e}")
            raise StoreBootstrapError("Unable to create the database structure") from e

    def _ensure_schema_version(self, conn: Connection) -> None:
        """Check the stored schema version against ``DB_SCHEMA_VERSION``."""
        try:
            version = conn.execute(
                select(Property.value).where(Property.id == "version")
            ).scalar_one_or_none()
            conn.rollback()
        except SQLAlchemyError as e:
            logger.debug(f"Schema version check failed: {e}")
            raise StoreBootstrapError("Unable to check the database schema version") from e

        if version is None:
            raise StoreBootstrapError("Database schema is missing")
        if version != DB_SCHEMA_VERSION:
            raise StoreBootstrapError(
                f"Incorrect database schema (found {version}, expected "
                f"{DB_SCHEMA_VERSION}); unable to continue"
            )


def get_connection(settings: Settings | None = None) -> Connection:
    """Open a schema-checked connection to the local store.

    Returns:
        An open connection; the caller is responsible for closing it.
    """
    return ConnectionFactory(settings).get_connection()
