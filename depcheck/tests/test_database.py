"""Tests for local store acquisition and schema validation."""

import multiprocessing
import os
import sqlite3
import threading
from pathlib import Path
from unittest.mock import MagicMock, patch

import pytest
from sqlalchemy import inspect, select
from sqlalchemy.exc import OperationalError

from depcheck.config import DB_SCHEMA_VERSION, Settings
from depcheck.database import (
    ConnectionFactory,
    StoreState,
    get_connection,
    has_server_mode,
    is_host_failure,
    load_driver,
    strip_server_mode,
)
from depcheck.exceptions import DriverLoadError, StoreBootstrapError
from depcheck.models.database import Property


SERVER_TARGET = "postgresql://db.invalid/cve?auto_server=true"


@pytest.fixture
def settings(tmp_path):
    return Settings(data_directory=tmp_path / "data")


def _stored_version(conn):
    return conn.execute(select(Property.value).where(Property.id == "version")).scalar_one()


def _make_store(path, rows=()):
    """Create a bare store file with only a properties table."""
    path.parent.mkdir(parents=True, exist_ok=True)
    raw = sqlite3.connect(path)
    raw.execute("CREATE TABLE properties (id VARCHAR(50) PRIMARY KEY, value VARCHAR(500))")
    raw.executemany("INSERT INTO properties (id, value) VALUES (?, ?)", rows)
    raw.commit()
    raw.close()


def _acquire_store(data_directory):
    """Acquire the store from a worker process and report the final state."""
    factory = ConnectionFactory(Settings(data_directory=Path(data_directory)))
    try:
        factory.get_connection().close()
    except StoreBootstrapError as e:
        return f"{factory.state.value}: {e} / {e.__cause__}"
    return factory.state.value


def _tables(path):
    raw = sqlite3.connect(path)
    try:
        return {row[0] for row in raw.execute("SELECT name FROM sqlite_master WHERE type = 'table'")}
    finally:
        raw.close()


class TestServerModeHelpers:
    @pytest.mark.parametrize("target,expected", [
        ("postgresql://db/cve?auto_server=true", "postgresql://db/cve"),
        ("postgresql://db/cve?auto_server=TRUE&sslmode=require", "postgresql://db/cve?sslmode=require"),
        ("postgresql://db/cve?sslmode=require&auto_server=true", "postgresql://db/cve?sslmode=require"),
        ("postgresql://db/cve?a=1&auto_server=true&b=2", "postgresql://db/cve?a=1&b=2"),
        ("sqlite:///%s?auto_server=true", "sqlite:///%s"),
        ("postgresql://db/cve", "postgresql://db/cve"),
    ])
    def test_strip_server_mode(self, target, expected):
        assert strip_server_mode(target) == expected

    def test_has_server_mode(self):
        assert has_server_mode(SERVER_TARGET)
        assert not has_server_mode("postgresql://db/cve?auto_server=false")

    def test_is_host_failure(self):
        assert is_host_failure(Exception('could not translate host name "db.invalid" to address'))
        assert is_host_failure(Exception("java.net.UnknownHostException: db.invalid"))
        assert not is_host_failure(Exception("connection refused"))


class TestLoadDriver:
    def test_import_by_name(self):
        assert load_driver("sqlite3") is sqlite3

    def test_unknown_module(self):
        with pytest.raises(DriverLoadError):
            load_driver("depcheck_no_such_driver")

    def test_load_from_file(self, tmp_path):
        driver_file = tmp_path / "fakedriver.py"
        driver_file.write_text("paramstyle = 'qmark'\n")

        module = load_driver("fakedriver", str(driver_file))

        assert module.paramstyle == "qmark"

    def test_load_from_directory(self, tmp_path):
        (tmp_path / "fakedriver.py").write_text("paramstyle = 'named'\n")

        module = load_driver("fakedriver", str(tmp_path))

        assert module.paramstyle == "named"

    def test_missing_path(self, tmp_path):
        with pytest.raises(DriverLoadError):
            load_driver("fakedriver", str(tmp_path / "missing.py"))

    def test_broken_module(self, tmp_path):
        driver_file = tmp_path / "brokendriver.py"
        driver_file.write_text("raise RuntimeError('driver failed to initialise')\n")

        with pytest.raises(DriverLoadError, match="driver failed to initialise"):
            load_driver("brokendriver", str(driver_file))


class TestConnectionString:
    def test_placeholder_replaced_with_data_file(self, settings, tmp_path):
        target, data_file = ConnectionFactory(settings).get_connection_string()

        expected = (tmp_path / "data" / f"cve.{DB_SCHEMA_VERSION}.db").resolve()
        assert data_file == expected
        assert target == f"sqlite:///{expected.as_posix()}"
        assert (tmp_path / "data").is_dir()

    def test_verbatim_template(self, tmp_path):
        settings = Settings(data_directory=tmp_path / "data", db_connection_string="postgresql://db/cve")

        assert ConnectionFactory(settings).get_connection_string() == ("postgresql://db/cve", None)


class TestConnectionFactory:
    def test_creates_new_store(self, settings):
        factory = ConnectionFactory(settings)
        assert factory.state is StoreState.UNINITIALIZED

        original = ConnectionFactory._create_tables
        with patch.object(ConnectionFactory, "_create_tables", autospec=True, side_effect=original) as create:
            conn = factory.get_connection()

        try:
            create.assert_called_once()
            assert factory.state is StoreState.READY
            assert _stored_version(conn) == DB_SCHEMA_VERSION
            inspector = inspect(conn)
            for table in ("vulnerability", "reference", "cpe_entry", "software", "properties"):
                assert inspector.has_table(table)
        finally:
            conn.close()
        assert settings.data_file.exists()

    def test_existing_store_is_validated(self, settings):
        get_connection(settings).close()

        factory = ConnectionFactory(settings)
        with patch.object(ConnectionFactory, "_create_tables") as create:
            conn = factory.get_connection()
        conn.close()

        create.assert_not_called()
        assert factory.state is StoreState.READY

    def test_mismatched_version_fails_without_writes(self, settings):
        _make_store(settings.data_file, [("version", "1.0")])

        factory = ConnectionFactory(settings)
        with pytest.raises(StoreBootstrapError, match="Incorrect database schema"):
            factory.get_connection()

        assert factory.state is StoreState.FAILED
        assert _tables(settings.data_file) == {"properties"}
        raw = sqlite3.connect(settings.data_file)
        try:
            assert raw.execute("SELECT value FROM properties WHERE id = 'version'").fetchone() == ("1.0",)
        finally:
            raw.close()

    def test_missing_version_row_fails(self, settings):
        _make_store(settings.data_file)

        factory = ConnectionFactory(settings)
        with pytest.raises(StoreBootstrapError, match="schema is missing"):
            factory.get_connection()
        assert factory.state is StoreState.FAILED

    def test_store_without_properties_table_fails(self, settings):
        settings.data_file.parent.mkdir(parents=True)
        settings.data_file.touch()

        factory = ConnectionFactory(settings)
        with pytest.raises(StoreBootstrapError):
            factory.get_connection()

        assert factory.state is StoreState.FAILED
        assert _tables(settings.data_file) == set()

    def test_verbatim_target_never_creates(self, tmp_path):
        db_file = tmp_path / "external.db"
        settings = Settings(
            data_directory=tmp_path / "data",
            db_connection_string=f"sqlite:///{db_file.as_posix()}",
        )

        factory = ConnectionFactory(settings)
        with patch.object(ConnectionFactory, "_open_connection") as open_conn:
            with pytest.raises(StoreBootstrapError, match="not found"):
                factory.get_connection()

        open_conn.assert_not_called()
        assert factory.state is StoreState.FAILED
        assert not db_file.exists()

    def test_verbatim_target_validates_existing_store(self, settings, tmp_path):
        get_connection(settings).close()
        verbatim = Settings(
            data_directory=tmp_path / "elsewhere",
            db_connection_string=f"sqlite:///{settings.data_file.as_posix()}",
        )

        factory = ConnectionFactory(verbatim)
        conn = factory.get_connection()
        conn.close()

        assert factory.state is StoreState.READY

    def test_concurrent_acquisition_creates_once(self, settings):
        barrier = threading.Barrier(4)
        states = []
        errors = []

        def acquire():
            factory = ConnectionFactory(settings)
            barrier.wait()
            try:
                conn = factory.get_connection()
            except StoreBootstrapError as e:
                errors.append(e)
                return
            conn.close()
            states.append(factory.state)

        original = ConnectionFactory._create_tables
        with patch.object(ConnectionFactory, "_create_tables", autospec=True, side_effect=original) as create:
            threads = [threading.Thread(target=acquire) for _ in range(4)]
            for thread in threads:
                thread.start()
            for thread in threads:
                thread.join()

        assert errors == []
        assert states == [StoreState.READY] * 4
        assert create.call_count == 1

    @pytest.mark.skipif(not hasattr(os, "fork"), reason="requires fork")
    def test_concurrent_processes_create_once(self, tmp_path):
        context = multiprocessing.get_context("fork")
        for trial in range(5):
            data_directory = tmp_path / f"trial-{trial}"
            with context.Pool(4) as pool:
                results = pool.map(_acquire_store, [str(data_directory)] * 4)

            assert results == [StoreState.READY.value] * 4
            assert _tables(Settings(data_directory=data_directory).data_file) >= {"vulnerability", "properties"}

    def test_failed_creation_removes_store(self, settings):
        broken_script = "CREATE TABLE vulnerability (id INTEGER);\nCREATE TABLE broken (;"

        factory = ConnectionFactory(settings)
        with patch("depcheck.database.read_schema_script", return_value=broken_script):
            with pytest.raises(StoreBootstrapError, match="Unable to create"):
                factory.get_connection()

        assert factory.state is StoreState.FAILED
        assert not settings.data_file.exists()

        retry = ConnectionFactory(settings)
        conn = retry.get_connection()
        try:
            assert retry.state is StoreState.READY
            assert _stored_version(conn) == DB_SCHEMA_VERSION
        finally:
            conn.close()

    def test_failed_script_rolls_back_every_statement(self, settings):
        settings.data_file.parent.mkdir(parents=True)
        engine_conn = ConnectionFactory(settings)._open_connection(
            f"sqlite:///{settings.data_file.as_posix()}", None
        )
        try:
            with patch("depcheck.database.read_schema_script",
                       return_value="CREATE TABLE vulnerability (id INTEGER);\nCREATE TABLE broken (;"):
                with pytest.raises(StoreBootstrapError):
                    ConnectionFactory(settings)._create_tables(engine_conn)
        finally:
            engine_conn.close()

        assert _tables(settings.data_file) == set()

    def test_configured_driver_is_used(self, tmp_path):
        settings = Settings(data_directory=tmp_path / "data", db_driver_name="sqlite3")

        factory = ConnectionFactory(settings)
        conn = factory.get_connection()
        conn.close()

        assert factory.state is StoreState.READY

    def test_driver_load_failure(self, tmp_path):
        settings = Settings(data_directory=tmp_path / "data", db_driver_name="depcheck_no_such_driver")

        factory = ConnectionFactory(settings)
        with pytest.raises(StoreBootstrapError) as exc_info:
            factory.get_connection()

        assert isinstance(exc_info.value.__cause__, DriverLoadError)
        assert factory.state is StoreState.FAILED

    def test_unusable_data_directory(self, tmp_path):
        blocker = tmp_path / "not-a-dir"
        blocker.write_text("")
        settings = Settings(data_directory=blocker / "data")

        factory = ConnectionFactory(settings)
        with pytest.raises(StoreBootstrapError):
            factory.get_connection()
        assert factory.state is StoreState.FAILED


class TestServerModeFallback:
    @pytest.fixture
    def server_settings(self, tmp_path):
        return Settings(data_directory=tmp_path / "data", db_connection_string=SERVER_TARGET)

    def test_host_failure_retries_once_in_single_user_mode(self, server_settings):
        host_error = OperationalError(
            "connect", {}, Exception('could not translate host name "db.invalid" to address')
        )
        conn = MagicMock()

        factory = ConnectionFactory(server_settings)
        with patch.object(ConnectionFactory, "_open_connection", side_effect=[host_error, conn]) as open_conn, \
                patch.object(ConnectionFactory, "_ensure_schema_version"):
            result = factory.get_connection()

        assert result is conn
        assert open_conn.call_count == 2
        assert open_conn.call_args_list[0].args[0] == SERVER_TARGET
        assert open_conn.call_args_list[1].args[0] == "postgresql://db.invalid/cve"
        assert server_settings.db_connection_string == "postgresql://db.invalid/cve"
        assert factory.state is StoreState.READY

    def test_failed_retry_reports_original_error(self, server_settings):
        host_error = OperationalError("connect", {}, Exception("Name or service not known"))
        retry_error = OperationalError("connect", {}, Exception("connection refused"))

        factory = ConnectionFactory(server_settings)
        with patch.object(ConnectionFactory, "_open_connection", side_effect=[host_error, retry_error]) as open_conn:
            with pytest.raises(StoreBootstrapError) as exc_info:
                factory.get_connection()

        assert open_conn.call_count == 2
        assert exc_info.value.__cause__ is host_error
        assert server_settings.db_connection_string == SERVER_TARGET
        assert factory.state is StoreState.FAILED

    def test_other_failures_do_not_retry(self, server_settings):
        error = OperationalError("connect", {}, Exception("connection refused"))

        factory = ConnectionFactory(server_settings)
        with patch.object(ConnectionFactory, "_open_connection", side_effect=error) as open_conn:
            with pytest.raises(StoreBootstrapError):
                factory.get_connection()

        open_conn.assert_called_once()
        assert server_settings.db_connection_string == SERVER_TARGET

    def test_host_failure_without_server_mode_does_not_retry(self, tmp_path):
        settings = Settings(data_directory=tmp_path / "data", db_connection_string="postgresql://db.invalid/cve")
        error = OperationalError("connect", {}, Exception("could not translate host name"))

        factory = ConnectionFactory(settings)
        with patch.object(ConnectionFactory, "_open_connection", side_effect=error) as open_conn:
            with pytest.raises(StoreBootstrapError):
                factory.get_connection()

        open_conn.assert_called_once()
