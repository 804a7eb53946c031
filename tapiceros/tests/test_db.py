import psycopg2
import psycopg2.errors
import pytest

from tapiceros import db
from tapiceros.app.errors import ConfigurationError, ConflictError, NotFoundError, ValidationError


class RecordingConnection:
    def __init__(self):
        self.commits = 0
        self.rollbacks = 0

    def commit(self):
        self.commits += 1

    def rollback(self):
        self.rollbacks += 1


def test_unique_violation_becomes_conflict():
    translated = db.translate_database_error(psycopg2.errors.UniqueViolation("duplicate key"))

    assert isinstance(translated, ConflictError)
    assert translated.status_code == 409


def test_foreign_key_violation_becomes_validation_error():
    translated = db.translate_database_error(psycopg2.errors.ForeignKeyViolation("fk"))

    assert isinstance(translated, ValidationError)
    assert translated.message == "Referenced record does not exist"


def test_invalid_identifier_becomes_validation_error():
    translated = db.translate_database_error(
        psycopg2.errors.InvalidTextRepresentation("invalid input syntax for type uuid")
    )

    assert isinstance(translated, ValidationError)


def test_other_errors_are_returned_unchanged():
    error = psycopg2.OperationalError("server closed the connection")

    assert db.translate_database_error(error) is error


def test_require_row_raises_not_found():
    with pytest.raises(NotFoundError) as excinfo:
        db.require_row(None, "Order not found")

    assert excinfo.value.message == "Order not found"
    assert db.require_row({"id": 1}, "unused") == {"id": 1}


def test_external_connection_is_not_committed_but_errors_are_translated():
    conn = RecordingConnection()

    with pytest.raises(ConflictError):
        with db.managed_connection(conn) as (connection, managed):
            assert connection is conn
            assert managed is False
            raise psycopg2.errors.UniqueViolation("duplicate key")

    assert conn.commits == 0
    assert conn.rollbacks == 0


def test_owned_connection_commits_and_releases(monkeypatch):
    conn = RecordingConnection()
    released = []
    monkeypatch.setattr(db, "get_conn", lambda: conn)
    monkeypatch.setattr(db, "release_conn", released.append)

    with db.managed_connection() as (connection, managed):
        assert managed is True

    assert conn.commits == 1
    assert released == [conn]


def test_owned_connection_rolls_back_on_error(monkeypatch):
    conn = RecordingConnection()
    released = []
    monkeypatch.setattr(db, "get_conn", lambda: conn)
    monkeypatch.setattr(db, "release_conn", released.append)

    with pytest.raises(ValidationError):
        with db.managed_connection():
            raise psycopg2.errors.ForeignKeyViolation("fk")

    assert conn.commits == 0
    assert conn.rollbacks == 1
    assert released == [conn]


def test_get_conn_without_pool_is_configuration_error(monkeypatch):
    monkeypatch.setattr(db, "_pool", None)

    with pytest.raises(ConfigurationError):
        db.get_conn()
