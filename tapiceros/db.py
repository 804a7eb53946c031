"""PostgreSQL connection pool, transaction scope and store error translation."""
from __future__ import annotations

import logging
from contextlib import contextmanager
from typing import Any, Iterator, Mapping, Optional, Tuple

import psycopg2
import psycopg2.errors
import psycopg2.extras
from psycopg2.extensions import connection as PgConnection
from psycopg2.pool import ThreadedConnectionPool

from .app.errors import ConflictError, ConfigurationError, NotFoundError, ValidationError

logger = logging.getLogger(__name__)

_pool: Optional[ThreadedConnectionPool] = None

_CONSTRAINT_MESSAGES = {
    "users_email_key": "A user with this email already exists",
    "users_auth0_id_key": "This account is already registered",
    "post_likes_post_id_user_id_key": "Post already liked",
    "payments_stripe_payment_id_key": "Payment already recorded",
    "memberships_stripe_subscription_id_key": "Subscription already recorded",
}


def open_pool(settings: Mapping[str, Any], *, minconn: int = 1, maxconn: int = 10) -> ThreadedConnectionPool:
    """Open the process-wide connection pool."""

    global _pool
    if _pool is not None:
        return _pool
    _pool = ThreadedConnectionPool(minconn, maxconn, **settings)
    logger.info(
        "Database pool opened",
        extra={"db_host": settings.get("host"), "db_name": settings.get("dbname"), "db_pool_max": maxconn},
    )
    return _pool


def close_pool() -> None:
    global _pool
    if _pool is None:
        return
    _pool.closeall()
    _pool = None
    logger.info("Database pool closed")


def get_conn() -> PgConnection:
    if _pool is None:
        raise ConfigurationError("Database pool has not been opened")
    return _pool.getconn()


def release_conn(connection: PgConnection) -> None:
    if _pool is None:
        connection.close()
        return
    _pool.putconn(connection)


def ping() -> bool:
    """Return ``True`` when the store answers a trivial query."""

    try:
        with managed_connection() as (connection, _):
            with connection.cursor() as cur:
                cur.execute("SELECT 1")
                cur.fetchone()
    except Exception:
        logger.exception("Database health check failed")
        return False
    return True


def translate_database_error(exc: psycopg2.Error) -> Exception:
    """Map a store error onto the domain error taxonomy.

    Errors without a domain meaning are returned unchanged so the caller can
    re-raise them.
    """

    diag = getattr(exc, "diag", None)
    constraint = getattr(diag, "constraint_name", None)
    if isinstance(exc, psycopg2.errors.UniqueViolation):
        return ConflictError(_CONSTRAINT_MESSAGES.get(constraint, "Duplicate entry"))
    if isinstance(exc, psycopg2.errors.ForeignKeyViolation):
        return ValidationError("Referenced record does not exist")
    if isinstance(exc, (psycopg2.errors.NotNullViolation, psycopg2.errors.CheckViolation)):
        column = getattr(diag, "column_name", None) or constraint
        return ValidationError(f"Invalid value for {column}" if column else "Invalid value")
    if isinstance(exc, psycopg2.errors.InvalidTextRepresentation):
        return ValidationError("Invalid identifier")
    return exc


def require_row(row: Optional[Mapping[str, Any]], message: str) -> Mapping[str, Any]:
    """Return ``row`` or raise :class:`NotFoundError` when the lookup matched nothing."""

    if not row:
        raise NotFoundError(message)
    return row


@contextmanager
def managed_connection(conn: Optional[PgConnection] = None) -> Iterator[Tuple[PgConnection, bool]]:
    """Yield ``(connection, managed)`` and own the transaction when no connection is supplied."""

    if conn is not None:
        try:
            yield conn, False
        except psycopg2.Error as exc:
            translated = translate_database_error(exc)
            if translated is exc:
                raise
            raise translated from exc
        return

    connection = get_conn()
    try:
        yield connection, True
        connection.commit()
    except psycopg2.Error as exc:
        connection.rollback()
        translated = translate_database_error(exc)
        if translated is exc:
            raise
        raise translated from exc
    except Exception:
        connection.rollback()
        raise
    finally:
        release_conn(connection)


def dict_cursor(connection: PgConnection):
    return connection.cursor(cursor_factory=psycopg2.extras.RealDictCursor)
