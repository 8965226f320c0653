"""Database infrastructure.

Exposes:
  - DatabaseConnection: handle on one ScrapeBot central database plus the
                        metadata discovered when it was opened.
  - open_database():    Resolve credentials and connect (SQLAlchemy + PyMySQL).
  - close_database():   Dispose of the handle.

Usage in repositories:
    with connection.begin() as conn:
        result = conn.execute(stmt)
        # Committed on clean exit, rolled back on exception.

Everything is synchronous. One DatabaseConnection is meant for one logical
caller; open another one per worker if you need parallelism.
"""

from __future__ import annotations

from contextlib import contextmanager
from typing import Iterator, Optional, Sequence

import sqlalchemy as sa
import sqlalchemy.exc
import structlog

from scrapebot.config import constants
from scrapebot.config.credentials import PathLike, read_database_credentials, resolve_credentials_file
from scrapebot.domain.exceptions import ConnectionFailedError, CredentialsError, ValidationError
from scrapebot.domain.models import DatabaseCredentials

DRIVER_NAME: str = "mysql+pymysql"


class DatabaseConnection:
    """An open ScrapeBot database plus its server metadata.

    Attributes:
        engine:              SQLAlchemy engine (connection pool).
        credentials:         Credentials the engine was built from, if known.
        credentials_file:    Credentials file the section was read from.
        credentials_section: Section name inside ``credentials_file``.
        db_type:             Server product/connection description.
        db_version:          Server version string.
        db_timeout:          Session ``wait_timeout`` in seconds.
        tables:              Table names present in the database.
    """

    def __init__(
        self,
        engine: sa.Engine,
        *,
        credentials: Optional[DatabaseCredentials] = None,
        credentials_file: Optional[str] = None,
        credentials_section: Optional[str] = None,
        db_type: str = "",
        db_version: str = "",
        db_timeout: Optional[int] = None,
        tables: Sequence[str] = (),
    ) -> None:
        self.engine = engine
        self.credentials = credentials
        self.credentials_file = credentials_file
        self.credentials_section = credentials_section
        self.db_type = db_type
        self.db_version = db_version
        self.db_timeout = db_timeout
        self.tables = list(tables)
        self._closed = False

    @property
    def is_open(self) -> bool:
        return not self._closed

    @contextmanager
    def begin(self) -> Iterator[sa.Connection]:
        """Yield a transactional connection from the pool.

        Raises:
            ValidationError: The handle has been closed.
            sqlalchemy.exc.SQLAlchemyError: Propagated to the caller, which
                decides whether it is fatal or a warning.
        """
        if self._closed:
            raise ValidationError(
                "Connection needs to be a valid connection object, initiated through scrapebot.open_database."
            )
        with self.engine.begin() as conn:
            yield conn

    def close(self) -> None:
        if self._closed:
            raise ValidationError("Connection has already been closed.")
        self.engine.dispose()
        self._closed = True

    def __repr__(self) -> str:
        state = "open" if self.is_open else "closed"
        return f"<DatabaseConnection {self.credentials_section or self.engine.url!r} ({state})>"


def require_open(connection: object) -> DatabaseConnection:
    """Return ``connection`` if it is an open DatabaseConnection.

    Raises:
        ValidationError: Anything else, including closed handles.
    """
    if not isinstance(connection, DatabaseConnection) or not connection.is_open:
        raise ValidationError(
            "Connection needs to be a valid connection object, initiated through scrapebot.open_database."
        )
    return connection


def build_url(credentials: DatabaseCredentials) -> sa.URL:
    """Build the SQLAlchemy URL; special characters in passwords are escaped."""
    return sa.URL.create(
        DRIVER_NAME,
        username=credentials.user,
        password=credentials.password,
        host=credentials.host,
        port=credentials.port,
        database=credentials.database,
    )


def _server_metadata(conn: sa.Connection) -> tuple[str, str, Optional[int]]:
    version = conn.execute(sa.text("SELECT VERSION()")).scalar_one()
    row = conn.execute(sa.text("SHOW SESSION VARIABLES LIKE 'wait_timeout'")).first()
    timeout = int(row[1]) if row is not None else None
    db_type = f"{conn.dialect.name} on {conn.engine.url.host}"
    return db_type, str(version), timeout


def open_database(
    section: Optional[str] = None,
    *,
    credentials_file: Optional[PathLike] = None,
    host: Optional[str] = None,
    user: Optional[str] = None,
    password: Optional[str] = None,
    database: str = "scrapebot",
    port: Optional[int] = None,
) -> DatabaseConnection:
    """Connect to a ScrapeBot central database.

    Credentials come either from a named section of the credentials file
    (``section``) or from the explicit ``host``/``user``/... arguments.

    Args:
        section:          Credentials-file section, e.g. ``"scrapebot on localhost"``.
        credentials_file: Override for ``constants.CREDENTIALS_FILE``.
        host, user, password, database, port: Explicit credentials, used when
            ``section`` is None.

    Returns:
        An open DatabaseConnection with server metadata filled in.

    Raises:
        ValidationError: Neither a section nor a host was given.
        ConnectionFailedError: Credentials could not be resolved or the server
            could not be reached; the underlying message is appended.
    """
    log = structlog.get_logger(__name__).bind(
        service=constants.SERVICE_NAME,
        operation="open_database",
    )

    credentials_path: Optional[str] = None
    if section is not None:
        try:
            credentials = read_database_credentials(section, credentials_file)
            credentials_path = str(resolve_credentials_file(credentials_file))
        except CredentialsError as exc:
            raise ConnectionFailedError(f"Database connection could not be established. {exc}") from exc
    elif host is not None:
        credentials = DatabaseCredentials(
            host=host, user=user, password=password, database=database, port=port
        )
    else:
        raise ValidationError("Either a credential section or a host needs to be given.")

    log.info("db.connecting", host=credentials.host, database=credentials.database)

    engine = sa.create_engine(build_url(credentials), pool_pre_ping=True)
    try:
        with engine.connect() as conn:
            db_type, db_version, db_timeout = _server_metadata(conn)
        tables = sa.inspect(engine).get_table_names()
    except sqlalchemy.exc.SQLAlchemyError as exc:
        engine.dispose()
        log.warning(
            "db.connect_failed",
            error=str(exc),
            error_type=type(exc).__name__,
        )
        raise ConnectionFailedError(f"Database connection could not be established. {exc}") from exc

    log.info("db.connected", db_version=db_version, db_timeout=db_timeout, tables_count=len(tables))

    return DatabaseConnection(
        engine,
        credentials=credentials,
        credentials_file=credentials_path,
        credentials_section=section or credentials.section_name,
        db_type=db_type,
        db_version=db_version,
        db_timeout=db_timeout,
        tables=tables,
    )


def close_database(connection: DatabaseConnection) -> None:
    """Release the connection pool.

    Raises:
        ValidationError: ``connection`` is not a DatabaseConnection or is
            already closed.
    """
    if not isinstance(connection, DatabaseConnection):
        raise ValidationError(
            "Connection needs to be a valid connection object, initiated through scrapebot.open_database."
        )
    connection.close()
