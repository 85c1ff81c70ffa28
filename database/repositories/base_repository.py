import logging
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Optional, TypeVar, Generic, Type

from sqlalchemy import Engine
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.exc import SQLAlchemyError, IntegrityError, OperationalError
from psycopg2 import errorcodes

from database.db_utils import get_db_connection
from database.repositories.exceptions import (
    RepositoryError,
    DatabaseConnectionError,
    DuplicateEntityError,
)

# Set up logger
logger = logging.getLogger(__name__)

# Type variable for ORM models
T = TypeVar("T")

_SQLITE_UNIQUE_ERRORS = ("SQLITE_CONSTRAINT_UNIQUE", "SQLITE_CONSTRAINT_PRIMARYKEY")


def is_unique_violation(error: IntegrityError) -> bool:
    """
    Classify an IntegrityError by the driver's error code rather than its message.
    PostgreSQL reports SQLSTATE 23505, SQLite the extended UNIQUE/PRIMARYKEY codes.
    """
    orig = getattr(error, "orig", None)
    pgcode = getattr(orig, "pgcode", None)
    if pgcode is not None:
        return pgcode == errorcodes.UNIQUE_VIOLATION
    sqlite_name = getattr(orig, "sqlite_errorname", None)
    if sqlite_name is not None:
        return sqlite_name in _SQLITE_UNIQUE_ERRORS
    return False


def as_utc(value: Optional[datetime]) -> Optional[datetime]:
    """SQLite hands back naive datetimes; every stored instant is UTC."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


class BaseRepository(Generic[T]):
    """
    Base repository class providing common database operations and connection management.
    This class handles connection pooling, transaction management, and common CRUD operations.
    """

    def __init__(self, model_class: Type[T] = None, engine: Optional[Engine] = None):
        """
        Initialize the repository.

        Args:
            model_class: The SQLAlchemy model class this repository manages (optional)
            engine: Engine to use; resolved lazily from configuration when omitted
        """
        self._engine: Optional[Engine] = engine
        self.model_class = model_class
        self._session_factory = None

    @property
    def engine(self) -> Engine:
        """Lazy load the database engine."""
        if self._engine is None:
            self._engine = get_db_connection()
            if self._engine is None:
                raise DatabaseConnectionError("Failed to obtain database connection")
        return self._engine

    @property
    def session_factory(self):
        """Lazy load the session factory."""
        if self._session_factory is None:
            self._session_factory = sessionmaker(bind=self.engine, expire_on_commit=False)
        return self._session_factory

    @contextmanager
    def session(self) -> Session:
        """
        Context manager for ORM sessions.
        Handles commit/rollback automatically.
        """
        session = self.session_factory()
        try:
            yield session
            session.commit()
        except IntegrityError as e:
            session.rollback()
            if is_unique_violation(e):
                logger.debug(f"Unique constraint violation in session: {e.orig}")
                raise DuplicateEntityError(f"Duplicate entity: {e.orig}") from e
            logger.error(f"Integrity Error in session: {e}")
            raise RepositoryError(f"Database integrity error: {e}") from e
        except OperationalError as e:
            session.rollback()
            logger.error(f"Database unreachable in session: {e}")
            raise DatabaseConnectionError(f"Database unreachable: {e}") from e
        except SQLAlchemyError as e:
            session.rollback()
            logger.error(f"Database Error in session: {e}")
            raise RepositoryError(f"Database error: {e}") from e
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    def dialect_insert(self, model):
        """
        Insert construct supporting ON CONFLICT clauses for the bound dialect.
        """
        dialect = self.engine.dialect.name
        if dialect == "postgresql":
            return pg_insert(model)
        if dialect == "sqlite":
            return sqlite_insert(model)
        raise RepositoryError(f"Upserts are not supported on dialect '{dialect}'")

