"""Base repository with shared get-by-ID patterns and storage error mapping.

Subclasses specify model_class, id_column, and not_found_error; the base
provides get_by_id / get_by_id_optional and a ``commit`` that turns driver
timeouts into StorageTimeoutError so the failure classifier sees them as
STORAGE_TIMEOUT rather than an anonymous OperationalError.
"""

from contextlib import contextmanager
from typing import TypeVar, Generic, Optional, Type

import sqlalchemy.exc
from sqlalchemy.orm import Session, Query

from ..database import Base
from ..exceptions import VizException, StorageTimeoutError

ModelT = TypeVar("ModelT", bound=Base)

_TIMEOUT_HINTS = (
    "timeout",
    "timed out",
    "database is locked",
    "canceling statement",
    "could not obtain lock",
)


def is_storage_timeout(exc: BaseException) -> bool:
    """True when a SQLAlchemy error means the store did not answer in time."""
    if isinstance(exc, sqlalchemy.exc.TimeoutError):
        return True
    if isinstance(exc, sqlalchemy.exc.OperationalError):
        message = str(exc).lower()
        return any(hint in message for hint in _TIMEOUT_HINTS)
    return False


@contextmanager
def storage_errors(db: Session, operation: str):
    """Roll back and re-raise storage timeouts as StorageTimeoutError."""
    try:
        yield
    except sqlalchemy.exc.SQLAlchemyError as e:
        db.rollback()
        if is_storage_timeout(e):
            raise StorageTimeoutError(f"Storage operation '{operation}' timed out", e) from e
        raise


class BaseRepository(Generic[ModelT]):
    """Shared repository logic for SQLAlchemy models.

    Class variables to set in subclasses:
        model_class:     The SQLAlchemy model (e.g., Project)
        id_column:       Name of the primary-key column (default "id")
        not_found_error: Exception class to raise from get_by_id
    """

    model_class: Type[ModelT]
    id_column: str = "id"
    not_found_error: Type[VizException]

    def __init__(self, db: Session):
        self.db = db

    def _base_query(self) -> Query:
        return self.db.query(self.model_class)

    def get_by_id(self, entity_id: str) -> ModelT:
        """Get entity by primary key. Raises not_found_error if missing."""
        entity = self.get_by_id_optional(entity_id)
        if not entity:
            raise self.not_found_error(entity_id)
        return entity

    def get_by_id_optional(self, entity_id: str) -> Optional[ModelT]:
        """Get entity by primary key, or None if not found."""
        col = getattr(self.model_class, self.id_column)
        with storage_errors(self.db, f"read {self.model_class.__tablename__}"):
            return self._base_query().filter(col == entity_id).first()

    def commit(self, operation: str = "commit") -> None:
        with storage_errors(self.db, operation):
            self.db.commit()
