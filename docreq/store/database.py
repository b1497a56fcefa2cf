"""
Database handle shared by the store adapter, directory, and notification
service. Owns the SQLAlchemy engine and session factory.
"""

from __future__ import annotations

import logging
from contextlib import contextmanager
from typing import Iterator

from sqlalchemy import create_engine, event
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from docreq.errors import StoreError
from docreq.store.models import Base

logger = logging.getLogger(__name__)


class Database:
    """
    Engine + session factory for the tracker database.

    Usage:
        db = Database("sqlite:///docreq.db")
        with db.session() as session:
            session.add(obj)
    """

    def __init__(self, db_url: str = "sqlite:///docreq.db", echo: bool = False) -> None:
        self.url = db_url
        self.engine = create_engine(db_url, echo=echo)
        if self.engine.dialect.name == "sqlite":
            event.listen(self.engine, "connect", _enable_sqlite_foreign_keys)
        Base.metadata.create_all(self.engine)
        self.SessionFactory = sessionmaker(bind=self.engine, expire_on_commit=False)

    @contextmanager
    def session(self) -> Iterator[Session]:
        """Yield a session that commits on success and rolls back on error.

        SQLAlchemy failures are re-raised as StoreError.
        """
        session = self.SessionFactory()
        try:
            yield session
            session.commit()
        except SQLAlchemyError as e:
            session.rollback()
            logger.error("Store operation failed: %s", e)
            raise StoreError(str(e)) from e
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    def dispose(self) -> None:
        self.engine.dispose()


def _enable_sqlite_foreign_keys(dbapi_connection, connection_record) -> None:
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()
