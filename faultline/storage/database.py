"""Engine and session factory for the Faultline tables."""

from __future__ import annotations

from contextlib import contextmanager
from typing import Iterator

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from .models import Base


class Storage:
    """Owns the SQLAlchemy engine and hands out sessions.

    Usage:
        storage = Storage('postgresql+psycopg://localhost/app')
        storage.create_all()

        with storage.session() as session, session.begin():
            ...
    """

    def __init__(self, database_url: str, echo: bool = False) -> None:
        self.database_url = database_url
        self.engine: Engine = self._create_engine(database_url, echo)
        # Objects stay usable after commit; notifiers read them outside the session
        self._session_factory = sessionmaker(bind=self.engine, expire_on_commit=False)

    @staticmethod
    def _create_engine(database_url: str, echo: bool) -> Engine:
        if database_url.startswith('sqlite'):
            kwargs: dict = {'connect_args': {'check_same_thread': False}}
            if ':memory:' in database_url or database_url.rstrip('/') == 'sqlite:':
                # A single shared connection, otherwise every session sees an empty database
                kwargs['poolclass'] = StaticPool
            engine = create_engine(database_url, echo=echo, **kwargs)
            event.listen(engine, 'connect', _enable_sqlite_foreign_keys)
            return engine

        return create_engine(database_url, echo=echo, pool_pre_ping=True)

    @property
    def dialect(self) -> str:
        return self.engine.dialect.name

    def create_all(self) -> None:
        Base.metadata.create_all(self.engine)

    def drop_all(self) -> None:
        Base.metadata.drop_all(self.engine)

    @contextmanager
    def session(self) -> Iterator[Session]:
        session = self._session_factory()
        try:
            yield session
        finally:
            session.close()

    def dispose(self) -> None:
        self.engine.dispose()


def _enable_sqlite_foreign_keys(dbapi_connection, connection_record) -> None:
    cursor = dbapi_connection.cursor()
    cursor.execute('PRAGMA foreign_keys=ON')
    cursor.close()
