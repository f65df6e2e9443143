from __future__ import annotations

from collections.abc import Iterator

from fastapi import Request
from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from linen_count.models import Base, LinenChangeCounter


def create_db_engine(url: str, *, echo: bool = False) -> Engine:
    if not url.startswith('sqlite'):
        return create_engine(url, echo=echo, pool_pre_ping=True, future=True)

    kwargs: dict = {'echo': echo, 'connect_args': {'check_same_thread': False}}
    if url in {'sqlite://', 'sqlite:///:memory:'}:
        kwargs['poolclass'] = StaticPool
    engine = create_engine(url, **kwargs)

    # pysqlite opens transactions lazily, which breaks SAVEPOINT; take over BEGIN.
    @event.listens_for(engine, 'connect')
    def _sqlite_connect(dbapi_connection, _connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(engine, 'begin')
    def _sqlite_begin(conn):
        conn.exec_driver_sql('BEGIN')

    return engine


def create_session_factory(engine: Engine) -> sessionmaker[Session]:
    return sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)


def get_db(request: Request) -> Iterator[Session]:
    session_factory = request.app.state.session_factory
    with session_factory() as db:
        yield db


def create_schema(engine: Engine) -> None:
    """Create missing tables and the change counter row."""
    Base.metadata.create_all(engine)
    with Session(engine) as db:
        if db.get(LinenChangeCounter, 1) is None:
            db.add(LinenChangeCounter(id=1, value=0))
            db.commit()
