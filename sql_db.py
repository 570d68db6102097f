import sqlite3

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool
from sqlalchemy.schema import CreateTable, CreateIndex
from sqlalchemy.dialects import postgresql, sqlite

from config import Config
from models import Base

_DIALECTS = {
    "sqlite": sqlite.dialect,
    "postgresql": postgresql.dialect,
}

SessionLocal = sessionmaker(autoflush=False, autocommit=False, expire_on_commit=False)

engine: Engine | None = None


@event.listens_for(Engine, "connect")
def _enable_sqlite_foreign_keys(dbapi_connection, connection_record):
    # SQLite ignores REFERENCES clauses unless this is switched on per connection
    if isinstance(dbapi_connection, sqlite3.Connection):
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()


def init_engine(db_url: str | None = None, echo: bool = False) -> Engine:
    """
    Creates the engine for the given URL (SQLite locally, Cloud SQL in production)
    and binds the session factory to it.
    """
    global engine
    db_url = db_url or Config.SQLALCHEMY_DATABASE_URI

    kwargs = {"echo": echo}
    if db_url.startswith("sqlite") and (":memory:" in db_url or db_url == "sqlite://"):
        # one shared connection, otherwise every session sees its own empty database
        kwargs.update(connect_args={"check_same_thread": False}, poolclass=StaticPool)

    if engine is not None:
        engine.dispose()
    engine = create_engine(db_url, **kwargs)
    SessionLocal.configure(bind=engine)
    return engine


def get_engine() -> Engine:
    if engine is None:
        return init_engine()
    return engine


def init_db():
    Base.metadata.create_all(bind=get_engine())


def drop_db():
    Base.metadata.drop_all(bind=get_engine())


def render_ddl(dialect_name: str = "sqlite") -> str:
    """Returns the CREATE TABLE / CREATE INDEX script for the given dialect."""
    try:
        dialect = _DIALECTS[dialect_name]()
    except KeyError:
        raise ValueError(f"Unknown dialect {dialect_name!r}; use one of {', '.join(_DIALECTS)}")

    statements = []
    for table in Base.metadata.sorted_tables:
        statements.append(str(CreateTable(table).compile(dialect=dialect)).strip() + ";")
        for index in sorted(table.indexes, key=lambda i: i.name):
            statements.append(str(CreateIndex(index).compile(dialect=dialect)).strip() + ";")
    return "\n\n".join(statements) + "\n"
