"""Database connection using SQLAlchemy.

SQLite by default. An in-memory URL shares one connection (StaticPool) so
every thread sees the same database.
"""

from pathlib import Path

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine, make_url
from sqlalchemy.orm import declarative_base, sessionmaker
from sqlalchemy.pool import StaticPool

Base = declarative_base()

MEMORY_URL = "sqlite://"


def create_db_engine(database_url: str) -> Engine:
    """Create an engine for ``database_url``, creating the SQLite file's directory."""
    url = make_url(database_url)
    if url.get_backend_name() != "sqlite":
        return create_engine(database_url, pool_pre_ping=True)

    in_memory = url.database in (None, "", ":memory:")
    if not in_memory:
        Path(url.database).parent.mkdir(parents=True, exist_ok=True)

    kwargs = {"connect_args": {"check_same_thread": False}}  # Required for SQLite across worker threads
    if in_memory:
        kwargs["poolclass"] = StaticPool
    return create_engine(database_url, **kwargs)


def create_session_factory(engine: Engine) -> sessionmaker:
    return sessionmaker(autocommit=False, autoflush=False, expire_on_commit=False, bind=engine)


def init_db(engine: Engine) -> None:
    """Create all tables if they don't exist."""
    from research_pipeline.store import tables  # noqa: F401 registers models with Base
    Base.metadata.create_all(bind=engine)
