"""
Database connection and setup
SQLite by default, any SQLAlchemy URL works
"""
from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import sessionmaker

from rpc_cache.models import Base


def make_engine(database_url: str, echo: bool = False) -> Engine:
    """
    Create the engine for the durable stores.

    SQLite connections are shared across the request thread pool, so
    same-thread checking is disabled and writers wait on the file lock.
    """
    connect_args = {}
    if database_url.startswith("sqlite"):
        connect_args = {"check_same_thread": False, "timeout": 30}
    return create_engine(database_url, connect_args=connect_args, echo=echo)


def make_session_factory(engine: Engine) -> sessionmaker:
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)


def init_db(engine: Engine) -> None:
    """
    Initialize database - create all tables
    Safe to call multiple times (won't recreate existing tables)
    """
    Base.metadata.create_all(bind=engine)
