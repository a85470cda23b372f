"""
Metadata store connection and session management

Holds connection profiles and the query execution history. Target databases
that users query are reached through the connection pool registry instead and
never through this engine.
"""
from sqlalchemy import create_engine
from sqlalchemy.engine import Engine, make_url
from sqlalchemy.orm import declarative_base, sessionmaker, Session
from contextlib import contextmanager
from typing import Generator
import os

from sqlbroker.config import settings

Base = declarative_base()


def create_app_engine(database_url: str, echo: bool = False) -> Engine:
    """Create the metadata store engine for the given URL."""
    url = make_url(database_url)

    if url.get_backend_name() == "sqlite":
        if url.database and url.database != ":memory:":
            os.makedirs(os.path.dirname(os.path.abspath(url.database)), exist_ok=True)
        return create_engine(
            url,
            echo=echo,
            connect_args={'check_same_thread': False}
        )

    return create_engine(
        url,
        pool_size=20,
        max_overflow=30,
        pool_pre_ping=True,
        echo=echo,
        connect_args={'connect_timeout': 10}
    )


app_engine = create_app_engine(settings.DATABASE_URL, echo=settings.DEBUG)

AppSessionLocal = sessionmaker(autocommit=False, autoflush=False, expire_on_commit=False, bind=app_engine)


@contextmanager
def get_app_db_context(session_factory: sessionmaker = AppSessionLocal) -> Generator[Session, None, None]:
    """Context manager for a transactional metadata store session."""
    db = session_factory()
    try:
        yield db
        db.commit()
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()


def init_models(engine: Engine = app_engine) -> None:
    """Create metadata tables. Schema migrations are managed outside the app."""
    # Register mappers on Base.metadata
    import sqlbroker.models  # noqa: F401

    Base.metadata.create_all(bind=engine)
