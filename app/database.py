from contextlib import contextmanager
from typing import Any, Dict, Iterator

from fastapi import Request
from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker, declarative_base

Base = declarative_base()


def create_db_engine(database_url: str, **engine_kwargs: Any) -> Engine:
    """
    Support both PostgreSQL and SQLite.
    Extra keyword arguments are forwarded to create_engine (e.g. poolclass for tests).
    """
    if database_url.startswith("sqlite"):
        connect_args: Dict[str, Any] = engine_kwargs.pop("connect_args", {})
        connect_args.setdefault("check_same_thread", False)
        return create_engine(database_url, connect_args=connect_args, **engine_kwargs)
    return create_engine(database_url, pool_pre_ping=True, **engine_kwargs)


class Database:
    """
    Storage handle: owns the engine and the session factory.
    Constructed by the application factory and disposed on shutdown.
    """

    def __init__(self, database_url: str, **engine_kwargs: Any):
        self.url = database_url
        self.engine = create_db_engine(database_url, **engine_kwargs)
        self.SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=self.engine)

    def create_all(self) -> None:
        """Registers all domain models and emits the schema."""
        import app.models  # noqa: F401
        Base.metadata.create_all(bind=self.engine)

    def drop_all(self) -> None:
        Base.metadata.drop_all(bind=self.engine)

    @contextmanager
    def session(self) -> Iterator[Session]:
        db = self.SessionLocal()
        try:
            yield db
        finally:
            db.close()

    def dispose(self) -> None:
        self.engine.dispose()


def get_db(request: Request) -> Iterator[Session]:
    """
    Session Provider: Provides a database session per request.
    Transaction management is handled explicitly in the Service Layer.
    """
    database: Database = request.app.state.database
    db = database.SessionLocal()
    try:
        yield db
    finally:
        db.close()
