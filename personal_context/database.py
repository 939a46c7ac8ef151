"""
Database engine over a single SQLite file.

The entity store owns exactly one engine per process. StaticPool keeps one
connection for the engine's lifetime (no pool); check_same_thread=False lets the
FastAPI worker threads reach it, and the store serializes access itself.
"""
from pathlib import Path

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import declarative_base, sessionmaker
from sqlalchemy.pool import StaticPool

Base = declarative_base()


def create_db_engine(db_path: Path) -> Engine:
    """Create the containing directory if absent and open the database file."""
    db_path = Path(db_path)
    db_path.parent.mkdir(parents=True, exist_ok=True)
    return create_engine(
        f"sqlite:///{db_path}",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )


def create_session_factory(engine: Engine) -> sessionmaker:
    # Objects stay readable after commit; DTOs are built from them post-commit
    return sessionmaker(bind=engine, expire_on_commit=False)


def init_schema(engine: Engine) -> None:
    """Create tables and indexes if absent (idempotent)."""
    # Register models on Base.metadata
    from personal_context import models  # noqa: F401

    Base.metadata.create_all(bind=engine)
