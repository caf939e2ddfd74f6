"""Completion-record database for tinylinux.

Rows record which sources and toolchains finished downloading and
extracting, so an interrupted acquisition is resumed rather than trusted.
The default store is a SQLite file in the cache directory.
"""

from pathlib import Path
from typing import Any

from sqlalchemy import Engine, create_engine
from sqlalchemy.orm import DeclarativeBase, Session, sessionmaker


class Base(DeclarativeBase):
    """Declarative base of the completion-record tables."""


def sqlite_file(db_url: str) -> Path | None:
    """Return the database file of a SQLite URL.

    Returns None for in-memory databases and non-SQLite URLs.
    """
    if not db_url.startswith("sqlite") or ":///" not in db_url:
        return None
    path = db_url.split(":///", 1)[1]
    if not path or path == ":memory:":
        return None
    return Path(path)


def get_engine(db_url: str) -> Engine:
    """Create an engine for the record database.

    The parent directory of a SQLite file is created on first use.
    """
    connect_args: dict[str, Any] = {}
    if db_url.startswith("sqlite"):
        connect_args["check_same_thread"] = False
        db_file = sqlite_file(db_url)
        if db_file is not None:
            db_file.parent.mkdir(parents=True, exist_ok=True)
    return create_engine(db_url, connect_args=connect_args, echo=False)


def open_database(db_url: str) -> sessionmaker[Session]:
    """Open the record database, creating missing tables.

    Args:
        db_url: SQLAlchemy database URL.

    Returns:
        Session factory bound to the database.
    """
    # Register models with the mapper before creating tables
    from tinylinux.sources import models as sources_models  # noqa: F401

    engine = get_engine(db_url)
    Base.metadata.create_all(bind=engine)
    return sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)


__all__ = ["Base", "get_engine", "open_database", "sqlite_file"]
