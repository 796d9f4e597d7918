from __future__ import annotations

import logging
from typing import Any

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import declarative_base, sessionmaker
from sqlalchemy.pool import QueuePool

from .config import settings

logger = logging.getLogger(__name__)

Base: Any = declarative_base()


def make_engine(url: str) -> Engine:
    """Create an engine; pooled for server databases, default pool for SQLite."""
    if url.startswith("sqlite"):
        return create_engine(url, future=True)
    return create_engine(
        url,
        poolclass=QueuePool,
        pool_pre_ping=True,
        pool_size=10,
        max_overflow=20,
        pool_timeout=30,
        pool_recycle=1800,
        echo=False,
    )


try:
    engine = make_engine(settings.DATABASE_URL)
except Exception as e:
    logger.error("Failed to create database engine: %s", e)
    raise

SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


def init_db(bind: Engine | None = None) -> None:
    """Create the tree store tables if they do not exist."""
    from . import models  # noqa: F401  registers tables on Base

    Base.metadata.create_all(bind=bind or engine)

