# type: ignore
# pyright: reportMissingImports=false, reportGeneralTypeErrors=false
"""
Database engine — used only when idempotency records live in the database.
"""

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine

from alertgate.core.config import settings


def create_db_engine(url: str | None = None) -> Engine:
    return create_engine(
        url or settings.DATABASE_URL,
        pool_pre_ping=True,
        pool_size=settings.DB_POOL_SIZE,
        max_overflow=settings.DB_MAX_OVERFLOW,
        pool_recycle=settings.DB_POOL_RECYCLE,
    )
