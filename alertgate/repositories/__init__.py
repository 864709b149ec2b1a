# type: ignore
# pyright: reportMissingImports=false, reportGeneralTypeErrors=false
"""
Repository: idempotency record data access — pure SQL, no business rules.

Timestamps are stored as epoch seconds so the same statements run on
PostgreSQL in production and SQLite in tests.
"""

from typing import Optional

from sqlalchemy import text
from sqlalchemy.engine import Engine

from alertgate.core.logging import get_logger

logger = get_logger(__name__)


class IdempotencyRepository:
    """Handles all direct database operations for idempotency records."""

    def __init__(self, engine: Engine):
        self._engine = engine

    def ensure_schema(self):
        """Create the records table if it does not exist yet."""
        with self._engine.begin() as conn:
            conn.execute(
                text("""
                    CREATE TABLE IF NOT EXISTS webhook_idempotency (
                        idempotency_key VARCHAR(64) PRIMARY KEY,
                        processed_at    DOUBLE PRECISION NOT NULL,
                        expires_at      DOUBLE PRECISION NOT NULL
                    )
                """)
            )
            conn.execute(
                text("""
                    CREATE INDEX IF NOT EXISTS ix_webhook_idempotency_expires_at
                    ON webhook_idempotency (expires_at)
                """)
            )

    def get_expiry(self, key: str) -> Optional[float]:
        """Return the stored expiry for ``key``, or None when absent."""
        with self._engine.connect() as conn:
            row = conn.execute(
                text("SELECT expires_at FROM webhook_idempotency WHERE idempotency_key = :key"),
                {"key": key},
            ).fetchone()
        return float(row[0]) if row else None

    def upsert(self, key: str, processed_at: float, expires_at: float):
        """Insert or overwrite the record for ``key``."""
        with self._engine.begin() as conn:
            conn.execute(
                text("""
                    INSERT INTO webhook_idempotency (idempotency_key, processed_at, expires_at)
                    VALUES (:key, :processed_at, :expires_at)
                    ON CONFLICT (idempotency_key) DO UPDATE
                       SET processed_at = excluded.processed_at,
                           expires_at   = excluded.expires_at
                """),
                {"key": key, "processed_at": processed_at, "expires_at": expires_at},
            )

    def delete_expired(self, now: float) -> int:
        """Delete records whose expiry is at or before ``now``."""
        with self._engine.begin() as conn:
            result = conn.execute(
                text("DELETE FROM webhook_idempotency WHERE expires_at <= :now"),
                {"now": now},
            )
            return result.rowcount or 0

    def verify_connection(self):
        """Verify database connectivity."""
        with self._engine.connect() as conn:
            conn.execute(text("SELECT 1"))

    def dispose(self):
        """Dispose the connection pool."""
        self._engine.dispose()
