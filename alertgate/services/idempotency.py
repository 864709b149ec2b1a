# type: ignore
# pyright: reportMissingImports=false, reportGeneralTypeErrors=false
"""
Service: webhook idempotency — fingerprinting, processed-key stores, sweeping.

A key is recorded only after the webhook it fingerprints was fully processed.
Expired records read as absent straight away; the background sweep merely
reclaims their memory (or rows) later.
"""

import hashlib
import threading
import time
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Callable, Dict, Optional, Protocol

from alertgate.core.logging import get_logger
from alertgate.metrics import IDEMPOTENCY_SWEPT
from alertgate.repositories import IdempotencyRepository

logger = get_logger(__name__)

Clock = Callable[[], float]


def fingerprint(payload: bytes) -> str:
    """SHA-256 of the exact body bytes — the deduplication key."""
    return hashlib.sha256(payload).hexdigest()


@dataclass(frozen=True)
class IdempotencyRecord:
    key: str
    processed_at: float
    expires_at: float

    def is_live(self, now: float) -> bool:
        return now < self.expires_at


class IdempotencyStore(Protocol):
    """Storage boundary for processed webhook fingerprints."""

    def is_processed(self, key: str) -> bool:
        ...

    def mark_processed(self, key: str, ttl: float) -> None:
        ...

    def sweep_expired(self) -> int:
        ...

    def close(self) -> None:
        ...


class ReadWriteLock:
    """Many concurrent readers or one writer; waiting writers block new readers."""

    def __init__(self):
        self._cond = threading.Condition(threading.Lock())
        self._readers = 0
        self._writer = False
        self._writers_waiting = 0

    @contextmanager
    def read_locked(self):
        with self._cond:
            while self._writer or self._writers_waiting:
                self._cond.wait()
            self._readers += 1
        try:
            yield
        finally:
            with self._cond:
                self._readers -= 1
                if self._readers == 0:
                    self._cond.notify_all()

    @contextmanager
    def write_locked(self):
        with self._cond:
            self._writers_waiting += 1
            try:
                while self._writer or self._readers:
                    self._cond.wait()
            finally:
                self._writers_waiting -= 1
            self._writer = True
        try:
            yield
        finally:
            with self._cond:
                self._writer = False
                self._cond.notify_all()


class PeriodicSweeper:
    """Owned background thread calling ``sweep`` every ``interval`` seconds."""

    def __init__(self, sweep: Callable[[], int], interval: float, name: str):
        self._sweep = sweep
        self._interval = interval
        self._stop = threading.Event()
        self._thread = threading.Thread(target=self._run, name=name, daemon=True)
        self._thread.start()

    def _run(self):
        while not self._stop.wait(self._interval):
            try:
                removed = self._sweep()
            except Exception:
                logger.exception("Idempotency sweep failed")
                continue
            if removed:
                logger.debug("Swept %d expired idempotency records", removed)

    @property
    def running(self) -> bool:
        return self._thread.is_alive()

    def stop(self, timeout: float = 5.0):
        self._stop.set()
        if self._thread is not threading.current_thread():
            self._thread.join(timeout=timeout)


class InMemoryIdempotencyStore:
    """Process-local store: a dict behind a reader/writer lock."""

    def __init__(self, sweep_interval: float = 300.0, clock: Clock = time.time,
                 start_sweeper: bool = True):
        self._records: Dict[str, IdempotencyRecord] = {}
        self._lock = ReadWriteLock()
        self._clock = clock
        self._sweeper: Optional[PeriodicSweeper] = None
        if start_sweeper:
            self._sweeper = PeriodicSweeper(
                self.sweep_expired, sweep_interval, "idempotency-sweeper"
            )

    def is_processed(self, key: str) -> bool:
        with self._lock.read_locked():
            record = self._records.get(key)
            return record is not None and record.is_live(self._clock())

    def mark_processed(self, key: str, ttl: float) -> None:
        now = self._clock()
        with self._lock.write_locked():
            self._records[key] = IdempotencyRecord(key=key, processed_at=now, expires_at=now + ttl)

    def sweep_expired(self) -> int:
        with self._lock.write_locked():
            now = self._clock()
            expired = [k for k, r in self._records.items() if not r.is_live(now)]
            for key in expired:
                del self._records[key]
        if expired:
            IDEMPOTENCY_SWEPT.inc(len(expired))
        return len(expired)

    def __len__(self) -> int:
        with self._lock.read_locked():
            return len(self._records)

    @property
    def sweeper_running(self) -> bool:
        return self._sweeper is not None and self._sweeper.running

    def close(self) -> None:
        if self._sweeper is not None:
            self._sweeper.stop()


class SqlIdempotencyStore:
    """Database-backed store so several replicas share one dedup window."""

    def __init__(self, repo: IdempotencyRepository, sweep_interval: float = 300.0,
                 clock: Clock = time.time, start_sweeper: bool = True):
        self._repo = repo
        self._clock = clock
        self._repo.ensure_schema()
        self._sweeper: Optional[PeriodicSweeper] = None
        if start_sweeper:
            self._sweeper = PeriodicSweeper(
                self.sweep_expired, sweep_interval, "idempotency-sql-sweeper"
            )

    def is_processed(self, key: str) -> bool:
        expires_at = self._repo.get_expiry(key)
        return expires_at is not None and self._clock() < expires_at

    def mark_processed(self, key: str, ttl: float) -> None:
        now = self._clock()
        self._repo.upsert(key, now, now + ttl)

    def sweep_expired(self) -> int:
        removed = self._repo.delete_expired(self._clock())
        if removed:
            IDEMPOTENCY_SWEPT.inc(removed)
        return removed

    def verify_connection(self):
        self._repo.verify_connection()

    def close(self) -> None:
        if self._sweeper is not None:
            self._sweeper.stop()
        self._repo.dispose()


class WebhookIdempotencyManager:
    """Fingerprint-keyed view over a store with a fixed TTL."""

    def __init__(self, store: IdempotencyStore, ttl: float):
        self._store = store
        self._ttl = ttl

    @property
    def store(self) -> IdempotencyStore:
        return self._store

    @staticmethod
    def fingerprint(payload: bytes) -> str:
        return fingerprint(payload)

    def is_already_processed(self, payload: bytes) -> bool:
        return self._store.is_processed(fingerprint(payload))

    def mark_as_processed(self, payload: bytes) -> None:
        """Record ``payload``. Call only once the guarded side effect succeeded."""
        self._store.mark_processed(fingerprint(payload), self._ttl)
