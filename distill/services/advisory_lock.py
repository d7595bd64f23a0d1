"""Non-blocking advisory locks keyed by run id.

On PostgreSQL this uses pg_try_advisory_lock on a dedicated connection, so
acquire and release happen in the same database session. Other dialects
(SQLite for local use and tests) fall back to a process-wide key registry.
A held lock is never waited on: the caller gets TickInProgressError.
"""

import hashlib
import logging
import threading
from typing import Callable, Optional, TypeVar

from sqlalchemy import text
from sqlalchemy.engine import Engine

from distill.errors import TickInProgressError

logger = logging.getLogger(__name__)

T = TypeVar("T")

_local_keys = set()
_local_keys_guard = threading.Lock()


def compute_lock_key(run_id: str) -> int:
    """Map a run id to a stable positive signed-64-bit key (first 8 bytes of sha256)."""
    digest = hashlib.sha256(run_id.encode("utf-8")).digest()
    return int.from_bytes(digest[:8], "big") & 0x7FFFFFFFFFFFFFFF


class AdvisoryLockService:
    """Try-once mutual exclusion around a callable."""

    def __init__(self, engine: Engine):
        self.engine = engine

    @property
    def uses_postgres(self) -> bool:
        return self.engine.dialect.name == "postgresql"

    def with_lock(self, run_id: str, fn: Callable[[], T]) -> T:
        """
        Run fn while holding the lock for run_id.

        The lock is released on every exit path before returning or re-raising.

        Raises:
            TickInProgressError: If the lock is already held
        """
        key = compute_lock_key(run_id)
        if self.uses_postgres:
            return self._with_pg_lock(key, fn)
        return self._with_local_lock(key, fn)

    def _with_pg_lock(self, key: int, fn: Callable[[], T]) -> T:
        with self.engine.connect() as conn:
            acquired = conn.execute(text("SELECT pg_try_advisory_lock(:key)"), {"key": key}).scalar()
            conn.commit()
            if not acquired:
                raise TickInProgressError()
            try:
                return fn()
            finally:
                try:
                    conn.execute(text("SELECT pg_advisory_unlock(:key)"), {"key": key})
                    conn.commit()
                except Exception as e:
                    # Postgres drops session locks when the connection closes
                    logger.warning(f"Advisory unlock failed for key {key}: {e}")
                    conn.invalidate()

    def _with_local_lock(self, key: int, fn: Callable[[], T]) -> T:
        with _local_keys_guard:
            if key in _local_keys:
                raise TickInProgressError()
            _local_keys.add(key)
        try:
            return fn()
        finally:
            with _local_keys_guard:
                _local_keys.discard(key)


def with_lock(engine: Engine, run_id: str, fn: Callable[[], T], service: Optional[AdvisoryLockService] = None) -> T:
    """Module-level convenience for AdvisoryLockService.with_lock."""
    return (service or AdvisoryLockService(engine)).with_lock(run_id, fn)
