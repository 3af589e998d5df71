"""
Background sweepers: session expiry, memory retention, audit retention
"""
import asyncio
from typing import List, Optional

from sqlalchemy.orm import sessionmaker

from bankguard.core.logging_config import LoggingConfig
from bankguard.core.metrics import sweep_deleted_total
from bankguard.services.audit_service import AuditTrail
from bankguard.services.session_store import SessionStore
from bankguard.services.vector_memory import VectorMemory

logger = LoggingConfig.get_logger(__name__)


class Sweeper:
    """Runs ``sweep_once`` on a fixed interval until stopped"""

    name = "sweeper"

    def __init__(self, session_factory: sessionmaker, interval_seconds: float):
        self.session_factory = session_factory
        self.check_interval = interval_seconds
        self.running = False
        self._task: Optional[asyncio.Task] = None

    async def start(self):
        if self.running:
            logger.warning(f"{self.name} sweeper is already running")
            return

        self.running = True
        logger.info(f"Starting {self.name} sweeper (every {self.check_interval}s)")
        self._task = asyncio.create_task(self._sweep_loop())

    async def stop(self):
        self.running = False
        if self._task is not None:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
        logger.info(f"Stopped {self.name} sweeper")

    async def _sweep_loop(self):
        while self.running:
            try:
                await self.sweep_once()
            except Exception as e:
                logger.error(f"Error in {self.name} sweeper loop: {e}", exc_info=True)
            await asyncio.sleep(self.check_interval)

    async def sweep_once(self) -> int:
        db = self.session_factory()
        try:
            deleted = await self._sweep(db)
        finally:
            db.close()
        if deleted:
            sweep_deleted_total.labels(sweeper=self.name).inc(deleted)
        return deleted

    async def _sweep(self, db) -> int:
        raise NotImplementedError


class SessionSweeper(Sweeper):
    """Deletes sessions past their TTL, whether or not anyone reads them again"""

    name = "sessions"

    def __init__(self, session_factory: sessionmaker, store: SessionStore, interval_seconds: float):
        super().__init__(session_factory, interval_seconds)
        self.store = store

    async def _sweep(self, db) -> int:
        return self.store.purge_expired(db)


class RetentionSweeper(Sweeper):
    """
    Deletes memory records past retention_until and indexes durable records
    whose indexing step failed earlier.
    """

    name = "retention"

    def __init__(self, session_factory: sessionmaker, memories: List[VectorMemory], interval_seconds: float):
        super().__init__(session_factory, interval_seconds)
        self.memories = memories

    async def _sweep(self, db) -> int:
        deleted = 0
        for memory in self.memories:
            deleted += memory.purge_expired(db)
            try:
                await memory.index_pending(db)
            except Exception as e:
                db.rollback()
                logger.warning(
                    f"Could not index pending {memory.kind.name} records: {e}",
                    extra={"kind": memory.kind.name}
                )
        return deleted


class AuditRetentionSweeper(Sweeper):
    name = "audit"

    def __init__(self, session_factory: sessionmaker, audit: AuditTrail, retention_days: int,
                 interval_seconds: float):
        super().__init__(session_factory, interval_seconds)
        self.audit = audit
        self.retention_days = retention_days

    async def _sweep(self, db) -> int:
        return self.audit.purge_older_than(db, self.retention_days)
