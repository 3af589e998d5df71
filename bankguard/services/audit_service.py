"""
Append-only audit trail with asynchronous writes
"""
import asyncio
import json
import threading
from concurrent.futures import Future, ThreadPoolExecutor
from concurrent.futures import wait as wait_futures
from datetime import datetime, timedelta
from typing import Any, List, Optional, Set

from pydantic import BaseModel, Field
from sqlalchemy.orm import Session, sessionmaker

from bankguard.core.errors import AuditWriteFailure
from bankguard.core.logging_config import LoggingConfig
from bankguard.core.metrics import audit_writes_total
from bankguard.core.utils import utcnow
from bankguard.models.audit_log import AuditLog

logger = LoggingConfig.get_logger(__name__)


def _serialize(payload: Any) -> Optional[str]:
    if payload is None or isinstance(payload, str):
        return payload
    return json.dumps(payload, ensure_ascii=False, default=str)


class AuditEntry(BaseModel):
    """What the caller knows about one audited action"""
    user_id: str
    action: str
    success: bool
    resource_type: Optional[str] = None
    resource_id: Optional[str] = None
    request_data: Any = None
    response_data: Any = None
    ip_address: Optional[str] = None
    user_agent: Optional[str] = None
    error_message: Optional[str] = None
    trace_id: Optional[str] = None
    timestamp: datetime = Field(default_factory=utcnow)

    def to_model(self) -> AuditLog:
        return AuditLog(
            user_id=self.user_id,
            action=self.action,
            resource_type=self.resource_type,
            resource_id=self.resource_id,
            request_data=_serialize(self.request_data),
            response_data=_serialize(self.response_data),
            ip_address=self.ip_address,
            user_agent=self.user_agent,
            success=self.success,
            error_message=self.error_message,
            trace_id=self.trace_id,
            timestamp=self.timestamp,
        )


class AuditTrail:
    """
    Fire-and-forget audit writer plus read views.

    ``record`` hands the entry to a small thread pool; each write uses its
    own database session so it never shares a transaction with the caller.
    A failed write is logged and counted, and never reaches the caller.
    """

    def __init__(self, session_factory: sessionmaker, max_workers: int = 2):
        self._session_factory = session_factory
        self._executor = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="audit-writer")
        self._pending: Set[Future] = set()
        self._lock = threading.Lock()

    def record(self, entry: AuditEntry) -> Future:
        """Schedule the write and return immediately"""
        try:
            future = self._executor.submit(self._write, entry)
        except RuntimeError:
            # Executor already shut down; write inline rather than lose the record
            future = Future()
            future.set_result(self._write(entry))
            return future
        with self._lock:
            self._pending.add(future)
        future.add_done_callback(self._forget)
        return future

    def _forget(self, future: Future):
        with self._lock:
            self._pending.discard(future)

    def _write(self, entry: AuditEntry) -> Optional[int]:
        db = self._session_factory()
        try:
            log = entry.to_model()
            db.add(log)
            db.commit()
            audit_writes_total.labels(status="success").inc()
            return log.id
        except Exception as e:
            db.rollback()
            audit_writes_total.labels(status="failed").inc()
            failure = AuditWriteFailure(f"Failed to write audit record: {e}", {"action": entry.action})
            logger.error(
                failure.message,
                exc_info=True,
                extra={"action": entry.action, "audit_user_id": entry.user_id, "trace_id": entry.trace_id}
            )
            return None
        finally:
            db.close()

    async def drain(self):
        """Wait for every write scheduled so far"""
        with self._lock:
            pending = list(self._pending)
        if pending:
            await asyncio.gather(*(asyncio.wrap_future(f) for f in pending))

    def flush(self, timeout: Optional[float] = None):
        """Block until every write scheduled so far has finished"""
        with self._lock:
            pending = list(self._pending)
        if pending:
            wait_futures(pending, timeout=timeout)

    def shutdown(self, wait: bool = True):
        self._executor.shutdown(wait=wait)
        logger.info("Audit writer stopped")

    # Read views

    def by_actor(self, db: Session, user_id: str) -> List[AuditLog]:
        return (
            db.query(AuditLog)
            .filter(AuditLog.user_id == user_id)
            .order_by(AuditLog.timestamp.desc(), AuditLog.id.desc())
            .all()
        )

    def recent_activity(self, db: Session, user_id: str, days: int = 7) -> List[AuditLog]:
        since = utcnow() - timedelta(days=days)
        return (
            db.query(AuditLog)
            .filter(AuditLog.user_id == user_id, AuditLog.timestamp >= since)
            .order_by(AuditLog.timestamp.desc(), AuditLog.id.desc())
            .all()
        )

    def recent_failures(self, db: Session, days: int = 7) -> List[AuditLog]:
        since = utcnow() - timedelta(days=days)
        return (
            db.query(AuditLog)
            .filter(AuditLog.success.is_(False), AuditLog.timestamp >= since)
            .order_by(AuditLog.timestamp.desc(), AuditLog.id.desc())
            .all()
        )

    def by_resource(self, db: Session, resource_type: str, resource_id: str) -> List[AuditLog]:
        return (
            db.query(AuditLog)
            .filter(AuditLog.resource_type == resource_type, AuditLog.resource_id == resource_id)
            .order_by(AuditLog.timestamp.desc(), AuditLog.id.desc())
            .all()
        )

    def by_time_range(self, db: Session, start: datetime, end: datetime) -> List[AuditLog]:
        if end < start:
            raise ValueError("end must not precede start")
        return (
            db.query(AuditLog)
            .filter(AuditLog.timestamp >= start, AuditLog.timestamp <= end)
            .order_by(AuditLog.timestamp.asc(), AuditLog.id.asc())
            .all()
        )

    def by_source_address(self, db: Session, ip_address: str) -> List[AuditLog]:
        return (
            db.query(AuditLog)
            .filter(AuditLog.ip_address == ip_address)
            .order_by(AuditLog.timestamp.desc(), AuditLog.id.desc())
            .all()
        )

    def purge_older_than(self, db: Session, days: int) -> int:
        """
        Delete records older than the retention window

        Returns:
            Number of deleted records
        """
        cutoff = utcnow() - timedelta(days=days)
        query = db.query(AuditLog).filter(AuditLog.timestamp < cutoff)
        count = query.count()
        if count:
            query.delete(synchronize_session=False)
            db.commit()
            logger.info(f"Deleted {count} audit records older than {days} days")
        return count
