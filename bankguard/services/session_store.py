"""
Conversation session store with TTL expiry
"""
import json
from datetime import datetime, timedelta
from typing import Any, Callable, List, Optional, Tuple

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from bankguard.core.config import Settings
from bankguard.core.errors import NotFoundError
from bankguard.core.logging_config import LoggingConfig
from bankguard.core.metrics import sessions_created_total
from bankguard.core.utils import utcnow
from bankguard.models.session_entry import SessionDataItem, SessionEntry
from bankguard.services.vector_memory import commit_or_raise

logger = LoggingConfig.get_logger(__name__)

AI_CONVERSATION = "AI_CONVERSATION"


class SessionStore:
    """
    Short-term conversational state.

    An entry is unreachable from the moment ``now >= last_accessed_at + ttl``:
    reads expire it on sight and ``purge_expired`` removes the rest. Reads
    do not extend a session; every mutation does. Each data key is its own
    row, so concurrent writers to one key are last-write-wins and writers to
    different keys never overwrite each other.
    """

    def __init__(self, settings: Settings, clock: Callable[[], datetime] = utcnow):
        self.ttl_minutes = settings.session_ttl_minutes
        self._clock = clock

    def _load(self, db: Session, session_id: str) -> Optional[SessionEntry]:
        return db.query(SessionEntry).filter(SessionEntry.id == session_id).first()

    def _live(self, db: Session, session_id: str) -> Optional[SessionEntry]:
        entry = self._load(db, session_id)
        if entry is None:
            return None
        if entry.is_expired(self._clock()):
            db.delete(entry)
            commit_or_raise(db, "expire session")
            logger.debug(f"Session {session_id} expired on access", extra={"session_id": session_id})
            return None
        return entry

    def _require(self, db: Session, session_id: str) -> SessionEntry:
        entry = self._live(db, session_id)
        if entry is None:
            raise NotFoundError("Session", session_id)
        return entry

    def create(self, db: Session, user_id: str, session_type: str,
               ttl_minutes: Optional[int] = None) -> SessionEntry:
        """Create a new session in database"""
        now = self._clock()
        entry = SessionEntry(
            user_id=user_id,
            session_type=session_type,
            created_at=now,
            last_accessed_at=now,
            ttl_minutes=ttl_minutes or self.ttl_minutes,
        )
        db.add(entry)
        commit_or_raise(db, "create session")
        db.refresh(entry)
        sessions_created_total.labels(session_type=session_type).inc()
        logger.info(f"Created session: {entry.id}", extra={"session_id": entry.id, "session_type": session_type})
        return entry

    def get(self, db: Session, session_id: str) -> Optional[SessionEntry]:
        """Live session or None; does not refresh last_accessed_at"""
        return self._live(db, session_id)

    def resolve(self, db: Session, session_id: Optional[str], user_id: str,
                session_type: str) -> Tuple[SessionEntry, bool]:
        """
        Existing live session owned by ``user_id``, or a new one

        Returns:
            (session, created)
        """
        if session_id:
            entry = self._live(db, session_id)
            if entry is not None and entry.user_id == user_id:
                return entry, False
            if entry is not None:
                logger.warning(
                    f"Session {session_id} belongs to another user, starting a new one",
                    extra={"session_id": session_id}
                )
        return self.create(db, user_id, session_type), True

    def set_data(self, db: Session, session_id: str, key: str, value: Any) -> SessionEntry:
        """Upsert one data key and refresh the session"""
        try:
            json.dumps(value)
        except (TypeError, ValueError) as e:
            raise ValueError(f"Session value for {key!r} is not JSON-serializable") from e

        # A concurrent insert of the same key loses the unique race once, then updates
        for attempt in range(2):
            entry = self._require(db, session_id)
            now = self._clock()
            item = (
                db.query(SessionDataItem)
                .filter(SessionDataItem.session_id == session_id, SessionDataItem.key == key)
                .first()
            )
            if item is None:
                db.add(SessionDataItem(session_id=session_id, key=key, value=value, updated_at=now))
            else:
                item.value = value
                item.updated_at = now
            entry.last_accessed_at = now
            try:
                db.commit()
                break
            except IntegrityError:
                db.rollback()
                if attempt == 1:
                    raise
        db.refresh(entry)
        return entry

    def get_data(self, db: Session, session_id: str, key: str) -> Any:
        """Stored value, or None when the session or key is missing"""
        if self._live(db, session_id) is None:
            return None
        item = (
            db.query(SessionDataItem)
            .filter(SessionDataItem.session_id == session_id, SessionDataItem.key == key)
            .first()
        )
        return item.value if item else None

    def remove_data(self, db: Session, session_id: str, key: str) -> bool:
        entry = self._require(db, session_id)
        removed = (
            db.query(SessionDataItem)
            .filter(SessionDataItem.session_id == session_id, SessionDataItem.key == key)
            .delete(synchronize_session=False)
        )
        entry.last_accessed_at = self._clock()
        commit_or_raise(db, "remove session data")
        db.expire(entry)
        return bool(removed)

    def delete(self, db: Session, session_id: str) -> bool:
        entry = self._load(db, session_id)
        if entry is None:
            return False
        db.delete(entry)
        commit_or_raise(db, "delete session")
        logger.info(f"Deleted session {session_id}", extra={"session_id": session_id})
        return True

    def delete_all_for_user(self, db: Session, user_id: str) -> int:
        entries = db.query(SessionEntry).filter(SessionEntry.user_id == user_id).all()
        for entry in entries:
            db.delete(entry)
        commit_or_raise(db, "delete user sessions")
        if entries:
            logger.info(f"Deleted {len(entries)} sessions for user", extra={"session_owner": user_id})
        return len(entries)

    def list_for_user(self, db: Session, user_id: str) -> List[SessionEntry]:
        now = self._clock()
        entries = (
            db.query(SessionEntry)
            .filter(SessionEntry.user_id == user_id)
            .order_by(SessionEntry.last_accessed_at.desc())
            .all()
        )
        return [e for e in entries if not e.is_expired(now)]

    def list_for_user_by_type(self, db: Session, user_id: str, session_type: str) -> List[SessionEntry]:
        return [e for e in self.list_for_user(db, user_id) if e.session_type == session_type]

    def purge_expired(self, db: Session) -> int:
        """
        Delete every session past its TTL

        Returns:
            Number of deleted sessions
        """
        now = self._clock()
        rows = db.query(SessionEntry.id, SessionEntry.last_accessed_at, SessionEntry.ttl_minutes).all()
        expired = [
            row.id for row in rows
            if now >= row.last_accessed_at + timedelta(minutes=row.ttl_minutes)
        ]
        if not expired:
            return 0
        db.query(SessionDataItem).filter(SessionDataItem.session_id.in_(expired)).delete(synchronize_session=False)
        db.query(SessionEntry).filter(SessionEntry.id.in_(expired)).delete(synchronize_session=False)
        commit_or_raise(db, "purge expired sessions")
        logger.info(f"Deleted {len(expired)} expired sessions")
        return len(expired)
