"""
Conversation session models (short-term memory)
"""
from datetime import datetime, timedelta
from typing import Any, Dict, Optional
from uuid import uuid4

from sqlalchemy import JSON, Column, DateTime, ForeignKey, Integer, String, UniqueConstraint
from sqlalchemy.orm import relationship

from bankguard.core.database import Base
from bankguard.core.utils import utcnow


class SessionEntry(Base):
    """TTL-bounded conversation state owned by one user"""
    __tablename__ = "session_entries"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid4()))
    user_id = Column(String(100), nullable=False, index=True)
    session_type = Column(String(50), nullable=False)

    created_at = Column(DateTime, default=utcnow, nullable=False)
    last_accessed_at = Column(DateTime, default=utcnow, nullable=False, index=True)
    ttl_minutes = Column(Integer, nullable=False)

    items = relationship(
        "SessionDataItem",
        back_populates="session",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )

    @property
    def expires_at(self) -> datetime:
        return self.last_accessed_at + timedelta(minutes=self.ttl_minutes)

    @property
    def data(self) -> Dict[str, Any]:
        return {item.key: item.value for item in self.items}

    def is_expired(self, now: Optional[datetime] = None) -> bool:
        """Unreachable from the moment ``now >= last_accessed_at + ttl``"""
        return (now or utcnow()) >= self.expires_at

    def __repr__(self):
        return f"<SessionEntry(id={self.id}, user_id={self.user_id}, type={self.session_type})>"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "user_id": self.user_id,
            "session_type": self.session_type,
            "data": self.data,
            "created_at": self.created_at.isoformat(),
            "last_accessed_at": self.last_accessed_at.isoformat(),
            "ttl_minutes": self.ttl_minutes,
            "expires_at": self.expires_at.isoformat(),
        }


class SessionDataItem(Base):
    """One key of a session's data map; keys are unique per session"""
    __tablename__ = "session_data_items"

    id = Column(Integer, primary_key=True, autoincrement=True)
    session_id = Column(
        String(36),
        ForeignKey("session_entries.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    key = Column(String(255), nullable=False)
    value = Column(JSON, nullable=True)
    updated_at = Column(DateTime, default=utcnow, nullable=False)

    session = relationship("SessionEntry", back_populates="items")

    __table_args__ = (
        UniqueConstraint("session_id", "key", name="uq_session_data_key"),
    )

    def __repr__(self):
        return f"<SessionDataItem(session_id={self.session_id}, key={self.key})>"
