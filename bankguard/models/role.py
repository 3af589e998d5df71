"""
Role model: a named set of permission tokens
"""
from typing import Any, Dict, FrozenSet

from sqlalchemy import JSON, Column, DateTime, Integer, String, Text

from bankguard.core.database import Base
from bankguard.core.utils import utcnow


class Permission:
    """Permission tokens known to the service"""
    AI_QUERY = "AI_QUERY"
    FRAUD_REVIEW = "FRAUD_REVIEW"
    FINANCIAL_ADVICE = "FINANCIAL_ADVICE"
    MANAGE_ROLES = "MANAGE_ROLES"
    MANAGE_COMPLIANCE = "MANAGE_COMPLIANCE"
    VIEW_AUDIT = "VIEW_AUDIT"


class Role(Base):
    """Role with its permission set"""
    __tablename__ = "roles"

    id = Column(Integer, primary_key=True, autoincrement=True)
    name = Column(String(100), unique=True, nullable=False, index=True)
    description = Column(Text, nullable=True)
    # Stored as a sorted JSON list; updates replace the whole set
    permissions = Column(JSON, nullable=False, default=list)

    created_at = Column(DateTime, default=utcnow, nullable=False)
    updated_at = Column(DateTime, default=utcnow, nullable=False)

    @property
    def permission_set(self) -> FrozenSet[str]:
        """Immutable snapshot used by permission checks"""
        return frozenset(self.permissions or [])

    def __repr__(self):
        return f"<Role(id={self.id}, name={self.name}, permissions={len(self.permissions or [])})>"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "permissions": sorted(self.permissions or []),
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }
