"""
Customer profile model (long-term memory)
"""
from typing import Any, Dict, List, Tuple

from sqlalchemy import JSON, Column, DateTime, Integer, String

from bankguard.core.database import Base
from bankguard.core.utils import utcnow
from bankguard.models.memory_record import MemoryRecordMixin


class CustomerProfile(MemoryRecordMixin, Base):
    """Customer profile, embedded for similar-customer retrieval"""
    __tablename__ = "customer_profiles"

    natural_key_attr = "customer_id"

    id = Column(Integer, primary_key=True, autoincrement=True)
    customer_id = Column(String(100), unique=True, nullable=False, index=True)
    first_name = Column(String(100), nullable=True)
    last_name = Column(String(100), nullable=True)
    email = Column(String(255), nullable=True)
    phone_number = Column(String(50), nullable=True)

    preferences = Column(JSON, nullable=True)
    financial_data = Column(JSON, nullable=True)
    behavioral_data = Column(JSON, nullable=True)

    updated_at = Column(DateTime, default=utcnow, nullable=False)

    def canonical_fields(self) -> List[Tuple[str, Any]]:
        return [
            ("Customer ID", self.customer_id),
            ("First Name", self.first_name),
            ("Last Name", self.last_name),
            ("Email", self.email),
            ("Preferences", self.preferences),
            ("Financial Data", self.financial_data),
            ("Behavioral Data", self.behavioral_data),
        ]

    def __repr__(self):
        return f"<CustomerProfile(id={self.id}, customer_id={self.customer_id})>"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "customer_id": self.customer_id,
            "first_name": self.first_name,
            "last_name": self.last_name,
            "email": self.email,
            "phone_number": self.phone_number,
            "preferences": self.preferences,
            "financial_data": self.financial_data,
            "behavioral_data": self.behavioral_data,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
            "retention_until": self.retention_until.isoformat() if self.retention_until else None,
            "indexed": self.embedding is not None,
        }
