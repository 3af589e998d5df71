"""
Compliance rule model
"""
from enum import Enum
from typing import Any, Dict

from sqlalchemy import Boolean, Column, DateTime, Index, Integer, String, Text

from bankguard.core.database import Base
from bankguard.core.utils import utcnow


class ComplianceCategory(str, Enum):
    """Regulatory area a rule belongs to"""
    KYC = "KYC"
    AML = "AML"
    GDPR = "GDPR"
    LGPD = "LGPD"
    PCI = "PCI"
    OTHER = "OTHER"


class ComplianceRule(Base):
    """A natural-language policy rule evaluated by the compliance gate"""
    __tablename__ = "compliance_rules"

    id = Column(Integer, primary_key=True, autoincrement=True)
    name = Column(String(200), nullable=False)
    description = Column(Text, nullable=True)
    category = Column(String(20), nullable=False)  # ComplianceCategory enum
    rule_definition = Column(Text, nullable=False)
    active = Column(Boolean, default=True, nullable=False)
    priority = Column(Integer, default=0, nullable=False)  # higher = more weight

    created_at = Column(DateTime, default=utcnow, nullable=False)
    updated_at = Column(DateTime, default=utcnow, nullable=False)

    __table_args__ = (
        Index("ix_compliance_rules_active_priority", "active", "priority"),
    )

    def __repr__(self):
        return f"<ComplianceRule(id={self.id}, name={self.name}, category={self.category}, active={self.active})>"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "category": self.category,
            "rule_definition": self.rule_definition,
            "active": self.active,
            "priority": self.priority,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }
