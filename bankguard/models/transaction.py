"""
Transaction model (long-term memory, fraud subject)
"""
from enum import Enum
from typing import Any, Dict, List, Tuple
from uuid import uuid4

from sqlalchemy import Boolean, Column, DateTime, Float, Index, Integer, Numeric, String, Text

from bankguard.core.database import Base
from bankguard.core.utils import utcnow
from bankguard.models.memory_record import MemoryRecordMixin


class TransactionType(str, Enum):
    DEBIT = "DEBIT"
    CREDIT = "CREDIT"
    TRANSFER = "TRANSFER"


class Transaction(MemoryRecordMixin, Base):
    """A customer transaction with its fraud decision"""
    __tablename__ = "transactions"

    natural_key_attr = "transaction_id"

    id = Column(Integer, primary_key=True, autoincrement=True)
    transaction_id = Column(String(64), unique=True, nullable=False, default=lambda: uuid4().hex)
    account_id = Column(String(100), nullable=False)
    customer_id = Column(String(100), nullable=False, index=True)
    amount = Column(Numeric(19, 4), nullable=False)
    currency = Column(String(3), nullable=False)
    type = Column(String(20), nullable=False)  # TransactionType enum
    merchant_name = Column(String(255), nullable=True)
    merchant_category = Column(String(100), nullable=True)
    description = Column(Text, nullable=True)
    location = Column(String(255), nullable=True)
    timestamp = Column(DateTime, default=utcnow, nullable=False)
    ip_address = Column(String(64), nullable=True)
    device_id = Column(String(255), nullable=True)

    # Decision fields, written before the record is indexed
    flagged_for_review = Column(Boolean, default=False, nullable=False)
    fraud_score = Column(Float, nullable=True)
    fraud_reason = Column(Text, nullable=True)

    __table_args__ = (
        Index("ix_transactions_customer_timestamp", "customer_id", "timestamp"),
    )

    def canonical_fields(self) -> List[Tuple[str, Any]]:
        amount = f"{self.amount} {self.currency}" if self.amount is not None else None
        return [
            ("Transaction ID", self.transaction_id),
            ("Customer ID", self.customer_id),
            ("Account ID", self.account_id),
            ("Amount", amount),
            ("Type", self.type),
            ("Merchant", self.merchant_name),
            ("Category", self.merchant_category),
            ("Description", self.description),
            ("Location", self.location),
            ("Date", self.timestamp.isoformat() if self.timestamp else None),
        ]

    def __repr__(self):
        return f"<Transaction(id={self.id}, customer_id={self.customer_id}, amount={self.amount} {self.currency})>"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "transaction_id": self.transaction_id,
            "account_id": self.account_id,
            "customer_id": self.customer_id,
            "amount": str(self.amount) if self.amount is not None else None,
            "currency": self.currency,
            "type": self.type,
            "merchant_name": self.merchant_name,
            "merchant_category": self.merchant_category,
            "description": self.description,
            "location": self.location,
            "timestamp": self.timestamp.isoformat() if self.timestamp else None,
            "ip_address": self.ip_address,
            "device_id": self.device_id,
            "flagged_for_review": self.flagged_for_review,
            "fraud_score": self.fraud_score,
            "fraud_reason": self.fraud_reason,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "retention_until": self.retention_until.isoformat() if self.retention_until else None,
            "indexed": self.embedding is not None,
        }
