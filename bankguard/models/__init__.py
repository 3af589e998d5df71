"""
SQLAlchemy models
"""
from bankguard.core.database import Base
from bankguard.models.audit_log import AuditLog  # noqa: F401
from bankguard.models.compliance_rule import ComplianceCategory, ComplianceRule  # noqa: F401
from bankguard.models.customer_profile import CustomerProfile  # noqa: F401
from bankguard.models.role import Permission, Role  # noqa: F401
from bankguard.models.session_entry import SessionDataItem, SessionEntry  # noqa: F401
from bankguard.models.transaction import Transaction, TransactionType  # noqa: F401

__all__ = [
    "Base",
    "AuditLog",
    "ComplianceCategory",
    "ComplianceRule",
    "CustomerProfile",
    "Permission",
    "Role",
    "SessionDataItem",
    "SessionEntry",
    "Transaction",
    "TransactionType",
]
