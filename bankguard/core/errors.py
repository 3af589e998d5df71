"""
Error taxonomy for the decision pipeline
"""
from enum import Enum
from typing import Any, Dict, List, Optional


class ErrorCategory(str, Enum):
    """Error categories used in logs and audit records"""
    AUTHORIZATION = "authorization"
    COMPLIANCE = "compliance"
    UPSTREAM = "upstream"  # Reasoning or embedding service
    PERSISTENCE = "persistence"
    AUDIT = "audit"
    NOT_FOUND = "not_found"
    CONFLICT = "conflict"
    UNKNOWN = "unknown"


class BankGuardError(Exception):
    """Base class for all pipeline errors"""

    category: ErrorCategory = ErrorCategory.UNKNOWN

    def __init__(self, message: str, metadata: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.metadata = metadata or {}

    def to_dict(self) -> Dict[str, Any]:
        """Convert error to dictionary"""
        return {
            "error_type": type(self).__name__,
            "message": self.message,
            "category": self.category.value,
            "metadata": self.metadata,
        }


class PermissionDenied(BankGuardError):
    category = ErrorCategory.AUTHORIZATION

    def __init__(self, user_id: str, role: str, permission: str):
        super().__init__(
            f"Role {role} of user {user_id} lacks permission {permission}",
            {"user_id": user_id, "role": role, "permission": permission},
        )


class ComplianceViolation(BankGuardError):
    category = ErrorCategory.COMPLIANCE

    def __init__(self, violations: List[str], explanation: str):
        super().__init__(explanation, {"violations": list(violations)})
        self.violations = list(violations)
        self.explanation = explanation


class UpstreamModelFailure(BankGuardError):
    """The reasoning or embedding service failed (timeout, transport, HTTP status)"""
    category = ErrorCategory.UPSTREAM


class MalformedModelOutput(UpstreamModelFailure):
    """The model answered, but not in the expected shape"""

    def __init__(self, message: str, raw_output: Optional[str] = None):
        super().__init__(message, {"raw_output": (raw_output or "")[:500]})
        self.raw_output = raw_output


class CircuitOpenError(UpstreamModelFailure):
    """Call rejected without contacting the upstream because the circuit is open"""

    def __init__(self, breaker_name: str):
        super().__init__(f"Circuit '{breaker_name}' is open", {"breaker": breaker_name})
        self.breaker_name = breaker_name


class PersistenceFailure(BankGuardError):
    category = ErrorCategory.PERSISTENCE


class AuditWriteFailure(BankGuardError):
    category = ErrorCategory.AUDIT


class NotFoundError(BankGuardError):
    category = ErrorCategory.NOT_FOUND

    def __init__(self, resource: str, identifier: Any):
        super().__init__(f"{resource} not found: {identifier}", {"resource": resource, "id": str(identifier)})
        self.resource = resource
        self.identifier = identifier


class ConflictError(BankGuardError):
    category = ErrorCategory.CONFLICT
