"""
Permission gate and role management
"""
from typing import Dict, FrozenSet, Iterable, List, Optional

from sqlalchemy.orm import Session

from bankguard.core.errors import ConflictError, NotFoundError
from bankguard.core.logging_config import LoggingConfig
from bankguard.core.utils import utcnow
from bankguard.models.role import Permission, Role
from bankguard.services.audit_service import AuditEntry, AuditTrail
from bankguard.services.vector_memory import commit_or_raise

logger = LoggingConfig.get_logger(__name__)


# Seeded into an empty roles table at startup
DEFAULT_ROLE_PERMISSIONS: Dict[str, List[str]] = {
    "ADMIN": [
        Permission.AI_QUERY,
        Permission.FRAUD_REVIEW,
        Permission.FINANCIAL_ADVICE,
        Permission.MANAGE_ROLES,
        Permission.MANAGE_COMPLIANCE,
        Permission.VIEW_AUDIT,
    ],
    "ADVISOR": [
        Permission.AI_QUERY,
        Permission.FINANCIAL_ADVICE,
    ],
    "FRAUD_ANALYST": [
        Permission.AI_QUERY,
        Permission.FRAUD_REVIEW,
        Permission.VIEW_AUDIT,
    ],
    "CUSTOMER": [
        Permission.AI_QUERY,
    ],
}


class RBACService:
    """
    Role-based permission checks plus role CRUD.

    ``check`` fails closed: an unknown role has no permissions. It writes no
    audit record itself; callers audit with their own context.
    """

    def __init__(self, audit: AuditTrail):
        self.audit = audit

    def permissions_for(self, db: Session, role_name: str) -> Optional[FrozenSet[str]]:
        role = db.query(Role).filter(Role.name == role_name).first()
        return role.permission_set if role else None

    def check(self, db: Session, user_id: str, role_name: str, permission: str) -> bool:
        """
        Check if a role grants a permission

        Returns:
            True if granted, False otherwise (including unknown roles)
        """
        permissions = self.permissions_for(db, role_name)
        if permissions is None:
            logger.warning(
                f"Permission check for unknown role {role_name}",
                extra={"check_user_id": user_id, "role": role_name, "permission": permission}
            )
            return False
        granted = permission in permissions
        logger.debug(
            f"Permission {permission} for role {role_name}: {'granted' if granted else 'denied'}",
            extra={"check_user_id": user_id, "role": role_name, "permission": permission}
        )
        return granted

    def _audit(self, action: str, role: Role, actor: str, ip_address: Optional[str], payload=None):
        self.audit.record(AuditEntry(
            user_id=actor,
            action=action,
            resource_type="ROLE",
            resource_id=str(role.id),
            request_data=payload,
            ip_address=ip_address,
            success=True,
        ))

    def list_roles(self, db: Session) -> List[Role]:
        return db.query(Role).order_by(Role.name).all()

    def get_role(self, db: Session, role_id: int) -> Role:
        role = db.query(Role).filter(Role.id == role_id).first()
        if role is None:
            raise NotFoundError("Role", role_id)
        return role

    def get_role_by_name(self, db: Session, name: str) -> Role:
        role = db.query(Role).filter(Role.name == name).first()
        if role is None:
            raise NotFoundError("Role", name)
        return role

    def get_role_permissions(self, db: Session, name: str) -> List[str]:
        return sorted(self.get_role_by_name(db, name).permission_set)

    def create_role(
        self,
        db: Session,
        name: str,
        permissions: Iterable[str],
        description: Optional[str] = None,
        actor: str = "system",
        ip_address: Optional[str] = None,
    ) -> Role:
        if db.query(Role).filter(Role.name == name).first():
            raise ConflictError(f"Role already exists: {name}")
        role = Role(name=name, description=description, permissions=sorted(set(permissions)))
        db.add(role)
        commit_or_raise(db, "create role")
        db.refresh(role)
        logger.info(f"Created role {name}", extra={"role_id": role.id, "actor": actor})
        self._audit("CREATE_ROLE", role, actor, ip_address, role.to_dict())
        return role

    def update_role(
        self,
        db: Session,
        role_id: int,
        name: Optional[str] = None,
        permissions: Optional[Iterable[str]] = None,
        description: Optional[str] = None,
        actor: str = "system",
        ip_address: Optional[str] = None,
    ) -> Role:
        role = self.get_role(db, role_id)
        if name is not None and name != role.name:
            if db.query(Role).filter(Role.name == name).first():
                raise ConflictError(f"Role already exists: {name}")
            role.name = name
        if description is not None:
            role.description = description
        if permissions is not None:
            # Whole-set replacement; readers hold their own frozenset snapshot
            role.permissions = sorted(set(permissions))
        role.updated_at = utcnow()
        commit_or_raise(db, "update role")
        db.refresh(role)
        logger.info(f"Updated role {role.name}", extra={"role_id": role.id, "actor": actor})
        self._audit("UPDATE_ROLE", role, actor, ip_address, role.to_dict())
        return role

    def delete_role(self, db: Session, role_id: int, actor: str = "system",
                    ip_address: Optional[str] = None):
        role = self.get_role(db, role_id)
        db.delete(role)
        commit_or_raise(db, "delete role")
        logger.info(f"Deleted role {role.name}", extra={"role_id": role_id, "actor": actor})
        self._audit("DELETE_ROLE", role, actor, ip_address, {"name": role.name})

    def seed_default_roles(self, db: Session) -> int:
        """Create the default roles when none exist; returns how many were created"""
        if db.query(Role).count():
            return 0
        for name, permissions in DEFAULT_ROLE_PERMISSIONS.items():
            db.add(Role(name=name, description=f"Default {name.lower()} role", permissions=sorted(permissions)))
        commit_or_raise(db, "seed default roles")
        logger.info(f"Seeded {len(DEFAULT_ROLE_PERMISSIONS)} default roles")
        return len(DEFAULT_ROLE_PERMISSIONS)
