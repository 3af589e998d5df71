"""
API routes for permission checks and role management
"""
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, Request
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from bankguard.api.deps import client_ip, get_registry
from bankguard.core.database import get_db
from bankguard.core.logging_config import LoggingConfig
from bankguard.core.service_registry import ServiceRegistry
from bankguard.services.audit_service import AuditEntry

logger = LoggingConfig.get_logger(__name__)

router = APIRouter(prefix="/api/rbac", tags=["rbac"])


class PermissionCheckRequest(BaseModel):
    user_id: str = Field(min_length=1)
    role_name: str = Field(min_length=1)
    permission: str = Field(min_length=1)
    ip_address: Optional[str] = None


class PermissionCheckResponse(BaseModel):
    has_permission: bool


class RoleRequest(BaseModel):
    """Role fields plus who is making the change"""
    name: str = Field(min_length=1, max_length=100)
    permissions: List[str] = Field(default_factory=list)
    description: Optional[str] = None
    user_id: str = "system"
    ip_address: Optional[str] = None


class RoleUpdateRequest(BaseModel):
    name: Optional[str] = Field(None, min_length=1, max_length=100)
    permissions: Optional[List[str]] = None
    description: Optional[str] = None
    user_id: str = "system"
    ip_address: Optional[str] = None


class RoleDeletionRequest(BaseModel):
    user_id: str = "system"
    ip_address: Optional[str] = None


@router.post("/check-permission", response_model=PermissionCheckResponse)
async def check_permission(
    body: PermissionCheckRequest,
    request: Request,
    db: Session = Depends(get_db),
    registry: ServiceRegistry = Depends(get_registry),
):
    logger.info(f"Checking permission for user: {body.user_id}")
    granted = registry.rbac.check(db, body.user_id, body.role_name, body.permission)
    registry.audit.record(AuditEntry(
        user_id=body.user_id,
        action="CHECK_PERMISSION",
        resource_type="PERMISSION",
        resource_id=body.permission,
        request_data={"role": body.role_name, "permission": body.permission},
        response_data={"granted": granted},
        ip_address=body.ip_address or client_ip(request),
        success=granted,
        error_message=None if granted else "Permission denied",
    ))
    return PermissionCheckResponse(has_permission=granted)


@router.get("/roles")
async def list_roles(
    db: Session = Depends(get_db),
    registry: ServiceRegistry = Depends(get_registry),
) -> List[Dict[str, Any]]:
    return [r.to_dict() for r in registry.rbac.list_roles(db)]


@router.get("/roles/id/{role_id}")
async def get_role(
    role_id: int,
    db: Session = Depends(get_db),
    registry: ServiceRegistry = Depends(get_registry),
) -> Dict[str, Any]:
    return registry.rbac.get_role(db, role_id).to_dict()


@router.get("/roles/name/{name}")
async def get_role_by_name(
    name: str,
    db: Session = Depends(get_db),
    registry: ServiceRegistry = Depends(get_registry),
) -> Dict[str, Any]:
    return registry.rbac.get_role_by_name(db, name).to_dict()


@router.get("/roles/{name}/permissions")
async def get_role_permissions(
    name: str,
    db: Session = Depends(get_db),
    registry: ServiceRegistry = Depends(get_registry),
) -> List[str]:
    return registry.rbac.get_role_permissions(db, name)


@router.post("/roles", status_code=201)
async def create_role(
    body: RoleRequest,
    request: Request,
    db: Session = Depends(get_db),
    registry: ServiceRegistry = Depends(get_registry),
) -> Dict[str, Any]:
    logger.info(f"Creating new role: {body.name}")
    role = registry.rbac.create_role(
        db,
        name=body.name,
        permissions=body.permissions,
        description=body.description,
        actor=body.user_id,
        ip_address=body.ip_address or client_ip(request),
    )
    return role.to_dict()


@router.put("/roles/{role_id}")
async def update_role(
    role_id: int,
    body: RoleUpdateRequest,
    request: Request,
    db: Session = Depends(get_db),
    registry: ServiceRegistry = Depends(get_registry),
) -> Dict[str, Any]:
    role = registry.rbac.update_role(
        db,
        role_id,
        name=body.name,
        permissions=body.permissions,
        description=body.description,
        actor=body.user_id,
        ip_address=body.ip_address or client_ip(request),
    )
    return role.to_dict()


@router.delete("/roles/{role_id}", status_code=204)
async def delete_role(
    role_id: int,
    request: Request,
    body: Optional[RoleDeletionRequest] = None,
    db: Session = Depends(get_db),
    registry: ServiceRegistry = Depends(get_registry),
):
    body = body or RoleDeletionRequest()
    registry.rbac.delete_role(db, role_id, actor=body.user_id, ip_address=body.ip_address or client_ip(request))
