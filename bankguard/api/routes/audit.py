"""
API routes for querying the audit trail
"""
from datetime import datetime
from typing import Any, Dict, List

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.orm import Session

from bankguard.api.deps import get_registry
from bankguard.core.database import get_db
from bankguard.core.logging_config import LoggingConfig
from bankguard.core.service_registry import ServiceRegistry
from bankguard.core.utils import to_naive_utc

logger = LoggingConfig.get_logger(__name__)

router = APIRouter(prefix="/api/audit", tags=["audit"])


@router.get("/user/{user_id}")
async def get_user_audit_logs(
    user_id: str,
    db: Session = Depends(get_db),
    registry: ServiceRegistry = Depends(get_registry),
) -> List[Dict[str, Any]]:
    return [log.to_dict() for log in registry.audit.by_actor(db, user_id)]


@router.get("/user/{user_id}/recent")
async def get_recent_user_activity(
    user_id: str,
    days: int = Query(7, ge=1, le=3650),
    db: Session = Depends(get_db),
    registry: ServiceRegistry = Depends(get_registry),
) -> List[Dict[str, Any]]:
    return [log.to_dict() for log in registry.audit.recent_activity(db, user_id, days)]


@router.get("/resource/{resource_type}/{resource_id}")
async def get_resource_audit_logs(
    resource_type: str,
    resource_id: str,
    db: Session = Depends(get_db),
    registry: ServiceRegistry = Depends(get_registry),
) -> List[Dict[str, Any]]:
    return [log.to_dict() for log in registry.audit.by_resource(db, resource_type, resource_id)]


@router.get("/timerange")
async def get_audit_logs_by_time_range(
    start: datetime = Query(...),
    end: datetime = Query(...),
    db: Session = Depends(get_db),
    registry: ServiceRegistry = Depends(get_registry),
) -> List[Dict[str, Any]]:
    """Records in ``[start, end]``, oldest first"""
    try:
        logs = registry.audit.by_time_range(db, to_naive_utc(start), to_naive_utc(end))
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return [log.to_dict() for log in logs]


@router.get("/ip/{ip_address}")
async def get_audit_logs_by_ip(
    ip_address: str,
    db: Session = Depends(get_db),
    registry: ServiceRegistry = Depends(get_registry),
) -> List[Dict[str, Any]]:
    return [log.to_dict() for log in registry.audit.by_source_address(db, ip_address)]


@router.get("/failed")
async def get_recent_failures(
    days: int = Query(7, ge=1, le=3650),
    db: Session = Depends(get_db),
    registry: ServiceRegistry = Depends(get_registry),
) -> List[Dict[str, Any]]:
    return [log.to_dict() for log in registry.audit.recent_failures(db, days)]

