"""
API routes for conversation session memory
"""
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from bankguard.api.deps import get_registry
from bankguard.core.database import get_db
from bankguard.core.logging_config import LoggingConfig
from bankguard.core.service_registry import ServiceRegistry

logger = LoggingConfig.get_logger(__name__)

router = APIRouter(prefix="/api/memory/session", tags=["session-memory"])


class SessionCreateRequest(BaseModel):
    user_id: str = Field(min_length=1)
    session_type: str = Field(min_length=1, max_length=50)
    ttl_minutes: Optional[int] = Field(None, ge=1)


class SessionDataRequest(BaseModel):
    key: str = Field(min_length=1, max_length=255)
    value: Any = None


@router.post("", status_code=201)
async def create_session(
    body: SessionCreateRequest,
    db: Session = Depends(get_db),
    registry: ServiceRegistry = Depends(get_registry),
) -> Dict[str, Any]:
    entry = registry.sessions.create(db, body.user_id, body.session_type, body.ttl_minutes)
    return entry.to_dict()


@router.get("/user/{user_id}")
async def get_user_sessions(
    user_id: str,
    db: Session = Depends(get_db),
    registry: ServiceRegistry = Depends(get_registry),
) -> List[Dict[str, Any]]:
    return [e.to_dict() for e in registry.sessions.list_for_user(db, user_id)]


@router.get("/user/{user_id}/type/{session_type}")
async def get_user_sessions_by_type(
    user_id: str,
    session_type: str,
    db: Session = Depends(get_db),
    registry: ServiceRegistry = Depends(get_registry),
) -> List[Dict[str, Any]]:
    return [e.to_dict() for e in registry.sessions.list_for_user_by_type(db, user_id, session_type)]


@router.delete("/user/{user_id}", status_code=204)
async def delete_user_sessions(
    user_id: str,
    db: Session = Depends(get_db),
    registry: ServiceRegistry = Depends(get_registry),
):
    registry.sessions.delete_all_for_user(db, user_id)


@router.get("/{session_id}")
async def get_session(
    session_id: str,
    db: Session = Depends(get_db),
    registry: ServiceRegistry = Depends(get_registry),
) -> Dict[str, Any]:
    entry = registry.sessions.get(db, session_id)
    if entry is None:
        raise HTTPException(status_code=404, detail=f"Session not found: {session_id}")
    return entry.to_dict()


@router.delete("/{session_id}", status_code=204)
async def delete_session(
    session_id: str,
    db: Session = Depends(get_db),
    registry: ServiceRegistry = Depends(get_registry),
):
    if not registry.sessions.delete(db, session_id):
        raise HTTPException(status_code=404, detail=f"Session not found: {session_id}")


@router.post("/{session_id}/data")
async def add_session_data(
    session_id: str,
    body: SessionDataRequest,
    db: Session = Depends(get_db),
    registry: ServiceRegistry = Depends(get_registry),
) -> Dict[str, Any]:
    entry = registry.sessions.set_data(db, session_id, body.key, body.value)
    return entry.to_dict()


@router.get("/{session_id}/data/{key}")
async def get_session_data(
    session_id: str,
    key: str,
    db: Session = Depends(get_db),
    registry: ServiceRegistry = Depends(get_registry),
) -> Dict[str, Any]:
    value = registry.sessions.get_data(db, session_id, key)
    if value is None:
        raise HTTPException(status_code=404, detail=f"No value for {key!r} in session {session_id}")
    return {"key": key, "value": value}


@router.delete("/{session_id}/data/{key}", status_code=204)
async def remove_session_data(
    session_id: str,
    key: str,
    db: Session = Depends(get_db),
    registry: ServiceRegistry = Depends(get_registry),
):
    registry.sessions.remove_data(db, session_id, key)
