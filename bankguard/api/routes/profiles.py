"""
API routes for customer profile memory
"""
from datetime import datetime
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from bankguard.api.deps import get_registry
from bankguard.core.database import get_db
from bankguard.core.logging_config import LoggingConfig
from bankguard.core.service_registry import ServiceRegistry
from bankguard.core.utils import to_naive_utc

logger = LoggingConfig.get_logger(__name__)

router = APIRouter(prefix="/api/memory/profile", tags=["profile-memory"])


class ProfileFields(BaseModel):
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    email: Optional[str] = None
    phone_number: Optional[str] = None
    preferences: Optional[Dict[str, Any]] = None
    financial_data: Optional[Dict[str, Any]] = None
    behavioral_data: Optional[Dict[str, Any]] = None


class CreateProfileRequest(ProfileFields):
    customer_id: str = Field(min_length=1, max_length=100)
    retention_until: Optional[datetime] = None


@router.post("", status_code=201)
async def create_profile(
    body: CreateProfileRequest,
    db: Session = Depends(get_db),
    registry: ServiceRegistry = Depends(get_registry),
) -> Dict[str, Any]:
    fields = body.model_dump(exclude={"customer_id"})
    if body.retention_until is not None:
        fields["retention_until"] = to_naive_utc(body.retention_until)
    profile = await registry.profiles.create_profile(db, body.customer_id, **fields)
    return profile.to_dict()


@router.get("/customer/{customer_id}")
async def get_profile_by_customer_id(
    customer_id: str,
    db: Session = Depends(get_db),
    registry: ServiceRegistry = Depends(get_registry),
) -> Dict[str, Any]:
    return registry.profiles.get_by_customer_id(db, customer_id).to_dict()


@router.put("/customer/{customer_id}/preferences")
async def update_preferences(
    customer_id: str,
    preferences: Dict[str, Any],
    db: Session = Depends(get_db),
    registry: ServiceRegistry = Depends(get_registry),
) -> Dict[str, Any]:
    profile = await registry.profiles.update_preferences(db, customer_id, preferences)
    return profile.to_dict()


@router.put("/customer/{customer_id}/behavioral")
async def update_behavioral_data(
    customer_id: str,
    behavioral_data: Dict[str, Any],
    db: Session = Depends(get_db),
    registry: ServiceRegistry = Depends(get_registry),
) -> Dict[str, Any]:
    profile = await registry.profiles.update_behavioral_data(db, customer_id, behavioral_data)
    return profile.to_dict()


@router.get("/customer/{customer_id}/similar")
async def find_similar_profiles(
    customer_id: str,
    threshold: float = Query(0.7, ge=0.0),
    limit: int = Query(10, ge=1, le=100),
    db: Session = Depends(get_db),
    registry: ServiceRegistry = Depends(get_registry),
) -> List[Dict[str, Any]]:
    """Profiles nearer than ``threshold`` to this customer's, nearest first"""
    matches = await registry.profiles.find_similar(db, customer_id, threshold=threshold, limit=limit)
    return [m.to_dict() for m in matches]


@router.post("/customer/{customer_id}/retention")
async def extend_retention(
    customer_id: str,
    years: int = Query(..., ge=1, le=100),
    db: Session = Depends(get_db),
    registry: ServiceRegistry = Depends(get_registry),
) -> Dict[str, Any]:
    profile = registry.profiles.extend_retention(db, customer_id, years)
    return profile.to_dict()


@router.get("/{profile_id}")
async def get_profile(
    profile_id: int,
    db: Session = Depends(get_db),
    registry: ServiceRegistry = Depends(get_registry),
) -> Dict[str, Any]:
    return registry.profiles.get_profile(db, profile_id).to_dict()


@router.put("/{profile_id}")
async def update_profile(
    profile_id: int,
    body: ProfileFields,
    db: Session = Depends(get_db),
    registry: ServiceRegistry = Depends(get_registry),
) -> Dict[str, Any]:
    """Replace the profile's fields; omitted fields become empty"""
    profile = await registry.profiles.update_profile(db, profile_id, **body.model_dump())
    return profile.to_dict()


@router.delete("/{profile_id}", status_code=204)
async def delete_profile(
    profile_id: int,
    db: Session = Depends(get_db),
    registry: ServiceRegistry = Depends(get_registry),
):
    registry.profiles.delete_profile(db, profile_id)
