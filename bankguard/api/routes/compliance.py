"""
API routes for compliance validation and rule management
"""
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from bankguard.api.deps import get_registry
from bankguard.core.database import get_db
from bankguard.core.logging_config import LoggingConfig
from bankguard.core.service_registry import ServiceRegistry
from bankguard.models.compliance_rule import ComplianceCategory
from bankguard.services.compliance_service import ComplianceVerdict

logger = LoggingConfig.get_logger(__name__)

router = APIRouter(prefix="/api/compliance", tags=["compliance"])


class ValidateRequest(BaseModel):
    text: str = Field(min_length=1)


class CreateRuleRequest(BaseModel):
    name: str = Field(min_length=1, max_length=255)
    category: ComplianceCategory
    rule_definition: str = Field(min_length=1)
    description: Optional[str] = None
    active: bool = True
    priority: int = 0


class UpdateRuleRequest(BaseModel):
    """Fields left out are not changed"""
    name: Optional[str] = Field(None, min_length=1, max_length=255)
    category: Optional[ComplianceCategory] = None
    rule_definition: Optional[str] = Field(None, min_length=1)
    description: Optional[str] = None
    active: Optional[bool] = None
    priority: Optional[int] = None


@router.post("/validate", response_model=ComplianceVerdict)
async def validate_text(
    body: ValidateRequest,
    db: Session = Depends(get_db),
    registry: ServiceRegistry = Depends(get_registry),
):
    return await registry.compliance.validate(db, body.text)


@router.get("/rules")
async def list_rules(
    db: Session = Depends(get_db),
    registry: ServiceRegistry = Depends(get_registry),
) -> List[Dict[str, Any]]:
    return [r.to_dict() for r in registry.compliance.list_rules(db)]


@router.get("/rules/active")
async def list_active_rules(
    db: Session = Depends(get_db),
    registry: ServiceRegistry = Depends(get_registry),
) -> List[Dict[str, Any]]:
    """Active rules, highest priority first"""
    return [r.to_dict() for r in registry.compliance.get_active_rules(db)]


@router.get("/rules/category/{category}")
async def list_rules_by_category(
    category: ComplianceCategory,
    db: Session = Depends(get_db),
    registry: ServiceRegistry = Depends(get_registry),
) -> List[Dict[str, Any]]:
    return [r.to_dict() for r in registry.compliance.get_rules_by_category(db, category.value)]


@router.post("/rules", status_code=201)
async def create_rule(
    body: CreateRuleRequest,
    db: Session = Depends(get_db),
    registry: ServiceRegistry = Depends(get_registry),
) -> Dict[str, Any]:
    rule = registry.compliance.create_rule(db, **body.model_dump())
    return rule.to_dict()


@router.put("/rules/{rule_id}")
async def update_rule(
    rule_id: int,
    body: UpdateRuleRequest,
    db: Session = Depends(get_db),
    registry: ServiceRegistry = Depends(get_registry),
) -> Dict[str, Any]:
    rule = registry.compliance.update_rule(db, rule_id, **body.model_dump(exclude_none=True))
    return rule.to_dict()


@router.delete("/rules/{rule_id}", status_code=204)
async def delete_rule(
    rule_id: int,
    db: Session = Depends(get_db),
    registry: ServiceRegistry = Depends(get_registry),
):
    registry.compliance.delete_rule(db, rule_id)
