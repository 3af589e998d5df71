"""
API route for personalized financial advice
"""
from typing import Any, Dict

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from bankguard.api.deps import get_registry
from bankguard.core.database import get_db
from bankguard.core.logging_config import LoggingConfig
from bankguard.core.service_registry import ServiceRegistry

logger = LoggingConfig.get_logger(__name__)

router = APIRouter(prefix="/api/financial-advice", tags=["financial-advice"])


class AdviceRequest(BaseModel):
    query: str = Field(min_length=1)
    customer_profile: Dict[str, Any] = Field(default_factory=dict)


class AdviceResponse(BaseModel):
    advice: str


@router.post("/{customer_id}", response_model=AdviceResponse)
async def get_financial_advice(
    customer_id: str,
    body: AdviceRequest,
    db: Session = Depends(get_db),
    registry: ServiceRegistry = Depends(get_registry),
):
    logger.info(f"Received financial advice request for customer: {customer_id}")
    advice = await registry.advice.get_financial_advice(db, customer_id, body.query, body.customer_profile)
    return AdviceResponse(advice=advice)
