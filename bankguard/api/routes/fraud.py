"""
API routes for transaction fraud detection
"""
from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from bankguard.api.deps import get_registry
from bankguard.core.database import get_db
from bankguard.core.logging_config import LoggingConfig
from bankguard.core.service_registry import ServiceRegistry
from bankguard.models.transaction import TransactionType

logger = LoggingConfig.get_logger(__name__)

router = APIRouter(prefix="/api/fraud", tags=["fraud"])


class TransactionRequest(BaseModel):
    """Transaction to score"""
    transaction_id: Optional[str] = None
    account_id: str = Field(min_length=1)
    customer_id: str = Field(min_length=1)
    amount: Decimal
    currency: str = Field(min_length=3, max_length=3)
    type: TransactionType
    merchant_name: Optional[str] = None
    merchant_category: Optional[str] = None
    description: Optional[str] = None
    location: Optional[str] = None
    timestamp: Optional[datetime] = None
    ip_address: Optional[str] = None
    device_id: Optional[str] = None


@router.post("/process")
async def process_transaction(
    body: TransactionRequest,
    db: Session = Depends(get_db),
    registry: ServiceRegistry = Depends(get_registry),
) -> Dict[str, Any]:
    """Score a transaction and store it with its fraud assessment"""
    logger.info(f"Received transaction for fraud check: customer {body.customer_id}")
    fields = body.model_dump(exclude_none=True)
    fields["type"] = body.type.value
    transaction = await registry.fraud.process_transaction(db, **fields)
    return transaction.to_dict()


@router.get("/transactions/{customer_id}")
async def get_recent_transactions(
    customer_id: str,
    days: int = Query(30, ge=1, le=3650),
    db: Session = Depends(get_db),
    registry: ServiceRegistry = Depends(get_registry),
) -> List[Dict[str, Any]]:
    """Transactions of a customer in the last ``days`` days, newest first"""
    return [t.to_dict() for t in registry.fraud.get_recent_transactions(db, customer_id, days)]


@router.get("/flagged")
async def get_flagged_transactions(
    db: Session = Depends(get_db),
    registry: ServiceRegistry = Depends(get_registry),
) -> List[Dict[str, Any]]:
    return [t.to_dict() for t in registry.fraud.get_flagged_transactions(db)]
