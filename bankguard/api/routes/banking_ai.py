"""
API route for the policy-gated AI query pipeline
"""
from typing import Optional

from fastapi import APIRouter, Depends, Request
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from bankguard.api.deps import client_ip, get_registry
from bankguard.core.database import get_db
from bankguard.core.logging_config import LoggingConfig
from bankguard.core.service_registry import ServiceRegistry
from bankguard.services.pipeline_orchestrator import QueryRequest, QueryResult

logger = LoggingConfig.get_logger(__name__)

router = APIRouter(prefix="/api/banking-ai", tags=["banking-ai"])


class UserQueryRequest(BaseModel):
    """Request to run a query through the pipeline"""
    user_id: str = Field(min_length=1)
    user_role: str = Field(min_length=1)
    query: str = Field(min_length=1)
    customer_id: Optional[str] = None
    session_id: Optional[str] = None
    ip_address: Optional[str] = None


@router.post("/query", response_model=QueryResult)
async def process_query(
    body: UserQueryRequest,
    request: Request,
    db: Session = Depends(get_db),
    registry: ServiceRegistry = Depends(get_registry),
):
    """Process a user query; gate outcomes are reported in the body, not as HTTP errors"""
    logger.info(f"Received query request from user: {body.user_id}")
    return await registry.orchestrator.process_query(
        db,
        QueryRequest(
            **body.model_dump(exclude={"ip_address"}),
            ip_address=body.ip_address or client_ip(request),
            user_agent=request.headers.get("user-agent"),
        ),
    )
