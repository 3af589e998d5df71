"""
Health check and Prometheus metrics endpoints
"""
from fastapi import APIRouter, Depends
from fastapi.responses import Response
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from bankguard import __version__
from bankguard.api.deps import get_registry
from bankguard.core.database import get_db
from bankguard.core.logging_config import LoggingConfig
from bankguard.core.metrics import get_metrics, get_metrics_content_type
from bankguard.core.service_registry import ServiceRegistry
from bankguard.core.utils import utcnow

logger = LoggingConfig.get_logger(__name__)

router = APIRouter(tags=["health"])


@router.get("/health")
async def health_check(
    db: Session = Depends(get_db),
    registry: ServiceRegistry = Depends(get_registry),
):
    """
    Health check with component status

    Returns:
        dict: Overall status, database reachability and circuit breaker state
    """
    components = {}
    healthy = True
    try:
        db.execute(text("SELECT 1"))
        components["database"] = {"status": "healthy"}
    except SQLAlchemyError as e:
        healthy = False
        logger.error(f"Database health check failed: {e}")
        components["database"] = {"status": "unhealthy", "error": type(e).__name__}

    components["llm_circuit"] = {
        "state": registry.breaker.state.value,
        "failure_rate": registry.breaker.failure_rate,
    }

    return {
        "status": "healthy" if healthy else "unhealthy",
        "timestamp": utcnow().isoformat(),
        "service": registry.settings.app_name,
        "version": __version__,
        "environment": registry.settings.app_env,
        "components": components,
    }


@router.get("/metrics")
async def metrics():
    """
    Prometheus metrics endpoint

    Returns metrics in Prometheus text format
    """
    return Response(content=get_metrics(), media_type=get_metrics_content_type())
