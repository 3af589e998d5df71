"""
Shared FastAPI dependencies
"""
from fastapi import Request

from bankguard.core.service_registry import ServiceRegistry


def get_registry(request: Request) -> ServiceRegistry:
    """Component graph built by the application lifespan"""
    return request.app.state.registry


def client_ip(request: Request) -> str:
    return request.client.host if request.client else "unknown"
