"""
Main FastAPI application entry point
"""
import warnings

# Suppress pkg_resources deprecation warning from opentelemetry
warnings.filterwarnings('ignore', message='.*pkg_resources is deprecated.*', category=UserWarning)

from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from bankguard import __version__
from bankguard.api.routes import (advice, audit, banking_ai, compliance, fraud,
                                  health, profiles, rbac, sessions)
from bankguard.core.config import Settings, get_settings
from bankguard.core.database import configure_database, init_db
from bankguard.core.errors import BankGuardError, ConflictError, NotFoundError
from bankguard.core.llm_client import LLMClient
from bankguard.core.logging_config import LoggingConfig
from bankguard.core.middleware import LoggingContextMiddleware, MetricsMiddleware
from bankguard.core.service_registry import ServiceRegistry
from bankguard.core.tracing import configure_tracing, shutdown_tracing
from bankguard.services.embedding_service import EmbeddingProvider

logger = LoggingConfig.get_logger(__name__)

GENERIC_ERROR_DETAIL = "An internal error occurred. Please try again later."


def create_app(
    settings: Optional[Settings] = None,
    llm: Optional[LLMClient] = None,
    embedding_provider: Optional[EmbeddingProvider] = None,
) -> FastAPI:
    """
    Build the application

    Args:
        settings: Settings to run with (defaults to the environment)
        llm: Reasoning client override
        embedding_provider: Embedding provider override
    """
    settings = settings or get_settings()
    LoggingConfig.configure(settings)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Lifespan events for FastAPI app"""
        # Startup
        logger.info(f"Starting {settings.app_name} in {settings.app_env} mode...")
        configure_tracing(settings)

        session_factory = configure_database(settings)
        init_db()
        registry = ServiceRegistry.build(settings, session_factory, llm=llm, embedding_provider=embedding_provider)
        db = session_factory()
        try:
            registry.rbac.seed_default_roles(db)
        finally:
            db.close()
        app.state.registry = registry

        if settings.enable_background_sweepers:
            await registry.start_background()

        yield

        # Shutdown
        logger.info(f"Shutting down {settings.app_name}...")
        await registry.shutdown()
        shutdown_tracing()

    app = FastAPI(
        title=settings.app_name,
        description="Policy-gated, retrieval-augmented decision pipeline for banking AI",
        version=__version__,
        lifespan=lifespan,
    )

    app.add_middleware(LoggingContextMiddleware)
    app.add_middleware(MetricsMiddleware)

    @app.exception_handler(NotFoundError)
    async def not_found_handler(request: Request, exc: NotFoundError):
        return JSONResponse(status_code=404, content={"detail": exc.message})

    @app.exception_handler(ConflictError)
    async def conflict_handler(request: Request, exc: ConflictError):
        return JSONResponse(status_code=409, content={"detail": exc.message})

    @app.exception_handler(ValueError)
    async def value_error_handler(request: Request, exc: ValueError):
        return JSONResponse(status_code=400, content={"detail": str(exc)})

    @app.exception_handler(BankGuardError)
    async def bankguard_error_handler(request: Request, exc: BankGuardError):
        logger.error(
            f"{type(exc).__name__}: {exc.message}",
            extra={"error_type": type(exc).__name__, "category": exc.category.value, "path": request.url.path}
        )
        return JSONResponse(status_code=500, content={"detail": GENERIC_ERROR_DETAIL})

    @app.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception):
        """Global exception handler to log all unhandled errors"""
        logger.error(
            "Unhandled exception",
            exc_info=exc,
            extra={
                "error_type": type(exc).__name__,
                "path": request.url.path,
                "method": request.method,
            }
        )
        return JSONResponse(status_code=500, content={"detail": GENERIC_ERROR_DETAIL})

    app.include_router(health.router)
    app.include_router(banking_ai.router)
    app.include_router(fraud.router)
    app.include_router(advice.router)
    app.include_router(compliance.router)
    app.include_router(rbac.router)
    app.include_router(audit.router)
    app.include_router(sessions.router)
    app.include_router(profiles.router)

    return app


def run():
    """Console entry point: serve the app with uvicorn"""
    import uvicorn

    settings = get_settings()
    uvicorn.run(create_app(settings), host=settings.api_host, port=settings.api_port)


if __name__ == "__main__":
    run()
