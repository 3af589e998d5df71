"""
Pytest configuration and fixtures
"""
import json
from typing import Any
from unittest.mock import AsyncMock

import pytest
from sqlalchemy.orm import Session, sessionmaker

from bankguard.core.config import Settings
from bankguard.core.database import create_db_engine, init_db
from bankguard.core.llm_client import LLMClient, LLMResponse
from bankguard.core.resilience import CircuitBreaker, ResiliencePolicy, ResilientCall
from bankguard.core.service_registry import ServiceRegistry
from bankguard.models.customer_profile import CustomerProfile
from bankguard.models.transaction import Transaction
from bankguard.services.audit_service import AuditTrail
from bankguard.services.embedding_service import EmbeddingService, HashEmbeddingProvider
from bankguard.services.vector_memory import MemoryKind, VectorMemory

TEST_DIMENSION = 64


def llm_answer(payload: Any) -> LLMResponse:
    """Chat response carrying ``payload`` (JSON-encoded unless already a string)"""
    text = payload if isinstance(payload, str) else json.dumps(payload)
    return LLMResponse(model="test-model", response=text, done=True)


@pytest.fixture
def settings(tmp_path) -> Settings:
    """Settings for a throwaway SQLite database; no .env, no background sweeps"""
    return Settings(
        _env_file=None,
        database_url=f"sqlite:///{tmp_path / 'bankguard-test.db'}",
        embedding_provider="hash",
        embedding_dimension=TEST_DIMENSION,
        retry_backoff_seconds=0.0,
        llm_timeout_seconds=2.0,
        enable_background_sweepers=False,
        enable_tracing=False,
        log_format="text",
    )


@pytest.fixture
def engine(settings):
    engine = create_db_engine(settings)
    init_db(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine) -> sessionmaker:
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)


@pytest.fixture
def db(session_factory) -> Session:
    """Create a database session for testing"""
    session = session_factory()
    try:
        yield session
    finally:
        session.rollback()
        session.close()


@pytest.fixture
def fake_llm():
    """Reasoning client double; tests script ``chat`` per case"""
    llm = AsyncMock(spec=LLMClient)
    llm.model = "test-model"
    return llm


@pytest.fixture
def embeddings(settings) -> EmbeddingService:
    return EmbeddingService(settings, provider=HashEmbeddingProvider(TEST_DIMENSION))


@pytest.fixture
def breaker(settings) -> CircuitBreaker:
    return CircuitBreaker("test-llm", ResiliencePolicy.from_settings(settings))


@pytest.fixture
def resilient(breaker) -> ResilientCall:
    return ResilientCall(breaker, sleep=AsyncMock())


@pytest.fixture
def audit(session_factory):
    trail = AuditTrail(session_factory, max_workers=1)
    yield trail
    trail.shutdown()


@pytest.fixture
def profile_memory(embeddings) -> VectorMemory:
    return VectorMemory(MemoryKind("customer_profile", CustomerProfile, 5), embeddings)


@pytest.fixture
def transaction_memory(embeddings) -> VectorMemory:
    return VectorMemory(MemoryKind("transaction", Transaction, 7), embeddings)


@pytest.fixture
def registry(settings, session_factory, engine, fake_llm):
    """Full component graph wired to the fake reasoning client"""
    registry = ServiceRegistry.build(
        settings,
        session_factory,
        llm=fake_llm,
        embedding_provider=HashEmbeddingProvider(TEST_DIMENSION),
    )
    registry.resilient._sleep = AsyncMock()
    yield registry
    registry.audit.shutdown()
