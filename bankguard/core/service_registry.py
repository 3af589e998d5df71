"""
Service Registry - the component graph, built once per process
"""
from dataclasses import dataclass, field
from typing import List, Optional

from sqlalchemy.orm import sessionmaker

from bankguard.core.config import Settings
from bankguard.core.llm_client import LLMClient
from bankguard.core.logging_config import LoggingConfig
from bankguard.core.resilience import CircuitBreaker, ResiliencePolicy, ResilientCall
from bankguard.models.customer_profile import CustomerProfile
from bankguard.models.transaction import Transaction
from bankguard.services.advice_service import AdviceService
from bankguard.services.audit_service import AuditTrail
from bankguard.services.compliance_service import ComplianceService
from bankguard.services.decision_engine import DecisionEngine
from bankguard.services.embedding_service import EmbeddingProvider, EmbeddingService
from bankguard.services.fraud_service import FraudService
from bankguard.services.pipeline_orchestrator import PipelineOrchestrator
from bankguard.services.profile_service import ProfileService
from bankguard.services.rbac_service import RBACService
from bankguard.services.session_store import SessionStore
from bankguard.services.sweepers import AuditRetentionSweeper, RetentionSweeper, SessionSweeper, Sweeper
from bankguard.services.vector_memory import MemoryKind, VectorMemory

logger = LoggingConfig.get_logger(__name__)


@dataclass
class ServiceRegistry:
    """
    Long-lived components shared by every request.

    The circuit breaker, the audit writer and both memories are process-wide;
    request handlers only borrow them together with a per-request session.
    """
    settings: Settings
    session_factory: sessionmaker
    llm: LLMClient
    embeddings: EmbeddingService
    breaker: CircuitBreaker
    resilient: ResilientCall
    audit: AuditTrail
    rbac: RBACService
    compliance: ComplianceService
    sessions: SessionStore
    profile_memory: VectorMemory
    transaction_memory: VectorMemory
    engine: DecisionEngine
    profiles: ProfileService
    fraud: FraudService
    advice: AdviceService
    orchestrator: PipelineOrchestrator
    sweepers: List[Sweeper] = field(default_factory=list)

    @classmethod
    def build(
        cls,
        settings: Settings,
        session_factory: sessionmaker,
        llm: Optional[LLMClient] = None,
        embedding_provider: Optional[EmbeddingProvider] = None,
    ) -> "ServiceRegistry":
        llm = llm or LLMClient(settings)
        embeddings = EmbeddingService(settings, provider=embedding_provider, llm_client=llm)
        breaker = CircuitBreaker("llm", ResiliencePolicy.from_settings(settings))
        resilient = ResilientCall(breaker)
        audit = AuditTrail(session_factory, max_workers=settings.audit_writer_workers)
        rbac = RBACService(audit)
        compliance = ComplianceService(settings, llm, resilient)
        sessions = SessionStore(settings)
        profile_memory = VectorMemory(
            MemoryKind("customer_profile", CustomerProfile, settings.profile_retention_years),
            embeddings,
        )
        transaction_memory = VectorMemory(
            MemoryKind("transaction", Transaction, settings.transaction_retention_years),
            embeddings,
        )
        engine = DecisionEngine(settings, llm, resilient, embeddings)
        orchestrator = PipelineOrchestrator(
            settings, rbac, compliance, sessions, engine, profile_memory, audit
        )
        sweepers = [
            SessionSweeper(session_factory, sessions, settings.session_sweep_interval_seconds),
            RetentionSweeper(
                session_factory, [profile_memory, transaction_memory], settings.retention_sweep_interval_seconds
            ),
            AuditRetentionSweeper(
                session_factory, audit, settings.audit_retention_days, settings.audit_sweep_interval_seconds
            ),
        ]
        logger.info(
            "Service registry built",
            extra={"embedding_provider": type(embeddings.provider).__name__, "llm_model": settings.llm_model}
        )
        return cls(
            settings=settings,
            session_factory=session_factory,
            llm=llm,
            embeddings=embeddings,
            breaker=breaker,
            resilient=resilient,
            audit=audit,
            rbac=rbac,
            compliance=compliance,
            sessions=sessions,
            profile_memory=profile_memory,
            transaction_memory=transaction_memory,
            engine=engine,
            profiles=ProfileService(profile_memory),
            fraud=FraudService(transaction_memory, engine),
            advice=AdviceService(profile_memory, engine),
            orchestrator=orchestrator,
            sweepers=sweepers,
        )

    async def start_background(self):
        for sweeper in self.sweepers:
            await sweeper.start()

    async def shutdown(self):
        for sweeper in self.sweepers:
            await sweeper.stop()
        await self.audit.drain()
        self.audit.shutdown()
        await self.llm.close()
