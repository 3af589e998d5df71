"""
Policy-gated query pipeline
Combines: Permission → Compliance → Session → Decision → Audit
"""
import asyncio
import time
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Optional

from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from bankguard.core.config import Settings
from bankguard.core.errors import ComplianceViolation, PermissionDenied
from bankguard.core.logging_config import LoggingConfig
from bankguard.core.metrics import pipeline_duration_seconds, pipeline_invocations_total
from bankguard.core.tracing import add_span_attributes, get_or_create_trace_id, get_tracer
from bankguard.services.audit_service import AuditEntry, AuditTrail
from bankguard.services.compliance_service import ComplianceService
from bankguard.services.decision_engine import DecisionEngine
from bankguard.services.rbac_service import RBACService
from bankguard.services.session_store import AI_CONVERSATION, SessionStore
from bankguard.services.vector_memory import VectorMemory

logger = LoggingConfig.get_logger(__name__)

PERMISSION_DENIED_MESSAGE = "You do not have permission to use this feature."
COMPLIANCE_VIOLATION_PREFIX = "Your query violates our compliance policies: "
GENERIC_ERROR_MESSAGE = "An error occurred while processing your query. Please try again later."

QUERY_INSTRUCTIONS = """You are an AI banking assistant. Answer the customer's request helpfully and accurately.

Use the customer profiles listed below as context. Put your answer in "explanation",
the next step the customer or the bank should take in "recommended_action", and use
"score" for how much risk the request carries for the customer or the bank."""


class PipelineState(str, Enum):
    START = "START"
    PERMISSION = "PERMISSION"
    DENIED = "DENIED"
    COMPLIANCE = "COMPLIANCE"
    VIOLATION = "VIOLATION"
    SESSION_RESOLVE = "SESSION_RESOLVE"
    DECISION = "DECISION"
    DONE = "DONE"
    ERROR = "ERROR"


AUDIT_ACTIONS = {
    PipelineState.DENIED: "AI_QUERY_PERMISSION_DENIED",
    PipelineState.VIOLATION: "AI_QUERY_COMPLIANCE_VIOLATION",
    PipelineState.DONE: "AI_QUERY_SUCCESS",
    PipelineState.ERROR: "AI_QUERY_ERROR",
}


class QueryRequest(BaseModel):
    user_id: str = Field(min_length=1)
    user_role: str = Field(min_length=1)
    query: str = Field(min_length=1)
    customer_id: Optional[str] = None
    session_id: Optional[str] = None
    ip_address: Optional[str] = None
    user_agent: Optional[str] = None


class QueryResult(BaseModel):
    success: bool
    response: str
    session_id: Optional[str] = None


@dataclass
class _Progress:
    state: PipelineState = PipelineState.START


@dataclass
class _Terminal:
    """Where an invocation ended and what goes into its single audit record"""
    state: PipelineState
    result: QueryResult
    response_data: Any = None
    error_message: Optional[str] = None


class PipelineOrchestrator:
    """
    Runs one query through the gates in order and writes exactly one audit
    record per invocation, whichever terminal state it reaches.

    Gate outcomes end the run without raising. Anything raised on the way
    ends in ERROR; the caller only ever sees the generic message while the
    audit record carries the detail.
    """

    def __init__(
        self,
        settings: Settings,
        rbac: RBACService,
        compliance: ComplianceService,
        sessions: SessionStore,
        engine: DecisionEngine,
        profiles: VectorMemory,
        audit: AuditTrail,
    ):
        self.settings = settings
        self.rbac = rbac
        self.compliance = compliance
        self.sessions = sessions
        self.engine = engine
        self.profiles = profiles
        self.audit = audit
        self.tracer = get_tracer(__name__)

    async def process_query(self, db: Session, request: QueryRequest) -> QueryResult:
        with self.tracer.start_as_current_span(
            "pipeline.process_query",
            attributes={"user_role": request.user_role}
        ) as span:
            start = time.time()
            trace_id = get_or_create_trace_id()
            logger.info(
                f"Processing user query: role={request.user_role}",
                extra={"trace_id": trace_id, "query_user_id": request.user_id}
            )

            progress = _Progress()
            try:
                terminal = await self._run(db, request, trace_id, progress)
            except asyncio.CancelledError:
                logger.warning(
                    f"User query cancelled in state {progress.state.value}",
                    extra={"trace_id": trace_id}
                )
                db.rollback()
                self._audit(request, _Terminal(
                    state=PipelineState.ERROR,
                    result=QueryResult(success=False, response=GENERIC_ERROR_MESSAGE),
                    error_message=f"{progress.state.value}: cancelled",
                ), trace_id)
                pipeline_invocations_total.labels(outcome="cancelled").inc()
                raise
            except Exception as e:
                logger.error(
                    f"Error processing user query in state {progress.state.value}: {e}",
                    exc_info=True,
                    extra={"trace_id": trace_id}
                )
                db.rollback()
                terminal = _Terminal(
                    state=PipelineState.ERROR,
                    result=QueryResult(success=False, response=GENERIC_ERROR_MESSAGE),
                    error_message=f"{progress.state.value}: {type(e).__name__}: {e}",
                )

            self._audit(request, terminal, trace_id)

            outcome = terminal.state.value.lower()
            elapsed = time.time() - start
            pipeline_invocations_total.labels(outcome=outcome).inc()
            pipeline_duration_seconds.labels(outcome=outcome).observe(elapsed)
            add_span_attributes(span, outcome=outcome, trace_id=trace_id)
            return terminal.result

    async def _run(self, db: Session, request: QueryRequest, trace_id: str,
                   progress: _Progress) -> _Terminal:
        progress.state = PipelineState.PERMISSION
        if not self.rbac.check(db, request.user_id, request.user_role, self.settings.query_permission):
            logger.warning(
                f"Permission denied for role {request.user_role}",
                extra={"trace_id": trace_id, "query_user_id": request.user_id}
            )
            return _Terminal(
                state=PipelineState.DENIED,
                result=QueryResult(success=False, response=PERMISSION_DENIED_MESSAGE),
                response_data=PermissionDenied(
                    request.user_id, request.user_role, self.settings.query_permission
                ).to_dict(),
                error_message="Insufficient permissions",
            )

        progress.state = PipelineState.COMPLIANCE
        verdict = await self.compliance.validate(db, request.query)
        if not verdict.compliant:
            logger.warning(
                f"Compliance violation detected: {verdict.explanation}",
                extra={"trace_id": trace_id, "violations": verdict.violations}
            )
            return _Terminal(
                state=PipelineState.VIOLATION,
                result=QueryResult(success=False, response=COMPLIANCE_VIOLATION_PREFIX + verdict.explanation),
                response_data=ComplianceViolation(verdict.violations, verdict.explanation).to_dict(),
                error_message="Compliance violation: " + ", ".join(verdict.violations),
            )

        progress.state = PipelineState.SESSION_RESOLVE
        session, created = self.sessions.resolve(db, request.session_id, request.user_id, AI_CONVERSATION)
        if created and request.session_id:
            logger.warning(f"Session not found: {request.session_id}", extra={"trace_id": trace_id})
        self.sessions.set_data(db, session.id, "last_query", request.query)
        self.sessions.set_data(db, session.id, "query_timestamp", _epoch_millis())

        progress.state = PipelineState.DECISION
        subject = None
        if request.customer_id:
            subject = self.profiles.get_by_key(db, request.customer_id)
            if subject is not None:
                logger.info(f"Retrieved customer profile for {request.customer_id}", extra={"trace_id": trace_id})

        outcome = await self.engine.decide(
            db,
            query=request.query,
            memory=self.profiles,
            instructions=QUERY_INSTRUCTIONS,
            subject=subject,
        )
        result = outcome.result
        response = result.explanation

        self.sessions.set_data(db, session.id, "last_response", response)
        self.sessions.set_data(db, session.id, "response_timestamp", _epoch_millis())

        return _Terminal(
            state=PipelineState.DONE,
            result=QueryResult(success=True, response=response, session_id=session.id),
            response_data={
                "response": response,
                "session_id": session.id,
                "decision": result.to_dict(),
                "context_records": len(outcome.matches),
            },
        )

    def _audit(self, request: QueryRequest, terminal: _Terminal, trace_id: str):
        self.audit.record(AuditEntry(
            user_id=request.user_id,
            action=AUDIT_ACTIONS[terminal.state],
            resource_type="USER",
            resource_id=request.user_id,
            request_data=_request_payload(request),
            response_data=terminal.response_data,
            ip_address=request.ip_address,
            user_agent=request.user_agent,
            success=terminal.result.success,
            error_message=terminal.error_message,
            trace_id=trace_id,
        ))


def _epoch_millis() -> int:
    return int(time.time() * 1000)


def _request_payload(request: QueryRequest) -> Dict[str, Any]:
    return request.model_dump(include={"query", "customer_id", "session_id", "user_role"})
