"""
Retrieval-augmented decision engine
"""
import json
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional

from pydantic import BaseModel, Field, ValidationError, field_validator
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import Session

from bankguard.core.config import Settings
from bankguard.core.errors import MalformedModelOutput, UpstreamModelFailure
from bankguard.core.llm_client import LLMClient
from bankguard.core.logging_config import LoggingConfig
from bankguard.core.metrics import decisions_total
from bankguard.core.resilience import ResilientCall, retry_async
from bankguard.services.embedding_service import EmbeddingService
from bankguard.services.vector_memory import SimilarityMatch, VectorMemory

logger = LoggingConfig.get_logger(__name__)

FALLBACK_SCORE = 0.7
FALLBACK_EXPLANATION = "Automated analysis unavailable. Flagged for manual review."
MANUAL_REVIEW = "MANUAL_REVIEW"

RESPONSE_FORMAT = (
    'Respond only with a JSON object of the form '
    '{"score": <number between 0.0 and 1.0>, "explanation": "<reasoning>", '
    '"recommended_action": "<next step>"}.'
)


class ModelDecision(BaseModel):
    """Schema the reasoning model must answer with"""
    score: float = Field(ge=0.0, le=1.0)
    explanation: str = Field(min_length=1)
    recommended_action: str = Field(min_length=1)

    @field_validator("score", mode="before")
    @classmethod
    def score_must_be_number(cls, v):
        if isinstance(v, bool) or not isinstance(v, (int, float)):
            raise ValueError("score must be a JSON number")
        return v

    @field_validator("explanation", "recommended_action")
    @classmethod
    def not_blank(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("must not be blank")
        return v.strip()


@dataclass
class DecisionResult:
    score: float
    explanation: str
    recommended_action: str
    flagged: bool
    fallback: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            "score": self.score,
            "explanation": self.explanation,
            "recommended_action": self.recommended_action,
            "flagged": self.flagged,
            "fallback": self.fallback,
        }


@dataclass
class DecisionOutcome:
    result: DecisionResult
    matches: List[SimilarityMatch] = field(default_factory=list)

    @property
    def fallback_used(self) -> bool:
        return self.result.fallback


def parse_decision(raw: str) -> ModelDecision:
    try:
        payload = json.loads(raw.strip())
    except (json.JSONDecodeError, AttributeError) as e:
        raise MalformedModelOutput(f"Decision answer is not JSON: {e}", raw) from e
    if not isinstance(payload, dict):
        raise MalformedModelOutput("Decision answer is not a JSON object", raw)
    try:
        return ModelDecision.model_validate(payload)
    except ValidationError as e:
        raise MalformedModelOutput(f"Decision answer failed validation: {e.error_count()} errors", raw) from e


def fallback_result(error: Optional[Exception] = None) -> DecisionResult:
    """Conservative result used whenever the model cannot decide"""
    return DecisionResult(
        score=FALLBACK_SCORE,
        explanation=FALLBACK_EXPLANATION,
        recommended_action=MANUAL_REVIEW,
        flagged=True,
        fallback=True,
    )


class DecisionEngine:
    """
    Retrieve similar records, ask the reasoning model, decode strictly.

    Retrieval is retried with backoff; the model call goes through the
    shared circuit breaker. Any failure on the way yields the fixed
    conservative result instead of an exception.
    """

    def __init__(self, settings: Settings, llm: LLMClient, resilient: ResilientCall,
                 embeddings: EmbeddingService):
        self.settings = settings
        self.llm = llm
        self.resilient = resilient
        self.embeddings = embeddings

    async def _retrieve(
        self,
        db: Session,
        query: str,
        memory: VectorMemory,
        subject: Any,
        filters: Optional[Dict[str, Any]],
        exclude_keys: Iterable[str],
        threshold: float,
        top_k: int,
    ) -> List[SimilarityMatch]:
        async def search():
            if subject is not None:
                vector = subject.embedding or await memory.embed(subject)
            else:
                vector = await self.embeddings.generate_embedding(query)
            return await memory.similarity_search(
                db, vector, threshold=threshold, top_k=top_k,
                filters=filters, exclude_keys=exclude_keys,
            )

        return await retry_async(
            search,
            self.resilient.policy,
            operation=f"{memory.kind.name}_similarity_search",
            retry_on=(UpstreamModelFailure, OperationalError),
        )

    @staticmethod
    def build_prompt(instructions: str, query: str, subject: Any,
                     matches: List[SimilarityMatch]) -> str:
        lines = [instructions.strip(), "", f"Request: {query}"]
        if subject is not None:
            lines.append(f"Subject: {subject.canonical_text()}")
        if matches:
            lines.append("Similar records:")
            for i, match in enumerate(matches, start=1):
                lines.append(f"{i}. (distance {match.distance:.4f}) {match.record.canonical_text()}")
        else:
            lines.append("Similar records: none found.")
        lines.extend(["", RESPONSE_FORMAT])
        return "\n".join(lines)

    async def decide(
        self,
        db: Session,
        query: str,
        memory: VectorMemory,
        instructions: str,
        subject: Any = None,
        filters: Optional[Dict[str, Any]] = None,
        exclude_keys: Optional[Iterable[str]] = None,
        threshold: Optional[float] = None,
        top_k: Optional[int] = None,
    ) -> DecisionOutcome:
        """
        Produce a decision for ``query`` about ``subject``

        Args:
            query: Free-text request
            memory: Store to retrieve context from
            instructions: Use-case specific system instructions
            subject: Record being decided on (excluded from its own context)
            filters: Equality filters for retrieval
            exclude_keys: Natural keys to leave out of retrieval
        """
        threshold = threshold if threshold is not None else self.settings.similarity_threshold
        top_k = top_k if top_k is not None else self.settings.similarity_top_k
        excluded = set(exclude_keys or [])
        if subject is not None and subject.natural_key:
            excluded.add(subject.natural_key)

        try:
            matches = await self._retrieve(db, query, memory, subject, filters, excluded, threshold, top_k)
        except (UpstreamModelFailure, OperationalError) as e:
            logger.error(
                f"Context retrieval failed, using conservative result: {e}",
                extra={"kind": memory.kind.name}
            )
            decisions_total.labels(flagged="true", fallback="true").inc()
            return DecisionOutcome(result=fallback_result(e))

        prompt = self.build_prompt(instructions, query, subject, matches)

        async def ask() -> DecisionResult:
            response = await self.llm.chat(prompt, json_mode=True, temperature=0.0)
            decision = parse_decision(response.response)
            return DecisionResult(
                score=decision.score,
                explanation=decision.explanation,
                recommended_action=decision.recommended_action,
                flagged=decision.score >= self.settings.fraud_flag_threshold,
            )

        result = await self.resilient.call(ask, fallback=fallback_result, operation="decision")

        decisions_total.labels(
            flagged=str(result.flagged).lower(), fallback=str(result.fallback).lower()
        ).inc()
        logger.info(
            f"Decision score {result.score:.2f} ({'flagged' if result.flagged else 'clear'})",
            extra={
                "kind": memory.kind.name,
                "context_records": len(matches),
                "fallback": result.fallback,
            }
        )
        return DecisionOutcome(result=result, matches=matches)
