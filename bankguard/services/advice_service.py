"""
Advice subsystem: personalized financial advice grounded in similar customers
"""
from typing import Any, Dict, Optional

from sqlalchemy.orm import Session

from bankguard.core.logging_config import LoggingConfig
from bankguard.core.utils import canonical_json
from bankguard.models.customer_profile import CustomerProfile
from bankguard.services.decision_engine import DecisionEngine
from bankguard.services.profile_service import PROFILE_FIELDS
from bankguard.services.vector_memory import VectorMemory

logger = LoggingConfig.get_logger(__name__)

ADVICE_INSTRUCTIONS = """You are an AI financial advisor for a bank. Your task is to provide personalized financial advice to customers.

Use the profiles of similar customers listed below to inform your advice. Consider:
1. Customer's financial goals and timeline
2. Customer's risk tolerance
3. Customer's current financial situation
4. Market conditions and economic outlook
5. Tax implications and regulatory considerations

Provide clear, actionable advice that is personalized to the customer's specific situation.
Your advice should be ethical, compliant with financial regulations, and in the best interest of the customer.
Put the advice itself in "explanation", the single most important next step in
"recommended_action", and use "score" for how risky the customer's situation is."""


def advice_unavailable(query: str) -> str:
    return (
        "I apologize, but I'm unable to provide personalized financial advice at the moment. "
        "Please consider scheduling an appointment with one of our financial advisors for "
        f"assistance with your query: \"{query}\"."
    )


class AdviceService:
    """Answer a customer's financial question using profile memory as context"""

    def __init__(self, memory: VectorMemory, engine: DecisionEngine):
        self.memory = memory
        self.engine = engine

    def _subject(self, db: Session, customer_id: str, customer_profile: Dict[str, Any]) -> CustomerProfile:
        stored = self.memory.get_by_key(db, customer_id)
        if stored is not None:
            return stored
        # Unknown customers are described by the submitted profile only; nothing is persisted
        return CustomerProfile(
            customer_id=customer_id,
            **{k: v for k, v in customer_profile.items() if k in PROFILE_FIELDS},
        )

    async def get_financial_advice(self, db: Session, customer_id: str, query: str,
                                   customer_profile: Optional[Dict[str, Any]] = None) -> str:
        logger.info(f"Generating financial advice for customer: {customer_id}")
        customer_profile = dict(customer_profile or {})
        subject = self._subject(db, customer_id, customer_profile)

        enriched = dict(customer_profile, customerId=customer_id)
        outcome = await self.engine.decide(
            db,
            query=f"{query}\n\nCustomer Profile: {canonical_json(enriched)}",
            memory=self.memory,
            instructions=ADVICE_INSTRUCTIONS,
            subject=subject,
        )

        if outcome.fallback_used:
            logger.warning("Fallback for financial advice", extra={"customer_id": customer_id})
            return advice_unavailable(query)

        result = outcome.result
        return f"{result.explanation}\n\nNext step: {result.recommended_action}"
