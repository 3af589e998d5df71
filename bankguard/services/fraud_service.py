"""
Fraud subsystem: score transactions against the customer's history
"""
from datetime import timedelta
from typing import Any, List
from uuid import uuid4

from sqlalchemy.orm import Session

from bankguard.core.errors import UpstreamModelFailure
from bankguard.core.logging_config import LoggingConfig
from bankguard.core.utils import to_naive_utc, utcnow
from bankguard.models.transaction import Transaction, TransactionType
from bankguard.services.decision_engine import DecisionEngine
from bankguard.services.vector_memory import VectorMemory

logger = LoggingConfig.get_logger(__name__)

FRAUD_FALLBACK_REASON = "Automated fraud detection unavailable. Flagged for manual review."

FRAUD_INSTRUCTIONS = """You are an AI fraud detection expert for a bank. Your task is to analyze a transaction and determine if it might be fraudulent.

Use the similar past transactions listed below to inform your analysis. Consider:
1. Transaction amount compared to customer's usual spending
2. Transaction location compared to customer's usual locations
3. Transaction time and frequency
4. Merchant category and previous interactions
5. Device and IP address used

The score is a fraud likelihood between 0.0 and 1.0, where:
- 0.0-0.2: Very likely legitimate
- 0.2-0.4: Probably legitimate
- 0.4-0.6: Uncertain
- 0.6-0.8: Suspicious
- 0.8-1.0: Very likely fraudulent"""


class FraudService:
    """
    Score a transaction, persist the decision, then index the transaction.

    The transaction only becomes searchable context after the row carrying
    its decision has been committed; an indexing failure leaves a durable,
    unindexed row that ``VectorMemory.index_pending`` picks up later.
    """

    def __init__(self, memory: VectorMemory, engine: DecisionEngine):
        self.memory = memory
        self.engine = engine

    async def process_transaction(self, db: Session, **fields: Any) -> Transaction:
        transaction = Transaction(**fields)
        transaction.type = TransactionType(transaction.type).value
        if not transaction.transaction_id:
            transaction.transaction_id = uuid4().hex
        if transaction.timestamp is None:
            transaction.timestamp = utcnow()
        else:
            transaction.timestamp = to_naive_utc(transaction.timestamp)

        logger.info(
            "Processing transaction",
            extra={"customer_id": transaction.customer_id, "transaction_ref": transaction.transaction_id}
        )

        outcome = await self.engine.decide(
            db,
            query="Assess whether this transaction is fraudulent.",
            memory=self.memory,
            instructions=FRAUD_INSTRUCTIONS,
            subject=transaction,
            filters={"customer_id": transaction.customer_id},
        )
        result = outcome.result

        transaction.fraud_score = result.score
        transaction.fraud_reason = FRAUD_FALLBACK_REASON if result.fallback else result.explanation
        transaction.flagged_for_review = result.flagged

        self.memory.persist(db, transaction)

        try:
            await self.memory.index(db, transaction)
        except UpstreamModelFailure as e:
            logger.error(
                f"Transaction {transaction.id} persisted but not indexed: {e.message}",
                extra={"transaction_ref": transaction.transaction_id}
            )

        if transaction.flagged_for_review:
            logger.warning(
                f"Transaction flagged for review (score {transaction.fraud_score:.2f})",
                extra={"customer_id": transaction.customer_id, "transaction_ref": transaction.transaction_id}
            )
        return transaction

    def get_recent_transactions(self, db: Session, customer_id: str, days: int = 30) -> List[Transaction]:
        now = utcnow()
        since = now - timedelta(days=days)
        return (
            db.query(Transaction)
            .filter(
                Transaction.customer_id == customer_id,
                Transaction.timestamp >= since,
                Transaction.timestamp <= now,
            )
            .order_by(Transaction.timestamp.desc())
            .all()
        )

    def get_flagged_transactions(self, db: Session) -> List[Transaction]:
        return (
            db.query(Transaction)
            .filter(Transaction.flagged_for_review.is_(True))
            .order_by(Transaction.timestamp.desc())
            .all()
        )
