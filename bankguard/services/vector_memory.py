"""
Durable, similarity-searchable long-term memory with retention enforcement
"""
import time
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional, Sequence, Type, Union

from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from bankguard.core.errors import ConflictError, NotFoundError, PersistenceFailure
from bankguard.core.logging_config import LoggingConfig
from bankguard.core.metrics import similarity_search_duration_seconds, similarity_searches_total
from bankguard.core.utils import add_years, utcnow
from bankguard.services.embedding_service import EmbeddingService, l2_distance

logger = LoggingConfig.get_logger(__name__)


@dataclass(frozen=True)
class MemoryKind:
    """Which table a VectorMemory manages and how long its rows live"""
    name: str
    model: Type
    retention_years: int


@dataclass
class SimilarityMatch:
    record: Any
    distance: float

    def to_dict(self) -> Dict[str, Any]:
        data = self.record.to_dict()
        data["distance"] = self.distance
        return data


def commit_or_raise(db: Session, action: str):
    """Commit, translating storage errors into the service taxonomy"""
    try:
        db.commit()
    except IntegrityError as e:
        db.rollback()
        raise ConflictError(f"Integrity violation while trying to {action}") from e
    except SQLAlchemyError as e:
        db.rollback()
        logger.error(f"Failed to {action}: {e}", exc_info=True)
        raise PersistenceFailure(f"Failed to {action}") from e


class VectorMemory:
    """
    Long-term memory for one kind of record (customer profiles, transactions).

    Records carry an embedding of their canonical text. Searches rank an
    in-memory snapshot taken at the start of the search by Euclidean distance,
    keep matches strictly below the threshold and return at most ``top_k``.
    """

    def __init__(self, kind: MemoryKind, embeddings: EmbeddingService):
        self.kind = kind
        self.model = kind.model
        self.embeddings = embeddings
        self.dimension = embeddings.dimension

    @property
    def _key_column(self):
        return getattr(self.model, self.model.natural_key_attr)

    def _apply_retention_defaults(self, record):
        if record.created_at is None:
            record.created_at = utcnow()
        if record.retention_until is None:
            record.retention_until = add_years(record.created_at, self.kind.retention_years)
        if record.retention_until < record.created_at:
            raise ValueError(
                f"retention_until ({record.retention_until.isoformat()}) precedes "
                f"created_at ({record.created_at.isoformat()})"
            )

    async def embed(self, record) -> List[float]:
        """Embedding of the record's canonical text (not stored)"""
        return await self.embeddings.generate_embedding(record.canonical_text())

    async def store(self, db: Session, record):
        """Regenerate the embedding and persist the record in one transaction"""
        self._apply_retention_defaults(record)
        record.embedding = await self.embed(record)
        db.add(record)
        commit_or_raise(db, f"store {self.kind.name}")
        db.refresh(record)
        logger.info(
            f"Stored {self.kind.name} {record.natural_key}",
            extra={"kind": self.kind.name, "record_id": record.id}
        )
        return record

    def persist(self, db: Session, record):
        """Persist without indexing; the record stays invisible to searches"""
        self._apply_retention_defaults(record)
        db.add(record)
        commit_or_raise(db, f"persist {self.kind.name}")
        db.refresh(record)
        return record

    async def index(self, db: Session, record):
        """Add an already-durable record to the similarity index"""
        record.embedding = await self.embed(record)
        commit_or_raise(db, f"index {self.kind.name}")
        logger.debug(
            f"Indexed {self.kind.name} {record.natural_key}",
            extra={"kind": self.kind.name, "record_id": record.id}
        )
        return record

    async def index_pending(self, db: Session, limit: int = 100) -> int:
        """Index durable records whose indexing step did not complete"""
        pending = (
            db.query(self.model)
            .filter(self.model.embedding.is_(None))
            .order_by(self.model.id)
            .limit(limit)
            .all()
        )
        for record in pending:
            await self.index(db, record)
        if pending:
            logger.info(f"Indexed {len(pending)} pending {self.kind.name} records", extra={"kind": self.kind.name})
        return len(pending)

    def get(self, db: Session, record_id: int):
        return db.query(self.model).filter(self.model.id == record_id).first()

    def get_by_key(self, db: Session, key: str):
        return db.query(self.model).filter(self._key_column == key).first()

    def list_where(self, db: Session, **filters) -> List[Any]:
        query = db.query(self.model)
        for attr, value in filters.items():
            query = query.filter(getattr(self.model, attr) == value)
        return query.all()

    def delete(self, db: Session, record_id: int) -> bool:
        """
        Delete a record

        Returns:
            True if deleted, False if not found
        """
        record = self.get(db, record_id)
        if not record:
            return False
        db.delete(record)
        commit_or_raise(db, f"delete {self.kind.name}")
        logger.info(f"Deleted {self.kind.name} {record_id}", extra={"kind": self.kind.name})
        return True

    async def similarity_search(
        self,
        db: Session,
        query: Union[Sequence[float], int],
        threshold: float,
        top_k: int,
        filters: Optional[Dict[str, Any]] = None,
        exclude_keys: Optional[Iterable[str]] = None,
    ) -> List[SimilarityMatch]:
        """
        Find records similar to ``query``.

        Args:
            query: An embedding, or the id of a stored record (that record is
                excluded from its own results)
            threshold: Matches need ``distance < threshold``
            top_k: Maximum number of matches
            filters: Equality filters on record attributes
            exclude_keys: Natural keys to leave out

        Returns:
            Matches ordered by ascending distance; ties go to the most
            recently created record
        """
        if top_k < 1:
            raise ValueError("top_k must be at least 1")
        if threshold <= 0:
            # No distance is below a non-positive bound
            return []

        start = time.time()
        excluded = set(exclude_keys or [])

        if isinstance(query, int):
            subject = self.get(db, query)
            if subject is None:
                raise NotFoundError(self.kind.name, query)
            excluded.add(subject.natural_key)
            vector = list(subject.embedding) if subject.embedding else await self.embed(subject)
        else:
            vector = [float(x) for x in query]

        if len(vector) != self.dimension:
            raise ValueError(f"Query dimension {len(vector)} != store dimension {self.dimension}")

        snapshot = db.query(self.model).filter(self.model.embedding.isnot(None))
        for attr, value in (filters or {}).items():
            snapshot = snapshot.filter(getattr(self.model, attr) == value)
        candidates = snapshot.all()

        matches = []
        for record in candidates:
            if record.natural_key in excluded or not record.embedding:
                continue
            if len(record.embedding) != self.dimension:
                logger.error(
                    f"Skipping {self.kind.name} {record.id} with dimension {len(record.embedding)}",
                    extra={"kind": self.kind.name, "record_id": record.id}
                )
                continue
            distance = l2_distance(vector, record.embedding)
            if distance < threshold:
                matches.append(SimilarityMatch(record=record, distance=distance))

        matches.sort(key=lambda m: (m.distance, -m.record.created_at.timestamp()))
        matches = matches[:top_k]

        similarity_searches_total.labels(kind=self.kind.name).inc()
        similarity_search_duration_seconds.labels(kind=self.kind.name).observe(time.time() - start)
        logger.debug(
            f"Similarity search over {len(candidates)} {self.kind.name} records",
            extra={
                "kind": self.kind.name,
                "candidates": len(candidates),
                "matches": len(matches),
                "threshold": threshold,
                "top_k": top_k,
            }
        )
        return matches

    def extend_retention(self, db: Session, key: str, years: int):
        """Push retention_until forward by whole calendar years; nothing else changes"""
        if years < 1:
            raise ValueError("years must be at least 1")
        record = self.get_by_key(db, key)
        if record is None:
            raise NotFoundError(self.kind.name, key)
        record.retention_until = add_years(record.retention_until, years)
        commit_or_raise(db, f"extend retention of {self.kind.name}")
        db.refresh(record)
        logger.info(
            f"Extended retention of {self.kind.name} {key} by {years} years",
            extra={"kind": self.kind.name, "retention_until": record.retention_until.isoformat()}
        )
        return record

    def purge_expired(self, db: Session, now: Optional[datetime] = None) -> int:
        """
        Delete records whose retention period has passed

        Returns:
            Number of deleted records
        """
        now = now or utcnow()
        query = db.query(self.model).filter(self.model.retention_until < now)
        count = query.count()
        if count:
            query.delete(synchronize_session=False)
            commit_or_raise(db, f"purge expired {self.kind.name}")
            logger.info(f"Deleted {count} expired {self.kind.name} records", extra={"kind": self.kind.name})
        return count
