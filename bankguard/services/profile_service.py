"""
Customer profile management on top of long-term vector memory
"""
from typing import Any, Dict, List, Optional

from sqlalchemy.orm import Session

from bankguard.core.errors import ConflictError, NotFoundError
from bankguard.core.logging_config import LoggingConfig
from bankguard.core.utils import utcnow
from bankguard.models.customer_profile import CustomerProfile
from bankguard.services.vector_memory import SimilarityMatch, VectorMemory

logger = LoggingConfig.get_logger(__name__)

PROFILE_FIELDS = (
    "first_name",
    "last_name",
    "email",
    "phone_number",
    "preferences",
    "financial_data",
    "behavioral_data",
)


class ProfileService:
    """Create, update and search customer profiles; every change re-embeds"""

    def __init__(self, memory: VectorMemory):
        self.memory = memory

    def get_profile(self, db: Session, profile_id: int) -> CustomerProfile:
        profile = self.memory.get(db, profile_id)
        if profile is None:
            raise NotFoundError("CustomerProfile", profile_id)
        return profile

    def get_by_customer_id(self, db: Session, customer_id: str) -> CustomerProfile:
        profile = self.memory.get_by_key(db, customer_id)
        if profile is None:
            raise NotFoundError("CustomerProfile", customer_id)
        return profile

    def find_by_customer_id(self, db: Session, customer_id: str) -> Optional[CustomerProfile]:
        return self.memory.get_by_key(db, customer_id)

    async def create_profile(self, db: Session, customer_id: str, **fields: Any) -> CustomerProfile:
        if self.memory.get_by_key(db, customer_id) is not None:
            raise ConflictError(f"Customer profile already exists: {customer_id}")
        now = utcnow()
        profile = CustomerProfile(
            customer_id=customer_id,
            created_at=now,
            updated_at=now,
            retention_until=fields.pop("retention_until", None),
            **{k: v for k, v in fields.items() if k in PROFILE_FIELDS},
        )
        logger.info(f"Creating customer profile for: {customer_id}")
        return await self.memory.store(db, profile)

    async def update_profile(self, db: Session, profile_id: int, **fields: Any) -> CustomerProfile:
        """Replace the structured fields of a profile and regenerate its embedding"""
        profile = self.get_profile(db, profile_id)
        for name in PROFILE_FIELDS:
            setattr(profile, name, fields.get(name))
        profile.updated_at = utcnow()
        logger.info(f"Updating customer profile: {profile_id}")
        return await self.memory.store(db, profile)

    async def update_preferences(self, db: Session, customer_id: str,
                                 preferences: Dict[str, Any]) -> CustomerProfile:
        profile = self.get_by_customer_id(db, customer_id)
        profile.preferences = preferences
        profile.updated_at = utcnow()
        return await self.memory.store(db, profile)

    async def update_behavioral_data(self, db: Session, customer_id: str,
                                     behavioral_data: Dict[str, Any]) -> CustomerProfile:
        profile = self.get_by_customer_id(db, customer_id)
        profile.behavioral_data = behavioral_data
        profile.updated_at = utcnow()
        return await self.memory.store(db, profile)

    async def find_similar(self, db: Session, customer_id: str, threshold: float,
                           limit: int) -> List[SimilarityMatch]:
        profile = self.get_by_customer_id(db, customer_id)
        return await self.memory.similarity_search(db, profile.id, threshold=threshold, top_k=limit)

    def delete_profile(self, db: Session, profile_id: int):
        if not self.memory.delete(db, profile_id):
            raise NotFoundError("CustomerProfile", profile_id)

    def extend_retention(self, db: Session, customer_id: str, years: int) -> CustomerProfile:
        return self.memory.extend_retention(db, customer_id, years)
