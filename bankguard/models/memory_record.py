"""
Shared columns and canonical-text rendering for similarity-indexed records
"""
from typing import Any, List, Optional, Tuple

from sqlalchemy import JSON, Column, DateTime

from bankguard.core.utils import canonical_json, utcnow


class MemoryRecordMixin:
    """
    Columns and behaviour common to every long-term memory record.

    Subclasses define ``natural_key_attr`` and ``canonical_fields()``; the
    canonical text is what gets embedded, so its field order is fixed and
    fields that are ``None`` are skipped.
    """

    natural_key_attr: str = "id"

    # List of floats; NULL until the record has been indexed
    embedding = Column(JSON(none_as_null=True), nullable=True)
    created_at = Column(DateTime, default=utcnow, nullable=False)
    retention_until = Column(DateTime, nullable=False, index=True)

    @property
    def natural_key(self) -> Optional[str]:
        return getattr(self, self.natural_key_attr)

    def canonical_fields(self) -> List[Tuple[str, Any]]:
        raise NotImplementedError

    def canonical_text(self) -> str:
        parts = []
        for label, value in self.canonical_fields():
            if value is None:
                continue
            if isinstance(value, (dict, list)):
                value = canonical_json(value)
            parts.append(f"{label}: {value}.")
        return " ".join(parts)
