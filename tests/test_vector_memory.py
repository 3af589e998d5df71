"""
Tests for VectorMemory: storage, similarity search and retention
"""
from datetime import datetime, timedelta
from decimal import Decimal

import pytest

from bankguard.core.errors import NotFoundError
from bankguard.core.utils import utcnow
from bankguard.models.customer_profile import CustomerProfile
from bankguard.models.transaction import Transaction
from bankguard.services.vector_memory import VectorMemory

from tests.conftest import TEST_DIMENSION


def axis_vector(distance: float, axis: int = 0):
    """Vector at exactly ``distance`` from the origin"""
    vector = [0.0] * TEST_DIMENSION
    vector[axis] = distance
    return vector


ORIGIN = [0.0] * TEST_DIMENSION


def add_indexed_profile(db, memory: VectorMemory, customer_id: str, embedding, created_at=None, **fields):
    profile = CustomerProfile(customer_id=customer_id, created_at=created_at, **fields)
    memory.persist(db, profile)
    profile.embedding = embedding
    db.commit()
    return profile


@pytest.mark.asyncio
async def test_store_sets_embedding_and_retention(db, profile_memory):
    profile = CustomerProfile(customer_id="C-1", first_name="Ana", last_name="Silva",
                              preferences={"risk": "low", "goal": "retirement"})

    stored = await profile_memory.store(db, profile)

    assert stored.id is not None
    assert len(stored.embedding) == TEST_DIMENSION
    assert stored.retention_until.year == stored.created_at.year + 5


@pytest.mark.asyncio
async def test_embedding_is_deterministic_for_same_fields(db, profile_memory):
    fields = dict(first_name="Ana", last_name="Silva", preferences={"goal": "retirement", "risk": "low"})
    first = await profile_memory.store(db, CustomerProfile(customer_id="C-1", **fields))
    same_text = CustomerProfile(customer_id="C-1", **fields)

    assert await profile_memory.embed(same_text) == first.embedding

    fetched = profile_memory.get_by_key(db, "C-1")
    assert fetched.first_name == "Ana"
    assert fetched.preferences == {"goal": "retirement", "risk": "low"}


@pytest.mark.asyncio
async def test_store_regenerates_embedding_on_change(db, profile_memory):
    profile = await profile_memory.store(db, CustomerProfile(customer_id="C-1", first_name="Ana"))
    before = list(profile.embedding)

    profile.behavioral_data = {"channel": "mobile"}
    await profile_memory.store(db, profile)

    assert profile.embedding != before


def test_canonical_text_skips_missing_fields():
    profile = CustomerProfile(customer_id="C-9", first_name="Ana", preferences={"b": 2, "a": 1})
    assert profile.canonical_text() == 'Customer ID: C-9. First Name: Ana. Preferences: {"a": 1, "b": 2}.'


def test_retention_before_creation_rejected(db, profile_memory):
    now = utcnow()
    profile = CustomerProfile(customer_id="C-1", created_at=now, retention_until=now - timedelta(days=1))
    with pytest.raises(ValueError):
        profile_memory.persist(db, profile)


@pytest.mark.asyncio
async def test_similarity_search_threshold_order_and_bound(db, profile_memory):
    """15 candidates, 4 strictly below the threshold: exactly those 4, nearest first"""
    distances = [0.65, 0.1, 0.7, 0.9, 0.3, 1.2, 0.5, 2.0, 0.71, 1.5, 3.0, 0.95, 1.1, 0.8, 4.0]
    for i, distance in enumerate(distances):
        add_indexed_profile(db, profile_memory, f"C-{i}", axis_vector(distance))

    matches = await profile_memory.similarity_search(db, ORIGIN, threshold=0.7, top_k=10)

    assert [m.record.customer_id for m in matches] == ["C-1", "C-4", "C-6", "C-0"]
    assert all(m.distance < 0.7 for m in matches)
    assert [m.distance for m in matches] == sorted(m.distance for m in matches)


@pytest.mark.asyncio
async def test_similarity_search_respects_top_k(db, profile_memory):
    for i in range(6):
        add_indexed_profile(db, profile_memory, f"C-{i}", axis_vector(0.1 * (i + 1)))

    matches = await profile_memory.similarity_search(db, ORIGIN, threshold=5.0, top_k=3)

    assert len(matches) == 3
    assert [m.record.customer_id for m in matches] == ["C-0", "C-1", "C-2"]


@pytest.mark.asyncio
async def test_similarity_ties_prefer_most_recent(db, profile_memory):
    now = utcnow()
    add_indexed_profile(db, profile_memory, "OLD", axis_vector(0.2), created_at=now - timedelta(days=2))
    add_indexed_profile(db, profile_memory, "NEW", axis_vector(0.2, axis=1), created_at=now)

    matches = await profile_memory.similarity_search(db, ORIGIN, threshold=1.0, top_k=5)

    assert [m.record.customer_id for m in matches] == ["NEW", "OLD"]


@pytest.mark.asyncio
async def test_similarity_search_by_record_id_excludes_itself(db, profile_memory):
    subject = add_indexed_profile(db, profile_memory, "SELF", axis_vector(0.0))
    add_indexed_profile(db, profile_memory, "NEAR", axis_vector(0.2))

    matches = await profile_memory.similarity_search(db, subject.id, threshold=1.0, top_k=5)

    assert [m.record.customer_id for m in matches] == ["NEAR"]


@pytest.mark.asyncio
async def test_similarity_search_unknown_record_id(db, profile_memory):
    with pytest.raises(NotFoundError):
        await profile_memory.similarity_search(db, 999, threshold=1.0, top_k=5)


@pytest.mark.asyncio
async def test_similarity_search_ignores_unindexed_and_excluded(db, profile_memory):
    profile_memory.persist(db, CustomerProfile(customer_id="PENDING"))
    add_indexed_profile(db, profile_memory, "SKIP", axis_vector(0.1))
    add_indexed_profile(db, profile_memory, "KEEP", axis_vector(0.2))

    matches = await profile_memory.similarity_search(
        db, ORIGIN, threshold=1.0, top_k=5, exclude_keys=["SKIP"]
    )

    assert [m.record.customer_id for m in matches] == ["KEEP"]


@pytest.mark.asyncio
async def test_similarity_search_filters(db, transaction_memory):
    for i, customer in enumerate(["A", "B", "A"]):
        tx = Transaction(transaction_id=f"T-{i}", account_id="ACC", customer_id=customer,
                         amount=Decimal("10.00"), currency="EUR", type="DEBIT")
        transaction_memory.persist(db, tx)
        tx.embedding = axis_vector(0.1 * (i + 1))
        db.commit()

    matches = await transaction_memory.similarity_search(
        db, ORIGIN, threshold=1.0, top_k=5, filters={"customer_id": "A"}
    )

    assert [m.record.transaction_id for m in matches] == ["T-0", "T-2"]


@pytest.mark.asyncio
async def test_similarity_search_rejects_bad_arguments(db, profile_memory):
    with pytest.raises(ValueError):
        await profile_memory.similarity_search(db, [0.0] * 3, threshold=1.0, top_k=5)
    with pytest.raises(ValueError):
        await profile_memory.similarity_search(db, ORIGIN, threshold=1.0, top_k=0)


@pytest.mark.asyncio
async def test_zero_threshold_matches_nothing(db, profile_memory):
    add_indexed_profile(db, profile_memory, "C-SAME", ORIGIN)

    assert await profile_memory.similarity_search(db, ORIGIN, threshold=0.0, top_k=5) == []
    assert await profile_memory.similarity_search(db, ORIGIN, threshold=-1.0, top_k=5) == []


def test_extend_retention_only_changes_retention(db, profile_memory):
    created = datetime(2024, 2, 29, 12, 0)
    profile = CustomerProfile(customer_id="C-1", first_name="Ana", created_at=created,
                              updated_at=created, retention_until=datetime(2028, 2, 29, 12, 0))
    profile_memory.persist(db, profile)
    snapshot = profile.to_dict()

    updated = profile_memory.extend_retention(db, "C-1", 3)

    assert updated.retention_until == datetime(2031, 2, 28, 12, 0)
    after = updated.to_dict()
    snapshot.pop("retention_until")
    after.pop("retention_until")
    assert after == snapshot


def test_extend_retention_validation(db, profile_memory):
    with pytest.raises(NotFoundError):
        profile_memory.extend_retention(db, "missing", 1)
    with pytest.raises(ValueError):
        profile_memory.extend_retention(db, "missing", 0)


def test_purge_expired(db, profile_memory):
    now = utcnow()
    profile_memory.persist(db, CustomerProfile(
        customer_id="EXPIRED", created_at=now - timedelta(days=800), retention_until=now - timedelta(days=1)
    ))
    profile_memory.persist(db, CustomerProfile(customer_id="LIVE"))

    assert profile_memory.purge_expired(db, now) == 1
    assert profile_memory.get_by_key(db, "EXPIRED") is None
    assert profile_memory.get_by_key(db, "LIVE") is not None


@pytest.mark.asyncio
async def test_index_pending(db, profile_memory):
    profile_memory.persist(db, CustomerProfile(customer_id="C-1", first_name="Ana"))
    profile_memory.persist(db, CustomerProfile(customer_id="C-2", first_name="Rui"))

    assert await profile_memory.index_pending(db) == 2
    assert all(p.embedding for p in profile_memory.list_where(db))
    assert await profile_memory.index_pending(db) == 0


def test_delete(db, profile_memory):
    profile = profile_memory.persist(db, CustomerProfile(customer_id="C-1"))
    assert profile_memory.delete(db, profile.id) is True
    assert profile_memory.delete(db, profile.id) is False
