"""
Tests for background sweepers
"""
import asyncio
from datetime import timedelta
from unittest.mock import AsyncMock, patch

import pytest

from bankguard.core.errors import UpstreamModelFailure
from bankguard.core.utils import utcnow
from bankguard.models.customer_profile import CustomerProfile
from bankguard.services.audit_service import AuditEntry
from bankguard.services.session_store import AI_CONVERSATION, SessionStore
from bankguard.services.sweepers import AuditRetentionSweeper, RetentionSweeper, SessionSweeper


@pytest.mark.asyncio
async def test_session_sweeper_purges_expired(db, session_factory, settings):
    clock_now = [utcnow()]
    store = SessionStore(settings, clock=lambda: clock_now[0])
    store.create(db, "teller-1", AI_CONVERSATION)
    clock_now[0] += timedelta(minutes=31)

    sweeper = SessionSweeper(session_factory, store, interval_seconds=60)

    assert await sweeper.sweep_once() == 1
    assert await sweeper.sweep_once() == 0


@pytest.mark.asyncio
async def test_retention_sweeper_purges_and_indexes(db, session_factory, profile_memory):
    now = utcnow()
    profile_memory.persist(db, CustomerProfile(
        customer_id="GONE", created_at=now - timedelta(days=3000), retention_until=now - timedelta(days=1)
    ))
    pending = profile_memory.persist(db, CustomerProfile(customer_id="PENDING", first_name="Ana"))

    sweeper = RetentionSweeper(session_factory, [profile_memory], interval_seconds=60)

    assert await sweeper.sweep_once() == 1
    db.expire_all()
    assert profile_memory.get_by_key(db, "GONE") is None
    assert profile_memory.get(db, pending.id).embedding is not None


@pytest.mark.asyncio
async def test_retention_sweeper_survives_index_failure(db, session_factory, profile_memory):
    profile_memory.persist(db, CustomerProfile(customer_id="PENDING"))
    sweeper = RetentionSweeper(session_factory, [profile_memory], interval_seconds=60)

    with patch.object(profile_memory, "index_pending", AsyncMock(side_effect=UpstreamModelFailure("down"))):
        assert await sweeper.sweep_once() == 0


@pytest.mark.asyncio
async def test_audit_retention_sweeper(db, session_factory, audit):
    audit.record(AuditEntry(user_id="u", action="OLD", success=True,
                            timestamp=utcnow() - timedelta(days=40)))
    audit.record(AuditEntry(user_id="u", action="NEW", success=True))
    audit.flush(timeout=5)

    sweeper = AuditRetentionSweeper(session_factory, audit, retention_days=30, interval_seconds=60)

    assert await sweeper.sweep_once() == 1
    assert [r.action for r in audit.by_actor(db, "u")] == ["NEW"]


@pytest.mark.asyncio
async def test_start_and_stop(session_factory, settings):
    store = SessionStore(settings)
    sweeper = SessionSweeper(session_factory, store, interval_seconds=3600)

    with patch.object(sweeper, "sweep_once", AsyncMock(return_value=0)) as sweep:
        await sweeper.start()
        await sweeper.start()
        await asyncio.sleep(0.05)
        assert sweeper.running is True
        await sweeper.stop()

    assert sweeper.running is False
    sweep.assert_awaited_once()


@pytest.mark.asyncio
async def test_loop_survives_sweep_errors(session_factory, settings):
    sweeper = SessionSweeper(session_factory, SessionStore(settings), interval_seconds=0.01)

    with patch.object(sweeper, "sweep_once", AsyncMock(side_effect=RuntimeError("boom"))) as sweep:
        await sweeper.start()
        await asyncio.sleep(0.1)
        await sweeper.stop()

    assert sweep.await_count >= 2
