"""
Tests for the compliance gate and rule management
"""
import pytest

from bankguard.core.config import Settings
from bankguard.core.errors import MalformedModelOutput, NotFoundError, UpstreamModelFailure
from bankguard.models.compliance_rule import ComplianceCategory
from bankguard.services.compliance_service import (CHECK_UNAVAILABLE, NO_ACTIVE_RULES,
                                                   ComplianceService, parse_verdict)

from tests.conftest import llm_answer


@pytest.fixture
def service(settings, fake_llm, resilient):
    return ComplianceService(settings, fake_llm, resilient)


def add_rules(db, service):
    service.create_rule(db, "no-pii-export", ComplianceCategory.GDPR,
                        "Never disclose personal data of third parties", priority=5)
    service.create_rule(db, "aml-structuring", ComplianceCategory.AML,
                        "Do not advise on splitting deposits to avoid reporting", priority=10)
    service.create_rule(db, "retired", ComplianceCategory.OTHER, "Old rule", active=False)


def test_parse_verdict_fills_compliant_explanation():
    verdict = parse_verdict('{"compliant": true}')
    assert verdict.compliant is True
    assert verdict.violations == []
    assert verdict.explanation


@pytest.mark.parametrize("raw", [
    "not json",
    "[true]",
    '{"compliant": "yes"}',
    '{"compliant": false}',
    '{"compliant": false, "violations": ["x"]}',
    '{"compliant": false, "violations": [" "], "explanation": "why"}',
])
def test_parse_verdict_rejects_malformed(raw):
    with pytest.raises(MalformedModelOutput):
        parse_verdict(raw)


def test_rule_crud(db, service):
    add_rules(db, service)

    active = service.get_active_rules(db)
    assert [r.name for r in active] == ["aml-structuring", "no-pii-export"]
    assert [r.name for r in service.get_rules_by_category(db, "GDPR")] == ["no-pii-export"]
    assert len(service.list_rules(db)) == 3

    rule = active[0]
    updated = service.update_rule(db, rule.id, priority=1, active=None, category="KYC")
    assert updated.priority == 1
    assert updated.active is True
    assert updated.category == "KYC"

    service.delete_rule(db, rule.id)
    with pytest.raises(NotFoundError):
        service.get_rule(db, rule.id)


def test_create_rule_rejects_unknown_category(db, service):
    with pytest.raises(ValueError):
        service.create_rule(db, "bad", "TAXES", "whatever")


@pytest.mark.asyncio
async def test_no_active_rules_allows_by_default(db, service, fake_llm):
    verdict = await service.validate(db, "What is my balance?")

    assert verdict.compliant is True
    fake_llm.chat.assert_not_awaited()


@pytest.mark.asyncio
async def test_no_active_rules_can_deny(db, tmp_path, fake_llm, resilient):
    strict = Settings(_env_file=None, database_url=f"sqlite:///{tmp_path / 'x.db'}",
                      compliance_allow_when_no_rules=False)
    service = ComplianceService(strict, fake_llm, resilient)

    verdict = await service.validate(db, "What is my balance?")

    assert verdict.compliant is False
    assert verdict.violations == [NO_ACTIVE_RULES]


@pytest.mark.asyncio
async def test_violation_is_reported(db, service, fake_llm):
    add_rules(db, service)
    fake_llm.chat.return_value = llm_answer({
        "compliant": False,
        "violations": ["aml-structuring"],
        "explanation": "The request asks how to avoid reporting thresholds.",
    })

    verdict = await service.validate(db, "How can I split 15k into small deposits?")

    assert verdict.compliant is False
    assert verdict.violations == ["aml-structuring"]
    call = fake_llm.chat.await_args
    assert call.args[0] == "How can I split 15k into small deposits?"
    prompt = call.kwargs["system_prompt"]
    # Highest priority first, inactive rules left out
    assert prompt.index("aml-structuring") < prompt.index("no-pii-export")
    assert "retired" not in prompt


@pytest.mark.asyncio
async def test_malformed_answer_denies(db, service, fake_llm):
    add_rules(db, service)
    fake_llm.chat.return_value = llm_answer("Sure, looks fine to me!")

    verdict = await service.validate(db, "What is my balance?")

    assert verdict.compliant is False
    assert verdict.violations == [CHECK_UNAVAILABLE]
    fake_llm.chat.assert_awaited_once()


@pytest.mark.asyncio
async def test_upstream_failure_denies(db, service, fake_llm):
    add_rules(db, service)
    fake_llm.chat.side_effect = UpstreamModelFailure("connection refused")

    verdict = await service.validate(db, "What is my balance?")

    assert verdict.compliant is False
    assert verdict.violations == [CHECK_UNAVAILABLE]
    assert fake_llm.chat.await_count == 3


@pytest.mark.asyncio
async def test_repeated_validation_is_cached(db, service, fake_llm):
    add_rules(db, service)
    fake_llm.chat.return_value = llm_answer({"compliant": True})

    first = await service.validate(db, "What is my balance?")
    second = await service.validate(db, "What is my balance?")

    assert first == second
    fake_llm.chat.assert_awaited_once()


@pytest.mark.asyncio
async def test_rule_change_invalidates_cache(db, service, fake_llm):
    add_rules(db, service)
    fake_llm.chat.return_value = llm_answer({"compliant": True})
    await service.validate(db, "What is my balance?")

    rule = service.get_active_rules(db)[0]
    service.update_rule(db, rule.id, rule_definition="Stricter wording")
    await service.validate(db, "What is my balance?")

    assert fake_llm.chat.await_count == 2


@pytest.mark.asyncio
async def test_fallback_verdicts_are_not_cached(db, service, fake_llm):
    add_rules(db, service)
    fake_llm.chat.side_effect = [llm_answer("garbage"), llm_answer({"compliant": True})]

    first = await service.validate(db, "What is my balance?")
    second = await service.validate(db, "What is my balance?")

    assert first.compliant is False
    assert second.compliant is True
