"""
Compliance gate: validates free text against the active policy rules
"""
import hashlib
import json
from collections import OrderedDict
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field, StrictBool, ValidationError, model_validator
from sqlalchemy.orm import Session

from bankguard.core.config import Settings
from bankguard.core.errors import MalformedModelOutput, NotFoundError
from bankguard.core.llm_client import LLMClient
from bankguard.core.logging_config import LoggingConfig
from bankguard.core.metrics import compliance_verdicts_total
from bankguard.core.resilience import ResilientCall
from bankguard.core.utils import canonical_json, utcnow
from bankguard.models.compliance_rule import ComplianceCategory, ComplianceRule
from bankguard.services.vector_memory import commit_or_raise

logger = LoggingConfig.get_logger(__name__)

NO_ACTIVE_RULES = "NO_ACTIVE_RULES"
CHECK_UNAVAILABLE = "COMPLIANCE_CHECK_UNAVAILABLE"

SYSTEM_PROMPT = """You are a compliance validation system for a bank. Your task is to check if the user input complies with all the following rules:

{rules}

Analyze the user input and determine if it violates any of these rules.
If it complies with all rules, respond with: {{"compliant": true}}
If it violates any rules, respond with: {{"compliant": false, "violations": ["rule1", "rule2", ...], "explanation": "explanation of violations"}}

Only respond with the JSON format specified above, nothing else."""


class ComplianceVerdict(BaseModel):
    """Outcome of validating one text"""
    compliant: StrictBool
    violations: List[str] = Field(default_factory=list)
    explanation: str = ""

    @model_validator(mode="after")
    def check_violation_details(self):
        if not self.compliant:
            if not [v for v in self.violations if v.strip()]:
                raise ValueError("a non-compliant verdict must name its violations")
            if not self.explanation.strip():
                raise ValueError("a non-compliant verdict must carry an explanation")
        return self


def parse_verdict(raw: str) -> ComplianceVerdict:
    """Strictly decode a model answer into a verdict"""
    try:
        payload = json.loads(raw.strip())
    except (json.JSONDecodeError, AttributeError) as e:
        raise MalformedModelOutput(f"Compliance answer is not JSON: {e}", raw) from e
    if not isinstance(payload, dict):
        raise MalformedModelOutput("Compliance answer is not a JSON object", raw)
    try:
        verdict = ComplianceVerdict.model_validate(payload)
    except ValidationError as e:
        raise MalformedModelOutput(f"Compliance answer failed validation: {e.error_count()} errors", raw) from e
    if verdict.compliant and not verdict.explanation:
        verdict = ComplianceVerdict(compliant=True, explanation="Input complies with all rules")
    return verdict


def unavailable_verdict(error: Exception) -> ComplianceVerdict:
    """Fail-safe verdict used whenever no trustworthy answer exists"""
    return ComplianceVerdict(
        compliant=False,
        violations=[CHECK_UNAVAILABLE],
        explanation="Compliance validation is currently unavailable, so the request cannot be approved.",
    )


class ComplianceService:
    """
    Compliance gate and rule management.

    ``validate`` sends every active rule (highest priority first) and the
    candidate text to the reasoning model in a single request. Only a
    well-formed answer can allow a text; anything else denies it.
    """

    def __init__(self, settings: Settings, llm: LLMClient, resilient: ResilientCall):
        self.settings = settings
        self.llm = llm
        self.resilient = resilient
        self._verdict_cache: "OrderedDict[str, ComplianceVerdict]" = OrderedDict()
        self._cache_size_limit = 1000

    # Rule management

    def get_active_rules(self, db: Session) -> List[ComplianceRule]:
        return (
            db.query(ComplianceRule)
            .filter(ComplianceRule.active.is_(True))
            .order_by(ComplianceRule.priority.desc(), ComplianceRule.id.asc())
            .all()
        )

    def get_rules_by_category(self, db: Session, category: str) -> List[ComplianceRule]:
        """Active rules of one category"""
        return (
            db.query(ComplianceRule)
            .filter(ComplianceRule.category == category, ComplianceRule.active.is_(True))
            .order_by(ComplianceRule.priority.desc(), ComplianceRule.id.asc())
            .all()
        )

    def list_rules(self, db: Session) -> List[ComplianceRule]:
        return db.query(ComplianceRule).order_by(ComplianceRule.id).all()

    def get_rule(self, db: Session, rule_id: int) -> ComplianceRule:
        rule = db.query(ComplianceRule).filter(ComplianceRule.id == rule_id).first()
        if rule is None:
            raise NotFoundError("ComplianceRule", rule_id)
        return rule

    def create_rule(
        self,
        db: Session,
        name: str,
        category: ComplianceCategory,
        rule_definition: str,
        description: Optional[str] = None,
        active: bool = True,
        priority: int = 0,
    ) -> ComplianceRule:
        rule = ComplianceRule(
            name=name,
            description=description,
            category=ComplianceCategory(category).value,
            rule_definition=rule_definition,
            active=active,
            priority=priority,
        )
        db.add(rule)
        commit_or_raise(db, "create compliance rule")
        db.refresh(rule)
        logger.info(f"Created compliance rule {name}", extra={"rule_id": rule.id, "category": rule.category})
        return rule

    def update_rule(self, db: Session, rule_id: int, **changes: Any) -> ComplianceRule:
        rule = self.get_rule(db, rule_id)
        for field in ("name", "description", "rule_definition", "active", "priority"):
            if changes.get(field) is not None:
                setattr(rule, field, changes[field])
        if changes.get("category") is not None:
            rule.category = ComplianceCategory(changes["category"]).value
        rule.updated_at = utcnow()
        commit_or_raise(db, "update compliance rule")
        db.refresh(rule)
        logger.info(f"Updated compliance rule {rule_id}", extra={"rule_id": rule_id})
        return rule

    def delete_rule(self, db: Session, rule_id: int):
        rule = self.get_rule(db, rule_id)
        db.delete(rule)
        commit_or_raise(db, "delete compliance rule")
        logger.info(f"Deleted compliance rule {rule_id}", extra={"rule_id": rule_id})

    # Validation

    @staticmethod
    def _fingerprint(rules: List[ComplianceRule], text: str) -> str:
        rule_state = [
            [r.id, r.name, r.category, r.priority, r.rule_definition,
             r.updated_at.isoformat() if r.updated_at else None]
            for r in rules
        ]
        return hashlib.sha256(f"{canonical_json(rule_state)}\n{text}".encode("utf-8")).hexdigest()

    @staticmethod
    def build_system_prompt(rules: List[ComplianceRule]) -> str:
        rules_text = "\n\n".join(
            f"Rule {r.name} ({r.category}, priority {r.priority}): {r.rule_definition}"
            for r in rules
        )
        return SYSTEM_PROMPT.format(rules=rules_text)

    def _remember(self, key: str, verdict: ComplianceVerdict):
        self._verdict_cache[key] = verdict
        if len(self._verdict_cache) > self._cache_size_limit:
            self._verdict_cache.popitem(last=False)

    async def validate(self, db: Session, text: str) -> ComplianceVerdict:
        """
        Validate ``text`` against the active rules

        Returns:
            ComplianceVerdict; non-compliant when the model is unavailable or
            its answer is malformed
        """
        rules = self.get_active_rules(db)

        if not rules:
            if self.settings.compliance_allow_when_no_rules:
                logger.warning("No active compliance rules found")
                compliance_verdicts_total.labels(verdict="compliant", source="no_rules").inc()
                return ComplianceVerdict(
                    compliant=True,
                    explanation="No active compliance rules to validate against",
                )
            compliance_verdicts_total.labels(verdict="violation", source="no_rules").inc()
            return ComplianceVerdict(
                compliant=False,
                violations=[NO_ACTIVE_RULES],
                explanation="No active compliance rules are configured, so the request cannot be approved.",
            )

        key = self._fingerprint(rules, text)
        cached = self._verdict_cache.get(key)
        if cached is not None:
            compliance_verdicts_total.labels(
                verdict="compliant" if cached.compliant else "violation", source="cache"
            ).inc()
            return cached.model_copy(deep=True)

        system_prompt = self.build_system_prompt(rules)
        fresh: Dict[str, ComplianceVerdict] = {}

        async def ask() -> ComplianceVerdict:
            response = await self.llm.chat(text, system_prompt=system_prompt, json_mode=True, temperature=0.0)
            verdict = parse_verdict(response.response)
            fresh["verdict"] = verdict
            return verdict

        verdict = await self.resilient.call(ask, fallback=unavailable_verdict, operation="compliance_check")

        source = "model" if "verdict" in fresh else "fallback"
        if source == "model":
            self._remember(key, verdict)
        compliance_verdicts_total.labels(
            verdict="compliant" if verdict.compliant else "violation", source=source
        ).inc()
        logger.info(
            f"Compliance verdict: {'compliant' if verdict.compliant else 'violation'}",
            extra={"rules": len(rules), "verdict_source": source, "violations": verdict.violations}
        )
        return verdict.model_copy(deep=True)

    def clear_cache(self):
        self._verdict_cache.clear()
