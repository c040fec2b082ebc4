"""
RuleStore -- built-in catalog merged with tenant overrides and bookkeeping.

Contract:
    ``list_rules(tenant_id, company_id)`` returns the effective rule set for
    a tenant: catalog defaults rebound to the tenant, overridden by stored
    rules sharing the same id, each carrying its bookkeeping
    (``last_executed_at``, ``execution_count``) from the rule-state table.

Architecture: automation_rules/services.  The catalog is injected at
    construction; there is no module-level rule table.

Invariants enforced:
    - Override wins on id collision.
    - A rule scoped to a company is only visible for that company.
    - ``record_execution`` increments with ``count = count + 1`` in the
      database, never read-modify-write.

Failure modes:
    - get/delete/set_enabled on an unknown id -> RuleNotFoundError.
    - save of a structurally invalid rule -> InvalidRuleError.
    - Bookkeeping write failure -> RuleBookkeepingError (callers log and
      swallow it).
    - Read failures propagate; there is no silent fallback to defaults.
"""

from __future__ import annotations

from dataclasses import replace
from datetime import datetime

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from automation_kernel.domain.clock import Clock
from automation_kernel.exceptions import RuleBookkeepingError, RuleNotFoundError
from automation_kernel.logging_config import get_logger

from automation_rules.domain.rules import RuleCatalog, validate_rule
from automation_rules.domain.types import AutomationRule
from automation_rules.models.automation import AutomationRuleModel, RuleStateModel

logger = get_logger("rules.store")


class RuleStore:
    """Effective rules per tenant plus rule management."""

    def __init__(self, session: Session, clock: Clock, catalog: RuleCatalog):
        self._session = session
        self._clock = clock
        self._catalog = catalog

    # -------------------------------------------------------------------------
    # Reads
    # -------------------------------------------------------------------------

    def list_rules(
        self, tenant_id: str, company_id: str | None = None,
    ) -> list[AutomationRule]:
        """Effective rules for the tenant (and company, when given)."""
        merged: dict[str, AutomationRule] = {
            rule.rule_id: rule for rule in self._catalog.for_tenant(tenant_id)
        }
        for model in self._session.scalars(
            select(AutomationRuleModel)
            .where(AutomationRuleModel.tenant_id == tenant_id)
            .order_by(AutomationRuleModel.created_at)
        ):
            default = merged.get(model.rule_id)
            merged[model.rule_id] = replace(
                model.to_dto(), is_default=default is not None and default.is_default,
            )

        state = self._load_state(tenant_id)
        rules: list[AutomationRule] = []
        for rule in merged.values():
            if company_id is not None and rule.company_id not in (None, company_id):
                continue
            last_executed_at, count = state.get(rule.rule_id, (None, 0))
            rules.append(
                replace(rule, last_executed_at=last_executed_at, execution_count=count)
            )
        return rules

    def get_rule(self, tenant_id: str, rule_id: str) -> AutomationRule:
        """
        Raises:
            RuleNotFoundError: Neither a default nor an override exists.
        """
        for rule in self.list_rules(tenant_id):
            if rule.rule_id == rule_id:
                return rule
        raise RuleNotFoundError(tenant_id, rule_id)

    def _load_state(self, tenant_id: str) -> dict[str, tuple[datetime | None, int]]:
        rows = self._session.execute(
            select(
                RuleStateModel.rule_id,
                RuleStateModel.last_executed_at,
                RuleStateModel.execution_count,
            ).where(RuleStateModel.tenant_id == tenant_id)
        )
        return {row.rule_id: (row.last_executed_at, row.execution_count) for row in rows}

    def _override(self, tenant_id: str, rule_id: str) -> AutomationRuleModel | None:
        return self._session.scalars(
            select(AutomationRuleModel).where(
                AutomationRuleModel.tenant_id == tenant_id,
                AutomationRuleModel.rule_id == rule_id,
            )
        ).first()

    # -------------------------------------------------------------------------
    # Management
    # -------------------------------------------------------------------------

    def save_rule(self, rule: AutomationRule, actor: str) -> AutomationRule:
        """Create or replace the tenant's stored rule with ``rule.rule_id``."""
        validate_rule(rule)
        now = self._clock.now_utc()
        model = self._override(rule.tenant_id, rule.rule_id)
        if model is None:
            model = AutomationRuleModel.from_dto(rule, actor)
            model.created_at = now
            model.updated_at = now
            self._session.add(model)
            created = True
        else:
            model.apply_dto(rule, actor)
            model.updated_at = now
            created = False
        self._session.flush()

        logger.info(
            "rule_saved",
            extra={
                "tenant_id": rule.tenant_id,
                "rule_id": rule.rule_id,
                "is_new": created,
                "actor": actor,
            },
        )
        return self.get_rule(rule.tenant_id, rule.rule_id)

    def delete_rule(self, tenant_id: str, rule_id: str) -> None:
        """Remove a tenant override; a shadowed default becomes visible again.

        Raises:
            RuleNotFoundError: The tenant has no stored rule with this id.
        """
        model = self._override(tenant_id, rule_id)
        if model is None:
            raise RuleNotFoundError(tenant_id, rule_id)
        self._session.delete(model)
        self._session.flush()
        logger.info("rule_deleted", extra={"tenant_id": tenant_id, "rule_id": rule_id})

    def set_enabled(
        self, tenant_id: str, rule_id: str, enabled: bool, actor: str,
    ) -> AutomationRule:
        """Toggle a rule.  Toggling a default stores an override copy."""
        rule = self.get_rule(tenant_id, rule_id)
        return self.save_rule(replace(rule, enabled=enabled), actor)

    # -------------------------------------------------------------------------
    # Bookkeeping
    # -------------------------------------------------------------------------

    def record_execution(
        self, tenant_id: str, rule_id: str, executed_at: datetime,
    ) -> None:
        """Set ``last_executed_at`` and atomically increment the counter.

        Runs inside a SAVEPOINT so a failure leaves the caller's transaction
        usable.

        Raises:
            RuleBookkeepingError: The write failed.
        """
        try:
            with self._session.begin_nested():
                if not self._increment(tenant_id, rule_id, executed_at):
                    self._insert_state(tenant_id, rule_id, executed_at)
        except IntegrityError:
            # Concurrent first run inserted the row; the UPDATE now applies.
            try:
                with self._session.begin_nested():
                    self._increment(tenant_id, rule_id, executed_at)
            except SQLAlchemyError as exc:
                raise RuleBookkeepingError(tenant_id, rule_id, str(exc)) from exc
        except SQLAlchemyError as exc:
            raise RuleBookkeepingError(tenant_id, rule_id, str(exc)) from exc

    def _increment(self, tenant_id: str, rule_id: str, executed_at: datetime) -> bool:
        result = self._session.execute(
            update(RuleStateModel)
            .where(
                RuleStateModel.tenant_id == tenant_id,
                RuleStateModel.rule_id == rule_id,
            )
            .values(
                last_executed_at=executed_at,
                execution_count=RuleStateModel.execution_count + 1,
                updated_at=executed_at,
                updated_by="automation",
            )
            .execution_options(synchronize_session=False)
        )
        return bool(result.rowcount)

    def _insert_state(self, tenant_id: str, rule_id: str, executed_at: datetime) -> None:
        self._session.add(
            RuleStateModel(
                tenant_id=tenant_id,
                rule_id=rule_id,
                last_executed_at=executed_at,
                execution_count=1,
                created_by="automation",
                created_at=executed_at,
                updated_at=executed_at,
            )
        )
        self._session.flush()
