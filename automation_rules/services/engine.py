"""
AutomationEngine -- ``emit(event)`` entry point for producers.

Contract:
    ``emit(draft)`` stamps the event with an id and timestamp, records it,
    matches rules, runs each rule's pipeline and returns every execution
    produced.  ``process_event(event)`` does the same for an event that
    already has an identity (re-delivery, replay).

Gates, evaluated per matched rule before any execution record exists:
    1. Cooldown   -- ``now - last_executed_at < cooldown_minutes``.
    2. Rate limit -- executions in the trailing hour >= max_executions_per_hour.
    3. Run once   -- an execution already exists for (rule, event id).
    A gated rule produces no execution and no side effects.

Bookkeeping:
    After each execution the rule's ``last_executed_at`` and
    ``execution_count`` are updated.  A RuleBookkeepingError is logged as
    ``rule_bookkeeping_failed`` and swallowed.
"""

from __future__ import annotations

import time
from datetime import timedelta
from typing import Callable
from uuid import uuid4

from sqlalchemy.orm import Session

from automation_kernel.domain.clock import Clock
from automation_kernel.exceptions import BookkeepingError
from automation_kernel.logging_config import LogContext, get_logger
from automation_kernel.settings import AutomationSettings

from automation_rules.actions.base import ActionRegistry
from automation_rules.defaults import load_default_catalog
from automation_rules.domain.rules import RuleCatalog
from automation_rules.domain.types import (
    AutomationEvent,
    AutomationEventDraft,
    AutomationExecution,
    AutomationRule,
)
from automation_rules.services.action_executor import ActionExecutor
from automation_rules.services.matcher import RuleMatcher
from automation_rules.services.recorder import ExecutionRecorder
from automation_rules.services.rule_store import RuleStore

logger = get_logger("rules.engine")


class AutomationEngine:
    """Wires RuleStore, RuleMatcher, ActionExecutor and ExecutionRecorder."""

    def __init__(
        self,
        session: Session,
        clock: Clock,
        registry: ActionRegistry,
        catalog: RuleCatalog | None = None,
        settings: AutomationSettings | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self._session = session
        self._clock = clock
        self._settings = settings or AutomationSettings()
        self.store = RuleStore(
            session, clock, catalog if catalog is not None else load_default_catalog(),
        )
        self.recorder = ExecutionRecorder(session, clock, self._settings)
        self.matcher = RuleMatcher(self.store)
        self.executor = ActionExecutor(
            session, clock, registry, self.recorder, self._settings, sleep=sleep,
        )

    def emit(self, draft: AutomationEventDraft) -> tuple[AutomationExecution, ...]:
        event = AutomationEvent(
            event_id=uuid4(),
            tenant_id=draft.tenant_id,
            company_id=draft.company_id,
            event_type=draft.event_type,
            source=draft.source,
            timestamp=self._clock.now_utc(),
            data=dict(draft.data),
            correlation_id=draft.correlation_id,
        )
        self.recorder.save_event(event)
        logger.info(
            "event_emitted",
            extra={
                "event_type": event.event_type.value,
                "source": event.source,
                "event_id": str(event.event_id),
            },
        )
        return self.process_event(event)

    def process_event(self, event: AutomationEvent) -> tuple[AutomationExecution, ...]:
        with LogContext.bind(
            tenant_id=event.tenant_id,
            company_id=event.company_id,
            event_id=event.event_id,
            correlation_id=event.correlation_id,
        ):
            rules = self.matcher.match(event)
            logger.info(
                "rules_matched",
                extra={
                    "event_type": event.event_type.value,
                    "rule_ids": [r.rule_id for r in rules],
                },
            )

            executions: list[AutomationExecution] = []
            for rule in rules:
                with LogContext.bind(rule_id=rule.rule_id):
                    reason = self._suppression_reason(rule, event)
                    if reason is not None:
                        logger.info(f"rule_suppressed_{reason}")
                        continue

                    execution = self.executor.execute(rule, event)
                    executions.append(execution)
                    self._record_bookkeeping(rule, execution)

            return tuple(executions)

    def _suppression_reason(self, rule: AutomationRule, event: AutomationEvent) -> str | None:
        now = self._clock.now_utc()
        settings = rule.settings

        if settings.cooldown_minutes is not None and rule.last_executed_at is not None:
            if now - rule.last_executed_at < timedelta(minutes=settings.cooldown_minutes):
                return "cooldown"

        if settings.max_executions_per_hour is not None:
            recent = self.recorder.count_recent_executions(
                event.tenant_id, rule.rule_id, now - timedelta(hours=1),
            )
            if recent >= settings.max_executions_per_hour:
                return "rate_limit"

        if settings.run_once and self.recorder.has_execution(
            event.tenant_id, rule.rule_id, event.event_id,
        ):
            return "run_once"

        return None

    def _record_bookkeeping(self, rule: AutomationRule, execution: AutomationExecution) -> None:
        try:
            self.store.record_execution(
                execution.tenant_id,
                rule.rule_id,
                execution.completed_at or self._clock.now_utc(),
            )
        except BookkeepingError:
            logger.warning("rule_bookkeeping_failed", exc_info=True)
