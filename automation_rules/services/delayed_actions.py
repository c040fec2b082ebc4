"""
DelayedActionRunner -- revives due durable timers.

The engine never sleeps: a delayed action or reminder is persisted as a
scheduled-action row and this runner, driven by the scheduler tick, picks
up the rows whose time has come.  Each row is dispatched once and marked
``done`` or ``failed``; the execution that scheduled it stays untouched.
"""

from __future__ import annotations

from dataclasses import replace

from sqlalchemy.orm import Session

from automation_kernel.domain.clock import Clock
from automation_kernel.exceptions import RuleNotFoundError
from automation_kernel.logging_config import LogContext, get_logger

from automation_rules.domain.conditions import interpolate
from automation_rules.domain.types import (
    AutomationRule,
    RuleTrigger,
    ScheduledAction,
    ScheduledActionStatus,
)
from automation_rules.services.action_executor import ActionExecutor
from automation_rules.services.recorder import ExecutionRecorder
from automation_rules.services.rule_store import RuleStore

logger = get_logger("rules.delayed")


class DelayedActionRunner:
    def __init__(
        self,
        session: Session,
        clock: Clock,
        store: RuleStore,
        recorder: ExecutionRecorder,
        executor: ActionExecutor,
    ):
        self._session = session
        self._clock = clock
        self._store = store
        self._recorder = recorder
        self._executor = executor

    def run_due(self, limit: int | None = None) -> list[ScheduledAction]:
        """Dispatch every pending timer due now. Returns the processed timers."""
        now = self._clock.now_utc()
        processed: list[ScheduledAction] = []

        for scheduled in self._recorder.due_scheduled_actions(now, limit=limit):
            with LogContext.bind(
                tenant_id=scheduled.tenant_id,
                company_id=scheduled.company_id,
                rule_id=scheduled.rule_id,
                event_id=scheduled.event.event_id,
                execution_id=scheduled.execution_id,
            ):
                processed.append(self._run_one(scheduled))

        if processed:
            logger.info("delayed_actions_processed", extra={"count": len(processed)})
        return processed

    def _run_one(self, scheduled: ScheduledAction) -> ScheduledAction:
        rule = self._rule_for(scheduled)
        config = interpolate(scheduled.action.config, scheduled.event.data)
        outcome = self._executor.dispatch(
            rule, scheduled.action, scheduled.event, config, scheduled.execution_id,
        )

        if outcome.succeeded:
            status, error = ScheduledActionStatus.DONE, None
            logger.info(
                "delayed_action_completed",
                extra={"action_id": scheduled.action.action_id, "attempts": outcome.attempts},
            )
        else:
            status, error = ScheduledActionStatus.FAILED, str(outcome.error)
            logger.warning(
                "delayed_action_failed",
                extra={"action_id": scheduled.action.action_id, "error": error},
            )

        self._recorder.mark_scheduled_action(scheduled.scheduled_id, status, error)
        return replace(
            scheduled, status=status, error=error, completed_at=self._clock.now_utc(),
        )

    def _rule_for(self, scheduled: ScheduledAction) -> AutomationRule:
        """Current rule (for retry settings); a stand-in if it was deleted."""
        try:
            return self._store.get_rule(scheduled.tenant_id, scheduled.rule_id)
        except RuleNotFoundError:
            return AutomationRule(
                rule_id=scheduled.rule_id,
                tenant_id=scheduled.tenant_id,
                name=scheduled.rule_id,
                trigger=RuleTrigger(event=scheduled.event.event_type),
            )
