"""
ActionExecutor -- runs one rule's ordered action pipeline for one event.

Contract:
    ``execute(rule, event)`` creates a RUNNING execution, walks the actions
    in ascending ``order`` and returns the completed execution.

Architecture:
    automation_rules/services.  Handlers come from the ActionRegistry;
    time comes from the injected Clock; persistence goes through the
    ExecutionRecorder.

Pipeline per action:
    1. Per-action condition false        -> SKIPPED, continue.
    2. ``delay_minutes > 0``             -> durable timer, SUCCESS
                                            ``{"scheduled": True}``, continue.
    3. Interpolate config, dispatch      -> SUCCESS with the handler result.
    4. Dispatch failed:
         continue_on_error=True          -> FAILED, continue.
         continue_on_error=False         -> FAILED, abort; execution FAILED
                                            with the error message.

Final status:
    FAILED if aborted, else PARTIAL if any action FAILED, else COMPLETED.

Retry:
    With ``settings.retry_on_failure`` a dispatch is attempted up to
    ``1 + max_retries`` times, sleeping ``retry_backoff_seconds * 2**n``
    between attempts.  Each attempt runs in its own SAVEPOINT so a failed
    attempt leaves no partial rows behind.
"""

from __future__ import annotations

import time
from dataclasses import dataclass, replace
from datetime import timedelta
from typing import Any, Callable
from uuid import UUID

from sqlalchemy.orm import Session

from automation_kernel.domain.clock import Clock
from automation_kernel.exceptions import ActionNotRegisteredError
from automation_kernel.logging_config import LogContext, get_logger
from automation_kernel.settings import AutomationSettings
from automation_kernel.utils.serialization import to_jsonable

from automation_rules.actions.base import ActionContext, ActionRegistry
from automation_rules.domain.conditions import evaluate_condition, interpolate
from automation_rules.domain.types import (
    ActionResult,
    ActionResultStatus,
    AutomationAction,
    AutomationEvent,
    AutomationExecution,
    AutomationRule,
    ExecutionStatus,
)
from automation_rules.services.recorder import ExecutionRecorder

logger = get_logger("rules.executor")


@dataclass(frozen=True)
class DispatchOutcome:
    """Result of dispatching one action (after retries)."""

    result: Any = None
    error: Exception | None = None
    attempts: int = 0

    @property
    def succeeded(self) -> bool:
        return self.error is None


class ActionExecutor:
    """Runs action pipelines.  Flushes, never commits."""

    def __init__(
        self,
        session: Session,
        clock: Clock,
        registry: ActionRegistry,
        recorder: ExecutionRecorder,
        settings: AutomationSettings | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self._session = session
        self._clock = clock
        self._registry = registry
        self._recorder = recorder
        self._settings = settings or AutomationSettings()
        self._sleep = sleep

    def execute(self, rule: AutomationRule, event: AutomationEvent) -> AutomationExecution:
        execution = self._recorder.start_execution(rule, event)

        with LogContext.bind(execution_id=execution.execution_id, rule_id=rule.rule_id):
            results: list[ActionResult] = []
            aborted_error: str | None = None

            for action in rule.sorted_actions():
                result = self._run_action(rule, action, event, execution.execution_id)
                results.append(result)
                if result.status == ActionResultStatus.FAILED and not action.continue_on_error:
                    aborted_error = result.error
                    logger.warning(
                        "action_pipeline_aborted",
                        extra={"action_id": action.action_id, "error": result.error},
                    )
                    break

            if aborted_error is not None:
                status = ExecutionStatus.FAILED
            elif any(r.status == ActionResultStatus.FAILED for r in results):
                status = ExecutionStatus.PARTIAL
            else:
                status = ExecutionStatus.COMPLETED

            completed = replace(
                execution,
                status=status,
                completed_at=self._clock.now_utc(),
                action_results=tuple(results),
                error=aborted_error,
            )
            self._recorder.complete_execution(completed)

            logger.info(
                "rule_execution_completed",
                extra={
                    "status": status.value,
                    "action_count": len(results),
                    "failed_count": len(completed.failed_actions),
                },
            )
        return completed

    # -------------------------------------------------------------------------
    # One action
    # -------------------------------------------------------------------------

    def _run_action(
        self,
        rule: AutomationRule,
        action: AutomationAction,
        event: AutomationEvent,
        execution_id: UUID,
    ) -> ActionResult:
        now = self._clock.now_utc()

        if action.condition is not None and not evaluate_condition(action.condition, event.data):
            logger.debug("action_skipped", extra={"action_id": action.action_id})
            return ActionResult(
                action_id=action.action_id,
                status=ActionResultStatus.SKIPPED,
                executed_at=now,
            )

        if action.delay_minutes and action.delay_minutes > 0:
            scheduled_for = now + timedelta(minutes=action.delay_minutes)
            self._recorder.schedule_action(
                execution_id=execution_id,
                rule_id=rule.rule_id,
                action=action,
                event=event,
                scheduled_for=scheduled_for,
            )
            return ActionResult(
                action_id=action.action_id,
                status=ActionResultStatus.SUCCESS,
                executed_at=now,
                result={"scheduled": True, "scheduled_for": scheduled_for.isoformat()},
            )

        config = interpolate(action.config, event.data)
        outcome = self.dispatch(rule, action, event, config, execution_id)
        executed_at = self._clock.now_utc()

        if outcome.succeeded:
            return ActionResult(
                action_id=action.action_id,
                status=ActionResultStatus.SUCCESS,
                executed_at=executed_at,
                result=outcome.result,
                attempts=outcome.attempts,
            )

        logger.warning(
            "action_failed",
            extra={
                "action_id": action.action_id,
                "action_type": action.action_type.value,
                "attempts": outcome.attempts,
                "continue_on_error": action.continue_on_error,
                "error": str(outcome.error),
                "error_code": getattr(outcome.error, "code", None),
            },
        )
        return ActionResult(
            action_id=action.action_id,
            status=ActionResultStatus.FAILED,
            executed_at=executed_at,
            error=str(outcome.error),
            attempts=outcome.attempts,
        )

    def dispatch(
        self,
        rule: AutomationRule,
        action: AutomationAction,
        event: AutomationEvent,
        config: dict[str, Any],
        execution_id: UUID | None,
    ) -> DispatchOutcome:
        """Call the handler for ``action`` with retry.  Never raises."""
        try:
            handler = self._registry.get(action.action_type)
        except ActionNotRegisteredError as exc:
            return DispatchOutcome(error=exc, attempts=0)

        context = ActionContext(
            session=self._session,
            clock=self._clock,
            settings=self._settings,
            event=event,
            rule=rule,
            recorder=self._recorder,
            execution_id=execution_id,
            action_id=action.action_id,
        )
        max_attempts = 1 + rule.settings.max_retries if rule.settings.retry_on_failure else 1

        last_error: Exception | None = None
        for attempt in range(max_attempts):
            try:
                with self._session.begin_nested():
                    result = handler.execute(config, context)
                return DispatchOutcome(result=to_jsonable(result), attempts=attempt + 1)
            except Exception as exc:
                last_error = exc
                logger.info(
                    "action_attempt_failed",
                    extra={
                        "action_id": action.action_id,
                        "attempt": attempt + 1,
                        "max_attempts": max_attempts,
                        "error": str(exc),
                    },
                )
                backoff = self._settings.retry_backoff_seconds
                if attempt + 1 < max_attempts and backoff > 0:
                    self._sleep(backoff * 2 ** attempt)

        return DispatchOutcome(error=last_error, attempts=max_attempts)
