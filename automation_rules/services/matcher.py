"""RuleMatcher -- selects the rules an event triggers."""

from __future__ import annotations

from automation_rules.domain.conditions import evaluate_all
from automation_rules.domain.types import AutomationEvent, AutomationRule
from automation_rules.services.rule_store import RuleStore


class RuleMatcher:
    """A rule matches when it is enabled, visible to the event's company,
    triggered by the event type and every trigger condition holds."""

    def __init__(self, store: RuleStore):
        self._store = store

    def match(self, event: AutomationEvent) -> list[AutomationRule]:
        return [
            rule
            for rule in self._store.list_rules(event.tenant_id, event.company_id)
            if rule.enabled
            and rule.trigger.event == event.event_type
            and evaluate_all(rule.trigger.conditions, event.data)
        ]
