"""
Rule parsing, validation and the immutable default catalog.

Contract:
    ``parse_rule(data)`` turns a plain mapping (YAML fragment or stored JSON)
    into a validated ``AutomationRule``; ``rule_to_dict(rule)`` is its
    inverse for persistence.  ``RuleCatalog`` is the frozen set of built-in
    rules handed to the RuleStore at construction.

Architecture: automation_rules/domain.  ZERO I/O.

Failure modes:
    - Missing required key, unknown enum value, duplicate action id or
      duplicate action order -> InvalidRuleError.
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from typing import Any, Mapping

from automation_kernel.exceptions import InvalidRuleError

from automation_rules.domain.types import (
    ActionType,
    AutomationAction,
    AutomationRule,
    ConditionOperator,
    EventType,
    RuleCondition,
    RuleSettings,
    RuleTrigger,
)


# =============================================================================
# Parsing
# =============================================================================


def parse_condition(data: Mapping[str, Any], rule_id: str) -> RuleCondition:
    try:
        operator = ConditionOperator(data["operator"])
        return RuleCondition(field=data["field"], operator=operator, value=data.get("value"))
    except KeyError as exc:
        raise InvalidRuleError(rule_id, f"condition missing key {exc}") from exc
    except ValueError as exc:
        raise InvalidRuleError(rule_id, f"unknown operator {data.get('operator')!r}") from exc


def parse_action(data: Mapping[str, Any], rule_id: str) -> AutomationAction:
    try:
        action_type = ActionType(data["type"])
    except KeyError as exc:
        raise InvalidRuleError(rule_id, f"action missing key {exc}") from exc
    except ValueError as exc:
        raise InvalidRuleError(rule_id, f"unknown action type {data.get('type')!r}") from exc

    if "id" not in data or "order" not in data:
        raise InvalidRuleError(rule_id, "action requires 'id' and 'order'")

    condition = data.get("condition")
    delay = data.get("delay_minutes")
    return AutomationAction(
        action_id=str(data["id"]),
        action_type=action_type,
        order=int(data["order"]),
        config=dict(data.get("config") or {}),
        condition=parse_condition(condition, rule_id) if condition else None,
        delay_minutes=int(delay) if delay is not None else None,
        continue_on_error=bool(data.get("continue_on_error", False)),
    )


def parse_settings(data: Mapping[str, Any] | None) -> RuleSettings:
    data = data or {}
    cooldown = data.get("cooldown_minutes")
    per_hour = data.get("max_executions_per_hour")
    return RuleSettings(
        run_once=bool(data.get("run_once", False)),
        cooldown_minutes=int(cooldown) if cooldown is not None else None,
        max_executions_per_hour=int(per_hour) if per_hour is not None else None,
        retry_on_failure=bool(data.get("retry_on_failure", False)),
        max_retries=int(data.get("max_retries", 0)),
    )


def parse_rule(
    data: Mapping[str, Any],
    tenant_id: str | None = None,
    is_default: bool = False,
) -> AutomationRule:
    """Parse and validate a rule mapping.

    Args:
        data: Mapping with snake_case keys (see defaults/rules.yaml).
        tenant_id: Overrides ``data["tenant_id"]`` when given.
        is_default: Marks the rule as part of the built-in catalog.
    """
    rule_id = str(data.get("id") or "<unnamed>")
    trigger_data = data.get("trigger")
    if not trigger_data or "event" not in trigger_data:
        raise InvalidRuleError(rule_id, "trigger.event is required")
    try:
        event = EventType(trigger_data["event"])
    except ValueError as exc:
        raise InvalidRuleError(rule_id, f"unknown event type {trigger_data['event']!r}") from exc

    rule = AutomationRule(
        rule_id=rule_id,
        tenant_id=tenant_id or str(data.get("tenant_id", "default")),
        company_id=data.get("company_id"),
        name=str(data.get("name", rule_id)),
        description=str(data.get("description", "")),
        enabled=bool(data.get("enabled", True)),
        trigger=RuleTrigger(
            event=event,
            conditions=tuple(
                parse_condition(c, rule_id)
                for c in trigger_data.get("conditions") or ()
            ),
        ),
        actions=tuple(parse_action(a, rule_id) for a in data.get("actions") or ()),
        settings=parse_settings(data.get("settings")),
        created_by=str(data.get("created_by", "system")),
        is_default=is_default,
    )
    validate_rule(rule)
    return rule


def validate_rule(rule: AutomationRule) -> None:
    """Structural checks shared by the catalog and the RuleStore."""
    if rule.rule_id == "<unnamed>":
        raise InvalidRuleError(rule.rule_id, "rule id is required")

    ids = [a.action_id for a in rule.actions]
    if len(ids) != len(set(ids)):
        raise InvalidRuleError(rule.rule_id, "duplicate action ids")

    orders = [a.order for a in rule.actions]
    if len(orders) != len(set(orders)):
        raise InvalidRuleError(rule.rule_id, "duplicate action order values")

    for action in rule.actions:
        if action.delay_minutes is not None and action.delay_minutes < 0:
            raise InvalidRuleError(rule.rule_id, f"negative delay on {action.action_id}")

    if rule.settings.max_retries < 0:
        raise InvalidRuleError(rule.rule_id, "max_retries must be >= 0")


# =============================================================================
# Serialization
# =============================================================================


def condition_to_dict(condition: RuleCondition) -> dict[str, Any]:
    return {
        "field": condition.field,
        "operator": ConditionOperator(condition.operator).value,
        "value": condition.value,
    }


def action_to_dict(action: AutomationAction) -> dict[str, Any]:
    data: dict[str, Any] = {
        "id": action.action_id,
        "type": action.action_type.value,
        "order": action.order,
        "config": dict(action.config),
        "continue_on_error": action.continue_on_error,
    }
    if action.condition is not None:
        data["condition"] = condition_to_dict(action.condition)
    if action.delay_minutes is not None:
        data["delay_minutes"] = action.delay_minutes
    return data


def rule_to_dict(rule: AutomationRule) -> dict[str, Any]:
    return {
        "id": rule.rule_id,
        "tenant_id": rule.tenant_id,
        "company_id": rule.company_id,
        "name": rule.name,
        "description": rule.description,
        "enabled": rule.enabled,
        "trigger": {
            "event": rule.trigger.event.value,
            "conditions": [condition_to_dict(c) for c in rule.trigger.conditions],
        },
        "actions": [action_to_dict(a) for a in rule.actions],
        "settings": {
            "run_once": rule.settings.run_once,
            "cooldown_minutes": rule.settings.cooldown_minutes,
            "max_executions_per_hour": rule.settings.max_executions_per_hour,
            "retry_on_failure": rule.settings.retry_on_failure,
            "max_retries": rule.settings.max_retries,
        },
        "created_by": rule.created_by,
    }


# =============================================================================
# Catalog
# =============================================================================


@dataclass(frozen=True)
class RuleCatalog:
    """Immutable set of built-in rules, keyed by rule id."""

    rules: tuple[AutomationRule, ...] = ()

    def __post_init__(self) -> None:
        ids = [r.rule_id for r in self.rules]
        if len(ids) != len(set(ids)):
            raise InvalidRuleError("<catalog>", "duplicate rule ids in catalog")

    def __len__(self) -> int:
        return len(self.rules)

    def get(self, rule_id: str) -> AutomationRule | None:
        for rule in self.rules:
            if rule.rule_id == rule_id:
                return rule
        return None

    def for_tenant(self, tenant_id: str) -> tuple[AutomationRule, ...]:
        """Defaults rebound to ``tenant_id``."""
        return tuple(replace(r, tenant_id=tenant_id) for r in self.rules)

    @classmethod
    def from_dicts(cls, items: list[Mapping[str, Any]]) -> RuleCatalog:
        return cls(rules=tuple(parse_rule(d, is_default=True) for d in items))
