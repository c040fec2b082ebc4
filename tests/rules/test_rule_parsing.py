"""
Tests for automation_rules.domain.rules and the packaged default catalog.

Validates parse_rule / rule_to_dict, structural validation (duplicate
action ids and orders, unknown enum values) and RuleCatalog behaviour.
"""

import pytest

from automation_kernel.exceptions import InvalidRuleError
from automation_rules.defaults import load_catalog_file, load_default_catalog
from automation_rules.domain.rules import RuleCatalog, parse_rule, rule_to_dict
from automation_rules.domain.types import ActionType, ConditionOperator, EventType


def _rule_data(**overrides):
    data = {
        "id": "rule-test",
        "name": "Test rule",
        "trigger": {
            "event": "DOCUMENT_UPLOADED",
            "conditions": [{"field": "docType", "operator": "eq", "value": "INVOICE"}],
        },
        "actions": [
            {"id": "a2", "type": "SEND_NOTIFICATION", "order": 20, "config": {"title": "t"}},
            {"id": "a1", "type": "CREATE_TASK", "order": 10, "config": {"title": "Review"},
             "continue_on_error": True},
        ],
        "settings": {"cooldown_minutes": 15, "retry_on_failure": True, "max_retries": 2},
    }
    data.update(overrides)
    return data


class TestParseRule:
    def test_parses_trigger_and_actions(self):
        rule = parse_rule(_rule_data(), tenant_id="t1")

        assert rule.rule_id == "rule-test"
        assert rule.tenant_id == "t1"
        assert rule.trigger.event == EventType.DOCUMENT_UPLOADED
        assert rule.trigger.conditions[0].operator == ConditionOperator.EQ
        assert len(rule.actions) == 2
        assert rule.settings.cooldown_minutes == 15
        assert rule.settings.max_retries == 2
        assert rule.enabled is True

    def test_sorted_actions_by_order(self):
        rule = parse_rule(_rule_data())
        assert [a.action_id for a in rule.sorted_actions()] == ["a1", "a2"]

    def test_order_gaps_allowed(self):
        rule = parse_rule(_rule_data())
        assert [a.order for a in rule.sorted_actions()] == [10, 20]

    def test_action_defaults(self):
        rule = parse_rule(_rule_data())
        a2 = next(a for a in rule.actions if a.action_id == "a2")
        assert a2.continue_on_error is False
        assert a2.delay_minutes is None
        assert a2.condition is None

    def test_per_action_condition_and_delay(self):
        data = _rule_data(actions=[{
            "id": "a1", "type": "SEND_EMAIL", "order": 1, "delay_minutes": 30,
            "condition": {"field": "amount", "operator": "gt", "value": 100},
            "config": {"recipients": ["cfo"]},
        }])
        action = parse_rule(data).actions[0]
        assert action.delay_minutes == 30
        assert action.condition.field == "amount"

    def test_round_trip_through_dict(self):
        rule = parse_rule(_rule_data(), tenant_id="t1")
        again = parse_rule(rule_to_dict(rule))
        assert again == rule


class TestValidation:
    def test_missing_trigger(self):
        with pytest.raises(InvalidRuleError, match="trigger.event"):
            parse_rule(_rule_data(trigger={}))

    def test_unknown_event_type(self):
        with pytest.raises(InvalidRuleError, match="unknown event type"):
            parse_rule(_rule_data(trigger={"event": "INVOICE_PAID"}))

    def test_unknown_action_type(self):
        with pytest.raises(InvalidRuleError, match="unknown action type"):
            parse_rule(_rule_data(actions=[{"id": "a1", "type": "SEND_FAX", "order": 1}]))

    def test_unknown_operator(self):
        data = _rule_data(trigger={
            "event": "DOCUMENT_UPLOADED",
            "conditions": [{"field": "x", "operator": "like", "value": "y"}],
        })
        with pytest.raises(InvalidRuleError, match="unknown operator"):
            parse_rule(data)

    def test_duplicate_action_ids(self):
        actions = [
            {"id": "a1", "type": "CREATE_TASK", "order": 1},
            {"id": "a1", "type": "SEND_NOTIFICATION", "order": 2},
        ]
        with pytest.raises(InvalidRuleError, match="duplicate action ids"):
            parse_rule(_rule_data(actions=actions))

    def test_duplicate_action_orders(self):
        actions = [
            {"id": "a1", "type": "CREATE_TASK", "order": 1},
            {"id": "a2", "type": "SEND_NOTIFICATION", "order": 1},
        ]
        with pytest.raises(InvalidRuleError, match="duplicate action order"):
            parse_rule(_rule_data(actions=actions))

    def test_action_without_order(self):
        with pytest.raises(InvalidRuleError, match="'order'"):
            parse_rule(_rule_data(actions=[{"id": "a1", "type": "CREATE_TASK"}]))

    def test_negative_delay(self):
        actions = [{"id": "a1", "type": "CREATE_TASK", "order": 1, "delay_minutes": -5}]
        with pytest.raises(InvalidRuleError, match="negative delay"):
            parse_rule(_rule_data(actions=actions))

    def test_error_carries_code_and_rule_id(self):
        with pytest.raises(InvalidRuleError) as exc_info:
            parse_rule(_rule_data(trigger={}))
        assert exc_info.value.code == "INVALID_RULE"
        assert exc_info.value.rule_id == "rule-test"


class TestCatalog:
    def test_default_catalog_loads(self):
        catalog = load_default_catalog()
        assert len(catalog) >= 6
        assert all(r.is_default for r in catalog.rules)

    def test_default_document_rule_shape(self):
        rule = load_default_catalog().get("rule-document-uploaded")
        assert rule is not None
        assert rule.trigger.event == EventType.DOCUMENT_UPLOADED
        assert [a.action_type for a in rule.sorted_actions()] == [
            ActionType.CREATE_TASK,
            ActionType.SEND_NOTIFICATION,
        ]
        assert rule.settings.run_once is True

    def test_for_tenant_rebinds(self):
        rules = load_default_catalog().for_tenant("acme")
        assert {r.tenant_id for r in rules} == {"acme"}

    def test_duplicate_ids_rejected(self):
        rule = parse_rule(_rule_data())
        with pytest.raises(InvalidRuleError):
            RuleCatalog(rules=(rule, rule))

    def test_get_unknown_returns_none(self):
        assert load_default_catalog().get("rule-nope") is None

    def test_load_catalog_file(self, tmp_path):
        path = tmp_path / "rules.yaml"
        path.write_text(
            "rules:\n"
            "  - id: custom\n"
            "    trigger: {event: SYNC_FAILED}\n"
            "    actions:\n"
            "      - {id: a1, type: SEND_SLACK, order: 1, config: {message: down}}\n"
        )
        catalog = load_catalog_file(path)
        assert len(catalog) == 1
        assert catalog.get("custom").trigger.event == EventType.SYNC_FAILED
