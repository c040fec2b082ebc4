"""
automation_batch -- Bulk operations, recurring jobs and templates.

``AutomationPlatform.from_session()`` is the composition root that wires
these services together with the rule engine of ``automation_rules``.
"""
