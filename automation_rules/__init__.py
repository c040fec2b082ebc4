"""
automation_rules -- Event-driven automation rule engine.

Producers call ``AutomationEngine.emit()``; matching rules run their ordered
action pipelines and every run is recorded as an AutomationExecution.
"""
