"""
Typed Exception Hierarchy for the Automation Platform.

Every error has a typed class (catch by type, not by message), a ``code``
class attribute (machine-readable, API-safe) and structured attributes
carrying the data needed to act on it.

    AutomationError (base)
    |
    +-- RuleError
    |   +-- RuleNotFoundError
    |   +-- InvalidRuleError
    |
    +-- ActionError
    |   +-- ActionNotRegisteredError
    |   +-- InvalidActionConfigError
    |   +-- ChatOpsDeliveryError
    |   +-- WebhookDeliveryError
    |
    +-- BookkeepingError
    |   +-- RuleBookkeepingError
    |
    +-- BulkOperationError
    |   +-- BulkOperationNotFoundError
    |   +-- BulkOperationStateError
    |   +-- ApprovalRequiredError
    |   +-- TargetHandlerNotRegisteredError
    |
    +-- ScheduleError
    |   +-- InvalidScheduleError
    |   +-- RecurringJobNotFoundError
    |
    +-- TemplateError
    |   +-- TemplateNotFoundError
    |   +-- MissingTemplateVariableError
    |   +-- StandardCommentNotFoundError
    |
    +-- ConfigurationError
        +-- InvalidSettingsError

Propagation rules:
    - Condition evaluation never raises (mismatches evaluate to False).
    - ActionError subclasses are caught per action by the ActionExecutor and
      recorded on the execution.
    - Per-target failures inside a bulk operation are caught and accumulated.
    - BookkeepingError is logged and swallowed by the engine.
    - ScheduleError is raised at recurring-job creation time.
"""


class AutomationError(Exception):
    """
    Base exception for all automation platform errors.

    All subclasses must have a ``code`` class attribute.
    """

    code: str = "AUTOMATION_ERROR"


# =============================================================================
# Rules
# =============================================================================


class RuleError(AutomationError):
    """Base exception for rule configuration errors."""

    code: str = "RULE_ERROR"


class RuleNotFoundError(RuleError):
    """Rule with given id does not exist for the tenant."""

    code: str = "RULE_NOT_FOUND"

    def __init__(self, tenant_id: str, rule_id: str):
        self.tenant_id = tenant_id
        self.rule_id = rule_id
        super().__init__(f"Rule not found: {rule_id} (tenant {tenant_id})")


class InvalidRuleError(RuleError):
    """
    Rule definition violates a structural constraint.

    Raised for duplicate action ids, duplicate action orders, unknown event
    or action types, and malformed conditions.
    """

    code: str = "INVALID_RULE"

    def __init__(self, rule_id: str, reason: str):
        self.rule_id = rule_id
        self.reason = reason
        super().__init__(f"Invalid rule {rule_id}: {reason}")


# =============================================================================
# Actions
# =============================================================================


class ActionError(AutomationError):
    """Base exception for action dispatch failures."""

    code: str = "ACTION_ERROR"


class ActionNotRegisteredError(ActionError):
    """No handler is registered for the action type."""

    code: str = "ACTION_NOT_REGISTERED"

    def __init__(self, action_type: str, available: list[str]):
        self.action_type = action_type
        self.available = available
        super().__init__(
            f"No handler registered for action type '{action_type}'. "
            f"Available: {', '.join(sorted(available)) or 'none'}"
        )


class InvalidActionConfigError(ActionError):
    """Action config is missing a required key or has a wrong value type."""

    code: str = "INVALID_ACTION_CONFIG"

    def __init__(self, action_type: str, key: str, reason: str):
        self.action_type = action_type
        self.key = key
        self.reason = reason
        super().__init__(f"Invalid config for {action_type}.{key}: {reason}")


class ChatOpsDeliveryError(ActionError):
    """Chat-ops collaborator reported an unsuccessful delivery."""

    code: str = "CHATOPS_DELIVERY_FAILED"

    def __init__(self, channel: str, errors: list[str]):
        self.channel = channel
        self.errors = errors
        detail = "; ".join(errors) if errors else "delivery unsuccessful"
        super().__init__(f"Chat-ops delivery to {channel} failed: {detail}")


class WebhookDeliveryError(ActionError):
    """Webhook request could not be sent (transport level failure)."""

    code: str = "WEBHOOK_DELIVERY_FAILED"

    def __init__(self, url: str, reason: str):
        self.url = url
        self.reason = reason
        super().__init__(f"Webhook call to {url} failed: {reason}")


# =============================================================================
# Bookkeeping
# =============================================================================


class BookkeepingError(AutomationError):
    """Base exception for best-effort bookkeeping writes."""

    code: str = "BOOKKEEPING_ERROR"


class RuleBookkeepingError(BookkeepingError):
    """Updating a rule's last-executed timestamp / counter failed."""

    code: str = "RULE_BOOKKEEPING_FAILED"

    def __init__(self, tenant_id: str, rule_id: str, reason: str):
        self.tenant_id = tenant_id
        self.rule_id = rule_id
        self.reason = reason
        super().__init__(
            f"Could not update bookkeeping for rule {rule_id} "
            f"(tenant {tenant_id}): {reason}"
        )


# =============================================================================
# Bulk operations
# =============================================================================


class BulkOperationError(AutomationError):
    """Base exception for bulk operation errors."""

    code: str = "BULK_OPERATION_ERROR"


class BulkOperationNotFoundError(BulkOperationError):
    """Bulk operation does not exist for the tenant."""

    code: str = "BULK_OPERATION_NOT_FOUND"

    def __init__(self, operation_id: str):
        self.operation_id = operation_id
        super().__init__(f"Bulk operation not found: {operation_id}")


class BulkOperationStateError(BulkOperationError):
    """Requested transition is not allowed from the current status."""

    code: str = "BULK_OPERATION_INVALID_STATE"

    def __init__(self, operation_id: str, current_status: str, requested: str):
        self.operation_id = operation_id
        self.current_status = current_status
        self.requested = requested
        super().__init__(
            f"Cannot {requested} bulk operation {operation_id} "
            f"in status {current_status}"
        )


class ApprovalRequiredError(BulkOperationError):
    """Operation is awaiting approval and cannot be executed yet."""

    code: str = "BULK_APPROVAL_REQUIRED"

    def __init__(self, operation_id: str):
        self.operation_id = operation_id
        super().__init__(
            f"Bulk operation {operation_id} requires approval before execution"
        )


class TargetHandlerNotRegisteredError(BulkOperationError):
    """No target handler is registered for the bulk action type."""

    code: str = "TARGET_HANDLER_NOT_REGISTERED"

    def __init__(self, action_type: str, available: list[str]):
        self.action_type = action_type
        self.available = available
        super().__init__(
            f"No target handler registered for '{action_type}'. "
            f"Available: {', '.join(sorted(available)) or 'none'}"
        )


# =============================================================================
# Scheduling
# =============================================================================


class ScheduleError(AutomationError):
    """Base exception for recurring schedule errors."""

    code: str = "SCHEDULE_ERROR"


class InvalidScheduleError(ScheduleError):
    """Schedule definition is missing required fields or out of range."""

    code: str = "INVALID_SCHEDULE"

    def __init__(self, field: str, reason: str):
        self.field = field
        self.reason = reason
        super().__init__(f"Invalid schedule field '{field}': {reason}")


class RecurringJobNotFoundError(ScheduleError):
    """Recurring job does not exist."""

    code: str = "RECURRING_JOB_NOT_FOUND"

    def __init__(self, job_id: str):
        self.job_id = job_id
        super().__init__(f"Recurring job not found: {job_id}")


# =============================================================================
# Templates
# =============================================================================


class TemplateError(AutomationError):
    """Base exception for bulk template errors."""

    code: str = "TEMPLATE_ERROR"


class TemplateNotFoundError(TemplateError):
    """Template does not exist in the default catalog or the tenant store."""

    code: str = "TEMPLATE_NOT_FOUND"

    def __init__(self, tenant_id: str, template_id: str):
        self.tenant_id = tenant_id
        self.template_id = template_id
        super().__init__(f"Template not found: {template_id} (tenant {tenant_id})")


class MissingTemplateVariableError(TemplateError):
    """A required template variable was neither provided nor defaulted."""

    code: str = "MISSING_TEMPLATE_VARIABLE"

    def __init__(self, template_id: str, variable: str):
        self.template_id = template_id
        self.variable = variable
        super().__init__(
            f"Required variable '{variable}' not provided for template {template_id}"
        )


class StandardCommentNotFoundError(TemplateError):
    """Standard comment does not exist in the default catalog or the tenant store."""

    code: str = "STANDARD_COMMENT_NOT_FOUND"

    def __init__(self, tenant_id: str, comment_id: str):
        self.tenant_id = tenant_id
        self.comment_id = comment_id
        super().__init__(f"Standard comment not found: {comment_id} (tenant {tenant_id})")


# =============================================================================
# Configuration
# =============================================================================


class ConfigurationError(AutomationError):
    """Base exception for configuration loading errors."""

    code: str = "CONFIGURATION_ERROR"


class InvalidSettingsError(ConfigurationError):
    """Settings file or environment override is not valid."""

    code: str = "INVALID_SETTINGS"

    def __init__(self, key: str, reason: str):
        self.key = key
        self.reason = reason
        super().__init__(f"Invalid setting '{key}': {reason}")
