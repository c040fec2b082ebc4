"""
ActionHandler protocol, ActionContext, and ActionRegistry.

Contract:
    ``ActionHandler`` defines the interface every action type implements.
    ``ActionRegistry`` stores handlers keyed by ``ActionType``.  The
    ActionExecutor looks handlers up here; it never switches on the action
    type itself.

Architecture:
    automation_rules/actions.  Imports from automation_rules.domain and
    automation_kernel only.

Invariants enforced:
    - One handler per action type.
    - Handlers receive a config whose string values are already
      interpolated against the event data.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Protocol, runtime_checkable
from uuid import UUID

from sqlalchemy.orm import Session

from automation_kernel.domain.clock import Clock
from automation_kernel.exceptions import ActionNotRegisteredError, InvalidActionConfigError
from automation_kernel.settings import AutomationSettings

from automation_rules.domain.types import ActionType, AutomationEvent, AutomationRule

if TYPE_CHECKING:
    from automation_rules.services.recorder import ExecutionRecorder


# =============================================================================
# Context
# =============================================================================


@dataclass(frozen=True)
class ActionContext:
    """Everything a handler may need besides its config.

    ``execution_id`` is None when the action is revived from a durable timer
    after its execution has already completed.
    """

    session: Session
    clock: Clock
    settings: AutomationSettings
    event: AutomationEvent
    rule: AutomationRule
    recorder: ExecutionRecorder
    execution_id: UUID | None = None
    action_id: str = ""

    @property
    def tenant_id(self) -> str:
        return self.event.tenant_id

    @property
    def company_id(self) -> str:
        return self.event.company_id


def require(config: dict[str, Any], key: str, action_type: ActionType) -> Any:
    """Fetch a required config value or raise InvalidActionConfigError."""
    value = config.get(key)
    if value is None or value == "":
        raise InvalidActionConfigError(action_type.value, key, "required")
    return value


# =============================================================================
# ActionHandler Protocol
# =============================================================================


@runtime_checkable
class ActionHandler(Protocol):
    """Protocol for one action type.

    Contract:
        - ``action_type``: key registered in ActionRegistry.
        - ``execute()``: perform the side effect and return a JSON-able
          result; raise (any exception) on failure.

    Non-goals:
        - Does NOT retry -- the ActionExecutor owns the retry loop.
        - Does NOT commit -- the caller owns the transaction.
    """

    @property
    def action_type(self) -> ActionType: ...

    def execute(self, config: dict[str, Any], context: ActionContext) -> Any: ...


# =============================================================================
# ActionRegistry
# =============================================================================


class ActionRegistry:
    """Registry mapping ActionType to ActionHandler implementations.

    Contract:
        - ``register()`` adds a handler; raises ValueError on duplicate.
        - ``get()`` raises ActionNotRegisteredError if missing.
        - ``replace()`` swaps an existing handler (tests, tenant wiring).
    """

    def __init__(self) -> None:
        self._handlers: dict[ActionType, ActionHandler] = {}

    def register(self, handler: ActionHandler) -> None:
        """Register a handler.

        Raises:
            ValueError: If a handler for the same action type is registered.
        """
        if handler.action_type in self._handlers:
            raise ValueError(
                f"Action type '{handler.action_type.value}' is already registered"
            )
        self._handlers[handler.action_type] = handler

    def replace(self, handler: ActionHandler) -> None:
        self._handlers[handler.action_type] = handler

    def get(self, action_type: ActionType) -> ActionHandler:
        try:
            return self._handlers[action_type]
        except KeyError:
            raise ActionNotRegisteredError(
                ActionType(action_type).value,
                [t.value for t in self._handlers],
            ) from None

    def list_types(self) -> tuple[ActionType, ...]:
        return tuple(sorted(self._handlers, key=lambda t: t.value))

    def __len__(self) -> int:
        return len(self._handlers)

    def __contains__(self, action_type: ActionType) -> bool:
        return action_type in self._handlers
