"""
TargetActionHandler protocol and HandlerRegistry.

Contract:
    ``TargetActionHandler`` applies one bulk action to ONE target id.  The
    orchestrator treats it as opaque beyond success (return) or failure
    (raise).  ``HandlerRegistry`` stores one handler per BulkActionType.
    ``default_handler_registry()`` returns a fresh, empty registry.

Architecture:
    automation_batch/handlers.  Imports from automation_batch.domain and
    automation_kernel.exceptions only.

Non-goals:
    - Handlers do NOT manage transactions or progress; the orchestrator does.
    - Handlers may run on worker threads (bulk_max_workers > 1) and must not
      share the orchestrator's Session.
"""

from __future__ import annotations

from typing import Any, Callable, Protocol, runtime_checkable

from automation_kernel.exceptions import TargetHandlerNotRegisteredError

from automation_batch.domain.types import BulkActionType, BulkOperation


@runtime_checkable
class TargetActionHandler(Protocol):
    """Applies one BulkActionType to a single target.

    Contract:
        - ``action_type``: the BulkActionType this handler serves.
        - ``execute()``: raise on failure; the return value is ignored.
    """

    @property
    def action_type(self) -> BulkActionType: ...

    def execute(
        self,
        target_id: str,
        action: dict[str, Any],
        operation: BulkOperation,
    ) -> Any: ...


class FunctionTargetHandler:
    """Adapts a plain callable ``fn(target_id, action, operation)``."""

    def __init__(
        self,
        action_type: BulkActionType,
        fn: Callable[[str, dict[str, Any], BulkOperation], Any],
    ):
        self._action_type = BulkActionType(action_type)
        self._fn = fn

    @property
    def action_type(self) -> BulkActionType:
        return self._action_type

    def execute(self, target_id: str, action: dict[str, Any], operation: BulkOperation) -> Any:
        return self._fn(target_id, action, operation)


class HandlerRegistry:
    """Registry mapping BulkActionType to TargetActionHandler.

    Contract:
        - ``register()`` adds a handler; raises ValueError on duplicate.
        - ``get()`` raises TargetHandlerNotRegisteredError if missing.
    """

    def __init__(self) -> None:
        self._handlers: dict[BulkActionType, TargetActionHandler] = {}

    def register(self, handler: TargetActionHandler) -> None:
        if handler.action_type in self._handlers:
            raise ValueError(
                f"Handler for '{handler.action_type.value}' is already registered"
            )
        self._handlers[handler.action_type] = handler

    def get(self, action_type: BulkActionType | str) -> TargetActionHandler:
        try:
            return self._handlers[BulkActionType(action_type)]
        except (KeyError, ValueError):
            raise TargetHandlerNotRegisteredError(
                str(getattr(action_type, "value", action_type)),
                [t.value for t in self.list_types()],
            ) from None

    def list_types(self) -> tuple[BulkActionType, ...]:
        return tuple(sorted(self._handlers, key=lambda t: t.value))

    def __len__(self) -> int:
        return len(self._handlers)

    def __contains__(self, action_type: BulkActionType | str) -> bool:
        try:
            return BulkActionType(action_type) in self._handlers
        except ValueError:
            return False


def default_handler_registry() -> HandlerRegistry:
    """Create and return a fresh, empty HandlerRegistry."""
    return HandlerRegistry()
