"""Per-type target action handlers for bulk operations."""

from automation_batch.handlers.base import (
    FunctionTargetHandler,
    HandlerRegistry,
    TargetActionHandler,
    default_handler_registry,
)

__all__ = [
    "FunctionTargetHandler",
    "HandlerRegistry",
    "TargetActionHandler",
    "default_handler_registry",
]
