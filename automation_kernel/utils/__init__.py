"""Utility modules for the automation kernel."""

from automation_kernel.utils.idempotency import recurring_run_key
from automation_kernel.utils.serialization import to_jsonable

__all__ = [
    "recurring_run_key",
    "to_jsonable",
]
