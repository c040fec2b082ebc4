"""
Idempotency key generation utilities.

A recurring job fired twice for the same slot (overlapping scheduler ticks,
two scheduler processes) must materialize a single bulk operation.  The key
is stored with a UNIQUE constraint on the bulk operation row.
"""

from datetime import datetime
from uuid import UUID


def recurring_run_key(job_id: UUID | str, fire_at: datetime) -> str:
    """
    Key for one firing of a recurring job, minute resolution.

    Example:
        >>> recurring_run_key("4f1c...", datetime(2026, 3, 4, 8, 0, tzinfo=timezone.utc))
        "recurring:4f1c...:20260304-0800"
    """
    return f"recurring:{job_id}:{fire_at.strftime('%Y%m%d-%H%M')}"
