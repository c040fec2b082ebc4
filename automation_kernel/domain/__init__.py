"""automation_kernel.domain -- Pure kernel-level abstractions (ZERO I/O)."""

from automation_kernel.domain.clock import (
    Clock,
    DeterministicClock,
    SystemClock,
)

__all__ = [
    "Clock",
    "DeterministicClock",
    "SystemClock",
]
