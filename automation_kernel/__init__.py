"""
Automation Kernel -- shared infrastructure for the automation platform.

Provides the pieces every other package builds on:
- Injectable clock (no direct ``datetime.now()`` in services)
- SQLAlchemy declarative base and session helpers
- Typed exception hierarchy with machine-readable codes
- Structured JSON logging with request-scoped context
- Settings loaded from YAML and environment overrides
"""

__version__ = "0.1.0"
