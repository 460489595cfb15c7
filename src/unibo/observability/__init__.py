"""
unibo.observability

Logging utilities.

Responsibilities:
- Structured logging configuration (structlog).
- Per-operation log context binding for DAOs.
"""

# Package marker.
