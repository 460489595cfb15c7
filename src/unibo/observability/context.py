"""
unibo.observability.context

Per-operation logging context.

Responsibilities:
- Bind DAO operation metadata into structlog contextvars for the duration of a call.
"""

from __future__ import annotations

from collections.abc import Iterator
from contextlib import contextmanager
from typing import Any

import structlog


@contextmanager
def operation_context(**fields: Any) -> Iterator[None]:
    """
    Bind `fields` (e.g. dao, table, op) for every log line emitted inside the block.
    Previous values are restored on exit, so nested operations (save -> get) compose.
    """

    with structlog.contextvars.bound_contextvars(**fields):
        yield


# --- Module Notes -----------------------------------------------------------
# contextvars are per-thread, so concurrent DAO calls from worker threads never see
# each other's context.
