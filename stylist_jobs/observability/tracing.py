"""Helpers for generation trace identifiers in logs."""

from __future__ import annotations

from collections.abc import Iterator
from contextlib import contextmanager
from uuid import uuid4

from stylist_jobs.config.logging_config import bind_context, unbind_context

TRACE_ID_KEY = "trace_id"


def new_trace_id() -> str:
    """Return a fresh client-side correlation id."""

    return uuid4().hex


@contextmanager
def trace_scope(existing_id: str | None = None) -> Iterator[str]:
    """Bind a trace identifier for the lifetime of the context."""

    trace_id = existing_id or new_trace_id()
    bind_context(**{TRACE_ID_KEY: trace_id})
    try:
        yield trace_id
    finally:
        unbind_context(TRACE_ID_KEY)


__all__ = ["TRACE_ID_KEY", "new_trace_id", "trace_scope"]
