"""Correlation id bound to the current execution context.

A pipeline stage sets the id once and every audit call made afterwards on the
same thread or asyncio task picks it up through ``current_correlation_id()``.
The binding lives in a ``ContextVar``: threads and tasks never observe each
other's value. Pooled workers keep their context between jobs, so the id must
be cleared when the unit of work ends; ``correlation_scope`` does that.
"""

import uuid
from contextlib import contextmanager
from contextvars import ContextVar
from typing import Iterator, Optional

_correlation_id: ContextVar[Optional[uuid.UUID]] = ContextVar("pipeaudit_correlation_id", default=None)


def generate_correlation_id() -> uuid.UUID:
    """Return a fresh random id. Does not bind it."""
    return uuid.uuid4()


def set_correlation_id(correlation_id: Optional[uuid.UUID]) -> None:
    """Bind ``correlation_id`` for the calling context; ``None`` clears it."""
    _correlation_id.set(correlation_id)


def current_correlation_id() -> Optional[uuid.UUID]:
    return _correlation_id.get()


def has_correlation_id() -> bool:
    return _correlation_id.get() is not None


def clear_correlation_id() -> None:
    _correlation_id.set(None)


@contextmanager
def correlation_scope(correlation_id: Optional[uuid.UUID] = None) -> Iterator[uuid.UUID]:
    """
    Bind a correlation id for the duration of a ``with`` block.

    A new id is generated when none is given. The previous binding (or the
    absence of one) is restored on exit, even if the block raises.

    Usage:
        with correlation_scope() as run_id:
            service.log_file_transfer(...)
    """
    if correlation_id is None:
        correlation_id = generate_correlation_id()
    token = _correlation_id.set(correlation_id)
    try:
        yield correlation_id
    finally:
        _correlation_id.reset(token)
