"""Finalizer-based deletion protocol.

The operator registers a finalizer token on every record before it creates
anything on the tracker. While the token is present the store refuses to
erase the record, which guarantees a close attempt for every issue the
operator ever created, even across process restarts.

State machine (derived purely from persisted fields, never cached)::

    NO_FINALIZER --register--> REGISTERED --delete requested--> CLOSING
    CLOSING --close ok (or issue absent) + token removed--> RELEASED

Failures while CLOSING leave the token in place; RELEASED is terminal.
"""

from __future__ import annotations

from enum import Enum

from .models import DeclaredRecord

FINALIZER = "example.training.redhat.com/finalizer"


class FinalizerState(str, Enum):
    NO_FINALIZER = "NoFinalizer"
    REGISTERED = "Registered"
    CLOSING = "Closing"
    RELEASED = "Released"


def has_finalizer(record: DeclaredRecord, token: str = FINALIZER) -> bool:
    return token in record.metadata.finalizers


def add_finalizer(record: DeclaredRecord, token: str = FINALIZER) -> bool:
    """Append ``token`` in place; return True when the list changed."""
    if has_finalizer(record, token):
        return False
    record.metadata.finalizers.append(token)
    return True


def remove_finalizer(record: DeclaredRecord, token: str = FINALIZER) -> bool:
    """Drop every occurrence of ``token`` in place; return True when the list changed."""
    if not has_finalizer(record, token):
        return False
    record.metadata.finalizers = [f for f in record.metadata.finalizers if f != token]
    return True


def finalizer_state(record: DeclaredRecord, token: str = FINALIZER) -> FinalizerState:
    present = has_finalizer(record, token)
    if not record.deletion_requested:
        return FinalizerState.REGISTERED if present else FinalizerState.NO_FINALIZER
    return FinalizerState.CLOSING if present else FinalizerState.RELEASED


__all__ = [
    "FINALIZER",
    "FinalizerState",
    "has_finalizer",
    "add_finalizer",
    "remove_finalizer",
    "finalizer_state",
]
