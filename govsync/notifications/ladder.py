"""Delivery retry ladder as an explicit state machine.

Only transient failures climb the ladder towards ``failed``. A delivery
leaves it straight for ``dispatched``; a rejected or vanished target leaves
it straight for ``deleted``.
"""

from __future__ import annotations

import enum
from typing import Dict, Tuple

from govsync.core.errors import DeliveryError, DeliveryTargetGone, DeliveryTransient
from govsync.models.notification import DispatchState


class DispatchEvent(str, enum.Enum):
    DELIVERED = "delivered"
    TRANSIENT_FAILURE = "transient_failure"
    REJECTED = "rejected"
    TARGET_GONE = "target_gone"


TERMINAL_STATES = frozenset({DispatchState.DISPATCHED, DispatchState.FAILED, DispatchState.DELETED})
PENDING_STATES = tuple(state for state in DispatchState if state not in TERMINAL_STATES)

# Next rung after a transient failure
_NEXT_RUNG = {
    DispatchState.NOT_DISPATCHED: DispatchState.FIRST_RETRY,
    DispatchState.FIRST_RETRY: DispatchState.SECOND_RETRY,
    DispatchState.SECOND_RETRY: DispatchState.THIRD_RETRY,
    DispatchState.THIRD_RETRY: DispatchState.FAILED,
}


def _build_table() -> Dict[Tuple[DispatchState, DispatchEvent], DispatchState]:
    table: Dict[Tuple[DispatchState, DispatchEvent], DispatchState] = {}
    for state in DispatchState:
        for event in DispatchEvent:
            if state in TERMINAL_STATES:
                target = state
            elif event is DispatchEvent.DELIVERED:
                target = DispatchState.DISPATCHED
            elif event is DispatchEvent.TRANSIENT_FAILURE:
                target = _NEXT_RUNG[state]
            else:
                # REJECTED, TARGET_GONE
                target = DispatchState.DELETED
            table[(state, event)] = target
    return table


TRANSITIONS = _build_table()


def transition(state: DispatchState, event: DispatchEvent) -> DispatchState:
    """Every (state, event) pair is defined; terminal states absorb all events."""
    return TRANSITIONS[(state, event)]


def is_terminal(state: DispatchState) -> bool:
    return state in TERMINAL_STATES


def event_for(error: DeliveryError) -> DispatchEvent:
    if isinstance(error, DeliveryTargetGone):
        return DispatchEvent.TARGET_GONE
    if isinstance(error, DeliveryTransient):
        return DispatchEvent.TRANSIENT_FAILURE
    return DispatchEvent.REJECTED
