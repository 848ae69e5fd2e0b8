"""Connection state machine.

IDLE ──[connect]──→ CONNECTING ──[success]──→ OPEN ──[message]──┐
                      ↑    │                   │  ↑─────────────┘
                      │ [failure]          [dropped]
                      │    v                   │
                   [timer] RETRY ←─────────────┘
                      │    │  │
                      │ [schedule] [exhausted]
                      │    v         v
                   DELAYING       FAILED ──[reset]──→ IDLE
                                    │
                                    └──[connect]──→ CONNECTING

[close] leads from every non-idle state back to IDLE.
"""

from __future__ import annotations

import enum

import structlog

log = structlog.get_logger()


class ConnectionState(enum.Enum):
    IDLE = "idle"
    CONNECTING = "connecting"
    OPEN = "open"
    RETRY = "retry"
    DELAYING = "delaying"
    FAILED = "failed"


class Trigger(enum.Enum):
    CONNECT = "connect"
    SUCCESS = "success"
    FAILURE = "failure"
    MESSAGE = "message"
    DROPPED = "dropped"
    SCHEDULE = "schedule"
    EXHAUSTED = "exhausted"
    TIMER = "timer"
    RESET = "reset"
    CLOSE = "close"


S = ConnectionState

TRANSITIONS: dict[tuple[ConnectionState, Trigger], ConnectionState] = {
    (S.IDLE, Trigger.CONNECT): S.CONNECTING,
    (S.CONNECTING, Trigger.SUCCESS): S.OPEN,
    (S.CONNECTING, Trigger.FAILURE): S.RETRY,
    (S.OPEN, Trigger.MESSAGE): S.OPEN,
    (S.OPEN, Trigger.DROPPED): S.RETRY,
    (S.RETRY, Trigger.EXHAUSTED): S.FAILED,
    (S.RETRY, Trigger.SCHEDULE): S.DELAYING,
    (S.DELAYING, Trigger.TIMER): S.CONNECTING,
    (S.FAILED, Trigger.RESET): S.IDLE,
    (S.FAILED, Trigger.CONNECT): S.CONNECTING,
    # Explicit close from any live state
    (S.CONNECTING, Trigger.CLOSE): S.IDLE,
    (S.OPEN, Trigger.CLOSE): S.IDLE,
    (S.RETRY, Trigger.CLOSE): S.IDLE,
    (S.DELAYING, Trigger.CLOSE): S.IDLE,
    (S.FAILED, Trigger.CLOSE): S.IDLE,
}


class InvalidTransition(Exception):
    """Raised when a trigger has no transition from the current state."""

    def __init__(self, state: ConnectionState, trigger: Trigger) -> None:
        self.state = state
        self.trigger = trigger
        super().__init__(f"Invalid transition: {state.value} --{trigger.value}-->")


def can_fire(state: ConnectionState, trigger: Trigger) -> bool:
    return (state, trigger) in TRANSITIONS


def next_state(state: ConnectionState, trigger: Trigger) -> ConnectionState:
    """Look up the target state, raising InvalidTransition if undefined."""
    try:
        return TRANSITIONS[(state, trigger)]
    except KeyError:
        raise InvalidTransition(state, trigger) from None


def transition(
    current: ConnectionState,
    trigger: Trigger,
    conn_id: str,
) -> ConnectionState:
    """Execute a validated transition, logging the change."""
    target = next_state(current, trigger)
    log.info(
        "state_transition",
        conn_id=conn_id,
        from_state=current.value,
        to_state=target.value,
        trigger=trigger.value,
    )
    return target
