"""Dispatch record status transitions.

A record starts `PENDING` and moves to exactly one terminal status. There are
no retries, so nothing ever returns to `PENDING`.
"""

PENDING = "PENDING"
SENT = "SENT"
FAILED = "FAILED"

ALLOWED_TRANSITIONS: dict[str, set[str]] = {
    PENDING: {SENT, FAILED},
    SENT: set(),
    FAILED: set(),
}


def validate_transition(current: str, new: str) -> None:
    """Raise when a transition is not allowed by the state machine."""

    if new not in ALLOWED_TRANSITIONS.get(current, set()):
        raise ValueError(f"Invalid transition: {current} -> {new}")
