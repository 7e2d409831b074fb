"""Unit tests for dispatch status transition guardrails."""

import pytest

from pushrelay.common.state_machine import FAILED, PENDING, SENT, validate_transition


def test_valid_transitions():
    """Pending may move to either terminal status."""

    validate_transition(PENDING, SENT)
    validate_transition(PENDING, FAILED)


@pytest.mark.parametrize(
    ("current", "new"),
    [(SENT, FAILED), (FAILED, SENT), (SENT, PENDING), (FAILED, PENDING), (PENDING, PENDING)],
)
def test_invalid_transition(current, new):
    """Terminal records never move again, and nothing returns to pending."""

    with pytest.raises(ValueError):
        validate_transition(current, new)
