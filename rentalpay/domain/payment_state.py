"""Payment attempt state machine."""

from rentalpay.core.exceptions import InvalidTransitionError

ATTEMPT_TRANSITIONS = {
    "pending": {"succeeded", "failed", "requires_action"},
    "succeeded": set(),
    "failed": set(),
    "requires_action": set(),
}


def assert_attempt_transition(current: str, target: str) -> None:
    allowed = ATTEMPT_TRANSITIONS.get(current, set())
    if target not in allowed:
        raise InvalidTransitionError("payment attempt", current, target)
