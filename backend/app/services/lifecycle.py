"""Build status lifecycle guard."""
from app.constants import ALLOWED_BUILD_TRANSITIONS
from app.utils.exceptions import InvalidTransitionError


def can_transition(from_status: str, to_status: str) -> bool:
    return to_status in ALLOWED_BUILD_TRANSITIONS.get(from_status, set())


def assert_build_transition(*, from_status: str, to_status: str) -> None:
    """
    Guards build status transitions.
    Single source of truth for runtime status changes.
    """
    if not can_transition(from_status, to_status):
        raise InvalidTransitionError(
            f"Illegal build transition: {from_status} -> {to_status}"
        )
