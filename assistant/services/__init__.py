from assistant.services.confirmation_flow import (
    ConfirmationFlow,
    ConfirmationState,
    InvalidTransitionError,
    can_transition,
    parse_confirmation_reply,
    transition,
)
from assistant.services.result import ErrorCode, Result

__all__ = [
    "ConfirmationFlow",
    "ConfirmationState",
    "InvalidTransitionError",
    "can_transition",
    "transition",
    "parse_confirmation_reply",
    "ErrorCode",
    "Result",
]
