"""Resolution of pending duplicate questions.

When the classifier flags a proposed lead or transaction as a possible
duplicate, the proposal is parked in the confirmation store and the user is
asked what to do. Their next short reply is interpreted here.
"""

import re
import time
from dataclasses import dataclass
from enum import Enum
from typing import Optional, Protocol

from sqlalchemy.orm import Session

from assistant.logging_config import get_logger, redact_id
from assistant.schemas.confirmation import Candidate, PendingConfirmation
from assistant.services.confirmation_store import PendingConfirmationStore
from assistant.services.errors import EntityNotFoundError

logger = get_logger("confirmation_flow")

MAX_REPLY_LENGTH = 20
MAX_ROUTABLE_REPLY_LENGTH = 25

CANCELLED_TEXT = "👍 Cancelled. What else can I help you with?"
FAILED_TEXT = "❌ Sorry, something went wrong while handling your choice. Please try your request again."


class ConfirmationState(str, Enum):
    NONE = "none"
    AWAITING_RESOLUTION = "awaiting_resolution"


VALID_TRANSITIONS = {
    ConfirmationState.NONE: [ConfirmationState.AWAITING_RESOLUTION],
    ConfirmationState.AWAITING_RESOLUTION: [ConfirmationState.NONE, ConfirmationState.AWAITING_RESOLUTION],
}


class InvalidTransitionError(Exception):
    def __init__(self, from_state: ConfirmationState, to_state: ConfirmationState):
        self.from_state = from_state
        self.to_state = to_state
        super().__init__(f"Invalid transition: {from_state.value} -> {to_state.value}")


def can_transition(from_state: ConfirmationState, to_state: ConfirmationState) -> bool:
    """Check if transition is valid."""
    return to_state in VALID_TRANSITIONS.get(from_state, [])


def transition(from_state: ConfirmationState, to_state: ConfirmationState) -> ConfirmationState:
    """Perform state transition. Raises InvalidTransitionError if not allowed."""
    if not can_transition(from_state, to_state):
        raise InvalidTransitionError(from_state, to_state)
    return to_state


class ReplyKind(str, Enum):
    CREATE_NEW = "create_new"
    UPDATE_EXISTING = "update_existing"
    SHOW_DETAILS = "show_details"
    CANCEL = "cancel"


@dataclass(frozen=True)
class ConfirmationReply:
    kind: ReplyKind
    index: int = 1  # 1-based position in the candidate list


_CREATE_NEW = re.compile(r"^(yes|y|confirm|create new|new lead|new transaction|add new)$")
_UPDATE = re.compile(r"^(update|use existing)(?:\s+(\d+))?$")
_BARE_INDEX = re.compile(r"^(\d+)$")
_SHOW = re.compile(r"^(show|details|info)\s*(\d+)?$")
_CANCEL = re.compile(r"^(no|n|cancel|abort)$")

# Whole-message match over the same grammar as parse_confirmation_reply, any domain.
_CONFIRMATION_REPLY = re.compile(
    r"^(yes|y|confirm|create new|new lead|new transaction|add new|no|n|cancel|abort"
    r"|(update|use existing)( \d+)?|\d+|(show|details|info) ?\d*)$"
)


def parse_confirmation_reply(text: Optional[str], domain: str) -> Optional[ConfirmationReply]:
    """Interpret a reply to a duplicate question, or None when it is not one."""
    normalized = re.sub(r"\s+", " ", (text or "").strip().lower())
    if not normalized or len(normalized) > MAX_REPLY_LENGTH:
        return None

    if _CREATE_NEW.match(normalized):
        return ConfirmationReply(ReplyKind.CREATE_NEW)

    match = _UPDATE.match(normalized)
    if match:
        return ConfirmationReply(ReplyKind.UPDATE_EXISTING, int(match.group(2) or 1))

    if domain == "sales":
        match = _BARE_INDEX.match(normalized)
        if match:
            return ConfirmationReply(ReplyKind.UPDATE_EXISTING, int(match.group(1)))

    match = _SHOW.match(normalized)
    if match:
        return ConfirmationReply(ReplyKind.SHOW_DETAILS, int(match.group(2) or 1))

    if _CANCEL.match(normalized):
        return ConfirmationReply(ReplyKind.CANCEL)

    return None


def looks_like_confirmation(text: Optional[str]) -> bool:
    """Cheap pre-check used before routing a reply straight to a domain service.

    Only a message that is nothing but a confirmation reply qualifies; "no spend
    today" or "1 coffee R30" go through normal processing.
    """
    normalized = re.sub(r"\s+", " ", (text or "").strip().lower())
    if not normalized or len(normalized) > MAX_ROUTABLE_REPLY_LENGTH:
        return False
    return bool(_CONFIRMATION_REPLY.match(normalized))


class ConfirmationHandler(Protocol):
    entity_noun: str
    show_hint: str

    def create_from_pending(self, db: Session, user_id, pending: PendingConfirmation) -> str: ...

    def merge_into_candidate(
        self, db: Session, user_id, pending: PendingConfirmation, candidate: Candidate
    ) -> str: ...

    def describe_candidate(self, db: Session, user_id, candidate: Candidate) -> str: ...


class ConfirmationFlow:
    """Drives one domain's pending confirmation from question to resolution.

    The state lives in the store: a stored question means AWAITING_RESOLUTION.
    Terminal replies claim the question (AWAITING_RESOLUTION -> NONE) before
    acting, so a question resolved by an earlier reply is never acted on twice.
    """

    def __init__(self, store: PendingConfirmationStore, handler: ConfirmationHandler, domain: str):
        self.store = store
        self.handler = handler
        self.domain = domain

    def current_state(self, user_id) -> ConfirmationState:
        if self.store.exists(user_id, self.domain):
            return ConfirmationState.AWAITING_RESOLUTION
        return ConfirmationState.NONE

    def begin(self, user_id, pending: PendingConfirmation) -> bool:
        """Park a question, replacing any earlier one. False when it could not be stored."""
        transition(self.current_state(user_id), ConfirmationState.AWAITING_RESOLUTION)
        return self.store.store(user_id, self.domain, pending)

    def handle(self, db: Session, user_id, text: str) -> Optional[str]:
        """Resolve a pending question. Returns None when the text is not a reply to one."""
        reply = parse_confirmation_reply(text, self.domain)
        if reply is None:
            return None

        pending = self.store.get(user_id, self.domain)
        if pending is None:
            return None

        log = {"user_id": redact_id(user_id), "index": reply.index}
        logger.info(f"Resolving pending {self.domain} confirmation: {reply.kind.value}", extra={"context": log})

        if reply.kind == ReplyKind.SHOW_DETAILS:
            return self._show(db, user_id, pending, reply.index)

        try:
            self._claim(user_id)
        except InvalidTransitionError:
            logger.info(f"Pending {self.domain} confirmation already resolved", extra={"context": log})
            return None

        try:
            if reply.kind == ReplyKind.CANCEL:
                return CANCELLED_TEXT
            if reply.kind == ReplyKind.CREATE_NEW:
                return self.handler.create_from_pending(db, user_id, pending)

            candidate = self._candidate_at(pending, reply.index)
            if candidate is None:
                return self._not_found_text(reply.index)
            try:
                return self.handler.merge_into_candidate(db, user_id, pending, candidate)
            except EntityNotFoundError:
                return self._not_found_text(reply.index)
        except Exception as exc:
            logger.error(f"Pending {self.domain} confirmation failed: {exc}", exc_info=exc, extra={"context": log})
            return FAILED_TEXT

    def _show(self, db: Session, user_id, pending: PendingConfirmation, index: int) -> str:
        # the question stays open whatever happens here
        candidate = self._candidate_at(pending, index)
        if candidate is None:
            return self._not_found_text(index)
        try:
            details = self.handler.describe_candidate(db, user_id, candidate)
        except EntityNotFoundError:
            return self._not_found_text(index)
        except Exception as exc:
            logger.error(
                f"Showing {self.domain} candidate failed: {exc}",
                exc_info=exc,
                extra={"context": {"user_id": redact_id(user_id)}},
            )
            self.store.clear(user_id, self.domain)
            return FAILED_TEXT
        return f"{details}\n\n{self.handler.show_hint}"

    def _claim(self, user_id) -> None:
        transition(self.current_state(user_id), ConfirmationState.NONE)
        self.store.clear(user_id, self.domain)

    @staticmethod
    def _candidate_at(pending: PendingConfirmation, index: int) -> Optional[Candidate]:
        if 1 <= index <= len(pending.candidates):
            return pending.candidates[index - 1]
        return None

    def _not_found_text(self, index: int) -> str:
        return f"❌ I couldn't find {self.handler.entity_noun} #{index}. Please try your request again."


def new_pending(kind: str, proposed_entity: dict, verdict, candidates, clock=time.time) -> PendingConfirmation:
    return PendingConfirmation(
        kind=kind,
        proposed_entity=proposed_entity,
        verdict=verdict,
        candidates=list(candidates)[:3],
        created_at=int(clock() * 1000),
    )
