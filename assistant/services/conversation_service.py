from typing import Optional

from sqlalchemy.orm import Session

from assistant.logging_config import get_logger, redact_id
from assistant.schemas.intents import RouterReply, SetupAction, ToolCall
from assistant.services import user_service
from assistant.services.confirmation_flow import looks_like_confirmation
from assistant.services.error_messages import log_and_format
from assistant.services.finance_service import FinanceService
from assistant.services.prompts import conversation_prompt
from assistant.services.sales_service import SalesService

logger = get_logger("conversation_service")

FALLBACK_RESPONSE = "I'm here to help! What can I do for you?"
TOOL_HISTORY_MESSAGES = 8
MIN_SETUP_CONFIDENCE = 0.7
MIN_NOTIFICATION_CONFIDENCE = 0.8
DEFAULT_MORNING_TIME = "08:00"
DEFAULT_EVENING_TIME = "18:00"

NOTIFICATION_ACTIONS = {
    "enable_both": {
        "enable_morning": True,
        "enable_evening": True,
        "morning_time": DEFAULT_MORNING_TIME,
        "evening_time": DEFAULT_EVENING_TIME,
    },
    "disable_both": {"enable_morning": False, "enable_evening": False},
    "enable_morning": {"enable_morning": True, "morning_time": DEFAULT_MORNING_TIME},
    "disable_morning": {"enable_morning": False},
    "enable_evening": {"enable_evening": True, "evening_time": DEFAULT_EVENING_TIME},
    "disable_evening": {"enable_evening": False},
}


def build_user_context(user, setup_state: dict) -> str:
    username = f" ({user.username})" if user is not None and user.username else ""
    name = f" ({user.name})" if user is not None and user.name else ""
    morning = "Enabled" if user is not None and user.enable_morning_notification else "Disabled"
    evening = "Enabled" if user is not None and user.enable_evening_notification else "Disabled"
    return f"""
Current User Context:
- Has Username: {setup_state['has_username']}{username}
- Has Name: {setup_state['has_name']}{name}
- Is New User: {setup_state['is_new_user']}
- Morning Notifications: {morning}
- Evening Notifications: {evening}

Current Status Context:
{'User already has username set' if setup_state['has_username'] else 'NEEDS USERNAME - extract from their message'}
{'User already has name set' if setup_state['has_name'] else 'May need name after username is set'}
"""


def join_responses(ai_response: Optional[str], tool_results: list[str]) -> str:
    parts = [ai_response] if ai_response and ai_response.strip() else []
    parts += [result for result in tool_results if result]
    return "\n\n".join(parts) or FALLBACK_RESPONSE


class ConversationService:
    """Entry point for every chat message once the sender is known.

    Replies to a pending duplicate question go straight to the domain that
    asked it; anything else goes through the general assistant, which may
    update the user's setup and hand the message to the sales or finance tool.
    """

    def __init__(self, ctx):
        self.ctx = ctx
        self.history = ctx.history
        self.sales = SalesService(ctx)
        self.finance = FinanceService(ctx)

    def process_message(self, db: Session, user_id, message: str) -> str:
        self.history.add_message(user_id, "user", message, "general")
        context = "general"
        try:
            if looks_like_confirmation(message) and self.ctx.confirmations.exists(user_id, "sales"):
                response, context = self.sales.process_message(db, user_id, message), "sales"
            elif looks_like_confirmation(message) and self.ctx.confirmations.exists(user_id, "finance"):
                response, context = self.finance.process_message(db, user_id, message), "finance"
            else:
                response, context = self._general(db, user_id, message)
        except Exception as exc:
            db.rollback()
            response = log_and_format(exc, "Conversational AI", user_id)

        self.history.add_message(user_id, "assistant", response, context)
        return response

    def _general(self, db: Session, user_id, message: str) -> tuple[str, str]:
        user = user_service.get_user(db, user_id)
        setup_state = user_service.get_setup_state(db, user_id)
        prompt = conversation_prompt(
            build_user_context(user, setup_state),
            self.history.get_context_messages(user_id),
            self.ctx.now(),
            self.ctx.settings.timezone,
        )
        reply = self.ctx.executor.complete_json(prompt, message, RouterReply, label="conversation", user_id=user_id)

        for action in reply.setup_actions:
            self.apply_setup_action(db, user_id, action)

        tool_results = self.run_tools(db, user_id, reply.tool_calls, message)
        return join_responses(reply.response, tool_results), reply.context

    def apply_setup_action(self, db: Session, user_id, action: SetupAction) -> None:
        threshold = MIN_NOTIFICATION_CONFIDENCE if action.action == "set_notifications" else MIN_SETUP_CONFIDENCE
        if action.confidence <= threshold:
            return

        log = {"user_id": redact_id(user_id), "action": action.action}
        try:
            if action.action == "set_username":
                username = user_service.clean_username(action.value)
                if len(username) < 2:
                    return
                result = user_service.update_username(db, user_id, username)
                if result.ok:
                    logger.info("Username set successfully", extra={"context": log})
                else:
                    logger.warning(f"Username update failed: {result.error}", extra={"context": log})
            elif action.action == "set_name":
                if user_service.update_name(db, user_id, action.value):
                    logger.info("Name set successfully", extra={"context": log})
            elif action.action == "set_notifications":
                preferences = NOTIFICATION_ACTIONS.get(action.value.strip().lower())
                if preferences is None:
                    logger.warning(f"Unknown notification action: {action.value}", extra={"context": log})
                    return
                user_service.update_notification_preferences(db, user_id, **preferences)
                logger.info("Notifications updated successfully", extra={"context": log})
        except Exception as exc:
            db.rollback()
            logger.error(f"Setup action failed: {exc}", exc_info=exc, extra={"context": log})

    def run_tools(self, db: Session, user_id, tool_calls: list[ToolCall], message: str) -> list[str]:
        if not tool_calls:
            return []

        history = self.history.get_context_messages(user_id, TOOL_HISTORY_MESSAGES)
        services = {"sales": self.sales, "finance": self.finance}
        results = []
        for call in tool_calls:
            try:
                results.append(services[call.tool].process_message(db, user_id, message, history))
            except Exception as exc:
                logger.error(
                    f"Tool execution failed: {exc}",
                    exc_info=exc,
                    extra={"context": {"user_id": redact_id(user_id), "tool": call.tool}},
                )
                results.append(f"Had trouble with {call.tool} - please try again.")
        return results
