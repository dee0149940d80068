from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable, Optional

from fastapi import Request

from assistant.config import Settings
from assistant.logging_config import get_logger
from assistant.services.ai_executor import AIRequestExecutor
from assistant.services.cache import RedisCache, create_redis_pool
from assistant.services.clock import utcnow
from assistant.services.confirmation_store import PendingConfirmationStore
from assistant.services.conversation_history import ConversationHistory
from assistant.services.duplicate_classifier import DuplicateClassifier
from assistant.services.llm import LLMProvider, build_llm_provider
from assistant.services.messaging import MessagingProvider, build_messaging_providers

logger = get_logger("context")


@dataclass
class AppContext:
    """Process-wide collaborators, built once at startup and handed to services."""

    settings: Settings
    cache: object
    llm: LLMProvider
    executor: AIRequestExecutor
    messengers: dict[str, MessagingProvider]
    confirmations: PendingConfirmationStore
    history: ConversationHistory
    classifier: DuplicateClassifier
    clock: Callable[[], datetime] = field(default=utcnow)

    def now(self) -> datetime:
        return self.clock()

    def messenger(self, platform: Optional[str]) -> Optional[MessagingProvider]:
        return self.messengers.get((platform or "").lower())

    def close(self) -> None:
        close = getattr(self.cache, "close", None)
        if close is not None:
            close()


def build_app_context(
    settings: Settings,
    cache=None,
    llm: Optional[LLMProvider] = None,
    messengers: Optional[dict[str, MessagingProvider]] = None,
    clock: Callable[[], datetime] = utcnow,
    sleep: Optional[Callable[[float], None]] = None,
) -> AppContext:
    """Wire the default collaborators; tests pass fakes for the external ones."""
    if cache is None:
        cache = RedisCache(create_redis_pool(settings))
    if llm is None:
        llm = build_llm_provider(settings)
    if messengers is None:
        messengers = build_messaging_providers(settings)

    executor_kwargs = {} if sleep is None else {"sleep": sleep}
    executor = AIRequestExecutor(
        llm,
        max_attempts=settings.ai_max_attempts,
        backoff_seconds=settings.ai_retry_backoff_seconds,
        **executor_kwargs,
    )
    context = AppContext(
        settings=settings,
        cache=cache,
        llm=llm,
        executor=executor,
        messengers=messengers,
        confirmations=PendingConfirmationStore(cache, ttl_seconds=settings.confirmation_ttl_seconds),
        history=ConversationHistory(
            cache,
            max_messages=settings.history_max_messages,
            ttl_seconds=settings.history_ttl_seconds,
        ),
        classifier=DuplicateClassifier(executor),
        clock=clock,
    )
    logger.info(
        "Application context ready",
        extra={"context": {"ai_provider": executor.provider_name, "platforms": sorted(messengers)}},
    )
    return context


def get_context(request: Request) -> AppContext:
    return request.app.state.context
