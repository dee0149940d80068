import json
import re
import time
from typing import Callable, Optional, Type, TypeVar

import httpx
from pydantic import BaseModel, ValidationError

from assistant.logging_config import get_logger, redact_id
from assistant.services.errors import AIProviderError, AIResponseError
from assistant.services.llm import LLMProvider

logger = get_logger("ai_executor")

ModelT = TypeVar("ModelT", bound=BaseModel)

RETRYABLE_STATUS_CODES = {429, 502, 503}
RETRYABLE_MARKERS = ("429", "502", "503", "overloaded", "timeout", "timed out", "network", "connection", "unavailable")

_FENCED_JSON = re.compile(r"```(?:json)?\s*([\s\S]+?)```")
_JSON_OBJECT = re.compile(r"\{.*\}", re.DOTALL)


def is_retryable_error(exc: BaseException) -> bool:
    """Transient provider failures: rate limits, overload, gateway errors, network."""
    if isinstance(exc, (httpx.TimeoutException, httpx.TransportError)):
        return True
    if isinstance(exc, AIProviderError) and exc.status_code in RETRYABLE_STATUS_CODES:
        return True
    message = str(exc).lower()
    return any(marker in message for marker in RETRYABLE_MARKERS)


def extract_json_payload(text: str) -> dict:
    """Pull a JSON object out of an AI reply (bare, fenced, or embedded in prose)."""
    content = (text or "").strip()
    if not content:
        raise AIResponseError("AI returned an empty response")

    try:
        payload = json.loads(content)
    except ValueError:
        payload = None
        fenced = _FENCED_JSON.search(content)
        candidates = [fenced.group(1)] if fenced else []
        match = _JSON_OBJECT.search(content)
        if match:
            candidates.append(match.group(0))
        for candidate in candidates:
            try:
                payload = json.loads(candidate)
                break
            except ValueError:
                continue

    if not isinstance(payload, dict):
        raise AIResponseError(f"Failed to extract JSON from AI response: {content[:200]}")
    return payload


class AIRequestExecutor:
    """Runs AI calls with a bounded retry policy and schema validation.

    Only transient errors are retried, with linear backoff between attempts;
    anything else (including malformed output) is raised immediately.
    """

    def __init__(
        self,
        provider: LLMProvider,
        max_attempts: int = 2,
        backoff_seconds: float = 1.0,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.provider = provider
        self.max_attempts = max(1, max_attempts)
        self.backoff_seconds = backoff_seconds
        self.sleep = sleep

    @property
    def provider_name(self) -> str:
        return getattr(self.provider, "name", "llm")

    def complete(self, system_prompt: str, user_message: str, *, label: str = "ai", user_id=None) -> str:
        for attempt in range(1, self.max_attempts + 1):
            try:
                logger.info(
                    f"Processing {label} request (attempt {attempt})",
                    extra={"context": {"user_id": redact_id(user_id), "label": label}},
                )
                return self.provider.generate_response(system_prompt, user_message)
            except Exception as exc:
                if attempt < self.max_attempts and is_retryable_error(exc):
                    logger.warning(
                        f"{label} attempt {attempt} failed, retrying",
                        extra={
                            "context": {
                                "user_id": redact_id(user_id),
                                "error": str(exc),
                                "next_attempt": attempt + 1,
                            }
                        },
                    )
                    self.sleep(self.backoff_seconds * attempt)
                    continue
                logger.error(
                    f"{label} request failed after {attempt} attempt(s): {exc}",
                    extra={"context": {"user_id": redact_id(user_id), "label": label}},
                )
                raise
        raise RuntimeError("unreachable")  # pragma: no cover

    def complete_json(
        self,
        system_prompt: str,
        user_message: str,
        schema: Type[ModelT],
        *,
        label: str = "ai",
        user_id=None,
    ) -> ModelT:
        content = self.complete(system_prompt, user_message, label=label, user_id=user_id)
        payload = extract_json_payload(content)
        try:
            result = schema.model_validate(payload)
        except ValidationError as exc:
            logger.warning(
                f"{label} response failed validation",
                extra={"context": {"user_id": redact_id(user_id), "errors": exc.errors()[:3]}},
            )
            raise AIResponseError(f"{label} response failed validation: {exc.error_count()} error(s)") from exc

        logger.info(
            f"{label} response parsed",
            extra={"context": {"user_id": redact_id(user_id), "action": getattr(result, "action", None)}},
        )
        return result


def optional_complete_json(
    executor: AIRequestExecutor,
    system_prompt: str,
    user_message: str,
    schema: Type[ModelT],
    *,
    label: str,
    user_id=None,
) -> Optional[ModelT]:
    """complete_json that logs and returns None instead of raising."""
    try:
        return executor.complete_json(system_prompt, user_message, schema, label=label, user_id=user_id)
    except Exception as exc:
        logger.warning(
            f"{label} request failed, continuing without it: {exc}",
            extra={"context": {"user_id": redact_id(user_id)}},
        )
        return None
