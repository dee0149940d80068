from typing import List, Optional

import anthropic

from assistant.logging_config import get_logger
from assistant.services.errors import AIProviderError
from assistant.services.llm.base import LLMProvider, LLMResponse

logger = get_logger("llm.claude")


class ClaudeProvider(LLMProvider):
    """Anthropic messages API provider."""

    name = "claude"

    def __init__(
        self,
        api_key: str,
        default_model: str = "claude-3-5-sonnet-latest",
        timeout_seconds: float = 60.0,
        client: Optional[anthropic.Anthropic] = None,
    ):
        self.default_model = default_model
        self.client = client or anthropic.Anthropic(api_key=api_key, timeout=timeout_seconds, max_retries=0)

    def generate(
        self,
        messages: List[dict],
        model: Optional[str] = None,
        temperature: float = 0.7,
        max_tokens: int = 1000,
    ) -> LLMResponse:
        model = model or self.default_model
        system = "\n\n".join(m["content"] for m in messages if m.get("role") == "system")
        conversation = [m for m in messages if m.get("role") != "system"]
        if not conversation:
            # The messages API requires at least one user turn.
            conversation = [{"role": "user", "content": "Respond according to the instructions."}]

        logger.debug(f"Claude request: model={model}, messages_count={len(conversation)}")
        try:
            message = self.client.messages.create(
                model=model,
                max_tokens=max_tokens,
                temperature=temperature,
                system=system,
                messages=conversation,
            )
        except anthropic.APITimeoutError as exc:
            raise AIProviderError("Claude", None, f"timeout: {exc}") from exc
        except anthropic.APIConnectionError as exc:
            raise AIProviderError("Claude", None, f"connection error: {exc}") from exc
        except anthropic.APIStatusError as exc:
            logger.error(f"Claude error: {exc}")
            raise AIProviderError("Claude", exc.status_code, str(exc)) from exc

        content = "".join(block.text for block in message.content if getattr(block, "type", None) == "text")
        usage = None
        if getattr(message, "usage", None) is not None:
            usage = {"input_tokens": message.usage.input_tokens, "output_tokens": message.usage.output_tokens}
        return LLMResponse(content=content, model=getattr(message, "model", model), usage=usage)
