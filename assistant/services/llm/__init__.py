from assistant.config import Settings
from assistant.services.llm.base import LLMProvider, LLMResponse
from assistant.services.llm.claude_provider import ClaudeProvider
from assistant.services.llm.openai_provider import OpenAIProvider


def build_llm_provider(settings: Settings) -> LLMProvider:
    """Construct the configured provider. Called once when the app context is built."""
    provider = (settings.ai_provider or "openai").strip().lower()
    if provider in {"claude", "anthropic"}:
        return ClaudeProvider(
            api_key=settings.anthropic_api_key,
            default_model=settings.anthropic_model,
            timeout_seconds=settings.ai_timeout_seconds,
        )
    if provider == "openai":
        return OpenAIProvider(
            api_key=settings.openai_api_key,
            default_model=settings.openai_model,
            timeout_seconds=settings.ai_timeout_seconds,
        )
    raise ValueError(f"Unsupported AI provider: {settings.ai_provider}")


__all__ = ["LLMProvider", "LLMResponse", "OpenAIProvider", "ClaudeProvider", "build_llm_provider"]
