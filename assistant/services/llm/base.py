from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import List, Optional


@dataclass
class LLMResponse:
    content: str
    model: str
    usage: Optional[dict] = None


class LLMProvider(ABC):
    """Abstract base class for LLM providers."""

    name = "llm"

    @abstractmethod
    def generate(
        self,
        messages: List[dict],
        model: Optional[str] = None,
        temperature: float = 0.7,
        max_tokens: int = 1000,
    ) -> LLMResponse:
        """Generate response from LLM."""
        pass

    def generate_response(self, system_prompt: str, user_message: str, **kwargs) -> str:
        """Single-turn call: system prompt plus one user message, returns text."""
        messages = [{"role": "system", "content": (system_prompt or "").strip()}]
        user_message = (user_message or "").strip()
        if user_message:
            messages.append({"role": "user", "content": user_message})
        return self.generate(messages, **kwargs).content
