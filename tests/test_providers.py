from types import SimpleNamespace
from unittest.mock import MagicMock, Mock, patch

import anthropic
import httpx
import pytest

from assistant.config import Settings
from assistant.services.cache import RedisCache, create_redis_pool
from assistant.services.errors import AIProviderError
from assistant.services.llm import ClaudeProvider, OpenAIProvider, build_llm_provider


def _openai_client(status_code=200, json_data=None, text=""):
    response = Mock(status_code=status_code, text=text)
    response.json.return_value = json_data or {}
    client = MagicMock()
    client.__enter__.return_value.post.return_value = response
    return client


class TestOpenAIProvider:
    def test_generate_response(self):
        client = _openai_client(
            json_data={"model": "gpt-4o-mini", "choices": [{"message": {"content": "Hello"}}], "usage": {"total": 3}}
        )

        with patch("assistant.services.llm.openai_provider.httpx.Client", return_value=client):
            reply = OpenAIProvider(api_key="sk-test").generate_response("  Be brief.  ", "hi")

        assert reply == "Hello"
        call = client.__enter__.return_value.post.call_args
        assert call.kwargs["headers"]["Authorization"] == "Bearer sk-test"
        assert call.kwargs["json"]["messages"] == [
            {"role": "system", "content": "Be brief."},
            {"role": "user", "content": "hi"},
        ]

    def test_empty_user_message_is_omitted(self):
        client = _openai_client(json_data={"choices": []})

        with patch("assistant.services.llm.openai_provider.httpx.Client", return_value=client):
            assert OpenAIProvider(api_key="sk-test").generate_response("system", "   ") == ""

        assert len(client.__enter__.return_value.post.call_args.kwargs["json"]["messages"]) == 1

    def test_error_status(self):
        client = _openai_client(status_code=503, text="overloaded")

        with patch("assistant.services.llm.openai_provider.httpx.Client", return_value=client):
            with pytest.raises(AIProviderError) as exc_info:
                OpenAIProvider(api_key="sk-test").generate([{"role": "user", "content": "hi"}])

        assert exc_info.value.status_code == 503
        assert exc_info.value.provider == "OpenAI"


class TestClaudeProvider:
    def test_system_messages_are_lifted(self):
        client = Mock()
        client.messages.create.return_value = SimpleNamespace(
            content=[SimpleNamespace(type="text", text="Hi there")],
            model="claude-test",
            usage=SimpleNamespace(input_tokens=5, output_tokens=2),
        )
        provider = ClaudeProvider(api_key="", client=client)

        response = provider.generate([{"role": "system", "content": "Be kind."}, {"role": "user", "content": "hi"}])

        assert response.content == "Hi there"
        assert response.usage == {"input_tokens": 5, "output_tokens": 2}
        kwargs = client.messages.create.call_args.kwargs
        assert kwargs["system"] == "Be kind."
        assert kwargs["messages"] == [{"role": "user", "content": "hi"}]

    def test_status_error_is_wrapped(self):
        request = httpx.Request("POST", "https://api.anthropic.com/v1/messages")
        error = anthropic.InternalServerError(
            "overloaded", response=httpx.Response(529, request=request), body=None
        )
        client = Mock()
        client.messages.create.side_effect = error

        with pytest.raises(AIProviderError) as exc_info:
            ClaudeProvider(api_key="", client=client).generate_response("system", "hi")

        assert exc_info.value.status_code == 529


class TestBuildProvider:
    @pytest.mark.parametrize(
        "name, expected",
        [("openai", OpenAIProvider), ("Claude", ClaudeProvider), ("anthropic", ClaudeProvider)],
    )
    def test_selects_provider(self, name, expected):
        settings = Settings(_env_file=None, ai_provider=name, anthropic_api_key="key")

        assert isinstance(build_llm_provider(settings), expected)

    def test_unknown_provider(self):
        with pytest.raises(ValueError):
            build_llm_provider(Settings(_env_file=None, ai_provider="llama"))


class TestRedisCache:
    def test_pool_settings(self):
        settings = Settings(_env_file=None, redis_url="redis://cache:6379/2", redis_max_connections=7)

        pool = create_redis_pool(settings)

        assert pool.max_connections == 7
        assert pool.connection_kwargs["host"] == "cache"
        assert pool.connection_kwargs["db"] == 2
        assert pool.connection_kwargs["decode_responses"] is True

    def test_commands_use_the_pool(self):
        pool = Mock()
        with patch("assistant.services.cache.redis.Redis") as redis_cls:
            cache = RedisCache(pool)
            client = redis_cls.return_value
            client.exists.return_value = 1

            cache.setex("pending:1:sales", 300, "{}")
            assert cache.exists("pending:1:sales") is True
            cache.close()

        redis_cls.assert_called_once_with(connection_pool=pool)
        client.setex.assert_called_once_with("pending:1:sales", 300, "{}")
        pool.disconnect.assert_called_once_with()
