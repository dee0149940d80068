import json
import uuid

from assistant.services.conversation_history import (
    NO_HISTORY_TEXT,
    ConversationHistory,
    format_time_ago,
    history_key,
)


class FakeClock:
    def __init__(self, now=1700000000.0):
        self.now = now

    def __call__(self):
        return self.now


class TestConversationHistory:
    def test_keeps_last_twenty_messages(self, cache):
        history = ConversationHistory(cache, max_messages=20, ttl_seconds=7200)
        user_id = uuid.uuid4()

        for i in range(25):
            history.add_message(user_id, "user", f"message {i}")

        stored = history.get_history(user_id)
        assert len(stored["messages"]) == 20
        assert stored["messages"][0]["content"] == "message 5"
        assert stored["message_count"] == 25

    def test_ttl_is_two_hours_and_refreshed_on_read(self, cache):
        history = ConversationHistory(cache, ttl_seconds=7200)
        user_id = uuid.uuid4()
        history.add_message(user_id, "user", "hi")

        cache.advance(7000)
        assert history.get_history(user_id) is not None
        assert cache.ttl(history_key(user_id)) == 7200

        cache.advance(7201)
        assert history.get_history(user_id) is None

    def test_context_messages_format(self, cache):
        clock = FakeClock()
        history = ConversationHistory(cache, clock=clock)
        user_id = uuid.uuid4()
        history.add_message(user_id, "user", "New lead Acme Corp", "general")
        clock.now += 300
        history.add_message(user_id, "assistant", "✅ Created lead", "sales")

        text = history.get_context_messages(user_id)

        assert text.startswith("RECENT CONVERSATION HISTORY:")
        assert "USER [general] (5 minutes ago): New lead Acme Corp" in text
        assert "ASSISTANT [sales] (less than a minute ago): ✅ Created lead" in text

    def test_no_history(self, cache):
        history = ConversationHistory(cache)
        assert history.get_context_messages(uuid.uuid4()) == NO_HISTORY_TEXT

    def test_stats_and_recent_activity(self, cache):
        clock = FakeClock()
        history = ConversationHistory(cache, clock=clock)
        user_id = uuid.uuid4()
        history.add_message(user_id, "user", "hello")
        history.add_message(user_id, "assistant", "hi", "sales")

        stats = history.get_stats(user_id)
        assert stats["total_messages"] == 2
        assert stats["context_breakdown"] == {"general": 1, "sales": 1}
        assert history.is_recently_active(user_id) is True

        clock.now += 31 * 60
        assert history.is_recently_active(user_id) is False

    def test_corrupt_history_is_replaced(self, cache):
        history = ConversationHistory(cache)
        user_id = uuid.uuid4()
        cache.setex(history_key(user_id), 7200, json.dumps(["not", "a", "dict"]))

        history.add_message(user_id, "user", "hello")

        assert [m["content"] for m in history.get_history(user_id)["messages"]] == ["hello"]

    def test_cache_failure_is_swallowed(self, cache):
        history = ConversationHistory(cache)
        cache.broken = True

        history.add_message(uuid.uuid4(), "user", "hello")
        assert history.get_history(uuid.uuid4()) is None


class TestFormatTimeAgo:
    def test_buckets(self):
        now = 10_000_000_000
        assert format_time_ago(now - 30_000, now) == "less than a minute ago"
        assert format_time_ago(now - 60_000, now) == "1 minute ago"
        assert format_time_ago(now - 2 * 3600_000, now) == "about 2 hours ago"
        assert format_time_ago(now - 3 * 86400_000, now) == "3 days ago"
