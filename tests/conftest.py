import json
import os
from collections import defaultdict

os.environ["DATABASE_URL"] = "sqlite://"
os.environ.setdefault("NOTIFICATION_SCHEDULER_ENABLED", "false")

import pytest  # noqa: E402
from sqlalchemy import create_engine  # noqa: E402
from sqlalchemy.orm import sessionmaker  # noqa: E402
from sqlalchemy.pool import StaticPool  # noqa: E402

import assistant.models  # noqa: E402,F401
from assistant.config import Settings  # noqa: E402
from assistant.context import build_app_context  # noqa: E402
from assistant.database import Base  # noqa: E402
from assistant.services import user_service  # noqa: E402
from assistant.services.errors import MessagingError  # noqa: E402
from assistant.services.llm import LLMProvider, LLMResponse  # noqa: E402
from assistant.services.messaging import MessagingProvider  # noqa: E402
from assistant.services.messaging.sms import SMSProvider  # noqa: E402
from assistant.services.messaging.telegram import TelegramProvider  # noqa: E402
from assistant.services.messaging.whatsapp import WhatsAppProvider  # noqa: E402

# Matched against the first line of the system prompt, in order.
PROMPT_MARKERS = [
    ("lead_duplicate", "sales lead duplicate detector"),
    ("transaction_duplicate", "transaction duplicate detector"),
    ("progress_report", "performance analyst"),
    ("progress_detection", "progress report"),
    ("sales", "sales CRM assistant"),
    ("finance", "personal finance assistant"),
    ("conversation", "friendly personal assistant"),
    ("morning", "morning message"),
    ("evening", "evening wrap-up"),
]


def prompt_kind(system_prompt: str) -> str:
    first_line = (system_prompt or "").strip().splitlines()[0] if system_prompt else ""
    for kind, marker in PROMPT_MARKERS:
        if marker in first_line:
            return kind
    return "unknown"


class FakeCache:
    """In-memory stand-in for RedisCache with a hand-driven clock for TTLs."""

    def __init__(self):
        self.now = 0.0
        self.entries = {}
        self.broken = False

    def advance(self, seconds: float) -> None:
        self.now += seconds

    def _check(self):
        if self.broken:
            raise ConnectionError("redis unavailable")

    def _live(self, key):
        entry = self.entries.get(key)
        if entry is None:
            return None
        value, expires_at = entry
        if expires_at is not None and self.now >= expires_at:
            del self.entries[key]
            return None
        return value

    def get(self, key):
        self._check()
        return self._live(key)

    def setex(self, key, ttl_seconds, value):
        self._check()
        self.entries[key] = (value, self.now + ttl_seconds)

    def delete(self, key):
        self._check()
        self.entries.pop(key, None)

    def exists(self, key):
        self._check()
        return self._live(key) is not None

    def expire(self, key, ttl_seconds):
        self._check()
        value = self._live(key)
        if value is not None:
            self.entries[key] = (value, self.now + ttl_seconds)

    def ttl(self, key):
        entry = self.entries.get(key)
        return None if entry is None else entry[1] - self.now


class ScriptedLLM(LLMProvider):
    """Answers each prompt kind from its own queue of canned replies.

    Dict replies are sent as JSON, exceptions are raised. A kind with an
    empty queue raises, which services treat like any other AI failure.
    """

    name = "scripted"

    def __init__(self):
        self.replies = defaultdict(list)
        self.calls = []
        self.prompts = []

    def script(self, kind: str, *replies) -> None:
        self.replies[kind].extend(replies)

    def kinds(self) -> list:
        return [kind for kind, _ in self.calls]

    def calls_for(self, kind: str) -> list:
        return [user for call_kind, user in self.calls if call_kind == kind]

    def prompts_for(self, kind: str) -> list:
        return [system for (call_kind, _), system in zip(self.calls, self.prompts) if call_kind == kind]

    def generate(self, messages, model=None, temperature=0.7, max_tokens=1000):
        system = messages[0]["content"] if messages else ""
        user = messages[1]["content"] if len(messages) > 1 else ""
        kind = prompt_kind(system)
        self.calls.append((kind, user))
        self.prompts.append(system)
        queue = self.replies.get(kind)
        if not queue:
            raise RuntimeError(f"No scripted reply for {kind}")
        reply = queue.pop(0)
        if isinstance(reply, BaseException):
            raise reply
        if isinstance(reply, dict):
            reply = json.dumps(reply)
        return LLMResponse(content=reply, model="scripted")


class RecordingMessenger(MessagingProvider):
    """Real webhook parsing from a platform provider, recorded sends."""

    def __init__(self, inner: MessagingProvider):
        self.inner = inner
        self.name = inner.name
        self.sent = []
        self.fail = False

    @property
    def configured(self) -> bool:
        return True

    def send_message(self, chat_id, text):
        if self.fail:
            raise MessagingError(f"{self.name} send failed")
        self.sent.append((str(chat_id), text))

    def parse_webhook(self, body):
        return self.inner.parse_webhook(body)

    @property
    def texts(self) -> list:
        return [text for _, text in self.sent]


@pytest.fixture
def engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    yield engine
    Base.metadata.drop_all(bind=engine)
    engine.dispose()


@pytest.fixture
def db(engine):
    session = sessionmaker(bind=engine, autocommit=False, autoflush=False)()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def settings():
    return Settings(
        _env_file=None,
        database_url="sqlite://",
        cron_secret="cron-secret",
        whatsapp_verify_token="verify-token",
        ai_max_attempts=2,
        ai_retry_backoff_seconds=1.0,
    )


@pytest.fixture
def cache():
    return FakeCache()


@pytest.fixture
def llm():
    return ScriptedLLM()


@pytest.fixture
def messengers():
    return {
        "telegram": RecordingMessenger(TelegramProvider(bot_token="")),
        "whatsapp": RecordingMessenger(WhatsAppProvider(access_token="", phone_number_id="")),
        "sms": RecordingMessenger(SMSProvider(account_sid="", auth_token="", phone_number="")),
    }


@pytest.fixture
def sleeps():
    return []


@pytest.fixture
def ctx(settings, cache, llm, messengers, sleeps):
    return build_app_context(settings, cache=cache, llm=llm, messengers=messengers, sleep=sleeps.append)


@pytest.fixture
def user(db):
    return user_service.find_or_create_user(db, "telegram", "1001")
