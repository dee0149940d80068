import random
from typing import Optional

from assistant.logging_config import get_logger, redact_id

logger = get_logger("error_messages")

OVERLOADED_MESSAGES = [
    "🤖 Oops! My AI brain is having a traffic jam right now. Try again in a moment?",
    "🚦 The AI highway is a bit congested. Give me a sec to find a faster route!",
    "🎪 It's busier than a free pizza stand in here. Let me catch my breath and try again shortly!",
    "🏃 I'm running as fast as my circuits allow, but there's a queue. One more try in a moment?",
]

RATE_LIMIT_MESSAGES = [
    "⏱️ Whoa there, speed racer! I've hit my AI quota for the moment. Let's take a breather.",
    "🚨 The rate limit police caught me. Give me a minute before the next request!",
    "📈 I'm more popular than I thought and hit my request limit. Try again shortly?",
]

TIMEOUT_MESSAGES = [
    "⏰ I got lost in thought for too long. Let me refocus, try that again?",
    "🐌 Sorry, I was being extra thorough and ran out of time. Let's try again!",
    "🕰️ I took the scenic route through the data. Send that once more?",
]

NETWORK_MESSAGES = [
    "📡 My connection is having mood swings. Please try again in a moment.",
    "🌐 The internet gremlins are rearranging the cables again. One more try?",
    "🛰️ Houston, we have a connection problem! Try again shortly.",
]

GENERIC_MESSAGES = [
    "🤖 Something went sideways in my digital brain! Please try again.",
    "🎯 I missed the mark there. Ready for another shot?",
    "🔧 My circuits got a bit tangled. Give me a moment and try again!",
    "🎲 That was a critical fail on my dice roll. Rolling again should help!",
]


def _pick(messages: list[str], rng: Optional[random.Random] = None) -> str:
    return (rng or random).choice(messages)


def friendly_error_message(error: BaseException, rng: Optional[random.Random] = None) -> str:
    """Pick a light-hearted apology matching the kind of failure."""
    message = str(error).lower()
    if "503" in message or "overloaded" in message:
        return _pick(OVERLOADED_MESSAGES, rng)
    if "429" in message or "rate limit" in message:
        return _pick(RATE_LIMIT_MESSAGES, rng)
    if "timeout" in message or "timed out" in message:
        return _pick(TIMEOUT_MESSAGES, rng)
    if "network" in message or "connection" in message:
        return _pick(NETWORK_MESSAGES, rng)
    return _pick(GENERIC_MESSAGES, rng)


def log_and_format(error: BaseException, context: str, user_id=None) -> str:
    logger.error(
        f"{context} error: {error}",
        exc_info=error,
        extra={"context": {"user_id": redact_id(user_id), "service": context}},
    )
    return friendly_error_message(error)
