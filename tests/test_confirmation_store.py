import uuid

from assistant.schemas.confirmation import Candidate, ClassifierVerdict
from assistant.services.confirmation_flow import new_pending
from assistant.services.confirmation_store import PendingConfirmationStore, confirmation_key


def _pending(name="Dan's Guest House", label="Dandrom Guest House"):
    verdict = ClassifierVerdict(verdict="DUPLICATE", confidence=0.9, rationale="similar names", matched_label=label)
    candidate = Candidate(id=str(uuid.uuid4()), label=label)
    return new_pending("duplicate_lead", {"name": name}, verdict, [candidate], clock=lambda: 1700000000.0)


class TestPendingConfirmationStore:
    def test_store_and_get(self, cache):
        store = PendingConfirmationStore(cache, ttl_seconds=300)
        user_id = uuid.uuid4()

        assert store.store(user_id, "sales", _pending()) is True

        pending = store.get(user_id, "sales")
        assert pending.kind == "duplicate_lead"
        assert pending.proposed_entity == {"name": "Dan's Guest House"}
        assert pending.candidates[0].label == "Dandrom Guest House"
        assert pending.created_at == 1700000000000
        assert store.exists(user_id, "sales") is True

    def test_key_format(self):
        user_id = uuid.uuid4()
        assert confirmation_key(user_id, "finance") == f"confirmation:{user_id}:finance"

    def test_at_most_one_pending_per_key(self, cache):
        store = PendingConfirmationStore(cache, ttl_seconds=300)
        user_id = uuid.uuid4()

        store.store(user_id, "sales", _pending("First Lead"))
        store.store(user_id, "sales", _pending("Second Lead"))

        keys = [key for key in cache.entries if key.startswith(f"confirmation:{user_id}:")]
        assert keys == [confirmation_key(user_id, "sales")]
        assert store.get(user_id, "sales").proposed_entity["name"] == "Second Lead"

    def test_domains_are_independent(self, cache):
        store = PendingConfirmationStore(cache, ttl_seconds=300)
        user_id = uuid.uuid4()

        store.store(user_id, "sales", _pending())
        assert store.get(user_id, "finance") is None
        assert store.exists(user_id, "finance") is False

    def test_expires_after_ttl(self, cache):
        store = PendingConfirmationStore(cache, ttl_seconds=300)
        user_id = uuid.uuid4()
        store.store(user_id, "sales", _pending())

        cache.advance(299)
        assert store.get(user_id, "sales") is not None

        cache.advance(2)
        assert store.get(user_id, "sales") is None
        assert store.exists(user_id, "sales") is False

    def test_clear(self, cache):
        store = PendingConfirmationStore(cache)
        user_id = uuid.uuid4()
        store.store(user_id, "sales", _pending())

        store.clear(user_id, "sales")

        assert store.get(user_id, "sales") is None

    def test_corrupt_payload_is_discarded(self, cache):
        store = PendingConfirmationStore(cache)
        user_id = uuid.uuid4()
        cache.setex(confirmation_key(user_id, "sales"), 300, "{not json")

        assert store.get(user_id, "sales") is None
        assert confirmation_key(user_id, "sales") not in cache.entries

    def test_cache_failure_fails_open(self, cache):
        store = PendingConfirmationStore(cache)
        user_id = uuid.uuid4()
        cache.broken = True

        assert store.store(user_id, "sales", _pending()) is False
        assert store.get(user_id, "sales") is None
        assert store.exists(user_id, "sales") is False
        store.clear(user_id, "sales")
