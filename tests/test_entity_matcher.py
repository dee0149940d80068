from assistant.models import Account, Lead, Transaction
from assistant.services import user_service
from assistant.services.entity_matcher import (
    clean_name,
    find_existing_account,
    find_existing_lead,
    find_existing_transaction,
    find_similar_leads,
    find_similar_transactions,
)


def _lead(db, user, name, phone=None):
    lead = Lead(user_id=user.id, name=name, phone=phone)
    db.add(lead)
    db.commit()
    return lead


class TestCleanName:
    def test_collapses_whitespace_and_keeps_case(self):
        assert clean_name("  John   Smith ") == "John Smith"
        assert clean_name(None) == ""


class TestFindExistingLead:
    def test_exact_match_ignores_case(self, db, user):
        lead = _lead(db, user, "John Smith")
        assert find_existing_lead(db, user.id, "john smith").id == lead.id

    def test_phone_match(self, db, user):
        lead = _lead(db, user, "Acme Corp", phone="0821234567")
        assert find_existing_lead(db, user.id, "Someone Else", "0821234567").id == lead.id

    def test_substring_match(self, db, user):
        lead = _lead(db, user, "Dan's Guest House")
        assert find_existing_lead(db, user.id, "guest house").id == lead.id

    def test_exact_wins_over_substring(self, db, user):
        _lead(db, user, "Acme Corp Holdings")
        exact = _lead(db, user, "Acme Corp")
        assert find_existing_lead(db, user.id, "acme corp").id == exact.id

    def test_like_wildcards_are_literal(self, db, user):
        _lead(db, user, "Acme Corp")
        assert find_existing_lead(db, user.id, "%") is None
        assert find_existing_lead(db, user.id, "Acme_Corp") is None

    def test_other_users_are_invisible(self, db, user):
        other = user_service.find_or_create_user(db, "telegram", "2002")
        _lead(db, other, "John Smith")
        assert find_existing_lead(db, user.id, "John Smith") is None

    def test_no_match(self, db, user):
        _lead(db, user, "Dandrom Guest House")
        assert find_existing_lead(db, user.id, "Dan's Guest House") is None
        assert find_existing_lead(db, user.id, "") is None


class TestFindSimilar:
    def test_similar_leads_by_label(self, db, user):
        for name in ("Dan's Guest House", "Dan's Guest House Annex", "Bob's Cafe"):
            _lead(db, user, name)
        names = {lead.name for lead in find_similar_leads(db, user.id, "Dan's Guest House")}
        assert names == {"Dan's Guest House", "Dan's Guest House Annex"}
        assert find_similar_leads(db, user.id, None) == []

    def test_similar_transactions_limit(self, db, user):
        for _ in range(5):
            db.add(Transaction(user_id=user.id, description="Groceries at Woolworths", amount=-89.5, category="Variable Expenses"))
        db.commit()
        assert len(find_similar_transactions(db, user.id, "woolworths")) == 3


class TestFindExistingRecords:
    def test_transaction_by_description(self, db, user):
        tx = Transaction(user_id=user.id, description="Netflix subscription", amount=-199, category="Fixed Expenses")
        db.add(tx)
        db.commit()
        assert find_existing_transaction(db, user.id, "netflix").id == tx.id
        assert find_existing_transaction(db, user.id, "") is None

    def test_account_by_name(self, db, user):
        account = Account(user_id=user.id, name="Emergency Fund", type="Emergency Fund", current_balance=5000)
        db.add(account)
        db.commit()
        assert find_existing_account(db, user.id, "emergency fund").id == account.id
        assert find_existing_account(db, user.id, "emergency").id == account.id
        assert find_existing_account(db, user.id, "holiday") is None
