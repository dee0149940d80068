from datetime import datetime, timezone

import pytest

from assistant.models import Lead
from assistant.services.clock import ensure_timezone
from assistant.services.confirmation_flow import CANCELLED_TEXT
from assistant.services.error_messages import GENERIC_MESSAGES
from assistant.services.sales_service import SalesService, normalize_status, query_type_for


def _lead(db, user, name, **fields):
    lead = Lead(user_id=user.id, name=name, **fields)
    db.add(lead)
    db.commit()
    return lead


def _leads(db, user):
    return db.query(Lead).filter(Lead.user_id == user.id).order_by(Lead.created_at).all()


def _create(name, **updates):
    return {"action": "create", "contactName": name, "updates": updates}

DANDROM_DUPLICATE = {
    "result": "DUPLICATE",
    "confidence": 0.9,
    "reasoning": "Dan's Guest House looks like a short form of Dandrom Guest House",
    "matchedLead": "Dandrom Guest House",
}


@pytest.fixture
def sales(ctx):
    return SalesService(ctx)


@pytest.fixture
def dandrom_pending(sales, db, user, llm):
    """Dandrom Guest House exists and adding "Dan's Guest House" was flagged as its duplicate."""
    _lead(db, user, "Dandrom Guest House", phone="0821112222")
    llm.script("sales", _create("Dan's Guest House", interested=True, notes="Met at the expo"))
    llm.script("lead_duplicate", DANDROM_DUPLICATE)
    reply = sales.process_message(db, user.id, "Add lead Dan's Guest House, interested, met at the expo")
    return reply


class TestCreateLead:
    def test_new_lead_acme_corp(self, sales, db, user, llm):
        llm.script("sales", _create("Acme Corp"))

        reply = sales.process_message(db, user.id, "New lead Acme Corp")

        assert reply.startswith("✅ **Created lead for Acme Corp**")
        assert "🧠 **AI confirmed unique lead** (100% confidence)" in reply
        assert [lead.name for lead in _leads(db, user)] == ["Acme Corp"]
        assert _leads(db, user)[0].status == "New"
        # first lead: nothing to compare against, so no duplicate check
        assert llm.kinds() == ["sales"]

    def test_exact_match_never_calls_classifier(self, sales, db, user, llm):
        _lead(db, user, "John Smith", notes="Owns two shops")
        llm.script("sales", _create("john smith", notes="Wants a quote"))

        reply = sales.process_message(db, user.id, "New lead john smith, wants a quote")

        assert reply.startswith("✅ **Updated existing lead for John Smith**")
        assert "lead_duplicate" not in llm.kinds()
        leads = _leads(db, user)
        assert len(leads) == 1
        assert "Wants a quote" in leads[0].notes

    def test_same_note_twice_on_exact_match_is_kept_once(self, sales, db, user, llm):
        _lead(db, user, "John Smith", notes="Owns two shops")
        llm.script("sales", _create("john smith", notes="Wants a quote"), _create("john smith", notes="Wants a quote"))

        sales.process_message(db, user.id, "New lead john smith, wants a quote")
        sales.process_message(db, user.id, "New lead john smith, wants a quote")

        leads = _leads(db, user)
        assert len(leads) == 1
        assert leads[0].notes.count("Wants a quote") == 1
        assert "Owns two shops" in leads[0].notes

    def test_classifier_failure_still_creates(self, sales, db, user, llm):
        _lead(db, user, "Bob's Cafe")
        llm.script("sales", _create("Acme Corp"))
        llm.script("lead_duplicate", RuntimeError("classifier blew up"))

        reply = sales.process_message(db, user.id, "New lead Acme Corp")

        assert reply.startswith("✅ **Created lead for Acme Corp**")
        assert "(50% confidence)" in reply
        assert {lead.name for lead in _leads(db, user)} == {"Bob's Cafe", "Acme Corp"}

    def test_followup_is_read_as_local_time(self, sales, db, user, llm):
        llm.script("sales", _create("Acme Corp", nextFollowup="2026-10-20T10:00:00", status="interested"))

        sales.process_message(db, user.id, "New lead Acme Corp, follow up 20 Oct at 10")

        lead = _leads(db, user)[0]
        assert ensure_timezone(lead.next_followup) == datetime(2026, 10, 20, 8, 0, tzinfo=timezone.utc)
        assert lead.status == "Interested"

    def test_missing_name_is_rejected(self, sales, db, user, llm):
        llm.script("sales", {"action": "create", "contactName": "  "})

        reply = sales.process_message(db, user.id, "New lead")

        assert reply.startswith("❌ I need the lead's name")
        assert _leads(db, user) == []


class TestDuplicateConfirmation:
    def test_duplicate_prompt(self, dandrom_pending, ctx, user, db):
        assert dandrom_pending.startswith("🤔 **Potential Duplicate Detected!**")
        assert "I found a similar lead: **Dandrom Guest House**" in dandrom_pending
        assert "📊 Confidence: 90%" in dandrom_pending
        assert ctx.confirmations.exists(user.id, "sales")
        assert len(_leads(db, user)) == 1

    def test_update_merges_into_existing(self, dandrom_pending, sales, ctx, db, user, llm):
        calls_before = len(llm.calls)

        reply = sales.process_message(db, user.id, "update")

        assert reply == (
            "✅ **Updated existing lead for Dandrom Guest House**\n\n💡 *Combined with previous lead as you requested*"
        )
        assert len(llm.calls) == calls_before
        leads = _leads(db, user)
        assert len(leads) == 1
        assert leads[0].name == "Dandrom Guest House"
        assert leads[0].interested is True
        assert leads[0].notes == "Met at the expo"
        assert not ctx.confirmations.exists(user.id, "sales")

    def test_update_twice_keeps_one_note(self, dandrom_pending, sales, db, user, llm):
        sales.process_message(db, user.id, "update")
        llm.script("sales", _create("Dan's Guest House", notes="Met at the expo"))
        llm.script("lead_duplicate", DANDROM_DUPLICATE)
        again = sales.process_message(db, user.id, "Add lead Dan's Guest House, met at the expo")
        assert again.startswith("🤔 **Potential Duplicate Detected!**")

        sales.process_message(db, user.id, "update")

        leads = _leads(db, user)
        assert len(leads) == 1
        assert leads[0].notes.count("Met at the expo") == 1

    def test_yes_creates_separate_lead(self, dandrom_pending, sales, ctx, db, user):
        reply = sales.process_message(db, user.id, "yes")

        assert reply.startswith("✅ **Created new lead for Dan's Guest House**")
        assert "keep this separate" in reply
        assert [lead.name for lead in _leads(db, user)] == ["Dandrom Guest House", "Dan's Guest House"]
        assert not ctx.confirmations.exists(user.id, "sales")

    def test_cancel(self, dandrom_pending, sales, ctx, db, user):
        reply = sales.process_message(db, user.id, "cancel")

        assert reply == CANCELLED_TEXT
        assert [lead.name for lead in _leads(db, user)] == ["Dandrom Guest House"]
        assert not ctx.confirmations.exists(user.id, "sales")

    def test_show_then_update(self, dandrom_pending, sales, ctx, db, user):
        shown = sales.process_message(db, user.id, "show 1")

        assert shown.startswith("👤 **Dandrom Guest House**")
        assert "📞 **Phone:** 0821112222" in shown
        assert shown.endswith(sales.show_hint)
        assert ctx.confirmations.exists(user.id, "sales")

        merged = sales.process_message(db, user.id, "update")

        assert merged.startswith("✅ **Updated existing lead for Dandrom Guest House**")
        assert len(_leads(db, user)) == 1

    def test_expired_question_goes_back_to_ai(self, dandrom_pending, sales, cache, db, user, llm):
        cache.advance(301)
        llm.script("sales", {"action": "summary"})

        reply = sales.process_message(db, user.id, "update")

        assert reply.startswith("📊 **Sales Pipeline Summary**")
        assert len(_leads(db, user)) == 1

    def test_long_reply_is_not_treated_as_confirmation(self, dandrom_pending, sales, ctx, db, user, llm):
        llm.script("sales", {"action": "summary"})

        reply = sales.process_message(db, user.id, "yes I want to create a new one")

        assert reply.startswith("📊 **Sales Pipeline Summary**")
        assert ctx.confirmations.exists(user.id, "sales")

    def test_cache_outage_saves_lead_instead_of_asking(self, sales, cache, ctx, db, user, llm):
        _lead(db, user, "Dandrom Guest House")
        llm.script("sales", _create("Dan's Guest House"))
        llm.script("lead_duplicate", DANDROM_DUPLICATE)
        cache.broken = True

        reply = sales.process_message(db, user.id, "New lead Dan's Guest House")

        assert reply.startswith("✅ **Created lead for Dan's Guest House**")
        assert "(50% confidence)" in reply
        assert [lead.name for lead in _leads(db, user)] == ["Dandrom Guest House", "Dan's Guest House"]
        cache.broken = False
        assert not ctx.confirmations.exists(user.id, "sales")


class TestOtherActions:
    def test_update_existing_lead(self, sales, db, user, llm):
        _lead(db, user, "Acme Corp")
        llm.script("sales", {"action": "update", "contactName": "acme", "updates": {"contacted": True, "status": "Contacted"}})

        reply = sales.process_message(db, user.id, "Called acme today")

        assert reply.startswith("✅ **Updated lead for Acme Corp**")
        lead = _leads(db, user)[0]
        assert lead.contacted is True
        assert lead.status == "Contacted"

    def test_update_unknown_lead_creates_it(self, sales, db, user, llm):
        llm.script("sales", {"action": "update", "contactName": "Zeta Ltd", "updates": {"replied": True}})

        reply = sales.process_message(db, user.id, "Zeta Ltd replied")

        assert reply.startswith("✅ **Created new lead for Zeta Ltd** (didn't find existing")
        assert _leads(db, user)[0].replied is True

    def test_view_unknown_lead(self, sales, db, user, llm):
        llm.script("sales", {"action": "view", "contactName": "Nobody"})

        assert sales.process_message(db, user.id, "show Nobody") == '❌ Lead "Nobody" not found'

    def test_delete(self, sales, db, user, llm):
        _lead(db, user, "Acme Corp")
        llm.script("sales", {"action": "delete", "contactName": "Acme Corp"})

        assert sales.process_message(db, user.id, "delete Acme Corp") == "🗑️ **Deleted lead for Acme Corp**"
        assert _leads(db, user) == []

    def test_query_new_leads(self, sales, db, user, llm):
        _lead(db, user, "Acme Corp")
        _lead(db, user, "Zeta Ltd", status="Interested", interested=True)
        llm.script("sales", {"action": "query"})

        reply = sales.process_message(db, user.id, "show my interested leads")

        assert reply.startswith("🎯 **Interested Prospects (1):**")
        assert "**Zeta Ltd**" in reply
        assert "Acme Corp" not in reply

    def test_summary(self, sales, db, user, llm):
        _lead(db, user, "Acme Corp")
        _lead(db, user, "Zeta Ltd", status="Interested")
        llm.script("sales", {"action": "summary"})

        reply = sales.process_message(db, user.id, "pipeline summary")

        assert "📈 **Total Leads:** 2" in reply
        assert "✨ New: 1" in reply

    def test_conversation_for_empty_pipeline(self, sales, db, user, llm):
        llm.script("sales", {"action": "conversation", "contextualOpening": "Happy to help!"})
        llm.script("progress_detection", {"isProgressRequest": False, "confidence": 0.2})

        reply = sales.process_message(db, user.id, "what should I focus on?")

        assert reply.startswith("Happy to help!")
        assert "Ready to start building your pipeline?" in reply

    def test_progress_report(self, sales, db, user, llm):
        _lead(db, user, "Acme Corp")
        llm.script("sales", {"action": "conversation"})
        llm.script("progress_detection", {"isProgressRequest": True, "confidence": 0.99})
        llm.script(
            "progress_report",
            {"type": "sales", "summary": "Solid start", "insights": ["One new lead this month"]},
        )

        reply = sales.process_message(db, user.id, "How am I doing with sales?")

        assert reply.startswith("📊 **Sales Progress Report**")
        assert "• Total leads: 1" in reply
        assert "• One new lead this month" in reply

    def test_ai_failure_gives_friendly_message(self, sales, db, user, llm):
        llm.script("sales", "this is not json")

        assert sales.process_message(db, user.id, "New lead Acme Corp") in GENERIC_MESSAGES
        assert _leads(db, user) == []


class TestHelpers:
    def test_normalize_status(self):
        assert normalize_status("proposal sent") == "Proposal Sent"
        assert normalize_status("closed - won") == "Closed - Won"
        assert normalize_status("sort of interested") is None

    def test_query_type(self):
        assert query_type_for("what's overdue?") == "overdue"
        assert query_type_for("list everything") == "all"
